"""
Convergence and self-healing checks for the PMEM-CSI operator

This package drives Deployment objects through their lifecycle against a
running operator and verifies, through the Kubernetes API only, that the
operator converges on the desired driver deployment and repairs it.
"""

from .conditions import condition_problems, validate_conditions
from .conflicts import ConflictInjector
from .events import EventCorrelator, EventLedger, KubernetesEventStream
from .polling import CheckResult, Deadline, PollResult, consistently, eventually
from .scenarios import ScenarioOrchestrator, ScenarioState

__all__ = [
    'CheckResult',
    'ConflictInjector',
    'Deadline',
    'EventCorrelator',
    'EventLedger',
    'KubernetesEventStream',
    'PollResult',
    'ScenarioOrchestrator',
    'ScenarioState',
    'condition_problems',
    'consistently',
    'eventually',
    'validate_conditions',
]
