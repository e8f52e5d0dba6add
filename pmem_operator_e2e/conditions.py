"""
Comparison of the status conditions of a Deployment with an expected set.
"""
from collections import Counter
from typing import List, Mapping, Union

from rich.console import Console

from pmem_operator_e2e.models import ConditionStatus, ConditionType, ManagedResourceSnapshot

console = Console()

ExpectedConditions = Mapping[Union[ConditionType, str], Union[ConditionStatus, str]]


def _value(v) -> str:
    return v.value if hasattr(v, 'value') else str(v)


def condition_problems(snapshot: ManagedResourceSnapshot, expected: ExpectedConditions) -> List[str]:
    """
    List every difference between the snapshot's conditions and expected.
    The type sets must be identical and every status must match.
    """
    wanted = {_value(t): _value(s) for t, s in expected.items()}
    problems = []

    counts = Counter(c.type for c in snapshot.conditions)
    for ctype, count in sorted(counts.items()):
        if count > 1:
            problems.append(f"condition {ctype} reported {count} times")

    if len(snapshot.conditions) != len(wanted):
        problems.append(f"expected {len(wanted)} conditions, got {len(snapshot.conditions)}")

    for condition in snapshot.conditions:
        if condition.type not in wanted:
            problems.append(f"unexpected condition {condition.type}={condition.status}")
        elif condition.status != wanted[condition.type]:
            problems.append(
                f"condition {condition.type}: expected {wanted[condition.type]}, got {condition.status}"
            )

    observed = set(counts)
    for ctype in sorted(set(wanted) - observed):
        problems.append(f"missing condition {ctype}")
    return problems


def conditions_match(snapshot: ManagedResourceSnapshot, expected: ExpectedConditions) -> bool:
    return not condition_problems(snapshot, expected)


def validate_conditions(snapshot: ManagedResourceSnapshot, expected: ExpectedConditions):
    """Single-shot check; wrap in eventually() where convergence is still pending."""
    problems = condition_problems(snapshot, expected)
    observed = {c.type: c.status for c in snapshot.conditions}
    if problems:
        console.print(f"[red]✗ Conditions of {snapshot.ref}: {observed}[/red]")
        raise AssertionError(f"status conditions of {snapshot.ref} mismatch: " + "; ".join(problems))
    console.print(f"[green]✓ Conditions of {snapshot.ref}: {observed}[/green]")
