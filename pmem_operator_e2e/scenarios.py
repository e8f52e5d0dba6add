"""
Scenario orchestration: create a Deployment, wait for convergence, check
conditions and events, then disturb it (edit, delete or corrupt owned
objects, stop the operator, switch device mode) and check that it converges
again.

Every Deployment handled by an orchestrator moves through

    CREATED -> VALIDATING -> CONVERGED | FAILED
    CONVERGED -> MUTATING -> VALIDATING
    CONVERGED -> DISRUPTED -> VALIDATING

FAILED is only a legal outcome for scenarios created with expect_failure=True.
Everything created through the orchestrator is removed by close(), in
reverse order, whatever the outcome of the scenario.
"""
import copy
from contextlib import ExitStack
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.children import DriverObjects
from pmem_operator_e2e.conditions import ExpectedConditions, validate_conditions
from pmem_operator_e2e.config import (
    CR_ALPHA_VERSION,
    CR_VERSION,
    EVENT_REASON_NEW,
    EVENT_REASON_RUNNING,
    HAS_OLM,
    TEST_NAMESPACE,
    Timeouts,
)
from pmem_operator_e2e.conflicts import ConflictInjector, Mutation
from pmem_operator_e2e.errors import ScenarioStateError, TerminalFailure
from pmem_operator_e2e.models import ChildObjectRef, ManagedResourceRef, ManagedResourceSnapshot, Phase
from pmem_operator_e2e.objects import dump_object, label_selector
from pmem_operator_e2e.operator_control import OperatorControl, pod_ready
from pmem_operator_e2e.polling import CheckResult, Deadline, assert_eventually

console = Console()

# alpha field -> beta field
ALPHA_RENAMES = {
    'nodeResources': 'nodeDriverResources',
    'controllerResources': 'controllerDriverResources',
}


class ScenarioState(Enum):
    CREATED = 'Created'
    VALIDATING = 'Validating'
    CONVERGED = 'Converged'
    MUTATING = 'Mutating'
    DISRUPTED = 'Disrupted'
    FAILED = 'Failed'


TRANSITIONS = {
    ScenarioState.CREATED: {ScenarioState.VALIDATING},
    ScenarioState.VALIDATING: {ScenarioState.CONVERGED, ScenarioState.FAILED},
    ScenarioState.CONVERGED: {ScenarioState.MUTATING, ScenarioState.DISRUPTED, ScenarioState.VALIDATING},
    ScenarioState.MUTATING: {ScenarioState.VALIDATING},
    ScenarioState.DISRUPTED: {ScenarioState.VALIDATING},
    # An expected failure may be cleared by removing its cause.
    ScenarioState.FAILED: {ScenarioState.VALIDATING},
}


def alpha_to_beta(alpha_spec: Dict[str, Any], has_olm: bool = HAS_OLM) -> Dict[str, Any]:
    """
    Spec a v1alpha1 Deployment is expected to have when read as v1beta1.
    Without a conversion webhook (OLM installs) renamed fields are dropped.
    """
    spec = copy.deepcopy(alpha_spec)
    for old, new in ALPHA_RENAMES.items():
        if old in spec:
            value = spec.pop(old)
            if not has_olm:
                spec[new] = value
    return spec


class ScenarioOrchestrator:
    """Drives Deployments through the scenario state machine against a live operator."""

    def __init__(self, resources, objects, correlator, validator,
                 namespace: str = TEST_NAMESPACE, timeouts: Optional[Timeouts] = None,
                 operator: Optional[OperatorControl] = None, expect_failure: bool = False):
        self.resources = resources
        self.objects = objects
        self.correlator = correlator
        self.validator = validator
        self.namespace = namespace
        self.timeouts = timeouts or Timeouts()
        self.deadline = Deadline(self.timeouts.deadline)
        self.injector = ConflictInjector(objects, self.deadline)
        self.operator = operator
        if operator is not None:
            operator.deadline = self.deadline
        self.expect_failure = expect_failure
        self.states: Dict[str, ScenarioState] = {}
        self.desired: Dict[str, Dict[str, Any]] = {}
        self.uids: Dict[str, str] = {}
        self._operator_stopped = False
        self._cleanup = ExitStack()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        """Run all registered cleanups, last registered first."""
        self._cleanup.close()

    def defer(self, func: Callable, *args, **kwargs):
        self._cleanup.callback(func, *args, **kwargs)

    # State machine

    def state(self, name: str) -> ScenarioState:
        return self.states[name]

    def _transition(self, name: str, new: ScenarioState):
        current = self.states.get(name)
        if current is None:
            raise ScenarioStateError(f"Deployment {name} was not created by this scenario")
        if new not in TRANSITIONS[current]:
            raise ScenarioStateError(f"Deployment {name}: {current.value} -> {new.value} is not allowed")
        if new is ScenarioState.FAILED and not self.expect_failure:
            raise ScenarioStateError(f"Deployment {name} failed but the scenario does not expect failure")
        console.print(f"[dim]Deployment {name}: {current.value} -> {new.value}[/dim]")
        self.states[name] = new

    def _converged(self, name: str) -> ScenarioState:
        self.deadline.check(f"step on Deployment {name}")
        state = self.states.get(name)
        if state is not ScenarioState.CONVERGED:
            raise ScenarioStateError(f"Deployment {name} is {state.value if state else 'unknown'}, not Converged")
        return state

    # Creation

    def create(self, name: str, spec: Dict[str, Any], version: str = CR_VERSION,
               labels: Optional[Dict[str, str]] = None) -> ManagedResourceSnapshot:
        """Create a Deployment and register its deletion as cleanup."""
        ref = ManagedResourceRef(name)
        console.print(f"[cyan]Creating Deployment {name} ({version})[/cyan]")
        snapshot = self.resources.create(ref, spec, version, labels)
        self.defer(self._delete, ref)
        self.states[name] = ScenarioState.CREATED
        self.uids[name] = snapshot.uid
        if version == CR_ALPHA_VERSION:
            self.desired[name] = alpha_to_beta(spec)
        else:
            self.desired[name] = copy.deepcopy(spec)
        return snapshot

    def _delete(self, ref: ManagedResourceRef):
        console.print(f"[dim]Cleaning up Deployment {ref}[/dim]")
        self.resources.delete(ref, timeout=self.timeouts.delete, interval=self.timeouts.interval)
        self.states.pop(ref.name, None)

    def create_object(self, ref: ChildObjectRef, body) -> Any:
        """Create an arbitrary object (retrying transient errors) and register its deletion."""
        created = []

        def attempt():
            created.append(self.objects.create(ref, body))
            return True

        assert_eventually(attempt, self.timeouts.delete, self.timeouts.interval,
                          description=f"creation of {ref}", deadline=self.deadline)
        self.defer(self.delete_object, ref)
        return created[-1]

    def delete_object(self, ref: ChildObjectRef):
        # Also used at cleanup, so not bound to the test deadline
        ConflictInjector(self.objects).delete(ref, timeout=self.timeouts.delete, interval=self.timeouts.interval)

    # Validation

    def validate_driver(self, name: str, initial_creation: bool = False, what: str = "validate driver",
                        spec: Optional[Dict[str, Any]] = None):
        """Wait until the operator rendered the desired spec of name."""
        self.deadline.check(what)
        if spec is not None:
            self.desired[name] = copy.deepcopy(spec)
        # Leaving an expected failure: the operator may still report Failed for a while.
        recovering = self.states.get(name) is ScenarioState.FAILED
        self._transition(name, ScenarioState.VALIDATING)
        try:
            self.validator.eventually(name, self.desired[name], initial_creation,
                                      timeout=self.timeouts.deadline, interval=self.timeouts.interval,
                                      deadline=self.deadline, what=what, failed_is_final=not recovering)
        except TerminalFailure:
            self.states[name] = ScenarioState.FAILED
            raise
        self._transition(name, ScenarioState.CONVERGED)

    def snapshot(self, name: str, version: str = CR_VERSION) -> ManagedResourceSnapshot:
        return self.resources.get(ManagedResourceRef(name), version)

    def validate_conditions(self, name: str, expected: ExpectedConditions):
        validate_conditions(self.snapshot(name), expected)

    def validate_events(self, name: str, reasons: Iterable[str] = (EVENT_REASON_NEW, EVENT_REASON_RUNNING)):
        self.correlator.assert_reasons(self.uids[name], reasons, timeout=self.timeouts.events,
                                       interval=self.timeouts.interval, deadline=self.deadline)

    def expect_phase(self, name: str, phase: Phase, timeout: Optional[float] = None):
        """Wait until the Deployment reports phase."""
        if phase is Phase.FAILED and not self.expect_failure:
            raise ScenarioStateError(f"waiting for Deployment {name} to fail in a scenario that expects success")

        def in_phase():
            current = self.snapshot(name).phase
            if current != phase.value:
                return CheckResult(f"Deployment {name} is in phase {current!r}")
            return True

        self._transition(name, ScenarioState.VALIDATING)
        assert_eventually(in_phase, timeout or self.timeouts.failure, self.timeouts.interval,
                          description=f"Deployment {name} to be in phase {phase.value!r}",
                          deadline=self.deadline)
        if phase is Phase.FAILED:
            self._transition(name, ScenarioState.FAILED)
        elif phase is Phase.RUNNING:
            self._transition(name, ScenarioState.CONVERGED)

    # Mutation

    def edit(self, name: str, mutate: Callable[[Dict[str, Any]], Any]) -> ManagedResourceSnapshot:
        """Change the spec of a converged Deployment; validate_driver() must follow."""
        self._converged(name)
        self._transition(name, ScenarioState.MUTATING)
        console.print(f"[cyan]Updating Deployment {name}[/cyan]")
        written = self.resources.edit(ManagedResourceRef(name), mutate, timeout=self.timeouts.delete,
                                      interval=self.timeouts.interval, deadline=self.deadline)
        self.desired[name] = copy.deepcopy(written.spec)
        return written

    def recover_deleted(self, name: str, child: str):
        """Delete one owned object and wait for it and the whole driver to come back."""
        self._converged(name)
        ref = DriverObjects(name, self.namespace).all()[child]
        self._transition(name, ScenarioState.DISRUPTED)
        self.injector.delete_and_expect_recovery(ref, timeout=self.timeouts.recovery,
                                                 interval=self.timeouts.interval)
        self.validate_driver(name, what=f"restore deleted {child}")

    def recover_conflict(self, name: str, child: str, mutate: Mutation):
        """Write an unauthorized change to one owned object and wait for it to be undone."""
        self._converged(name)
        ref = DriverObjects(name, self.namespace).all()[child]
        self._transition(name, ScenarioState.DISRUPTED)
        self.injector.mutate(ref, mutate, timeout=self.timeouts.recovery, interval=self.timeouts.interval)
        self.validate_driver(name, what=f"recovered {child}")

    # Operator

    def _require_operator(self) -> OperatorControl:
        if self.operator is None:
            raise ScenarioStateError("scenario has no operator control")
        return self.operator

    def stop_operator(self):
        """Scale the operator down; it is started again at cleanup unless started earlier."""
        operator = self._require_operator()
        operator.stop()
        self._operator_stopped = True
        self.defer(self._restore_operator)

    def _restore_operator(self):
        if self._operator_stopped:
            self.operator.deadline = None
            self.start_operator()

    def start_operator(self) -> client.V1Pod:
        operator = self._require_operator()
        pod = operator.start()
        self._operator_stopped = False
        return pod

    def assert_stable_without_operator(self, name: str):
        """
        With the operator stopped the rendered driver has to stay valid and
        untouched for the stability period.
        """
        self._converged(name)
        self.stop_operator()
        self._transition(name, ScenarioState.DISRUPTED)
        self._transition(name, ScenarioState.VALIDATING)
        try:
            self.validator.consistently(name, self.desired[name], self.timeouts.stability,
                                        self.timeouts.stability_interval, deadline=self.deadline)
        except TerminalFailure:
            self.states[name] = ScenarioState.FAILED
            raise
        self._transition(name, ScenarioState.CONVERGED)

    def restart_and_revalidate(self, name: str):
        """Start the stopped operator again; the driver it finds must still be valid."""
        self._converged(name)
        self.start_operator()
        self.validate_driver(name, what="validate driver after operator restart")

    def operator_image(self) -> str:
        return self._require_operator().get_pod().spec.containers[0].image

    # Device mode

    def node_pods(self, name: str) -> List[str]:
        """Names of the node driver pods of a Deployment."""
        ds = self.objects.get(DriverObjects(name, self.namespace).node_driver)
        pods = self.objects.list_pods(self.namespace, label_selector(ds.spec.selector.match_labels))
        return [p.metadata.name for p in pods]

    def wait_driver_ready(self, name: str):
        """Controller and every scheduled node pod of the driver are ready."""
        children = DriverObjects(name, self.namespace)

        def ready():
            sts = self.objects.get(children.controller_driver)
            ds = self.objects.get(children.node_driver)
            if not (sts.status and sts.status.ready_replicas):
                return CheckResult(f"controller {children.controller_driver} not ready")
            desired = ds.status.desired_number_scheduled if ds.status else 0
            ready_nodes = ds.status.number_ready if ds.status else 0
            if not desired or ready_nodes != desired:
                return CheckResult(f"node driver ready on {ready_nodes} of {desired} nodes")
            pods = self.objects.list_pods(self.namespace, label_selector(ds.spec.selector.match_labels))
            not_ready = [p.metadata.name for p in pods if not pod_ready(p)]
            if not_ready:
                return CheckResult(f"node driver pods not ready: {not_ready}")
            return True

        assert_eventually(ready, self.timeouts.operator, self.timeouts.interval,
                          description=f"PMEM-CSI driver {name} to be running", deadline=self.deadline)

    def switch_device_mode(self, name: str, mode) -> ManagedResourceSnapshot:
        """Change deviceMode and wait until every old node pod was replaced."""
        mode = getattr(mode, 'value', mode)
        old_pods = []

        def have_pods():
            old_pods[:] = self.node_pods(name)
            return bool(old_pods)

        assert_eventually(have_pods, self.timeouts.operator, self.timeouts.interval,
                          description=f"node driver pods of {name}", deadline=self.deadline)
        console.print(f"[cyan]Switching driver mode of {name} to '{mode}'[/cyan]")

        def set_mode(spec):
            spec['deviceMode'] = mode

        written = self.edit(name, set_mode)
        for pod in old_pods:
            ref = ChildObjectRef('Pod', pod, self.namespace)
            assert_eventually(lambda ref=ref: not self.objects.exists(ref), self.timeouts.operator,
                              self.timeouts.interval, description=f"pod {pod} to restart",
                              deadline=self.deadline)
        self.wait_driver_ready(name)
        self.validate_driver(name, what=f"driver in {mode} mode")
        return written

    # Conversion

    def check_conversion(self, name: str, alpha_spec: Dict[str, Any]):
        """
        The stored object reads back as v1alpha1 with the original spec and
        as v1beta1 with the converted spec; both versions share one status.
        """
        ref = ManagedResourceRef(name)
        alpha = self.resources.get(ref, CR_ALPHA_VERSION)
        beta = self.resources.get(ref, CR_VERSION)
        expected_beta = alpha_to_beta(alpha_spec)
        expected_alpha = alpha_spec
        if HAS_OLM:
            expected_alpha = {k: v for k, v in alpha_spec.items() if k not in ALPHA_RENAMES}
        problems = []
        for key, value in expected_beta.items():
            if beta.spec.get(key) != value:
                problems.append(f"v1beta1 {key}: {beta.spec.get(key)} != {value}")
        for key, value in expected_alpha.items():
            if alpha.spec.get(key) != value:
                problems.append(f"v1alpha1 {key}: {alpha.spec.get(key)} != {value}")
        if alpha.status != beta.status:
            problems.append(f"status differs between versions: {alpha.status} != {beta.status}")
        if problems:
            console.print(f"[red]✗ Conversion mismatch for {name}[/red]")
            console.print(f"[dim]{dump_object(alpha.raw)}[/dim]")
            raise AssertionError(f"conversion of Deployment {name}: " + "; ".join(problems))
        console.print(f"[green]✓ Deployment {name} converts between versions[/green]")

