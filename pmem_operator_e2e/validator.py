"""
Black-box check that the operator rendered a Deployment as requested.

check() compares the objects owned by a Deployment with its desired spec and
returns a CheckResult. A Deployment in phase Failed, or an owned object that
was modified while it had to stay untouched, is a final error: waiting longer
cannot make the check pass.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console

from pmem_operator_e2e.children import DriverObjects
from pmem_operator_e2e.config import (
    CONTROLLER_PORT,
    DRIVER_COMMAND,
    DRIVER_CONTAINER,
    METRICS_PORT,
    POLL_INTERVAL,
    PROVISIONER_CONTAINER,
    REGISTRAR_CONTAINER,
    TEST_DEADLINE_SECONDS,
    TEST_NAMESPACE,
)
from pmem_operator_e2e.errors import NotFoundError
from pmem_operator_e2e.models import ChildObjectRef, ManagedResourceRef, Phase
from pmem_operator_e2e.polling import CheckResult, Deadline, PollResult, assert_consistently, assert_eventually

console = Console()

# CSIDriver is served by storage.k8s.io/v1 from Kubernetes 1.18 on
CSI_DRIVER_V1 = (1, 18)
WORKLOAD_KINDS = ('StatefulSet', 'DaemonSet')


def _parse_time(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.strptime(value, '%Y-%m-%dT%H:%M:%SZ').replace(tzinfo=timezone.utc)


def _container(obj, name: str):
    for container in obj.spec.template.spec.containers or []:
        if container.name == name:
            return container
    return None


def _check_resources(problems: List[str], where: str, container, wanted: Optional[Dict[str, Any]]):
    if not wanted:
        return
    actual = container.resources
    for key in ('limits', 'requests'):
        expected = wanted.get(key)
        if expected is None:
            continue
        got = getattr(actual, key, None) if actual is not None else None
        if dict(got or {}) != dict(expected):
            problems.append(f"{where}: resource {key} {got} != {expected}")


def _check_container(problems: List[str], where: str, container, image: Optional[str] = None,
                     pull_policy: Optional[str] = None, resources: Optional[Dict[str, Any]] = None):
    if container is None:
        problems.append(f"{where}: container missing")
        return
    if image and container.image != image:
        problems.append(f"{where}: image {container.image} != {image}")
    if pull_policy and container.image_pull_policy != pull_policy:
        problems.append(f"{where}: pull policy {container.image_pull_policy} != {pull_policy}")
    _check_resources(problems, where, container, resources)


class DriverDeploymentValidator:
    """Validates the objects the operator renders for a Deployment."""

    def __init__(self, resources, objects, namespace: str = TEST_NAMESPACE,
                 k8s_version: Optional[Tuple[int, int]] = None):
        self.resources = resources
        self.objects = objects
        self.namespace = namespace
        self.k8s_version = k8s_version

    def _expected_children(self, name: str) -> Dict[str, ChildObjectRef]:
        children = DriverObjects(name, self.namespace).all()
        if self.k8s_version is not None and self.k8s_version < CSI_DRIVER_V1:
            children.pop('csi driver')
        return children

    def check(self, name: str, spec: Dict[str, Any], initial_creation: bool = False,
              resource_versions: Optional[Dict[str, str]] = None,
              failed_is_final: bool = True) -> CheckResult:
        """
        One validation pass. When resource_versions is given, the versions seen
        in the first pass are remembered in it and any later change is final.
        With failed_is_final=False a Failed phase is retried, for Deployments
        whose cause of failure was just removed.
        """
        try:
            deployment = self.resources.get(ManagedResourceRef(name))
        except NotFoundError:
            return CheckResult(f"Deployment {name} not found")
        if deployment.phase == Phase.FAILED.value:
            reason = deployment.status.get('reason', '')
            return CheckResult(f"Deployment {name} is in phase Failed: {reason}", final=failed_is_final)
        if deployment.phase != Phase.RUNNING.value:
            return CheckResult(f"Deployment {name} is in phase {deployment.phase!r}, not Running")

        created_at = _parse_time(deployment.creation_timestamp)
        problems: List[str] = []
        rendered = {}
        for what, ref in self._expected_children(name).items():
            try:
                obj = self.objects.get(ref)
            except NotFoundError:
                problems.append(f"{what} {ref} not found")
                continue
            rendered[what] = obj
            meta = obj.metadata
            if initial_creation and created_at is not None:
                obj_created = _parse_time(meta.creation_timestamp)
                if obj_created is not None and obj_created < created_at:
                    problems.append(f"{what} {ref} predates the Deployment")
            if resource_versions is not None:
                # Workload status is written by the app controllers, only spec changes count.
                version = str(meta.generation) if ref.kind in WORKLOAD_KINDS else meta.resource_version
                key = str(ref)
                if key in resource_versions and resource_versions[key] != version:
                    return CheckResult(
                        f"{what} {ref} was modified: version {resource_versions[key]} -> {version}",
                        final=True,
                    )
                resource_versions[key] = version

        if 'controller driver' in rendered:
            self._check_controller(problems, rendered['controller driver'], spec)
        if 'node driver' in rendered:
            self._check_node(problems, rendered['node driver'], spec)
        for what, port in (('controller service', CONTROLLER_PORT), ('metrics service', METRICS_PORT)):
            if what in rendered:
                ports = [p.port for p in rendered[what].spec.ports or []]
                if port not in ports:
                    problems.append(f"{what}: ports {ports} do not include {port}")

        if problems:
            return CheckResult("; ".join(problems))
        return CheckResult()

    def _check_driver(self, problems: List[str], where: str, workload, spec: Dict[str, Any],
                      resources: Optional[Dict[str, Any]]):
        driver = _container(workload, DRIVER_CONTAINER)
        _check_container(problems, where, driver, spec.get('image'), spec.get('pullPolicy'), resources)
        if driver is None:
            return
        if list(driver.command or []) != DRIVER_COMMAND:
            problems.append(f"{where}: command {driver.command} != {DRIVER_COMMAND}")
        args = driver.args or []
        if spec.get('logLevel') is not None and f"-v={spec['logLevel']}" not in args:
            problems.append(f"{where}: log level {spec['logLevel']} not in {args}")

    def _check_controller(self, problems: List[str], sts, spec: Dict[str, Any]):
        self._check_driver(problems, 'controller driver', sts, spec, spec.get('controllerDriverResources'))
        _check_container(problems, 'external provisioner', _container(sts, PROVISIONER_CONTAINER),
                         spec.get('provisionerImage'), None, spec.get('provisionerResources'))

    def _check_node(self, problems: List[str], ds, spec: Dict[str, Any]):
        self._check_driver(problems, 'node driver', ds, spec, spec.get('nodeDriverResources'))
        _check_container(problems, 'node registrar', _container(ds, REGISTRAR_CONTAINER),
                         spec.get('nodeRegistrarImage'), None, spec.get('nodeRegistrarResources'))
        driver = _container(ds, DRIVER_CONTAINER)
        mode = spec.get('deviceMode')
        if driver is not None and mode and f"-deviceManager={mode}" not in (driver.args or []):
            problems.append(f"node driver: device mode {mode} not in {driver.args}")
        selector = spec.get('nodeSelector')
        if selector and dict(ds.spec.template.spec.node_selector or {}) != dict(selector):
            problems.append(f"node driver: node selector {ds.spec.template.spec.node_selector} != {selector}")

    def eventually(self, name: str, spec: Dict[str, Any], initial_creation: bool = False,
                   timeout: float = TEST_DEADLINE_SECONDS, interval: float = POLL_INTERVAL,
                   deadline: Optional[Deadline] = None, what: str = "validate driver",
                   failed_is_final: bool = True) -> PollResult:
        console.print(f"[cyan]Waiting for expected driver deployment {name}[/cyan]")
        result = assert_eventually(
            lambda: self.check(name, spec, initial_creation, failed_is_final=failed_is_final),
            timeout, interval, description=f"driver deployment {name} ({what})", deadline=deadline,
        )
        console.print(f"[green]✓ Got expected driver deployment {name}[/green]")
        return result

    def consistently(self, name: str, spec: Dict[str, Any], duration: float, interval: float,
                     deadline: Optional[Deadline] = None) -> PollResult:
        """The deployment stays valid and untouched for the whole duration."""
        resource_versions: Dict[str, str] = {}
        return assert_consistently(
            lambda: self.check(name, spec, resource_versions=resource_versions),
            duration, interval, description=f"driver deployment {name} to stay valid", deadline=deadline,
        )
