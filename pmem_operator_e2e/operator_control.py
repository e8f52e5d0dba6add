"""
Stopping and restarting the operator under test by scaling its Deployment.
"""
from typing import Optional

from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.config import OPERATOR_NAME, OPERATOR_TIMEOUT, POLL_INTERVAL, TEST_NAMESPACE
from pmem_operator_e2e.errors import NotFoundError
from pmem_operator_e2e.models import ChildObjectRef
from pmem_operator_e2e.objects import label_selector
from pmem_operator_e2e.polling import CheckResult, Deadline, assert_eventually

console = Console()


def pod_ready(pod: client.V1Pod) -> bool:
    """Running with every container ready."""
    if pod.status is None or pod.status.phase != 'Running':
        return False
    statuses = pod.status.container_statuses or []
    return bool(statuses) and all(s.ready for s in statuses)


class OperatorControl:
    """Scales the operator Deployment and waits for the pods to follow."""

    def __init__(self, objects, namespace: str = TEST_NAMESPACE, name: str = OPERATOR_NAME,
                 timeout: float = OPERATOR_TIMEOUT, interval: float = POLL_INTERVAL,
                 deadline: Optional[Deadline] = None):
        self.objects = objects
        self.ref = ChildObjectRef('Deployment', name, namespace)
        self.timeout = timeout
        self.interval = interval
        self.deadline = deadline

    def _selector(self) -> str:
        dep = self.objects.get(self.ref)
        return label_selector(dep.spec.selector.match_labels)

    def scale(self, replicas: int):
        def scaled():
            dep = self.objects.get(self.ref)
            if dep.spec.replicas == replicas:
                return True
            dep.spec.replicas = replicas
            self.objects.update(self.ref, dep)
            return CheckResult(f"replicas of {self.ref} set to {replicas}, re-checking")

        assert_eventually(scaled, self.timeout, self.interval,
                          description=f"operator deployment replicas to be {replicas}",
                          deadline=self.deadline)

    def get_pod(self) -> client.V1Pod:
        """The single ready operator pod."""
        pods = [p for p in self.objects.list_pods(self.ref.namespace, self._selector())
                if p.metadata.deletion_timestamp is None]
        if not pods:
            raise NotFoundError(f"no pod of {self.ref}")
        if len(pods) > 1:
            raise AssertionError(f"expected one operator pod, found {[p.metadata.name for p in pods]}")
        if not pod_ready(pods[0]):
            raise AssertionError(f"operator pod {pods[0].metadata.name} is not ready yet")
        return pods[0]

    def wait_ready(self) -> client.V1Pod:
        ready = []

        def operator_ready():
            ready.append(self.get_pod())
            return True

        assert_eventually(operator_ready, self.timeout, self.interval,
                          description="operator pod to be ready", deadline=self.deadline)
        return ready[-1]

    def stop(self):
        console.print(f"[cyan]Stopping operator {self.ref}[/cyan]")
        self.scale(0)
        selector = self._selector()

        def no_pods():
            remaining = [p.metadata.name for p in self.objects.list_pods(self.ref.namespace, selector)]
            if remaining:
                return CheckResult(f"operator pods still present: {remaining}")
            return True

        assert_eventually(no_pods, self.timeout, self.interval,
                          description="operator pod to be deleted", deadline=self.deadline)
        console.print("[green]✓ Operator stopped[/green]")

    def start(self) -> client.V1Pod:
        console.print(f"[cyan]Starting operator {self.ref}[/cyan]")
        self.scale(1)
        pod = self.wait_ready()
        console.print(f"[green]✓ Operator restored: {pod.metadata.name}[/green]")
        return pod
