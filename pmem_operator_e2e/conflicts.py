"""
Interference with objects owned by the operator.

Two kinds of interference are modelled: losing an owned object entirely, and
an unauthorized edit of an owned object's live fields. In both cases the
operator is expected to restore the desired state on its own.
"""
from typing import Any, Callable, List, Optional

from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.config import DELETE_TIMEOUT, DRIVER_CONTAINER, POLL_INTERVAL, RECOVERY_TIMEOUT
from pmem_operator_e2e.errors import ConflictError, NotFoundError, RecoveryTimeoutError
from pmem_operator_e2e.models import ChildObjectRef
from pmem_operator_e2e.polling import Deadline, assert_eventually, eventually

console = Console()

Mutation = Callable[[Any], None]


def _uid(obj) -> Optional[str]:
    meta = getattr(obj, 'metadata', None)
    return getattr(meta, 'uid', None) if meta is not None else None


def _being_deleted(obj) -> bool:
    meta = getattr(obj, 'metadata', None)
    return meta is not None and getattr(meta, 'deletion_timestamp', None) is not None


class ConflictInjector:
    """Deletes or corrupts owned objects and waits for the operator to repair them."""

    def __init__(self, objects, deadline: Optional[Deadline] = None):
        self.objects = objects
        self.deadline = deadline

    def delete(self, ref: ChildObjectRef, timeout: float = DELETE_TIMEOUT,
               interval: float = POLL_INTERVAL) -> bool:
        """
        Delete ref, retrying transient errors. An already absent object counts
        as deleted. Returns whether this call removed the object.
        """
        deleted: List[bool] = []

        def attempt():
            deleted.append(self.objects.delete(ref))
            return True

        assert_eventually(attempt, timeout, interval, description=f"deletion of {ref}",
                          deadline=self.deadline)
        return deleted[-1]

    def delete_and_expect_recovery(self, ref: ChildObjectRef, timeout: float = RECOVERY_TIMEOUT,
                                   interval: float = POLL_INTERVAL):
        """Delete an owned object and wait until the operator has re-created it."""
        old_uids: List[Optional[str]] = []

        def read_uid():
            try:
                old_uids.append(_uid(self.objects.get(ref)))
            except NotFoundError:
                old_uids.append(None)
            return True

        assert_eventually(read_uid, timeout, interval, description=f"current identity of {ref}",
                          deadline=self.deadline)
        old_uid = old_uids[-1]

        self.delete(ref, interval=interval)

        recovered = []

        def is_recovered():
            obj = self.objects.get(ref)
            if _being_deleted(obj):
                return False
            if old_uid is not None and _uid(obj) == old_uid:
                return False
            recovered.append(obj)
            return True

        console.print(f"[cyan]Waiting for deleted object {ref} to be recovered[/cyan]")
        result = eventually(is_recovered, timeout, interval, description=f"{ref} to be re-created",
                            deadline=self.deadline)
        if not result.ok:
            raise RecoveryTimeoutError(ref, result.elapsed, result.attempts, result.last_error)
        console.print(f"[green]✓ Object {ref} recovered[/green]")
        return recovered[-1]

    def mutate(self, ref: ChildObjectRef, mutate: Mutation, timeout: float = RECOVERY_TIMEOUT,
               interval: float = POLL_INTERVAL):
        """
        Write mutate(current object) back to the server. A conflicting write
        starts over from a fresh read, so mutate must apply to any revision.
        """
        written = []

        def attempt():
            obj = self.objects.get(ref)
            mutate(obj)
            try:
                written.append(self.objects.update(ref, obj))
            except ConflictError:
                console.print(f"[yellow]Conflict writing {ref}, re-reading and re-applying[/yellow]")
                raise
            return True

        assert_eventually(attempt, timeout, interval, description=f"conflicting update of {ref}",
                          deadline=self.deadline)
        console.print(f"[dim]Wrote conflicting update to {ref}[/dim]")
        return written[-1]

    def mutate_and_expect_revert(self, ref: ChildObjectRef, mutate: Mutation,
                                 verify: Optional[Callable[[], Any]] = None,
                                 timeout: float = RECOVERY_TIMEOUT, interval: float = POLL_INTERVAL):
        """
        Corrupt an owned object, then (when verify is given) wait until verify
        reports the desired state again.
        """
        written = self.mutate(ref, mutate, timeout, interval)
        if verify is not None:
            assert_eventually(verify, timeout, interval, description=f"{ref} to be reverted",
                              deadline=self.deadline)
        return written


def malformed_command(container_name: str = DRIVER_CONTAINER,
                      command: Optional[List[str]] = None) -> Mutation:
    """Mutation replacing the command of one container of a workload's pod template."""
    command = list(command or ['malformed', 'options'])

    def mutate(obj):
        for container in obj.spec.template.spec.containers:
            if container.name == container_name:
                container.command = list(command)
                break

    return mutate


def override_service_ports(port: int = 1111) -> Mutation:
    """Mutation replacing all ports of a service with a single bogus one."""
    def mutate(obj):
        obj.spec.ports = [client.V1ServicePort(port=port, target_port=port)]

    return mutate
