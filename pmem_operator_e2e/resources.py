"""
CRUD of the PMEM-CSI Deployment custom resource in both API versions.
"""
import copy
from typing import Any, Callable, Dict, Optional

from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.config import (
    CR_GROUP,
    CR_PLURAL,
    CR_VERSION,
    DELETE_TIMEOUT,
    POLL_INTERVAL,
)
from pmem_operator_e2e.errors import ConflictError, NotFoundError
from pmem_operator_e2e.models import ManagedResourceRef, ManagedResourceSnapshot
from pmem_operator_e2e.objects import api_errors
from pmem_operator_e2e.polling import Deadline, assert_eventually

console = Console()


def deployment_body(name: str, spec: Dict[str, Any], version: str = CR_VERSION,
                    labels: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Manifest of a Deployment object."""
    metadata = {'name': name}
    if labels:
        metadata['labels'] = dict(labels)
    return {
        'apiVersion': f"{CR_GROUP}/{version}",
        'kind': 'Deployment',
        'metadata': metadata,
        'spec': copy.deepcopy(spec),
    }


class ManagedResourceClient:
    """Create/get/update/delete of Deployment objects. Deployments are cluster-scoped."""

    def __init__(self, custom_objects_v1: client.CustomObjectsApi):
        self.custom_objects_v1 = custom_objects_v1

    def _call(self, verb: str, ref: ManagedResourceRef, version: str, **kwargs):
        if ref.namespace:
            method = getattr(self.custom_objects_v1, f"{verb}_namespaced_custom_object")
            kwargs['namespace'] = ref.namespace
        else:
            method = getattr(self.custom_objects_v1, f"{verb}_cluster_custom_object")
        return method(group=CR_GROUP, version=version, plural=CR_PLURAL, **kwargs)

    def create(self, ref: ManagedResourceRef, spec: Dict[str, Any], version: str = CR_VERSION,
               labels: Optional[Dict[str, str]] = None) -> ManagedResourceSnapshot:
        body = deployment_body(ref.name, spec, version, labels)
        if ref.namespace:
            body['metadata']['namespace'] = ref.namespace
        with api_errors(creating=True):
            obj = self._call('create', ref, version, body=body)
        console.print(f"[dim]Created Deployment {ref} ({version})[/dim]")
        return ManagedResourceSnapshot.from_object(obj)

    def get_object(self, ref: ManagedResourceRef, version: str = CR_VERSION) -> Dict[str, Any]:
        with api_errors():
            return self._call('get', ref, version, name=ref.name)

    def get(self, ref: ManagedResourceRef, version: str = CR_VERSION) -> ManagedResourceSnapshot:
        return ManagedResourceSnapshot.from_object(self.get_object(ref, version))

    def update(self, snapshot: ManagedResourceSnapshot, spec: Dict[str, Any],
               version: str = CR_VERSION) -> ManagedResourceSnapshot:
        """Write spec on top of snapshot. Raises ConflictError if snapshot is stale."""
        body = copy.deepcopy(snapshot.raw)
        body['spec'] = copy.deepcopy(spec)
        with api_errors():
            obj = self._call('replace', snapshot.ref, version, name=snapshot.ref.name, body=body)
        return ManagedResourceSnapshot.from_object(obj)

    def edit(self, ref: ManagedResourceRef, mutate: Callable[[Dict[str, Any]], None],
             timeout: float = DELETE_TIMEOUT, interval: float = POLL_INTERVAL,
             deadline: Optional[Deadline] = None) -> ManagedResourceSnapshot:
        """
        Apply mutate to a fresh copy of the spec and write it back, starting
        over from a fresh read whenever the write conflicts.
        """
        written = []

        def attempt():
            current = self.get(ref)
            spec = copy.deepcopy(current.spec)
            mutate(spec)
            try:
                written.append(self.update(current, spec))
            except ConflictError:
                console.print(f"[yellow]Conflict updating Deployment {ref}, retrying with fresh copy[/yellow]")
                raise
            return True

        assert_eventually(attempt, timeout, interval, description=f"update of Deployment {ref}",
                          deadline=deadline)
        console.print(f"[dim]Updated Deployment {ref}[/dim]")
        return written[-1]

    def delete(self, ref: ManagedResourceRef, timeout: float = DELETE_TIMEOUT,
               interval: float = POLL_INTERVAL, wait: bool = True):
        """Best-effort delete; an already deleted object is fine. Optionally waits until it is gone."""
        def attempt():
            try:
                with api_errors():
                    self._call('delete', ref, CR_VERSION, name=ref.name)
            except NotFoundError:
                pass
            return True

        assert_eventually(attempt, timeout, interval, description=f"deletion of Deployment {ref}")
        if not wait:
            return

        def gone():
            try:
                self.get_object(ref)
            except NotFoundError:
                return True
            return False

        assert_eventually(gone, timeout, interval, description=f"Deployment {ref} to disappear")
