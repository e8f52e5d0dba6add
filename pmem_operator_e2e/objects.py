"""
Uniform get/create/update/delete of built-in Kubernetes objects, addressed by
ChildObjectRef. API errors are translated into the harness taxonomy.
"""
from contextlib import contextmanager
from typing import Any, List, Optional

import yaml
from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.errors import NotFoundError, translate_api_exception
from pmem_operator_e2e.models import ChildObjectRef

console = Console()

# kind -> (API attribute, method suffix, namespaced)
KINDS = {
    'Secret': ('core_v1', 'namespaced_secret', True),
    'ServiceAccount': ('core_v1', 'namespaced_service_account', True),
    'Service': ('core_v1', 'namespaced_service', True),
    'Pod': ('core_v1', 'namespaced_pod', True),
    'PersistentVolumeClaim': ('core_v1', 'namespaced_persistent_volume_claim', True),
    'PersistentVolume': ('core_v1', 'persistent_volume', False),
    'Role': ('rbac_v1', 'namespaced_role', True),
    'RoleBinding': ('rbac_v1', 'namespaced_role_binding', True),
    'ClusterRole': ('rbac_v1', 'cluster_role', False),
    'ClusterRoleBinding': ('rbac_v1', 'cluster_role_binding', False),
    'StatefulSet': ('apps_v1', 'namespaced_stateful_set', True),
    'DaemonSet': ('apps_v1', 'namespaced_daemon_set', True),
    'Deployment': ('apps_v1', 'namespaced_deployment', True),
    'StorageClass': ('storage_v1', 'storage_class', False),
    'CSIDriver': ('storage_v1', 'csi_driver', False),
}


@contextmanager
def api_errors(creating: bool = False):
    """Re-raise ApiExceptions as NotFoundError/ConflictError/AlreadyExistsError."""
    try:
        yield
    except client.exceptions.ApiException as e:
        error = translate_api_exception(e, creating=creating)
        if error is e:
            raise
        raise error from e


def dump_object(obj: Any) -> str:
    """YAML rendering of an API object for diagnostics."""
    if hasattr(obj, 'to_dict'):
        obj = client.ApiClient().sanitize_for_serialization(obj)
    return yaml.safe_dump(obj, default_flow_style=False, sort_keys=False)


class ObjectClient:
    """Typed Kubernetes APIs behind one kind-dispatching interface."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.rbac_v1 = client.RbacAuthorizationV1Api(api_client)
        self.storage_v1 = client.StorageV1Api(api_client)

    def _method(self, verb: str, ref: ChildObjectRef):
        try:
            api_name, suffix, namespaced = KINDS[ref.kind]
        except KeyError:
            raise ValueError(f"unsupported kind {ref.kind!r}") from None
        if namespaced and not ref.namespace:
            raise ValueError(f"{ref.kind} {ref.name} needs a namespace")
        method = getattr(getattr(self, api_name), f"{verb}_{suffix}")
        return method, namespaced

    def get(self, ref: ChildObjectRef):
        method, namespaced = self._method('read', ref)
        with api_errors():
            if namespaced:
                return method(name=ref.name, namespace=ref.namespace)
            return method(name=ref.name)

    def exists(self, ref: ChildObjectRef) -> bool:
        try:
            self.get(ref)
            return True
        except NotFoundError:
            return False

    def create(self, ref: ChildObjectRef, body):
        method, namespaced = self._method('create', ref)
        with api_errors(creating=True):
            if namespaced:
                return method(namespace=ref.namespace, body=body)
            return method(body=body)

    def update(self, ref: ChildObjectRef, body):
        """Replace the object; body carries the resourceVersion it was based on."""
        method, namespaced = self._method('replace', ref)
        with api_errors():
            if namespaced:
                return method(name=ref.name, namespace=ref.namespace, body=body)
            return method(name=ref.name, body=body)

    def delete(self, ref: ChildObjectRef) -> bool:
        """Delete the object. Returns False when it was already gone."""
        method, namespaced = self._method('delete', ref)
        try:
            with api_errors():
                if namespaced:
                    method(name=ref.name, namespace=ref.namespace)
                else:
                    method(name=ref.name)
        except NotFoundError:
            console.print(f"[dim]{ref} already deleted[/dim]")
            return False
        console.print(f"[dim]Deleted {ref}[/dim]")
        return True

    def list_pods(self, namespace: str, label_selector: str) -> List[client.V1Pod]:
        with api_errors():
            return self.core_v1.list_namespaced_pod(namespace=namespace, label_selector=label_selector).items


def label_selector(match_labels: Optional[dict]) -> str:
    return ','.join(f"{k}={v}" for k, v in sorted((match_labels or {}).items()))
