"""
Objects the operator renders for a Deployment, named the way the operator
names them. Dots in the Deployment name become hyphens in namespaced object
names; cluster-wide registrations keep the name as-is.
"""
from typing import Dict

from pmem_operator_e2e.models import ChildObjectRef


def hyphened(name: str) -> str:
    return name.replace('.', '-')


class DriverObjects:
    """Refs of everything the operator owns for one Deployment."""

    def __init__(self, deployment_name: str, namespace: str):
        self.deployment_name = deployment_name
        self.namespace = namespace
        self.prefix = hyphened(deployment_name)

    def _ns(self, kind: str, suffix: str) -> ChildObjectRef:
        return ChildObjectRef(kind, f"{self.prefix}-{suffix}", self.namespace)

    @property
    def registry_secret(self):
        return self._ns('Secret', 'registry-secrets')

    @property
    def node_secret(self):
        return self._ns('Secret', 'node-secrets')

    @property
    def service_account(self):
        return self._ns('ServiceAccount', 'controller')

    @property
    def controller_service(self):
        return self._ns('Service', 'controller')

    @property
    def metrics_service(self):
        return self._ns('Service', 'metrics')

    @property
    def provisioner_role(self):
        return self._ns('Role', 'external-provisioner-cfg')

    @property
    def provisioner_role_binding(self):
        return self._ns('RoleBinding', 'csi-provisioner-role-cfg')

    @property
    def provisioner_cluster_role(self):
        return ChildObjectRef('ClusterRole', f"{self.prefix}-external-provisioner-runner")

    @property
    def provisioner_cluster_role_binding(self):
        return ChildObjectRef('ClusterRoleBinding', f"{self.prefix}-csi-provisioner-role")

    @property
    def csi_driver(self):
        return ChildObjectRef('CSIDriver', self.deployment_name)

    @property
    def controller_driver(self):
        return self._ns('StatefulSet', 'controller')

    @property
    def node_driver(self):
        return self._ns('DaemonSet', 'node')

    def all(self) -> Dict[str, ChildObjectRef]:
        """Every owned object, keyed by a human readable name."""
        return {
            'registry secret': self.registry_secret,
            'node secret': self.node_secret,
            'service account': self.service_account,
            'controller service': self.controller_service,
            'metrics service': self.metrics_service,
            'provisioner role': self.provisioner_role,
            'provisioner role binding': self.provisioner_role_binding,
            'provisioner cluster role': self.provisioner_cluster_role,
            'provisioner cluster role binding': self.provisioner_cluster_role_binding,
            'csi driver': self.csi_driver,
            'controller driver': self.controller_driver,
            'node driver': self.node_driver,
        }
