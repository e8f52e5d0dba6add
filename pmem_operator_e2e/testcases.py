"""
Catalog of Deployment variations shared by the e2e test modules.
"""
import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from pmem_operator_e2e.certs import set_tls
from pmem_operator_e2e.config import DRIVER_IMAGE
from pmem_operator_e2e.conflicts import Mutation, malformed_command, override_service_ports
from pmem_operator_e2e.models import DeviceMode

Spec = Dict[str, Any]


def limits(cpu: str, memory: str) -> Dict[str, Dict[str, str]]:
    return {'limits': {'cpu': cpu, 'memory': memory}}


def default_spec(image: str = DRIVER_IMAGE) -> Spec:
    return {'image': image}


def explicit_spec() -> Spec:
    """Deployment with every commonly tuned value set."""
    return {
        'deviceMode': DeviceMode.DIRECT.value,
        'pullPolicy': 'Never',
        'image': DRIVER_IMAGE,
        'controllerDriverResources': limits('200m', '100Mi'),
        'nodeDriverResources': limits('500m', '500Mi'),
        'provisionerResources': limits('210m', '110Mi'),
        'nodeRegistrarResources': limits('300m', '100Mi'),
    }


def edited_spec(spec: Spec) -> Spec:
    """Changes applied to a running Deployment when editing it."""
    spec['logLevel'] = spec.get('logLevel', 3) + 1
    spec['image'] = 'test-driver-image'
    spec['pullPolicy'] = 'Never'
    spec['provisionerImage'] = 'test-provisioner'
    spec['controllerDriverResources'] = limits('200m', '100Mi')
    spec['nodeDriverResources'] = limits('500m', '500Mi')
    spec['provisionerResources'] = limits('300m', '300Mi')
    spec['nodeRegistrarResources'] = limits('100m', '200Mi')
    return set_tls(spec)


@dataclass
class UpdateCase:
    """A Deployment and the change applied to it after it is running."""
    name: str
    spec: Spec
    mutate: Callable[[Spec], Any]

    @property
    def deployment_name(self) -> str:
        return f"update-{self.name}"

    def base_spec(self) -> Spec:
        """Initial spec with fake images so no driver pod actually starts."""
        spec = copy.deepcopy(self.spec)
        spec['image'] = DRIVER_IMAGE
        spec['nodeRegistrarImage'] = DRIVER_IMAGE
        spec['provisionerImage'] = DRIVER_IMAGE
        return spec


def _setter(key: str, value) -> Callable[[Spec], None]:
    def mutate(spec: Spec):
        spec[key] = copy.deepcopy(value)
    return mutate


def update_cases() -> List[UpdateCase]:
    return [
        UpdateCase('log-level', {'logLevel': 4}, _setter('logLevel', 5)),
        UpdateCase('image', {}, _setter('image', 'unexisting/pmem-csi-driver:updated')),
        UpdateCase('pull-policy', {'pullPolicy': 'Never'}, _setter('pullPolicy', 'Always')),
        UpdateCase('provisioner-image', {}, _setter('provisionerImage', 'unexisting/csi-provisioner:updated')),
        UpdateCase('node-registrar-image', {},
                   _setter('nodeRegistrarImage', 'unexisting/csi-node-driver-registrar:updated')),
        UpdateCase('controller-resources', {'controllerDriverResources': limits('100m', '100Mi')},
                   _setter('controllerDriverResources', limits('200m', '200Mi'))),
        UpdateCase('node-resources', {'nodeDriverResources': limits('100m', '100Mi')},
                   _setter('nodeDriverResources', limits('200m', '200Mi'))),
        UpdateCase('provisioner-resources', {'provisionerResources': limits('100m', '100Mi')},
                   _setter('provisionerResources', limits('200m', '200Mi'))),
        UpdateCase('node-registrar-resources', {'nodeRegistrarResources': limits('100m', '100Mi')},
                   _setter('nodeRegistrarResources', limits('200m', '200Mi'))),
        UpdateCase('node-selector', {'nodeSelector': {'storage': 'pmem'}},
                   _setter('nodeSelector', {'storage': 'unknown-node'})),
        UpdateCase('pmem-percentage', {'pmemPercentage': 50}, _setter('pmemPercentage', 80)),
        UpdateCase('labels', {'labels': {'a': 'b'}}, _setter('labels', {'a': 'c', 'd': 'e'})),
        UpdateCase('kubelet-dir', {'kubeletDir': '/var/lib/kubelet'}, _setter('kubeletDir', '/foo/kubelet')),
        UpdateCase('device-mode', {'deviceMode': DeviceMode.LVM.value},
                   _setter('deviceMode', DeviceMode.DIRECT.value)),
        UpdateCase('tls', {}, set_tls),
    ]


@dataclass
class ConflictCase:
    """An unauthorized edit of one owned object that the operator has to undo."""
    name: str
    child: str
    mutate: Mutation = field(repr=False)


def conflict_cases() -> List[ConflictCase]:
    return [
        ConflictCase('controller driver', 'controller driver', malformed_command()),
        ConflictCase('node driver', 'node driver', malformed_command()),
        ConflictCase('controller service', 'controller service', override_service_ports()),
        ConflictCase('metrics service', 'metrics service', override_service_ports()),
    ]
