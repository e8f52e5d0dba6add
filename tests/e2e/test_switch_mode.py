"""
End-to-end tests for switching the device mode of a Deployment with volumes
"""
import pytest

from pmem_operator_e2e.config import PMEM_NODE_SELECTOR, PMEM_TESTS, TEST_NAMESPACE
from pmem_operator_e2e.models import DeviceMode
from pmem_operator_e2e.storage import VolumeHelper

SWITCHES = [
    ('lvm-to-direct', DeviceMode.LVM, DeviceMode.DIRECT),
    ('direct-to-lvm', DeviceMode.DIRECT, DeviceMode.LVM),
]


@pytest.fixture
def volumes(orchestrator, objects, timeouts):
    return VolumeHelper(objects, TEST_NAMESPACE, timeout=timeouts.delete,
                        interval=timeouts.interval, deadline=orchestrator.deadline)


def deploy_with_volume(orchestrator, volumes, name, mode):
    """Running driver in mode plus a bound volume provisioned by it"""
    orchestrator.create(name, {
        'deviceMode': mode.value,
        'pmemPercentage': 50,
        'nodeSelector': dict(PMEM_NODE_SELECTOR),
    })
    orchestrator.wait_driver_ready(name)
    orchestrator.validate_driver(name, initial_creation=True)

    volumes.create_storage_class('switch-mode-sc', provisioner=name)
    orchestrator.defer(volumes.delete_storage_class, 'switch-mode-sc')
    pvc = volumes.create_pvc('switch-mode-pvc', 'switch-mode-sc')
    orchestrator.defer(volumes.delete_pvc, pvc)
    volumes.wait_pvc_bound(pvc)
    return pvc


@pytest.mark.e2e
@pytest.mark.pmem
@pytest.mark.skipif(not PMEM_TESTS, reason="needs nodes with PMEM (set PMEM_TESTS=true)")
class TestSwitchDeviceMode:
    """Volumes survive a device mode switch"""

    @pytest.mark.parametrize('label,from_mode,to_mode', SWITCHES, ids=[s[0] for s in SWITCHES])
    def test_delete_volume(self, orchestrator, volumes, label, from_mode, to_mode):
        """Test that a volume created in the old mode can be deleted in the new one"""
        name = f"{label}-delete-volume"
        pvc = deploy_with_volume(orchestrator, volumes, name, from_mode)
        orchestrator.switch_device_mode(name, to_mode)
        volumes.delete_pvc(pvc)

    @pytest.mark.parametrize('label,from_mode,to_mode', SWITCHES, ids=[s[0] for s in SWITCHES])
    def test_use_volume(self, orchestrator, volumes, label, from_mode, to_mode):
        """Test that a volume is usable after switching away and back"""
        name = f"{label}-use-volume"
        pvc = deploy_with_volume(orchestrator, volumes, name, from_mode)
        orchestrator.switch_device_mode(name, to_mode)
        orchestrator.switch_device_mode(name, from_mode)

        app = volumes.create_app_pod('switch-mode-app', pvc.name)
        orchestrator.defer(volumes.delete_pod, app)
        volumes.wait_pod_running(app)
        volumes.delete_pod(app)
        volumes.delete_pvc(pvc)
