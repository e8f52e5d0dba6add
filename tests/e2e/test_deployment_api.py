"""
End-to-end tests for Deployment creation, listing, editing and operator exit
"""
import re

import pytest
from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.certs import set_tls
from pmem_operator_e2e.children import DriverObjects
from pmem_operator_e2e.config import DRIVER_IMAGE, EVENT_REASON_FAILED, EVENT_REASON_NEW, TEST_NAMESPACE
from pmem_operator_e2e.kubectl import get_deployment_columns
from pmem_operator_e2e.models import ConditionStatus, ConditionType, DeviceMode, Phase
from pmem_operator_e2e.testcases import default_spec, edited_spec, explicit_spec

console = Console()

READY = {
    ConditionType.CERTS_READY: ConditionStatus.TRUE,
    ConditionType.DRIVER_DEPLOYED: ConditionStatus.TRUE,
}


@pytest.mark.e2e
class TestDeployment:
    """Deployments are rendered into a running driver"""

    @pytest.mark.parametrize('name,spec', [
        ('test-deployment-with-defaults', default_spec()),
        ('test-deployment-with-explicit', explicit_spec()),
    ], ids=['with-defaults', 'with-explicit-values'])
    def test_deployment_is_rendered(self, orchestrator, name, spec):
        """Test that a new Deployment converges, reports its conditions and emits events"""
        orchestrator.create(name, spec)
        orchestrator.validate_driver(name)
        orchestrator.validate_conditions(name, READY)
        orchestrator.validate_events(name)

    def test_get_deployment_lists_expected_fields(self, orchestrator):
        """Test that `kubectl get` shows the fields set in the spec"""
        name = 'test-get-deployment-fields'
        spec = default_spec()
        spec['deviceMode'] = DeviceMode.DIRECT.value
        spec['pullPolicy'] = 'Never'
        spec['nodeSelector'] = {'storage': 'unknown-node'}

        orchestrator.create(name, spec)
        orchestrator.validate_driver(name)
        snapshot = orchestrator.snapshot(name)

        rows = get_deployment_columns()
        assert name in rows, f"{name} not listed by kubectl get: {sorted(rows)}"
        columns = rows[name]
        console.print(f"[cyan]kubectl get:[/cyan] {name} {' '.join(columns)}")
        assert len(columns) >= 5, f"unexpected columns: {columns}"
        device_mode, node_selector, image, phase, age = columns[:5]
        assert device_mode == snapshot.spec['deviceMode']
        assert re.search(r'"?storage"?:"?unknown-node"?', node_selector), \
            f"node selector column {node_selector!r} does not show storage=unknown-node"
        assert image == snapshot.spec['image']
        assert phase == snapshot.phase
        assert re.match(r'[0-9]+(s|m)', age), f"unexpected age {age!r}"

    def test_driver_image_defaults_to_operator_image(self, orchestrator):
        """Test that a Deployment without image runs the operator's image"""
        name = 'test-deployment-driver-image'
        orchestrator.create(name, {'pmemPercentage': 50})
        image = orchestrator.operator_image()
        console.print(f"[dim]Operator image: {image}[/dim]")
        orchestrator.validate_driver(name, spec={'pmemPercentage': 50, 'image': image})

    def test_edit_running_deployment(self, orchestrator):
        """Test that changes to a running Deployment reach the driver"""
        name = 'test-deployment-update'
        orchestrator.create(name, default_spec())
        orchestrator.validate_driver(name, what="validate driver before editing")
        orchestrator.edit(name, edited_spec)
        orchestrator.validate_driver(name, what="validate driver after editing")

    def test_multiple_deployments(self, orchestrator):
        """Test that two Deployments can run side by side"""
        for index, name in enumerate(['test-deployment-1', 'test-deployment-2'], start=1):
            orchestrator.create(name, default_spec())
            orchestrator.validate_driver(name, initial_creation=index > 1, what=f"validate driver #{index}")
            orchestrator.validate_events(name)

    def test_dots_in_name(self, orchestrator):
        """Test that a dotted name is rendered into hyphenated object names"""
        name = 'test.deployment.example.org'
        orchestrator.create(name, default_spec())
        orchestrator.validate_driver(name, initial_creation=True)
        orchestrator.validate_conditions(name, READY)
        orchestrator.validate_events(name)
        children = DriverObjects(name, TEST_NAMESPACE)
        assert children.controller_driver.name == 'test-deployment-example-org-controller'
        assert children.csi_driver.name == name

    def test_custom_ca_certificates(self, orchestrator):
        """Test that a Deployment with its own CA reports verified certificates"""
        name = 'test-deployment-with-certificates'
        orchestrator.create(name, set_tls(default_spec()))
        orchestrator.validate_driver(name, initial_creation=True)
        expected = dict(READY)
        expected[ConditionType.CERTS_VERIFIED] = ConditionStatus.TRUE
        orchestrator.validate_conditions(name, expected)
        orchestrator.validate_events(name)

    @pytest.mark.slow
    def test_driver_keeps_running_after_operator_exit(self, orchestrator):
        """Test that the driver stays untouched while the operator is down and valid after its restart"""
        name = 'test-deployment-operator-exit'
        orchestrator.create(name, default_spec())
        orchestrator.validate_driver(name, initial_creation=True)
        orchestrator.validate_conditions(name, READY)
        orchestrator.assert_stable_without_operator(name)
        orchestrator.restart_and_revalidate(name)


@pytest.mark.e2e
@pytest.mark.expect_failure
class TestOwnershipCollision:
    """A Deployment whose objects are owned by someone else fails until they are removed"""

    def test_recover_from_conflicts(self, orchestrator):
        """Test that a pre-existing registry secret fails the Deployment until deleted"""
        name = 'test-recover-from-conflicts'
        secret = DriverObjects(name, TEST_NAMESPACE).registry_secret
        orchestrator.create_object(secret, client.V1Secret(
            metadata=client.V1ObjectMeta(name=secret.name, namespace=secret.namespace),
            type='kubernetes.io/tls',
            string_data={'ca.crt': 'fake ca', 'tls.key': 'fake key', 'tls.crt': 'fake crt'},
        ))

        orchestrator.create(name, default_spec(DRIVER_IMAGE))
        orchestrator.expect_phase(name, Phase.FAILED)
        orchestrator.validate_events(name, [EVENT_REASON_NEW, EVENT_REASON_FAILED])

        orchestrator.delete_object(secret)
        orchestrator.validate_driver(name, initial_creation=True)
        orchestrator.validate_events(name)
