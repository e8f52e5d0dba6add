"""
Unit tests for the driver deployment validator against an in-memory cluster.
"""
import pytest

from pmem_operator_e2e.config import DRIVER_CONTAINER
from pmem_operator_e2e.errors import PollTimeoutError, TerminalFailure
from pmem_operator_e2e.models import ManagedResourceRef
from pmem_operator_e2e.validator import DriverDeploymentValidator
from tests.unit.fakes import NAMESPACE, FakeObjectClient, FakeResourceClient, render_driver

NAME = 'test-deployment'
SPEC = {
    'image': 'unexisting/pmem-csi-driver',
    'logLevel': 4,
    'deviceMode': 'direct',
    'pullPolicy': 'Never',
    'nodeSelector': {'storage': 'pmem'},
    'controllerDriverResources': {'limits': {'cpu': '200m', 'memory': '100Mi'}},
    'nodeRegistrarResources': {'limits': {'cpu': '300m', 'memory': '100Mi'}},
}


@pytest.fixture
def cluster():
    objects = FakeObjectClient()
    resources = FakeResourceClient()
    resources.create(ManagedResourceRef(NAME), SPEC)
    children = render_driver(objects, NAME, SPEC)
    validator = DriverDeploymentValidator(resources, objects, NAMESPACE, k8s_version=(1, 20))
    return objects, resources, children, validator


@pytest.mark.unit
def test_rendered_driver_is_valid(cluster):
    _, _, _, validator = cluster
    result = validator.check(NAME, SPEC)
    assert result.ok, result.error


@pytest.mark.unit
def test_missing_deployment_is_not_final(cluster):
    _, _, _, validator = cluster
    result = validator.check('other', SPEC)
    assert not result.ok
    assert not result.final


@pytest.mark.unit
def test_failed_phase_is_final(cluster):
    _, resources, _, validator = cluster
    resources.set_phase(NAME, 'Failed')
    result = validator.check(NAME, SPEC)
    assert result.final
    assert 'Failed' in str(result.error)


@pytest.mark.unit
def test_new_phase_is_retried(cluster):
    _, resources, _, validator = cluster
    resources.set_phase(NAME, '')
    result = validator.check(NAME, SPEC)
    assert not result.ok
    assert not result.final


@pytest.mark.unit
@pytest.mark.parametrize('child', ['registry secret', 'provisioner cluster role binding', 'csi driver', 'node driver'])
def test_missing_owned_object_is_reported(cluster, child):
    objects, _, children, validator = cluster
    objects.delete(children.all()[child])
    result = validator.check(NAME, SPEC)
    assert not result.ok
    assert not result.final
    assert child in str(result.error)


@pytest.mark.unit
def test_csi_driver_not_required_before_1_18(cluster):
    objects, resources, children, _ = cluster
    objects.delete(children.csi_driver)
    validator = DriverDeploymentValidator(resources, objects, NAMESPACE, k8s_version=(1, 17))
    assert validator.check(NAME, SPEC).ok


@pytest.mark.unit
@pytest.mark.parametrize('changed,expected_problem', [
    ({'logLevel': 5}, 'log level 5'),
    ({'deviceMode': 'lvm'}, 'device mode lvm'),
    ({'image': 'other/image'}, 'image'),
    ({'pullPolicy': 'Always'}, 'pull policy'),
    ({'nodeSelector': {'storage': 'none'}}, 'node selector'),
    ({'controllerDriverResources': {'limits': {'cpu': '1', 'memory': '1Gi'}}}, 'resource limits'),
    ({'provisionerImage': 'other/provisioner'}, 'external provisioner'),
    ({'nodeRegistrarResources': {'requests': {'cpu': '10m'}}}, 'node registrar'),
], ids=['log-level', 'device-mode', 'image', 'pull-policy', 'node-selector', 'resources',
        'provisioner-image', 'registrar-resources'])
def test_spec_differences_are_reported(cluster, changed, expected_problem):
    _, _, _, validator = cluster
    desired = dict(SPEC, **changed)
    result = validator.check(NAME, desired)
    assert not result.ok
    assert expected_problem in str(result.error)


@pytest.mark.unit
def test_corrupted_command_and_ports_are_reported(cluster):
    objects, _, children, validator = cluster
    sts = objects.get(children.controller_driver)
    for container in sts.spec.template.spec.containers:
        if container.name == DRIVER_CONTAINER:
            container.command = ['malformed', 'options']
    objects.update(children.controller_driver, sts)
    svc = objects.get(children.metrics_service)
    svc.spec.ports[0].port = 1111
    objects.update(children.metrics_service, svc)

    error = str(validator.check(NAME, SPEC).error)
    assert 'controller driver: command' in error
    assert 'metrics service: ports [1111]' in error


@pytest.mark.unit
def test_modification_during_stability_check_is_final(cluster):
    objects, _, children, validator = cluster
    versions = {}
    assert validator.check(NAME, SPEC, resource_versions=versions).ok
    assert len(versions) == 12
    assert validator.check(NAME, SPEC, resource_versions=versions).ok

    secret = objects.get(children.node_secret)
    objects.update(children.node_secret, secret)
    result = validator.check(NAME, SPEC, resource_versions=versions)
    assert result.final
    assert 'node secret' in str(result.error)


@pytest.mark.unit
def test_workload_status_updates_are_not_modifications(cluster):
    objects, _, children, validator = cluster
    sts = objects.get(children.controller_driver)
    sts.metadata.generation = 1
    objects.update(children.controller_driver, sts)
    versions = {}
    assert validator.check(NAME, SPEC, resource_versions=versions).ok
    # Status write: new resourceVersion, same generation
    objects.update(children.controller_driver, objects.get(children.controller_driver))
    assert validator.check(NAME, SPEC, resource_versions=versions).ok


@pytest.mark.unit
def test_eventually_aborts_on_failed_phase(cluster):
    _, resources, _, validator = cluster
    resources.set_phase(NAME, 'Failed')
    with pytest.raises(TerminalFailure):
        validator.eventually(NAME, SPEC, timeout=5, interval=0.01)


@pytest.mark.unit
def test_eventually_times_out_on_missing_object(cluster):
    objects, _, children, validator = cluster
    objects.delete(children.service_account)
    with pytest.raises(PollTimeoutError, match='service account'):
        validator.eventually(NAME, SPEC, timeout=0.03, interval=0.01)


@pytest.mark.unit
def test_failed_phase_is_retried_when_recovering(cluster):
    _, resources, _, validator = cluster
    resources.set_phase(NAME, 'Failed')
    result = validator.check(NAME, SPEC, failed_is_final=False)
    assert not result.ok
    assert not result.final
