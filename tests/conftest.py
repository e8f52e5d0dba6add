"""
Pytest configuration and shared fixtures for PMEM-CSI operator tests
"""
import os
import warnings

import pytest
from kubernetes import client, config
from rich.console import Console

from pmem_operator_e2e.config import OPERATOR_COMPONENT, TEST_NAMESPACE, Timeouts
from pmem_operator_e2e.events import EventCorrelator, KubernetesEventStream
from pmem_operator_e2e.kubectl import check_cluster_connectivity
from pmem_operator_e2e.objects import ObjectClient
from pmem_operator_e2e.operator_control import OperatorControl
from pmem_operator_e2e.resources import ManagedResourceClient
from pmem_operator_e2e.scenarios import ScenarioOrchestrator
from pmem_operator_e2e.validator import DriverDeploymentValidator

# Suppress urllib3 warnings about OpenSSL
warnings.filterwarnings('ignore', category=UserWarning, module='urllib3')
try:
    import urllib3
    urllib3.disable_warnings(urllib3.exceptions.NotOpenSSLWarning)
except (ImportError, AttributeError):
    pass

console = Console()


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        '--deadline',
        action='store',
        default=None,
        type=int,
        help='Per-test deadline in seconds (default: TEST_DEADLINE_SECONDS or 300)'
    )
    parser.addoption(
        '--recovery-timeout',
        action='store',
        default=None,
        type=int,
        help='Timeout in seconds for re-creation of deleted objects (default: 120)'
    )
    parser.addoption(
        '--stability-duration',
        action='store',
        default=None,
        type=int,
        help='How long the driver must stay valid with the operator stopped (default: 60)'
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: tests without a cluster")
    config.addinivalue_line("markers", "e2e: tests against a cluster running the operator")
    config.addinivalue_line("markers", "pmem: tests that need nodes with PMEM")
    config.addinivalue_line("markers", "slow: tests that stop the operator or wait for stability")
    config.addinivalue_line("markers", "expect_failure: scenario in which a Deployment is expected to fail")


@pytest.fixture(scope="session")
def timeouts(request):
    """Timeouts from the environment, overridden by command-line options"""
    return Timeouts().override(
        deadline=request.config.getoption('--deadline'),
        recovery=request.config.getoption('--recovery-timeout'),
        stability=request.config.getoption('--stability-duration'),
    )


@pytest.fixture(scope="session")
def k8s_client():
    """Initialize Kubernetes API client, skipping when no cluster is reachable"""
    try:
        config.load_incluster_config()
        console.print("[green]✓[/green] Using in-cluster Kubernetes config")
    except config.ConfigException:
        try:
            config.load_kube_config()
            console.print("[green]✓[/green] Using local Kubernetes config")
        except Exception as e:
            pytest.skip(f"Could not load Kubernetes config: {e}")
        if os.getenv('SKIP_CONNECTIVITY_CHECK', 'false').lower() != 'true' and not check_cluster_connectivity():
            pytest.skip("Kubernetes cluster is not reachable")

    return client.ApiClient()


@pytest.fixture(scope="session")
def core_v1(k8s_client):
    """Core V1 API client"""
    return client.CoreV1Api(k8s_client)


@pytest.fixture(scope="session")
def custom_objects_v1(k8s_client):
    """Custom Objects API client"""
    return client.CustomObjectsApi(k8s_client)


@pytest.fixture(scope="session")
def k8s_version(k8s_client):
    """(major, minor) of the API server"""
    info = client.VersionApi(k8s_client).get_code()
    return int(info.major), int(info.minor.rstrip('+'))


@pytest.fixture(scope="session")
def objects(k8s_client):
    return ObjectClient(k8s_client)


@pytest.fixture(scope="session")
def resources(custom_objects_v1):
    return ManagedResourceClient(custom_objects_v1)


@pytest.fixture(scope="session")
def validator(resources, objects, k8s_version):
    return DriverDeploymentValidator(resources, objects, TEST_NAMESPACE, k8s_version)


@pytest.fixture
def correlator(core_v1):
    """
    Event correlator watching the whole cluster for the duration of one test.
    The watch is stopped and the ledger dropped at teardown.
    """
    correlator = EventCorrelator(OPERATOR_COMPONENT)
    handle = correlator.start(KubernetesEventStream(core_v1))
    yield correlator
    correlator.stop(handle)
    correlator.reset()


@pytest.fixture
def operator(objects, timeouts):
    return OperatorControl(objects, TEST_NAMESPACE, timeout=timeouts.operator, interval=timeouts.interval)


@pytest.fixture
def orchestrator(request, resources, objects, correlator, validator, operator, timeouts):
    """Scenario orchestrator whose cleanup runs after every test, passed or failed"""
    scenario = ScenarioOrchestrator(
        resources, objects, correlator, validator,
        namespace=TEST_NAMESPACE,
        timeouts=timeouts,
        operator=operator,
        expect_failure=request.node.get_closest_marker('expect_failure') is not None,
    )
    yield scenario
    scenario.close()
