"""
Harness configuration read from environment variables.

Every value can be overridden per run through the environment; the pytest
command-line options in tests/conftest.py override the timeouts on top.
"""
import os
from dataclasses import dataclass, replace

# Where the operator (and therefore the driver it renders) runs
TEST_NAMESPACE = os.getenv('TEST_NAMESPACE', 'default')
OPERATOR_NAME = os.getenv('OPERATOR_NAME', 'pmem-csi-operator')
# Event source component the operator reports as
OPERATOR_COMPONENT = os.getenv('OPERATOR_COMPONENT', 'pmem-csi-operator')

# Custom resource coordinates
CR_GROUP = 'pmem-csi.intel.com'
CR_VERSION = os.getenv('CR_VERSION', 'v1beta1')
CR_ALPHA_VERSION = 'v1alpha1'
CR_PLURAL = 'deployments'

# Non-existing image: most scenarios never need a running driver
DRIVER_IMAGE = os.getenv('DRIVER_IMAGE', 'unexisting/pmem-csi-driver')
# Image used for the application pod in the "use volume" scenario
APP_IMAGE = os.getenv('PMEM_CSI_IMAGE', 'intel/pmem-csi-driver:canary')
DRIVER_CONTAINER = 'pmem-driver'
DRIVER_COMMAND = ['/usr/local/bin/pmem-csi-driver']
PROVISIONER_CONTAINER = 'external-provisioner'
REGISTRAR_CONTAINER = 'driver-registrar'
CONTROLLER_PORT = 10000
METRICS_PORT = 10010

# Event reasons emitted by the operator for a Deployment object
EVENT_REASON_NEW = os.getenv('EVENT_REASON_NEW', 'NewDeployment')
EVENT_REASON_RUNNING = os.getenv('EVENT_REASON_RUNNING', 'Running')
EVENT_REASON_FAILED = os.getenv('EVENT_REASON_FAILED', 'Failed')

# OLM installs cannot do webhook based conversion
HAS_OLM = os.getenv('HAS_OLM', 'false').lower() == 'true'
# Device mode switching needs nodes with real (or emulated) PMEM
PMEM_TESTS = os.getenv('PMEM_TESTS', 'false').lower() == 'true'
PMEM_NODE_SELECTOR = {'feature.node.kubernetes.io/memory-nv.dax': 'true'}

# Timeouts (seconds)
TEST_DEADLINE_SECONDS = int(os.getenv('TEST_DEADLINE_SECONDS', '300'))
POLL_INTERVAL = float(os.getenv('POLL_INTERVAL_SECONDS', '1'))
EVENT_TIMEOUT = int(os.getenv('EVENT_TIMEOUT_SECONDS', '120'))
RECOVERY_TIMEOUT = int(os.getenv('RECOVERY_TIMEOUT_SECONDS', '120'))
DELETE_TIMEOUT = int(os.getenv('DELETE_TIMEOUT_SECONDS', '180'))
FAILURE_TIMEOUT = int(os.getenv('FAILURE_TIMEOUT_SECONDS', '180'))
OPERATOR_TIMEOUT = int(os.getenv('OPERATOR_TIMEOUT_SECONDS', '180'))
STABILITY_DURATION = int(os.getenv('STABILITY_DURATION_SECONDS', '60'))
STABILITY_INTERVAL = int(os.getenv('STABILITY_INTERVAL_SECONDS', '20'))


@dataclass(frozen=True)
class Timeouts:
    """Bounded-wait settings handed to a scenario."""
    deadline: float = TEST_DEADLINE_SECONDS
    interval: float = POLL_INTERVAL
    events: float = EVENT_TIMEOUT
    recovery: float = RECOVERY_TIMEOUT
    delete: float = DELETE_TIMEOUT
    failure: float = FAILURE_TIMEOUT
    operator: float = OPERATOR_TIMEOUT
    stability: float = STABILITY_DURATION
    stability_interval: float = STABILITY_INTERVAL

    def override(self, **values) -> 'Timeouts':
        """Return a copy with every non-None value replaced."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})
