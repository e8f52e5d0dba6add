"""
kubectl wrappers for checks that only the command line output can answer.
"""
import subprocess
from typing import Dict, List

from rich.console import Console

from pmem_operator_e2e.config import CR_GROUP, CR_PLURAL

console = Console()


def kubectl_text(cmd_list: List[str]) -> str:
    """Execute kubectl command and return its plain output"""
    try:
        result = subprocess.run(['kubectl'] + cmd_list, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        console.print(f"[red]✗ kubectl command failed:[/red] {' '.join(cmd_list)}")
        console.print(f"[red]Error:[/red] {e.stderr}")
        raise
    return result.stdout


def get_deployment_columns() -> Dict[str, List[str]]:
    """
    `kubectl get deployments.pmem-csi.intel.com` split into columns, keyed by
    object name. The printer columns are the operator's public surface.
    """
    output = kubectl_text(['get', f"{CR_PLURAL}.{CR_GROUP}", '--no-headers'])
    rows = {}
    for line in output.splitlines():
        fields = line.split()
        if fields:
            rows[fields[0]] = fields[1:]
    return rows


def check_cluster_connectivity() -> bool:
    """Verify we can connect to the Kubernetes cluster"""
    try:
        result = subprocess.run(
            ['kubectl', 'cluster-info'],
            capture_output=True,
            text=True,
            timeout=10
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False
