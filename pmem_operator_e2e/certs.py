"""
Custom CA and driver certificates for Deployments that bring their own TLS
setup. Keys are generated with the openssl command line tool.
"""
import base64
import os
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List

from rich.console import Console

console = Console()

REGISTRY_CN = 'pmem-registry'
NODE_CONTROLLER_CN = 'pmem-node-controller'
VALID_DAYS = '1'


@dataclass(frozen=True)
class DriverCertificates:
    """PEM encoded CA certificate plus the two key pairs signed by it."""
    ca_cert: bytes
    registry_cert: bytes
    registry_key: bytes
    node_controller_cert: bytes
    node_controller_key: bytes

    def spec_fields(self) -> Dict[str, str]:
        """Fields of a Deployment spec, base64 encoded like any []byte field."""
        def b64(data: bytes) -> str:
            return base64.b64encode(data).decode('ascii')

        return {
            'caCert': b64(self.ca_cert),
            'registryCert': b64(self.registry_cert),
            'registryKey': b64(self.registry_key),
            'nodeControllerCert': b64(self.node_controller_cert),
            'nodeControllerKey': b64(self.node_controller_key),
        }


def _openssl(args: List[str], cwd: str):
    try:
        subprocess.run(['openssl'] + args, cwd=cwd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        console.print(f"[red]✗ openssl command failed:[/red] {' '.join(args)}")
        console.print(f"[red]Error:[/red] {e.stderr}")
        raise


def _read(workdir: str, name: str) -> bytes:
    with open(os.path.join(workdir, name), 'rb') as f:
        return f.read()


def _signed_pair(workdir: str, cn: str):
    with open(os.path.join(workdir, f"{cn}.ext"), 'w') as f:
        f.write(f"subjectAltName=DNS:{cn}\n")
    _openssl(['req', '-newkey', 'rsa:2048', '-nodes', '-keyout', f"{cn}.key",
              '-out', f"{cn}.csr", '-subj', f"/CN={cn}"], workdir)
    _openssl(['x509', '-req', '-in', f"{cn}.csr", '-CA', 'ca.crt', '-CAkey', 'ca.key',
              '-CAcreateserial', '-out', f"{cn}.crt", '-days', VALID_DAYS,
              '-extfile', f"{cn}.ext"], workdir)
    return _read(workdir, f"{cn}.crt"), _read(workdir, f"{cn}.key")


def generate_certificates() -> DriverCertificates:
    with tempfile.TemporaryDirectory(prefix='pmem-certs-') as workdir:
        _openssl(['req', '-x509', '-newkey', 'rsa:2048', '-nodes', '-keyout', 'ca.key',
                  '-out', 'ca.crt', '-days', VALID_DAYS, '-subj', '/CN=pmem-ca'], workdir)
        registry_cert, registry_key = _signed_pair(workdir, REGISTRY_CN)
        node_cert, node_key = _signed_pair(workdir, NODE_CONTROLLER_CN)
        certs = DriverCertificates(
            ca_cert=_read(workdir, 'ca.crt'),
            registry_cert=registry_cert,
            registry_key=registry_key,
            node_controller_cert=node_cert,
            node_controller_key=node_key,
        )
    console.print("[dim]Generated custom CA and driver certificates[/dim]")
    return certs


def set_tls(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Put freshly generated certificates into a Deployment spec."""
    spec.update(generate_certificates().spec_fields())
    return spec
