"""
StorageClass, PVC and application pod helpers used to prove a driver is
actually serving volumes.
"""
from typing import Optional

from kubernetes import client
from rich.console import Console

from pmem_operator_e2e.config import APP_IMAGE, DELETE_TIMEOUT, POLL_INTERVAL, TEST_NAMESPACE
from pmem_operator_e2e.errors import AlreadyExistsError, NotFoundError
from pmem_operator_e2e.models import ChildObjectRef
from pmem_operator_e2e.polling import CheckResult, Deadline, assert_eventually

console = Console()

VOLUME_SIZE = '2Gi'


class VolumeHelper:
    """Creates and removes the objects of a provision-and-use round trip."""

    def __init__(self, objects, namespace: str = TEST_NAMESPACE, timeout: float = DELETE_TIMEOUT,
                 interval: float = POLL_INTERVAL, deadline: Optional[Deadline] = None):
        self.objects = objects
        self.namespace = namespace
        self.timeout = timeout
        self.interval = interval
        self.deadline = deadline

    def _retry(self, func, description: str):
        return assert_eventually(func, self.timeout, self.interval, description=description,
                                 deadline=self.deadline)

    def _create(self, ref: ChildObjectRef, body):
        def create():
            try:
                self.objects.create(ref, body)
            except AlreadyExistsError:
                console.print(f"[dim]{ref} already exists[/dim]")
            return True

        self._retry(create, f"creation of {ref}")
        console.print(f"[dim]Created {ref}[/dim]")
        return ref

    def _delete(self, ref: ChildObjectRef):
        self._retry(lambda: self.objects.delete(ref) or True, f"deletion of {ref}")

    def create_storage_class(self, name: str, provisioner: str) -> ChildObjectRef:
        body = client.V1StorageClass(
            metadata=client.V1ObjectMeta(name=name),
            provisioner=provisioner,
            reclaim_policy='Delete',
            volume_binding_mode='Immediate',
            parameters={'eraseafter': 'false'},
        )
        return self._create(ChildObjectRef('StorageClass', name), body)

    def delete_storage_class(self, name: str):
        self._delete(ChildObjectRef('StorageClass', name))

    def create_pvc(self, name: str, storage_class: str) -> ChildObjectRef:
        body = client.V1PersistentVolumeClaim(
            metadata=client.V1ObjectMeta(name=name, namespace=self.namespace),
            spec=client.V1PersistentVolumeClaimSpec(
                storage_class_name=storage_class,
                access_modes=['ReadWriteOnce'],
                resources=client.V1ResourceRequirements(requests={'storage': VOLUME_SIZE}),
            ),
        )
        return self._create(ChildObjectRef('PersistentVolumeClaim', name, self.namespace), body)

    def wait_pvc_bound(self, ref: ChildObjectRef) -> client.V1PersistentVolumeClaim:
        bound = []

        def is_bound():
            pvc = self.objects.get(ref)
            if pvc.status is None or pvc.status.phase != 'Bound':
                return CheckResult(f"{ref} is {pvc.status.phase if pvc.status else 'unknown'}")
            bound.append(pvc)
            return True

        self._retry(is_bound, f"{ref} to be bound")
        console.print(f"[dim]PVC {ref.name} bound to volume {bound[-1].spec.volume_name}[/dim]")
        return bound[-1]

    def delete_pvc(self, ref: ChildObjectRef):
        """Delete the claim and wait for its volume to be reclaimed."""
        try:
            volume_name = self.objects.get(ref).spec.volume_name
        except NotFoundError:
            return
        self._delete(ref)
        console.print(f"[dim]PVC deleted {ref}[/dim]")
        if not volume_name:
            return
        pv = ChildObjectRef('PersistentVolume', volume_name)
        self._retry(lambda: not self.objects.exists(pv), f"{pv} to be deleted")

    def create_app_pod(self, name: str, pvc_name: str, image: str = APP_IMAGE) -> ChildObjectRef:
        body = client.V1Pod(
            metadata=client.V1ObjectMeta(name=name, namespace=self.namespace),
            spec=client.V1PodSpec(
                containers=[client.V1Container(
                    name='test-driver',
                    image=image,
                    image_pull_policy='IfNotPresent',
                    command=['sleep', '180'],
                )],
                volumes=[client.V1Volume(
                    name='pmem-volume',
                    persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=pvc_name),
                )],
            ),
        )
        return self._create(ChildObjectRef('Pod', name, self.namespace), body)

    def wait_pod_running(self, ref: ChildObjectRef):
        def running():
            pod = self.objects.get(ref)
            phase = pod.status.phase if pod.status else None
            if phase != 'Running':
                return CheckResult(f"{ref.name}: status {phase}")
            return True

        self._retry(running, f"{ref} to be running")

    def delete_pod(self, ref: ChildObjectRef):
        self._delete(ref)
