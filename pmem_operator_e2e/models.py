"""
Plain data types shared by the harness components.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ConditionType(str, Enum):
    CERTS_READY = 'CertsReady'
    CERTS_VERIFIED = 'CertsVerified'
    DRIVER_DEPLOYED = 'DriverDeployed'


class ConditionStatus(str, Enum):
    TRUE = 'True'
    FALSE = 'False'
    UNKNOWN = 'Unknown'


class Phase(str, Enum):
    NEW = ''
    RUNNING = 'Running'
    FAILED = 'Failed'


class DeviceMode(str, Enum):
    LVM = 'lvm'
    DIRECT = 'direct'


@dataclass(frozen=True)
class ManagedResourceRef:
    """Identity of the custom resource under test. The name is opaque."""
    name: str
    namespace: Optional[str] = None

    def __str__(self):
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass(frozen=True)
class Condition:
    type: str
    status: str
    reason: str = ''


@dataclass(frozen=True)
class ManagedResourceSnapshot:
    """Point-in-time read of the custom resource."""
    ref: ManagedResourceRef
    spec: Dict[str, Any]
    phase: str
    conditions: Tuple[Condition, ...]
    uid: str
    resource_version: str
    status: Dict[str, Any] = field(default_factory=dict)
    creation_timestamp: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> 'ManagedResourceSnapshot':
        meta = obj.get('metadata', {})
        status = obj.get('status') or {}
        conditions = tuple(
            Condition(type=c.get('type', ''), status=c.get('status', ''), reason=c.get('reason', ''))
            for c in status.get('conditions') or []
        )
        return cls(
            ref=ManagedResourceRef(name=meta['name'], namespace=meta.get('namespace')),
            spec=obj.get('spec') or {},
            phase=status.get('phase', ''),
            conditions=conditions,
            uid=meta.get('uid', ''),
            resource_version=meta.get('resourceVersion', ''),
            status=status,
            creation_timestamp=meta.get('creationTimestamp'),
            raw=obj,
        )


@dataclass(frozen=True)
class NotificationEvent:
    involved_object_uid: str
    reason: str
    emitting_component: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ChildObjectRef:
    """
    Identity of an object owned by the operator. Cluster-scoped objects have
    no namespace. This is all the harness knows about an owned object.
    """
    kind: str
    name: str
    namespace: Optional[str] = None

    def __str__(self):
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"
