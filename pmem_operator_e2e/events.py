"""
Correlation of cluster events with the objects that caused them.

The correlator consumes an event stream on a background thread and records,
per involved object UID, which distinct reasons the operator reported.
Tests then poll the ledger with expect_reasons(). The ledger is keyed by UID,
so a deleted and re-created object with the same name starts from an empty
reason set.
"""
import threading
from contextlib import contextmanager
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Set

from kubernetes import client, watch
from rich.console import Console

from pmem_operator_e2e.config import EVENT_TIMEOUT, OPERATOR_COMPONENT, POLL_INTERVAL
from pmem_operator_e2e.models import NotificationEvent
from pmem_operator_e2e.polling import Deadline, PollResult, assert_eventually, eventually

console = Console()

# Server-side timeout of one watch request; the stream reconnects afterwards
WATCH_TIMEOUT_SECONDS = 60


class EventLedger:
    """Thread-safe mapping from object UID to the set of reasons seen for it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reasons: Dict[str, Set[str]] = {}

    def add(self, uid: str, reason: str):
        with self._lock:
            self._reasons.setdefault(uid, set()).add(reason)

    def reasons(self, uid: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._reasons.get(uid, ()))

    def uids(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._reasons)

    def reset(self):
        with self._lock:
            self._reasons = {}


class KubernetesEventStream:
    """
    Iterable over all events in the cluster, as NotificationEvents.

    Watches are restarted after the server-side timeout from the last seen
    resource version, and from scratch when that version has expired (410).
    stop() ends the iteration at the next delivery or reconnect.
    """

    def __init__(self, core_v1: client.CoreV1Api, timeout_seconds: int = WATCH_TIMEOUT_SECONDS):
        self.core_v1 = core_v1
        self.timeout_seconds = timeout_seconds
        self._watch = watch.Watch()
        self._stopped = threading.Event()

    def __iter__(self) -> Iterator[NotificationEvent]:
        resource_version = None
        while not self._stopped.is_set():
            kwargs = {'timeout_seconds': self.timeout_seconds}
            if resource_version:
                kwargs['resource_version'] = resource_version
            try:
                for item in self._watch.stream(self.core_v1.list_event_for_all_namespaces, **kwargs):
                    if self._stopped.is_set():
                        return
                    if item.get('type') == 'ERROR':
                        raw = item.get('raw_object') or {}
                        if raw.get('code') == 410:
                            resource_version = None
                            break
                        continue
                    ev = item['object']
                    resource_version = ev.metadata.resource_version
                    yield event_from_api(ev)
            except client.exceptions.ApiException as e:
                if e.status != 410:
                    raise
                resource_version = None

    def stop(self):
        self._stopped.set()
        self._watch.stop()


def event_from_api(ev) -> NotificationEvent:
    """Convert a CoreV1Event into a NotificationEvent."""
    component = ''
    if ev.source is not None and ev.source.component:
        component = ev.source.component
    elif getattr(ev, 'reporting_component', None):
        component = ev.reporting_component
    return NotificationEvent(
        involved_object_uid=ev.involved_object.uid or '',
        reason=ev.reason or '',
        emitting_component=component,
        timestamp=ev.last_timestamp or ev.event_time or ev.first_timestamp,
    )


class WatchHandle:
    """Handle of one running event consumer, returned by EventCorrelator.start()."""

    def __init__(self, stream):
        self.stream = stream
        self.thread: Optional[threading.Thread] = None
        self.stopped = threading.Event()

    @property
    def alive(self) -> bool:
        return self.thread.is_alive()


class EventCorrelator:
    """Ingests operator events into an EventLedger on a background thread."""

    def __init__(self, component: str = OPERATOR_COMPONENT, ledger: Optional[EventLedger] = None):
        self.component = component
        self.ledger = ledger or EventLedger()

    def ingest(self, event: NotificationEvent) -> bool:
        """Record the event if it came from the operator. Returns whether it was recorded."""
        if event.emitting_component != self.component:
            return False
        self.ledger.add(event.involved_object_uid, event.reason)
        return True

    def start(self, stream: Iterable[NotificationEvent]) -> WatchHandle:
        handle = WatchHandle(stream)
        handle.thread = threading.Thread(
            target=self._consume, args=(handle,), name='event-correlator', daemon=True
        )
        handle.thread.start()
        return handle

    def _consume(self, handle: WatchHandle):
        try:
            for event in handle.stream:
                if handle.stopped.is_set():
                    break
                self.ingest(event)
        except Exception as e:
            # A broken stream only ends ingestion; pending expect_reasons() calls time out.
            if not handle.stopped.is_set():
                console.print(f"[yellow]Event stream ended with error: {e}[/yellow]")

    def stop(self, handle: WatchHandle, timeout: float = 5.0):
        """Stop consuming. The ledger keeps its content."""
        handle.stopped.set()
        stop = getattr(handle.stream, 'stop', None)
        if stop is not None:
            stop()
        handle.thread.join(timeout)
        if handle.thread.is_alive():
            console.print("[yellow]Event consumer still blocked in the stream; abandoned as daemon thread[/yellow]")

    @contextmanager
    def watching(self, stream: Iterable[NotificationEvent]):
        """Run the consumer for the duration of the with-block."""
        handle = self.start(stream)
        try:
            yield handle
        finally:
            self.stop(handle)

    def reasons(self, uid: str) -> FrozenSet[str]:
        return self.ledger.reasons(uid)

    def reset(self):
        self.ledger.reset()

    def _has_reasons(self, uid: str, expected: FrozenSet[str]) -> bool:
        return expected <= self.ledger.reasons(uid)

    def expect_reasons(
        self,
        uid: str,
        expected: Iterable[str],
        timeout: float = EVENT_TIMEOUT,
        interval: float = POLL_INTERVAL,
        deadline: Optional[Deadline] = None,
    ) -> PollResult:
        """Wait until every expected reason was observed for uid. Extra reasons are fine."""
        expected = frozenset(expected)
        return eventually(
            lambda: self._has_reasons(uid, expected),
            timeout,
            interval,
            description=f"events {sorted(expected)} for object {uid}",
            deadline=deadline,
        )

    def assert_reasons(
        self,
        uid: str,
        expected: Iterable[str],
        timeout: float = EVENT_TIMEOUT,
        interval: float = POLL_INTERVAL,
        deadline: Optional[Deadline] = None,
    ) -> PollResult:
        expected = frozenset(expected)
        try:
            return assert_eventually(
                lambda: self._has_reasons(uid, expected),
                timeout,
                interval,
                description=f"events {sorted(expected)} for object {uid}",
                deadline=deadline,
            )
        except AssertionError as e:
            observed = self.ledger.reasons(uid)
            e.args = (f"{e} (missing: {sorted(expected - observed)}, observed: {sorted(observed)})",)
            raise
