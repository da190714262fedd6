"""
Event recorders

Events are the user-visible trail of stalled convergence: reconcilers emit
warnings here instead of failing the process.
"""
import logging
import threading
import uuid
from typing import Any, Callable, List

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..interfaces import IEventRecorder
from ..models import Event, EventType
from ..utils.clock import utc_now

logger = logging.getLogger(__name__)


class EventRecorder(IEventRecorder):
    """Keeps events in memory and mirrors them to the log"""

    def __init__(self, clock: Callable = utc_now, max_events: int = 1000):
        self.events: List[Event] = []
        self.max_events = max_events
        self._clock = clock
        self._lock = threading.Lock()

    def event(self, obj: Any, event_type: EventType, reason: str, message: str) -> Event:
        event = Event(
            kind=obj.kind,
            key=obj.meta.key(),
            event_type=event_type,
            reason=reason,
            message=message,
            timestamp=self._clock(),
        )
        with self._lock:
            self.events.append(event)
            if len(self.events) > self.max_events:
                del self.events[:len(self.events) - self.max_events]

        log = logger.warning if event_type == EventType.WARNING else logger.info
        log(f"Event {event_type.value} {reason} on {obj.kind} {event.key}: {message}")
        return event

    def events_for(self, kind: str, key) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.kind == kind and e.key == key]


class KubeEventRecorder(EventRecorder):
    """Also publishes every event as a core/v1 Event in the object's namespace"""

    def __init__(self, core_api=None, component: str = "chaos-controller-manager", clock: Callable = utc_now):
        super().__init__(clock=clock)
        self.core_api = core_api or client.CoreV1Api()
        self.component = component

    def event(self, obj: Any, event_type: EventType, reason: str, message: str) -> Event:
        event = super().event(obj, event_type, reason, message)

        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                name=f"{obj.meta.name}.{uuid.uuid4().hex[:16]}",
                namespace=obj.meta.namespace,
            ),
            involved_object=client.V1ObjectReference(
                kind=obj.kind,
                name=obj.meta.name,
                namespace=obj.meta.namespace,
                uid=obj.meta.uid,
            ),
            type=event_type.value,
            reason=reason,
            message=message,
            first_timestamp=event.timestamp,
            last_timestamp=event.timestamp,
            count=1,
            source=client.V1EventSource(component=self.component),
        )
        try:
            self.core_api.create_namespaced_event(obj.meta.namespace, body)
        except ApiException as e:
            logger.error(f"Failed to publish event {reason} for {obj.kind} {event.key}: {e.status} {e.reason}")
        return event
