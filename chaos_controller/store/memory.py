"""
In-memory object store

Keeps deep copies of every object with integer resource versions, so callers
see the same optimistic-concurrency contract as the cluster API: a write
carrying a stale resource version raises ConflictError.
"""
import copy
import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..errors import AlreadyExistsError, ConflictError, NotFoundError
from ..models import NamespacedName
from ..utils.clock import utc_now
from .base import ADDED, DELETED, MODIFIED, BaseObjectStore, matches_labels

logger = logging.getLogger(__name__)


class InMemoryObjectStore(BaseObjectStore):
    """Process-local object store"""

    def __init__(self, clock: Callable = utc_now):
        super().__init__()
        self._objects: Dict[str, Dict[NamespacedName, Any]] = {}
        self._lock = threading.RLock()
        self._version = 0
        self._clock = clock

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def get(self, kind: str, key: NamespacedName) -> Any:
        with self._lock:
            obj = self._objects.get(kind, {}).get(key)
            if obj is None:
                raise NotFoundError(kind, str(key))
            return copy.deepcopy(obj)

    def list(self, kind: str, namespace: Optional[str] = None,
             labels: Optional[Dict[str, str]] = None) -> List[Any]:
        with self._lock:
            return [
                copy.deepcopy(obj)
                for obj in self._objects.get(kind, {}).values()
                if (namespace is None or obj.meta.namespace == namespace) and matches_labels(obj.meta, labels)
            ]

    def create(self, obj: Any) -> Any:
        key = obj.meta.key()
        with self._lock:
            objects = self._objects.setdefault(obj.kind, {})
            if key in objects:
                raise AlreadyExistsError(obj.kind, str(key))

            stored = copy.deepcopy(obj)
            stored.meta.resource_version = self._next_version()
            stored.meta.uid = str(uuid.uuid4())
            if stored.meta.creation_timestamp is None:
                stored.meta.creation_timestamp = self._clock()
            objects[key] = stored
            created = copy.deepcopy(stored)

        logger.debug(f"Created {obj.kind} {key}")
        self._notify(ADDED, copy.deepcopy(created))
        return created

    def update(self, obj: Any) -> Any:
        return self._write(obj, status_only=False)

    def update_status(self, obj: Any) -> Any:
        return self._write(obj, status_only=True)

    def _write(self, obj: Any, status_only: bool) -> Any:
        key = obj.meta.key()
        with self._lock:
            current = self._objects.get(obj.kind, {}).get(key)
            if current is None:
                raise NotFoundError(obj.kind, str(key))
            if obj.meta.resource_version != current.meta.resource_version:
                raise ConflictError(obj.kind, str(key), obj.meta.resource_version, current.meta.resource_version)

            if status_only:
                updated = copy.deepcopy(current)
                updated.status = copy.deepcopy(obj.status)
            else:
                updated = copy.deepcopy(obj)
                updated.meta.uid = current.meta.uid
                updated.meta.creation_timestamp = current.meta.creation_timestamp
                updated.meta.deletion_timestamp = current.meta.deletion_timestamp
                if hasattr(current, 'status'):
                    updated.status = copy.deepcopy(current.status)

            # No-op writes keep the version and emit nothing
            if updated == current:
                return copy.deepcopy(current)

            updated.meta.resource_version = self._next_version()
            event_type = MODIFIED
            if updated.meta.deletion_timestamp is not None and not updated.meta.finalizers:
                # The last finalizer is gone, the pending delete completes
                del self._objects[obj.kind][key]
                event_type = DELETED
            else:
                self._objects[obj.kind][key] = updated
            result = copy.deepcopy(updated)

        if event_type == DELETED:
            logger.debug(f"Deleted {obj.kind} {key} after its finalizers were removed")
        self._notify(event_type, copy.deepcopy(result))
        return result

    def delete(self, kind: str, key: NamespacedName) -> None:
        """
        Delete an object.

        An object holding finalizers is only marked with a deletion timestamp
        and stays readable until an update removes the last finalizer.
        """
        with self._lock:
            current = self._objects.get(kind, {}).get(key)
            if current is None:
                raise NotFoundError(kind, str(key))

            if current.meta.finalizers:
                if current.meta.deletion_timestamp is not None:
                    return
                marked = copy.deepcopy(current)
                marked.meta.deletion_timestamp = self._clock()
                marked.meta.resource_version = self._next_version()
                self._objects[kind][key] = marked
                event_type, obj = MODIFIED, copy.deepcopy(marked)
            else:
                obj = self._objects[kind].pop(key)
                if obj.meta.deletion_timestamp is None:
                    obj.meta.deletion_timestamp = self._clock()
                event_type = DELETED

        if event_type == MODIFIED:
            logger.debug(f"Marked {kind} {key} for deletion, waiting on finalizers {obj.meta.finalizers}")
        else:
            logger.debug(f"Deleted {kind} {key}")
        self._notify(event_type, obj)
