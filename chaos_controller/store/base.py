"""Base classes for object store backends"""
import logging
import threading
from abc import ABC
from typing import Any, Callable, Dict, List, Optional

from ..interfaces import IObjectStore
from ..models import ObjectMeta

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def matches_labels(meta: ObjectMeta, labels: Optional[Dict[str, str]]) -> bool:
    """Label equality match, an empty selector matches everything"""
    if not labels:
        return True
    return all(meta.labels.get(key) == value for key, value in labels.items())


class BaseObjectStore(IObjectStore, ABC):
    """Subscriber bookkeeping shared by every backend"""

    def __init__(self):
        self._subscribers: List[Callable[[str, Any], None]] = []
        self._subscribers_lock = threading.Lock()

    def subscribe(self, callback: Callable[[str, Any], None]) -> None:
        with self._subscribers_lock:
            self._subscribers.append(callback)

    def _notify(self, event_type: str, obj: Any) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event_type, obj)
            except Exception as e:
                logger.error(f"Store subscriber failed on {event_type} {obj.kind} {obj.meta.key()}: {e}")
