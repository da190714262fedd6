"""
Record Finalizer - Keeps a deleted experiment around until its faults are gone

Every live experiment carries the records finalizer. Once the experiment is
marked for deletion its desired phase turns to Stopped, the experiment
reconciler recovers the records, and this reconciler drops the finalizer so
the store can finish the delete. The clean-finalizer annotation set to
"forced" drops it without waiting.
"""
import logging
from typing import Optional

from ..errors import NotFoundError, StoreError
from ..interfaces import IEventRecorder, IObjectStore, IReconciler
from ..models import (
    CLEAN_FINALIZER_ANNOTATION_KEY, CLEAN_FINALIZER_FORCED, RECORD_FINALIZER, EventType, Experiment,
    NamespacedName, Result
)
from .error_handler import DEFAULT_RETRY, RetryConfig, retry_on_conflict

logger = logging.getLogger(__name__)


def cleanup_forced(obj: Experiment) -> bool:
    return obj.meta.annotations.get(CLEAN_FINALIZER_ANNOTATION_KEY) == CLEAN_FINALIZER_FORCED


class FinalizerReconciler(IReconciler):

    def __init__(self, kind: str, store: IObjectStore, recorder: Optional[IEventRecorder] = None,
                 retry: RetryConfig = DEFAULT_RETRY):
        self.kind = kind
        self.store = store
        self.recorder = recorder
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            obj = self.store.get(self.kind, request)
        except NotFoundError:
            return Result()

        if not obj.is_deleted():
            if RECORD_FINALIZER not in obj.meta.finalizers:
                return self._set_finalizer(request, present=True)
            return Result()

        if RECORD_FINALIZER not in obj.meta.finalizers:
            return Result()

        if not obj.all_recovered() and not cleanup_forced(obj):
            logger.debug(f"{self.kind} {request} is being deleted, waiting for its records to recover")
            return Result()

        if not obj.all_recovered():
            logger.warning(f"{self.kind} {request} finalizer removed by force with records still injected")
        result = self._set_finalizer(request, present=False)
        if self.recorder and not result.requeue:
            self.recorder.event(obj, EventType.NORMAL, "FinalizerRemoved", "all records recovered")
        return result

    def _set_finalizer(self, request: NamespacedName, present: bool) -> Result:
        def update():
            latest = self.store.get(self.kind, request)
            finalizers = [f for f in latest.meta.finalizers if f != RECORD_FINALIZER]
            if present:
                finalizers.append(RECORD_FINALIZER)
            latest.meta.finalizers = finalizers
            return self.store.update(latest)

        action = "add" if present else "remove"
        try:
            retry_on_conflict(update, self.retry, f"{action} finalizer of {self.kind} {request}")
        except NotFoundError:
            return Result()
        except StoreError as e:
            logger.error(f"Failed to {action} finalizer of {self.kind} {request}: {e}")
            return Result(requeue=True)

        logger.info(f"{self.kind} {request}: finalizer {RECORD_FINALIZER} {'added' if present else 'removed'}")
        return Result()
