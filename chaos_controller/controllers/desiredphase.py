"""
Desired Phase Reconciler - Decides whether an experiment should be running

An experiment should stop when it is paused, deleted, or has outlived its
duration; otherwise it should run. The result is written to
status.desired_phase, which the experiment reconciler acts on.
"""
import logging
from typing import Callable, Optional

from ..errors import NotFoundError, StoreError
from ..interfaces import IEventRecorder, IObjectStore, IReconciler
from ..models import DesiredPhase, EventType, Experiment, NamespacedName, Result
from ..utils.clock import utc_now
from .error_handler import DEFAULT_RETRY, RetryConfig, retry_on_conflict

logger = logging.getLogger(__name__)


def compute_desired_phase(obj: Experiment, now) -> tuple:
    """Return (desired phase, seconds until the duration runs out or None)"""
    exceeded, remaining = obj.duration_exceeded(now)
    if obj.is_deleted() or obj.is_paused() or exceeded:
        return DesiredPhase.STOPPED, None
    if remaining is None:
        return DesiredPhase.RUNNING, None
    return DesiredPhase.RUNNING, remaining.total_seconds()


class DesiredPhaseReconciler(IReconciler):

    def __init__(self, kind: str, store: IObjectStore, recorder: Optional[IEventRecorder] = None,
                 clock: Callable = utc_now, retry: RetryConfig = DEFAULT_RETRY):
        self.kind = kind
        self.store = store
        self.recorder = recorder
        self.clock = clock
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            obj = self.store.get(self.kind, request)
        except NotFoundError:
            return Result()

        desired, requeue_after = compute_desired_phase(obj, self.clock())

        if obj.status.desired_phase != desired:
            def update():
                latest = self.store.get(self.kind, request)
                latest.status.desired_phase = desired
                return self.store.update_status(latest)

            try:
                retry_on_conflict(update, self.retry, f"update desired phase of {self.kind} {request}")
            except NotFoundError:
                return Result()
            except StoreError as e:
                logger.error(f"Failed to set desired phase of {self.kind} {request} to {desired.value}: {e}")
                return Result(requeue=True)

            logger.info(f"{self.kind} {request} desired phase set to {desired.value}")
            if self.recorder:
                reason = "Started" if desired == DesiredPhase.RUNNING else "Stopped"
                self.recorder.event(obj, EventType.NORMAL, reason, f"desired phase set to {desired.value}")

        return Result(requeue_after=requeue_after)
