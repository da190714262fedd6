"""
Schedule Pause Reconciler - Keeps the pause annotation of active jobs in step with their schedule
"""
import logging
from typing import Callable, List, Optional

from ..errors import NotFoundError, StoreError
from ..interfaces import IEventRecorder, IObjectStore, IReconciler
from ..models import (
    LABEL_CONTROLLED_BY, PAUSE_ANNOTATION_KEY, EventType, Experiment, NamespacedName, Result, Schedule
)
from ..utils.clock import utc_now
from .error_handler import DEFAULT_BACKOFF, RetryConfig, retry_on_conflict

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


class ActiveLister:
    """Lists the jobs a schedule spawned that are neither deleted nor finished"""

    def __init__(self, store: IObjectStore, clock: Callable = utc_now):
        self.store = store
        self.clock = clock

    def list_active_jobs(self, schedule: Schedule) -> List[Experiment]:
        jobs = self.store.list(
            schedule.spec.type,
            namespace=schedule.meta.namespace,
            labels={LABEL_CONTROLLED_BY: schedule.meta.name},
        )
        now = self.clock()
        return [job for job in jobs if not job.is_deleted() and not job.is_finished(now)]


class SchedulePauseReconciler(IReconciler):

    def __init__(self, store: IObjectStore, lister: ActiveLister, recorder: IEventRecorder,
                 retry: RetryConfig = DEFAULT_BACKOFF):
        self.store = store
        self.lister = lister
        self.recorder = recorder
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            schedule = self.store.get(Schedule.kind, request)
        except NotFoundError:
            return Result()
        except StoreError as e:
            logger.error(f"Unable to get schedule {request}: {e}")
            return Result()

        try:
            jobs = self.lister.list_active_jobs(schedule)
        except StoreError as e:
            self.recorder.event(schedule, EventType.WARNING, "Failed", f"Failed to list active jobs: {e}")
            return Result()

        paused = schedule.is_paused()
        pause = "true" if paused else "false"
        for job in jobs:
            if job.is_paused() == paused:
                continue

            key = job.key()
            error = self._set_pause(job.kind, key, pause)
            if error is not None:
                logger.error(f"Failed to set pause to {pause} for {key}: {error}")
                self.recorder.event(schedule, EventType.WARNING, "Failed", f"Failed to set pause to {pause} for {key}")
                # Remaining jobs are retried on the next trigger
                return Result()

        return Result()

    def _set_pause(self, kind: str, key: NamespacedName, pause: str) -> Optional[Exception]:
        def update():
            logger.info(f"Updating {kind} {key}, pause {pause}")
            latest = self.store.get(kind, key)
            latest.meta.annotations[PAUSE_ANNOTATION_KEY] = pause
            return self.store.update(latest)

        try:
            retry_on_conflict(update, self.retry, f"set pause of {kind} {key}")
        except StoreError as e:
            return e
        return None
