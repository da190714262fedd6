"""
Experiment Reconciler - Drives every record of an experiment toward its desired phase

One pass: fetch the experiment, resolve selectors into records on the first
pass, apply or recover each record whose phase disagrees with the desired
phase (fanned out across records), then persist the record list under
conflict retry.
"""
import copy
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple

from ..errors import MalformedSpecError, NotFoundError, SelectorError, StoreError
from ..interfaces import IChaosImpl, IEventRecorder, IObjectStore, IReconciler, ITargetSelector
from ..models import DesiredPhase, EventType, Experiment, NamespacedName, Record, RecordPhase, Result
from ..utils.log_buffer import RecordLogBuffer
from .error_handler import (
    DEFAULT_BACKOFF, ErrorCategory, ErrorContext, ErrorHandler, ErrorSeverity, RetryConfig,
    get_error_handler, retry_on_conflict
)

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

APPLY = "apply"
RECOVER = "recover"


def planned_action(desired: Optional[DesiredPhase], phase: RecordPhase) -> Optional[str]:
    """Action needed to move one record toward the desired phase, None at rest"""
    if desired == DesiredPhase.RUNNING and phase != RecordPhase.INJECTED:
        return APPLY
    if desired == DesiredPhase.STOPPED and phase != RecordPhase.NOT_INJECTED:
        return RECOVER
    return None


class ExperimentReconciler(IReconciler):
    """Level-triggered reconciler for one chaos kind"""

    def __init__(
        self,
        kind: str,
        impl: IChaosImpl,
        store: IObjectStore,
        selector: ITargetSelector,
        recorder: Optional[IEventRecorder] = None,
        error_handler: Optional[ErrorHandler] = None,
        retry: RetryConfig = DEFAULT_BACKOFF,
        max_concurrency: int = 8,
    ):
        self.kind = kind
        self.impl = impl
        self.store = store
        self.selector = selector
        self.recorder = recorder
        self.error_handler = error_handler or get_error_handler()
        self.retry = retry
        self.max_concurrency = max_concurrency

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            obj = self.store.get(self.kind, request)
        except NotFoundError:
            logger.debug(f"{self.kind} {request} not found, nothing to do")
            return Result()

        try:
            obj.validate()
        except MalformedSpecError as e:
            self.error_handler.handle_error(ErrorContext(
                category=ErrorCategory.MALFORMED_SPEC,
                severity=ErrorSeverity.HIGH,
                message=f"invalid spec: {e}",
                exception=e,
                component=self.kind,
                object_key=str(request),
            ))
            if self.recorder:
                self.recorder.event(obj, EventType.WARNING, "InvalidSpec", str(e))
            raise

        should_update = False
        desired = obj.status.desired_phase
        records = obj.status.records

        if records is None and not obj.is_deleted():
            # Membership is frozen once populated; pods matching later are not picked up
            records = self.select_records(obj)
            if records:
                should_update = True
            else:
                records = None

        if records:
            changed = self.drive_records(obj, records, desired)
            should_update = should_update or changed

        if should_update:
            self.persist_records(request, records)

        return Result()

    def select_records(self, obj: Experiment) -> List[Record]:
        """Resolve every selector into NotInjected records, skipping selectors that fail"""
        records = []
        seen = set()
        for selector_key, pod_selector in sorted(obj.get_selector_specs().items()):
            try:
                targets = self.selector.select(pod_selector)
            except (SelectorError, StoreError) as e:
                self.error_handler.handle_error(ErrorContext(
                    category=ErrorCategory.SELECTOR_RESOLUTION,
                    severity=ErrorSeverity.MEDIUM,
                    message=f"failed to select targets for selector {selector_key}: {e}",
                    exception=e,
                    component=self.kind,
                    object_key=str(obj.key()),
                ))
                continue

            for target in targets:
                if (target.id, selector_key) in seen:
                    continue
                seen.add((target.id, selector_key))
                records.append(Record(id=target.id, selector_key=selector_key, phase=RecordPhase.NOT_INJECTED))

        logger.info(f"{self.kind} {obj.key()} selected {len(records)} records")
        return records

    def drive_records(self, obj: Experiment, records: List[Record], desired: Optional[DesiredPhase]) -> bool:
        """
        Apply or recover every record that disagrees with the desired phase.

        Actions run concurrently; each failure is logged against its record and
        leaves that record's phase unchanged. Returns whether any action ran.
        """
        planned: Dict[int, str] = {}
        for index, record in enumerate(records):
            action = planned_action(desired, record.phase)
            if action is not None:
                planned[index] = action

        if not planned:
            return False

        # Implementations read the record list, they never see in-flight phase changes
        snapshot = copy.deepcopy(records)
        results: Dict[int, Tuple[Optional[RecordPhase], RecordLogBuffer]] = {}

        def run(index: int, action: str) -> Tuple[Optional[RecordPhase], RecordLogBuffer]:
            buffer = RecordLogBuffer(f"{index}: {records[index].id}")
            buffer.info(f"{action} {self.kind} {obj.key()} on {records[index].id}")
            try:
                if action == APPLY:
                    phase = self.impl.apply(index, snapshot, obj)
                else:
                    phase = self.impl.recover(index, snapshot, obj)
                buffer.info(f"{action} succeeded, phase {phase.value}")
                return phase, buffer
            except Exception as e:
                buffer.error(f"{action} failed: {e}")
                self.error_handler.handle_error(ErrorContext(
                    category=ErrorCategory.CHAOS_ACTION,
                    severity=ErrorSeverity.MEDIUM,
                    message=f"failed to {action} chaos: {e}",
                    exception=e,
                    component=self.kind,
                    object_key=str(obj.key()),
                    record_id=records[index].id,
                ))
                return None, buffer

        workers = max(1, min(self.max_concurrency, len(planned)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{self.kind}-records") as executor:
            futures = {executor.submit(run, index, action): index for index, action in planned.items()}
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        for index in sorted(results):
            phase, buffer = results[index]
            if phase is not None:
                records[index].phase = phase
            buffer.flush()

        if self.recorder:
            failed = [records[i].id for i, (phase, _) in results.items() if phase is None]
            if failed:
                self.recorder.event(obj, EventType.WARNING, "Failed",
                                    f"failed to {obj.describe_action()} on {len(failed)} records: {', '.join(failed)}")
        return True

    def persist_records(self, request: NamespacedName, records: List[Record]):
        """Write the record list onto the latest copy of the experiment"""

        def update():
            latest = self.store.get(self.kind, request)
            latest.status.records = copy.deepcopy(records)
            return self.store.update_status(latest)

        try:
            retry_on_conflict(update, self.retry, f"update records of {self.kind} {request}")
        except NotFoundError:
            logger.info(f"{self.kind} {request} deleted while updating records")
        except StoreError as e:
            self.error_handler.handle_error(ErrorContext(
                category=ErrorCategory.STATUS_UPDATE,
                severity=ErrorSeverity.HIGH,
                message=f"failed to update records: {e}",
                exception=e,
                component=self.kind,
                object_key=str(request),
            ))
