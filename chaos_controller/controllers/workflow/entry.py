"""
Workflow Entry Reconciler - Starts a workflow and mirrors its entry node

Spawns the entry node on the first pass, marks the workflow Scheduled, and
once the entry node finishes marks the workflow Accomplished with an end
time.
"""
import logging
from typing import Callable, List, Optional

from ...errors import NotFoundError, StoreError, WorkflowError
from ...interfaces import IEventRecorder, IObjectStore, IReconciler
from ...models import (
    LABEL_WORKFLOW, Condition, ConditionStatus, ConditionType, EventType, NamespacedName, Result,
    Workflow, WorkflowNode
)
from ...utils.clock import utc_now
from ..error_handler import DEFAULT_RETRY, RetryConfig, retry_on_conflict
from .conditions import node_finished, set_condition
from .render import render_nodes_by_templates

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


def list_entry_nodes(store: IObjectStore, workflow: Workflow) -> List[WorkflowNode]:
    nodes = store.list(
        WorkflowNode.kind,
        namespace=workflow.meta.namespace,
        labels={LABEL_WORKFLOW: workflow.meta.name},
    )
    return [node for node in nodes if node.spec.parent_node is None]


class WorkflowEntryReconciler(IReconciler):

    def __init__(self, store: IObjectStore, recorder: Optional[IEventRecorder] = None,
                 clock: Callable = utc_now, retry: RetryConfig = DEFAULT_RETRY):
        self.store = store
        self.recorder = recorder
        self.clock = clock
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            workflow = self.store.get(Workflow.kind, request)
        except NotFoundError:
            return Result()

        entry_nodes = list_entry_nodes(self.store, workflow)
        if not entry_nodes:
            try:
                nodes = render_nodes_by_templates(workflow, None, workflow.spec.entry, now=self.clock())
            except WorkflowError as e:
                logger.error(f"Cannot start workflow {request}: {e}")
                if self.recorder:
                    self.recorder.event(workflow, EventType.WARNING, "InvalidEntry", str(e))
                return Result()

            entry = self.store.create(nodes[0])
            logger.info(f"Workflow {request} started with entry node {entry.meta.name}")
            if self.recorder:
                self.recorder.event(workflow, EventType.NORMAL, "EntryCreated", f"entry node {entry.meta.name} created")
        else:
            entry = entry_nodes[0]

        self.update_status(request, entry)
        return Result()

    def update_status(self, request: NamespacedName, entry: WorkflowNode):
        now = self.clock()

        def update():
            latest = self.store.get(Workflow.kind, request)
            status = latest.status
            status.entry_node = entry.meta.name
            if status.start_time is None:
                status.start_time = now
            set_condition(status.conditions, Condition(
                ConditionType.SCHEDULED, ConditionStatus.TRUE, "entry node created"))

            if node_finished(entry):
                set_condition(status.conditions, Condition(
                    ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "entry node finished"))
                if status.end_time is None:
                    status.end_time = now
            else:
                set_condition(status.conditions, Condition(ConditionType.ACCOMPLISHED, ConditionStatus.FALSE, ""))
            return self.store.update_status(latest)

        try:
            retry_on_conflict(update, self.retry, f"update status of workflow {request}")
        except NotFoundError:
            logger.info(f"Workflow {request} deleted while updating status")
        except StoreError as e:
            logger.error(f"Failed to update status of workflow {request}: {e}")
            raise
