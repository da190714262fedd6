"""
Collection Node Reconcilers - Serial and parallel workflow nodes

Both variants diff the declared task list against the children that already
exist, spawn or retire children to close the gap, then record which children
are active or finished and whether the node is accomplished.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from ...errors import NotFoundError, StoreError
from ...interfaces import IEventRecorder, IObjectStore, IReconciler
from ...models import (
    Condition, ConditionStatus, ConditionType, EventType, NamespacedName, Result, TemplateType,
    Workflow, WorkflowNode
)
from ...utils.clock import utc_now
from ..error_handler import (
    DEFAULT_RETRY, ErrorCategory, ErrorContext, ErrorHandler, ErrorSeverity, RetryConfig,
    get_error_handler, retry_on_conflict
)
from .children import ChildrenNodesFetcher, delete_node_tree, relative_complement, task_name_of
from .conditions import set_condition
from .render import render_nodes_by_templates

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


class CollectionNodeReconciler(IReconciler, ABC):
    """Shared reconcile loop, subclasses decide which tasks to start"""

    node_type: str = ""

    def __init__(self, store: IObjectStore, recorder: Optional[IEventRecorder] = None,
                 error_handler: Optional[ErrorHandler] = None, clock: Callable = utc_now,
                 retry: RetryConfig = DEFAULT_RETRY):
        self.store = store
        self.recorder = recorder
        self.error_handler = error_handler or get_error_handler()
        self.clock = clock
        self.retry = retry
        self.fetcher = ChildrenNodesFetcher(store)

    @abstractmethod
    def tasks_to_start(self, node: WorkflowNode, active: List[WorkflowNode],
                       finished: List[WorkflowNode]) -> Tuple[List[str], bool]:
        """Return (task names to spawn, whether every existing child must go first)"""
        pass

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            node = self.store.get(WorkflowNode.kind, request)
        except NotFoundError:
            return Result()

        if node.spec.type != self.node_type:
            return Result()

        self.sync_children_nodes(node)
        self.update_status(request)
        return Result()

    def sync_children_nodes(self, node: WorkflowNode):
        if not node.spec.tasks:
            logger.debug(f"{self.node_type} node {node.meta.key()} has no tasks, nothing to spawn")
            return

        active, finished = self.fetcher.fetch_children_nodes(node)
        to_start, redefined = self.tasks_to_start(node, active, finished)

        if redefined:
            logger.info(f"Tasks of {self.node_type} node {node.meta.key()} were redefined, "
                        f"deleting {len(active) + len(finished)} children")
            for child in active + finished:
                try:
                    delete_node_tree(self.store, child)
                except StoreError as e:
                    logger.error(f"Failed to delete child {child.meta.key()} of {node.meta.key()}: {e}")

        if not to_start:
            return

        workflow = self.store.get(Workflow.kind, NamespacedName(node.meta.namespace, node.spec.workflow_name))
        children = render_nodes_by_templates(workflow, node, *to_start, now=self.clock())

        created = []
        for child in children:
            try:
                self.store.create(child)
            except StoreError as e:
                self.error_handler.handle_error(ErrorContext(
                    category=ErrorCategory.CHILD_CREATION,
                    severity=ErrorSeverity.HIGH,
                    message=f"failed to create child {child.meta.name}: {e}",
                    exception=e,
                    component=self.node_type,
                    object_key=str(node.meta.key()),
                ))
                raise
            created.append(child.meta.name)

        logger.info(f"{self.node_type} node {node.meta.key()} spawned children {created}")
        if self.recorder:
            self.recorder.event(node, EventType.NORMAL, "NodesCreated", f"spawned children: {', '.join(created)}")

    def update_status(self, request: NamespacedName):
        """Recount children on the latest node and write the result"""

        def update():
            latest = self.store.get(WorkflowNode.kind, request)
            active, finished = self.fetcher.fetch_children_nodes(latest)
            latest.status.active_children = [child.meta.name for child in active]
            latest.status.finished_children = [child.meta.name for child in finished]

            if len(finished) == len(latest.spec.tasks):
                set_condition(latest.status.conditions, Condition(
                    ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "all children finished"))
            else:
                set_condition(latest.status.conditions, Condition(
                    ConditionType.ACCOMPLISHED, ConditionStatus.FALSE, ""))
            return self.store.update_status(latest)

        try:
            retry_on_conflict(update, self.retry, f"update status of {self.node_type} node {request}")
        except NotFoundError:
            logger.info(f"{self.node_type} node {request} deleted while updating status")


class ParallelNodeReconciler(CollectionNodeReconciler):
    """Spawns every outstanding task at once"""

    node_type = TemplateType.PARALLEL

    def tasks_to_start(self, node, active, finished):
        existing = [task_name_of(child) for child in active + finished]
        tasks = node.spec.tasks

        if relative_complement(existing, tasks):
            return list(tasks), True
        return relative_complement(tasks, existing), False


class SerialNodeReconciler(CollectionNodeReconciler):
    """Spawns one task at a time, in declared order"""

    node_type = TemplateType.SERIAL

    def tasks_to_start(self, node, active, finished):
        existing = [task_name_of(child) for child in active + finished]
        tasks = node.spec.tasks

        if relative_complement(existing, tasks):
            return [tasks[0]], True

        if active:
            return [], False

        done = [task_name_of(child) for child in finished]
        prefix = tasks[:len(done)]
        if relative_complement(done, prefix) or relative_complement(prefix, done):
            return [tasks[0]], True

        if len(done) >= len(tasks):
            return [], False
        return [tasks[len(done)]], False
