"""
Suspend Node Reconciler - Holds a workflow branch until the node's deadline
"""
import logging
from typing import Callable

from ...errors import NotFoundError
from ...interfaces import IObjectStore, IReconciler
from ...models import (
    Condition, ConditionStatus, ConditionType, NamespacedName, Result, TemplateType, WorkflowNode
)
from ...utils.clock import utc_now
from ..error_handler import DEFAULT_RETRY, RetryConfig, retry_on_conflict
from .conditions import node_finished, set_condition

logger = logging.getLogger(__name__)


class SuspendNodeReconciler(IReconciler):

    def __init__(self, store: IObjectStore, clock: Callable = utc_now, retry: RetryConfig = DEFAULT_RETRY):
        self.store = store
        self.clock = clock
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            node = self.store.get(WorkflowNode.kind, request)
        except NotFoundError:
            return Result()

        if node.spec.type != TemplateType.SUSPEND or node_finished(node):
            return Result()

        now = self.clock()
        if node.spec.deadline is not None and now < node.spec.deadline:
            return Result(requeue_after=(node.spec.deadline - now).total_seconds())

        def update():
            latest = self.store.get(WorkflowNode.kind, request)
            set_condition(latest.status.conditions, Condition(
                ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE, "suspend deadline reached"))
            set_condition(latest.status.conditions, Condition(
                ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "suspend finished"))
            return self.store.update_status(latest)

        try:
            retry_on_conflict(update, self.retry, f"finish suspend node {request}")
        except NotFoundError:
            return Result()

        logger.info(f"Suspend node {request} finished")
        return Result()
