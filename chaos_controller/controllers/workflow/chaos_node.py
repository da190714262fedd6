"""
Chaos Node Reconciler - Runs one experiment for the lifetime of a workflow node

The node creates its experiment from the embedded template, keeps it until
the node deadline (or the experiment's own duration) runs out, pauses it so
every record is recovered, deletes it, and only then reports the node as
accomplished.
"""
import copy
import logging
from typing import Callable, Optional

from ...errors import AlreadyExistsError, NotFoundError
from ...interfaces import IEventRecorder, IObjectStore, IReconciler
from ...models import (
    LABEL_CONTROLLED_BY, LABEL_WORKFLOW, PAUSE_ANNOTATION_KEY, Condition, ConditionStatus, ConditionType,
    EventType, Experiment, NamespacedName, ObjectMeta, Result, WorkflowNode, is_chaos_template
)
from ...utils.clock import utc_now
from ..error_handler import DEFAULT_RETRY, RetryConfig, retry_on_conflict
from .conditions import node_finished, set_condition

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


class ChaosNodeReconciler(IReconciler):

    def __init__(self, store: IObjectStore, recorder: Optional[IEventRecorder] = None,
                 clock: Callable = utc_now, poll_interval: float = 1.0, retry: RetryConfig = DEFAULT_RETRY):
        self.store = store
        self.recorder = recorder
        self.clock = clock
        self.poll_interval = poll_interval
        self.retry = retry

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            node = self.store.get(WorkflowNode.kind, request)
        except NotFoundError:
            return Result()

        if not is_chaos_template(node.spec.type) or node_finished(node):
            return Result()

        kind = node.spec.type
        key = NamespacedName(node.meta.namespace, node.status.chaos_resource or node.meta.name)
        try:
            experiment = self.store.get(kind, key)
        except NotFoundError:
            experiment = None

        now = self.clock()
        deadline = node.spec.deadline
        deadline_reached = deadline is not None and now >= deadline
        experiment_done = experiment is not None and experiment.is_finished(now)

        if not deadline_reached and not experiment_done:
            if node.status.chaos_resource is None:
                self._create_experiment(node)
                self._update_conditions(request, chaos_resource=node.meta.name, conditions=[
                    Condition(ConditionType.CHAOS_INJECTED, ConditionStatus.TRUE, f"{kind} created"),
                ])
            if deadline is None:
                return Result()
            return Result(requeue_after=(deadline - now).total_seconds())

        if experiment is not None:
            if not experiment.is_paused() and not experiment_done:
                self._pause_experiment(kind, key)
                return Result(requeue_after=self.poll_interval)
            if not experiment.all_recovered():
                logger.debug(f"Waiting for {kind} {key} to recover before finishing node {request}")
                return Result(requeue_after=self.poll_interval)
            try:
                self.store.delete(kind, key)
            except NotFoundError:
                pass
            logger.info(f"Deleted {kind} {key} of node {request}")

        conditions = [
            Condition(ConditionType.CHAOS_INJECTED, ConditionStatus.FALSE, "chaos recovered"),
            Condition(ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "chaos finished"),
        ]
        if deadline_reached:
            conditions.append(Condition(ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE, "deadline reached"))
        self._update_conditions(request, conditions=conditions)
        if self.recorder:
            self.recorder.event(node, EventType.NORMAL, "ChaosFinished", f"{kind} {key.name} finished")
        return Result()

    def _create_experiment(self, node: WorkflowNode):
        experiment = Experiment(
            kind=node.spec.type,
            meta=ObjectMeta(
                name=node.meta.name,
                namespace=node.meta.namespace,
                labels={
                    LABEL_CONTROLLED_BY: node.meta.name,
                    LABEL_WORKFLOW: node.spec.workflow_name,
                },
            ),
            spec=copy.deepcopy(node.spec.embed_chaos),
        )
        try:
            self.store.create(experiment)
        except AlreadyExistsError:
            logger.debug(f"{experiment.kind} {experiment.key()} already exists")
            return
        logger.info(f"Created {experiment.kind} {experiment.key()} for node {node.meta.key()}")
        if self.recorder:
            self.recorder.event(node, EventType.NORMAL, "ChaosCreated", f"created {experiment.kind} {node.meta.name}")

    def _pause_experiment(self, kind: str, key: NamespacedName):
        def update():
            latest = self.store.get(kind, key)
            latest.meta.annotations[PAUSE_ANNOTATION_KEY] = "true"
            return self.store.update(latest)

        retry_on_conflict(update, self.retry, f"pause {kind} {key}")
        logger.info(f"Paused {kind} {key} at node deadline")

    def _update_conditions(self, request: NamespacedName, conditions, chaos_resource: Optional[str] = None):
        def update():
            latest = self.store.get(WorkflowNode.kind, request)
            if chaos_resource is not None:
                latest.status.chaos_resource = chaos_resource
            for condition in conditions:
                set_condition(latest.status.conditions, condition)
            return self.store.update_status(latest)

        retry_on_conflict(update, self.retry, f"update status of chaos node {request}")
