"""
Workflow Repository - Read/write facade over workflows and their node topology
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import NotFoundError
from .interfaces import IObjectStore
from .models import (
    LABEL_WORKFLOW, ConditionStatus, ConditionType, NamespacedName, TemplateType, Workflow, WorkflowNode
)
from .controllers.workflow.conditions import condition_equals
from .controllers.workflow.node import NodePhase, infer_phase

logger = logging.getLogger(__name__)

WORKFLOW_RUNNING = "Running"
WORKFLOW_SUCCEED = "Succeed"
WORKFLOW_UNKNOWN = "Unknown"

NODE_RUNNING = "Running"
NODE_SUCCEED = "Succeed"
NODE_FAILED = "Failed"

_NODE_TYPES = {
    TemplateType.SERIAL: "SerialNode",
    TemplateType.PARALLEL: "ParallelNode",
    TemplateType.SUSPEND: "SuspendNode",
    TemplateType.TASK: "TaskNode",
}


@dataclass
class WorkflowSummary:
    namespace: str
    name: str
    entry: str
    created: str = ""
    end_time: str = ""
    status: str = WORKFLOW_UNKNOWN


@dataclass
class TopologyNode:
    name: str
    type: str
    state: str
    template: str
    tasks: List[str] = field(default_factory=list)
    parent: Optional[str] = None


@dataclass
class WorkflowDetail:
    workflow: WorkflowSummary
    nodes: List[TopologyNode] = field(default_factory=list)


def workflow_status(workflow: Workflow) -> str:
    conditions = workflow.status.conditions
    if condition_equals(conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE):
        return WORKFLOW_SUCCEED
    if condition_equals(conditions, ConditionType.SCHEDULED, ConditionStatus.TRUE):
        return WORKFLOW_RUNNING
    return WORKFLOW_UNKNOWN


def node_state(node: WorkflowNode) -> str:
    phase = infer_phase(node)
    if phase == NodePhase.SUCCEED:
        return NODE_SUCCEED
    if phase == NodePhase.FAILED:
        return NODE_FAILED
    return NODE_RUNNING


def convert_workflow(workflow: Workflow) -> WorkflowSummary:
    created = workflow.meta.creation_timestamp
    end_time = workflow.status.end_time
    return WorkflowSummary(
        namespace=workflow.meta.namespace,
        name=workflow.meta.name,
        entry=workflow.spec.entry,
        created=created.isoformat() if created else "",
        end_time=end_time.isoformat() if end_time else "",
        status=workflow_status(workflow),
    )


def convert_node(node: WorkflowNode) -> TopologyNode:
    node_type = _NODE_TYPES.get(node.spec.type, "ChaosNode")
    tasks = []
    if node.spec.type in (TemplateType.SERIAL, TemplateType.PARALLEL):
        tasks = list(node.spec.tasks)
    return TopologyNode(
        name=node.meta.name,
        type=node_type,
        state=node_state(node),
        template=node.spec.template_name,
        tasks=tasks,
        parent=node.spec.parent_node,
    )


class WorkflowRepository:

    def __init__(self, store: IObjectStore, experiment_kinds: Optional[List[str]] = None):
        self.store = store
        self.experiment_kinds = experiment_kinds or []

    def list(self) -> List[WorkflowSummary]:
        return self.list_by_namespace(None)

    def list_by_namespace(self, namespace: Optional[str]) -> List[WorkflowSummary]:
        workflows = self.store.list(Workflow.kind, namespace=namespace)
        workflows.sort(key=lambda workflow: (workflow.meta.namespace, workflow.meta.name))
        return [convert_workflow(workflow) for workflow in workflows]

    def get(self, namespace: str, name: str) -> WorkflowDetail:
        workflow = self.store.get(Workflow.kind, NamespacedName(namespace, name))
        nodes = self.store.list(WorkflowNode.kind, namespace=namespace, labels={LABEL_WORKFLOW: name})
        nodes.sort(key=lambda node: (node.meta.creation_timestamp is None, node.meta.creation_timestamp,
                                     node.meta.name))
        return WorkflowDetail(
            workflow=convert_workflow(workflow),
            nodes=[convert_node(node) for node in nodes],
        )

    def create(self, workflow: Workflow) -> WorkflowDetail:
        created = self.store.create(workflow)
        logger.info(f"Created workflow {created.key()}")
        return self.get(created.meta.namespace, created.meta.name)

    def update(self, namespace: str, name: str, workflow: Workflow) -> WorkflowDetail:
        """Replace the spec of an existing workflow, keeping its resource version"""
        current = self.store.get(Workflow.kind, NamespacedName(namespace, name))
        workflow.meta.resource_version = current.meta.resource_version
        self.store.update(workflow)
        return self.get(namespace, name)

    def delete(self, namespace: str, name: str):
        """
        Delete a workflow, its nodes and the experiments it created.

        Experiments hold the records finalizer, so each one stays until its
        records are recovered and only then leaves the store.
        """
        try:
            self.store.delete(Workflow.kind, NamespacedName(namespace, name))
        except NotFoundError:
            logger.info(f"Workflow {namespace}/{name} already deleted, sweeping leftovers")
        labels = {LABEL_WORKFLOW: name}

        for node in self.store.list(WorkflowNode.kind, namespace=namespace, labels=labels):
            try:
                self.store.delete(WorkflowNode.kind, node.meta.key())
            except NotFoundError:
                pass

        for kind in self.experiment_kinds:
            for experiment in self.store.list(kind, namespace=namespace, labels=labels):
                if experiment.is_deleted():
                    continue
                try:
                    self.store.delete(kind, experiment.key())
                except NotFoundError:
                    pass
        logger.info(f"Deleted workflow {namespace}/{name}")
