"""
Workflow node phases

A node's phase is never stored; it is inferred from the node's type and
conditions whenever something needs to report it.
"""
from enum import Enum

from ...models import ConditionStatus, ConditionType, TemplateType, WorkflowNode
from .conditions import condition_equals, get_condition


class NodePhase(Enum):
    INIT = "Init"
    WAITING_FOR_SCHEDULE = "WaitingForSchedule"
    RUNNING = "Running"
    HOLDING = "Holding"
    SUCCEED = "Succeed"
    FAILED = "Failed"
    WAITING_FOR_CHILD = "WaitingForChild"
    EVALUATING = "Evaluating"


def infer_phase(node: WorkflowNode) -> NodePhase:
    conditions = node.status.conditions
    if condition_equals(conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE):
        return NodePhase.SUCCEED

    if condition_equals(conditions, ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE):
        # Chaos and suspend nodes accomplish at their deadline, anything else ran out of time
        return NodePhase.FAILED

    node_type = node.spec.type
    if node_type in (TemplateType.SERIAL, TemplateType.PARALLEL, TemplateType.TASK):
        if get_condition(conditions, ConditionType.ACCOMPLISHED) is None:
            return NodePhase.INIT
        return NodePhase.WAITING_FOR_CHILD

    if node_type == TemplateType.SUSPEND:
        return NodePhase.HOLDING

    if node.status.chaos_resource is None:
        return NodePhase.WAITING_FOR_SCHEDULE
    if condition_equals(conditions, ConditionType.CHAOS_INJECTED, ConditionStatus.TRUE):
        return NodePhase.RUNNING
    return NodePhase.HOLDING
