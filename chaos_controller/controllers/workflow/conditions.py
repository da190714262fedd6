"""Condition helpers for workflow and workflow node status"""
from typing import List, Optional

from ...models import Condition, ConditionStatus, ConditionType, WorkflowNode


def get_condition(conditions: List[Condition], condition_type: ConditionType) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(conditions: List[Condition], condition: Condition) -> None:
    """Replace the condition of the same type in place, or append it"""
    for index, existing in enumerate(conditions):
        if existing.type == condition.type:
            conditions[index] = condition
            return
    conditions.append(condition)


def condition_equals(conditions: List[Condition], condition_type: ConditionType,
                     status: ConditionStatus) -> bool:
    condition = get_condition(conditions, condition_type)
    return condition is not None and condition.status == status


def node_finished(node: WorkflowNode) -> bool:
    """A node is finished once it is accomplished or has run past its deadline"""
    conditions = node.status.conditions
    return (condition_equals(conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)
            or condition_equals(conditions, ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE))
