"""
Node rendering - Turns workflow templates into WorkflowNode objects
"""
import copy
import random
from datetime import datetime
from typing import List, Optional

from ...errors import NoSuchTemplateError, TemplatesRequiredError
from ...models import (
    LABEL_CONTROLLED_BY, LABEL_WORKFLOW, ObjectMeta, Workflow, WorkflowNode, WorkflowNodeSpec
)
from ...utils.clock import utc_now
from ...utils.parsing import parse_duration

# Same alphabet the cluster API uses for generated names
_SUFFIX_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_SUFFIX_LENGTH = 5


def generate_node_name(template_name: str, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    suffix = ''.join(rng.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{template_name}-{suffix}"


def render_nodes_by_templates(workflow: Workflow, parent: Optional[WorkflowNode], *tasks: str,
                              now: Optional[datetime] = None,
                              rng: Optional[random.Random] = None) -> List[WorkflowNode]:
    """
    Build one unsaved node per task name.

    Each node is labelled with its workflow and, below the entry node, with
    the parent that controls it. A template deadline becomes an absolute
    deadline counted from now.
    """
    if not workflow.spec.templates:
        raise TemplatesRequiredError()

    now = now or utc_now()
    nodes = []
    for task in tasks:
        template = workflow.spec.find_template(task)
        if template is None:
            raise NoSuchTemplateError(task)

        labels = {LABEL_WORKFLOW: workflow.meta.name}
        if parent is not None:
            labels[LABEL_CONTROLLED_BY] = parent.meta.name

        deadline = None
        if template.deadline:
            deadline = now + parse_duration(template.deadline)

        nodes.append(WorkflowNode(
            meta=ObjectMeta(
                name=generate_node_name(template.name, rng),
                namespace=workflow.meta.namespace,
                labels=labels,
            ),
            spec=WorkflowNodeSpec(
                template_name=template.name,
                workflow_name=workflow.meta.name,
                type=template.type,
                start_time=now,
                deadline=deadline,
                tasks=list(template.tasks),
                originating_task=task,
                parent_node=parent.meta.name if parent is not None else None,
                embed_chaos=copy.deepcopy(template.embed_chaos),
            ),
        ))
    return nodes
