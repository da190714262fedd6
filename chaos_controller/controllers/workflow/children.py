"""
Children bookkeeping for workflow nodes

Children are found by the controlled-by label and split into active and
finished sets. Task names are compared as multisets so a task listed twice
needs two children.
"""
import logging
from collections import Counter
from typing import List, Sequence, Tuple

from ...errors import NotFoundError
from ...interfaces import IObjectStore
from ...models import LABEL_CONTROLLED_BY, NamespacedName, WorkflowNode, is_chaos_template
from .conditions import node_finished

logger = logging.getLogger(__name__)


def get_task_name_from_generated_name(name: str) -> str:
    """Strip the random suffix a rendered node name carries"""
    index = name.rfind('-')
    if index < 0:
        return name
    return name[:index]


def task_name_of(node: WorkflowNode) -> str:
    if node.spec.originating_task:
        return node.spec.originating_task
    return get_task_name_from_generated_name(node.meta.name)


def relative_complement(former: Sequence[str], latter: Sequence[str]) -> List[str]:
    """
    Items of former that latter does not cover, counted with multiplicity.

    Order follows former: relative_complement(["a", "a", "b"], ["a"]) is
    ["a", "b"].
    """
    remaining = Counter(latter)
    result = []
    for item in former:
        if remaining[item] > 0:
            remaining[item] -= 1
        else:
            result.append(item)
    return result


class ChildrenNodesFetcher:
    """Reads the children of a node from the store"""

    def __init__(self, store: IObjectStore):
        self.store = store

    def fetch_children_nodes(self, node: WorkflowNode) -> Tuple[List[WorkflowNode], List[WorkflowNode]]:
        """Return (active, finished), each ordered by creation time"""
        children = self.store.list(
            WorkflowNode.kind,
            namespace=node.meta.namespace,
            labels={LABEL_CONTROLLED_BY: node.meta.name},
        )
        children.sort(key=lambda child: (child.meta.creation_timestamp is None,
                                         child.meta.creation_timestamp, child.meta.name))

        active, finished = [], []
        for child in children:
            if node_finished(child):
                finished.append(child)
            else:
                active.append(child)

        logger.debug(f"Node {node.meta.key()} has {len(active)} active and {len(finished)} finished children")
        return active, finished


def delete_node_tree(store: IObjectStore, node: WorkflowNode) -> None:
    """
    Delete a node with every descendant and the experiment a chaos node owns.

    Experiments keep their records finalizer, so their faults are recovered
    before they leave the store.
    """
    children = store.list(WorkflowNode.kind, namespace=node.meta.namespace,
                          labels={LABEL_CONTROLLED_BY: node.meta.name})
    for child in children:
        delete_node_tree(store, child)

    if is_chaos_template(node.spec.type):
        key = NamespacedName(node.meta.namespace, node.status.chaos_resource or node.meta.name)
        try:
            store.delete(node.spec.type, key)
            logger.info(f"Deleted {node.spec.type} {key} of node {node.meta.key()}")
        except NotFoundError:
            pass

    try:
        store.delete(WorkflowNode.kind, node.meta.key())
    except NotFoundError:
        pass
