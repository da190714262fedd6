"""
Workflow Engine - Expands workflows into nodes and drives each node to completion

Components:
- WorkflowEntryReconciler: Spawns the entry node and mirrors its outcome on the workflow
- ParallelNodeReconciler / SerialNodeReconciler: Diff declared tasks against children
- SuspendNodeReconciler / ChaosNodeReconciler: Leaf nodes bounded by their deadline
- WorkflowNodeDispatcher: Routes a node to the reconciler for its type
"""
from .chaos_node import ChaosNodeReconciler
from .children import (
    ChildrenNodesFetcher, delete_node_tree, get_task_name_from_generated_name, relative_complement, task_name_of
)
from .collection import CollectionNodeReconciler, ParallelNodeReconciler, SerialNodeReconciler
from .conditions import condition_equals, get_condition, node_finished, set_condition
from .dispatch import WorkflowNodeDispatcher
from .entry import WorkflowEntryReconciler, list_entry_nodes
from .node import NodePhase, infer_phase
from .render import generate_node_name, render_nodes_by_templates
from .suspend import SuspendNodeReconciler

__all__ = [
    'ChaosNodeReconciler',
    'ChildrenNodesFetcher',
    'CollectionNodeReconciler',
    'NodePhase',
    'ParallelNodeReconciler',
    'SerialNodeReconciler',
    'SuspendNodeReconciler',
    'WorkflowEntryReconciler',
    'WorkflowNodeDispatcher',
    'condition_equals',
    'delete_node_tree',
    'generate_node_name',
    'get_condition',
    'get_task_name_from_generated_name',
    'infer_phase',
    'list_entry_nodes',
    'node_finished',
    'relative_complement',
    'render_nodes_by_templates',
    'set_condition',
    'task_name_of',
]
