"""
Workflow Node Dispatcher - Routes each workflow node to the reconciler of its type
"""
import logging
from typing import Dict, Optional

from ...errors import NotFoundError, UnsupportedNodeTypeError
from ...interfaces import IEventRecorder, IObjectStore, IReconciler
from ...models import EventType, NamespacedName, Result, WorkflowNode, is_chaos_template

logger = logging.getLogger(__name__)


class WorkflowNodeDispatcher(IReconciler):
    """
    Routes by node type. Chaos node types go to the chaos reconciler; a type
    with no reconciler (Task nodes among them) is reported once per pass and
    left alone.
    """

    def __init__(self, store: IObjectStore, reconcilers: Dict[str, IReconciler],
                 chaos_reconciler: IReconciler, recorder: Optional[IEventRecorder] = None):
        self.store = store
        self.reconcilers = reconcilers
        self.chaos_reconciler = chaos_reconciler
        self.recorder = recorder

    def reconciler_for(self, node_type: str) -> IReconciler:
        if node_type in self.reconcilers:
            return self.reconcilers[node_type]
        if is_chaos_template(node_type):
            return self.chaos_reconciler
        raise UnsupportedNodeTypeError(node_type)

    def reconcile(self, request: NamespacedName) -> Result:
        try:
            node = self.store.get(WorkflowNode.kind, request)
        except NotFoundError:
            return Result()

        try:
            reconciler = self.reconciler_for(node.spec.type)
        except UnsupportedNodeTypeError as e:
            logger.warning(f"Node {request}: {e}")
            if self.recorder:
                self.recorder.event(node, EventType.WARNING, "Unsupported", str(e))
            return Result()

        return reconciler.reconcile(request)
