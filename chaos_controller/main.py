"""
Main entry point for the Chaos Controller
"""
import logging
from typing import Any, Callable, List, Optional

from .chaos_engine import ChaosKindRegistry, InMemoryFaultExecutor, build_default_registry
from .config import ControllerConfig
from .controllers import (
    ActiveLister, DesiredPhaseReconciler, ErrorCategory, EventRecorder, ExperimentReconciler,
    FinalizerReconciler, KubeEventRecorder, RetryConfig, SchedulePauseReconciler, get_error_handler
)
from .controllers.workflow import (
    ChaosNodeReconciler, ParallelNodeReconciler, SerialNodeReconciler, SuspendNodeReconciler,
    WorkflowEntryReconciler, WorkflowNodeDispatcher
)
from .errors import AlreadyExistsError, ChaosControllerError
from .interfaces import IEventRecorder, IFaultExecutor, IObjectStore
from .manager import ControllerManager
from .models import (
    KIND_SCHEDULE, KIND_WORKFLOW, KIND_WORKFLOW_NODE, LABEL_CONTROLLED_BY, LABEL_WORKFLOW, NamespacedName,
    TemplateType
)
from .repository import WorkflowRepository
from .selector import TargetSelector
from .store import InMemoryObjectStore, KubeObjectStore
from .utils.clock import utc_now

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


def workflow_node_owners(node) -> list:
    """A node is owned by its parent node, the entry node by its workflow"""
    if node.spec.parent_node:
        return [(KIND_WORKFLOW_NODE, NamespacedName(node.meta.namespace, node.spec.parent_node))]
    return [(KIND_WORKFLOW, NamespacedName(node.meta.namespace, node.spec.workflow_name))]


def experiment_owners(experiment) -> list:
    """Experiments spawned by a workflow node or a schedule report back to it"""
    owner = experiment.meta.labels.get(LABEL_CONTROLLED_BY)
    if not owner:
        return []
    if LABEL_WORKFLOW in experiment.meta.labels:
        return [(KIND_WORKFLOW_NODE, NamespacedName(experiment.meta.namespace, owner))]
    return [(KIND_SCHEDULE, NamespacedName(experiment.meta.namespace, owner))]


class ChaosControllerManager:
    """Wires the store, chaos kinds, reconcilers and the work queue together"""

    def __init__(self, config: Optional[ControllerConfig] = None, store: Optional[IObjectStore] = None,
                 executor: Optional[IFaultExecutor] = None, registry: Optional[ChaosKindRegistry] = None,
                 recorder: Optional[IEventRecorder] = None, clock: Callable = utc_now):
        """
        Without an explicit store the config decides: an in-memory store for
        local runs, the cluster otherwise. Faults are recorded by the
        in-memory executor unless another executor is supplied.
        """
        self.config = config or ControllerConfig()
        self.registry = registry or build_default_registry()
        self.clock = clock
        self.error_handler = get_error_handler()

        if store is None:
            if self.config.local:
                store = InMemoryObjectStore(clock=clock)
            else:
                store = KubeObjectStore(self.registry, kube_context=self.config.kube_context,
                                        in_cluster=self.config.in_cluster)
        self.store = store
        self.executor = executor or InMemoryFaultExecutor()

        if recorder is None:
            if isinstance(store, KubeObjectStore):
                recorder = KubeEventRecorder(core_api=store.core_api, clock=clock)
            else:
                recorder = EventRecorder(clock=clock)
        self.recorder = recorder

        self.selector = TargetSelector(store, self.config)
        self.retry = RetryConfig(
            max_attempts=self.config.conflict_retry_attempts,
            initial_delay=self.config.conflict_retry_delay,
            max_delay=1.0,
            exponential_base=1.0,
        )
        self.manager = ControllerManager(
            store,
            workers=self.config.workers,
            resync_period=self.config.resync_period,
            base_delay=self.config.queue_base_delay,
            max_delay=self.config.queue_max_delay,
        )
        self.repository = WorkflowRepository(store, experiment_kinds=self.registry.kinds())
        self._setup_controllers()

    def _setup_controllers(self):
        for kind in self.registry.kinds():
            impl = self.registry.get(kind).build_impl(self.store, self.executor)
            self.manager.register(f"{kind}/desired-phase", kind, DesiredPhaseReconciler(
                kind, self.store, self.recorder, clock=self.clock, retry=self.retry))
            self.manager.register(f"{kind}/records", kind, ExperimentReconciler(
                kind, impl, self.store, self.selector, self.recorder,
                error_handler=self.error_handler, max_concurrency=self.config.max_concurrency))
            self.manager.register(f"{kind}/finalizer", kind, FinalizerReconciler(
                kind, self.store, self.recorder, retry=self.retry))
            self.manager.add_owner_mapping(kind, experiment_owners)

        self.manager.register("schedule/pause", KIND_SCHEDULE, SchedulePauseReconciler(
            self.store, ActiveLister(self.store, clock=self.clock), self.recorder))

        self.manager.register("workflow/entry", KIND_WORKFLOW, WorkflowEntryReconciler(
            self.store, self.recorder, clock=self.clock, retry=self.retry))

        collection_args = dict(recorder=self.recorder, error_handler=self.error_handler,
                               clock=self.clock, retry=self.retry)
        dispatcher = WorkflowNodeDispatcher(
            self.store,
            {
                TemplateType.SERIAL: SerialNodeReconciler(self.store, **collection_args),
                TemplateType.PARALLEL: ParallelNodeReconciler(self.store, **collection_args),
                TemplateType.SUSPEND: SuspendNodeReconciler(self.store, clock=self.clock, retry=self.retry),
            },
            ChaosNodeReconciler(self.store, self.recorder, clock=self.clock,
                                poll_interval=self.config.chaos_node_poll_interval, retry=self.retry),
            recorder=self.recorder,
        )
        self.manager.register("workflow/node", KIND_WORKFLOW_NODE, dispatcher)
        self.manager.add_owner_mapping(KIND_WORKFLOW_NODE, workflow_node_owners)

    def check_connectivity(self) -> bool:
        """Make sure the store answers before any worker starts"""
        success, _ = self.error_handler.retry_with_backoff(
            lambda: self.store.list(KIND_WORKFLOW),
            RetryConfig(max_attempts=3, initial_delay=1.0),
            ErrorCategory.CONFIGURATION,
            operation_name="object store connectivity check",
        )
        return success

    def apply_objects(self, objects: List[Any]) -> List[Any]:
        """Create each object, or update it in place when it already exists"""
        applied = []
        for obj in objects:
            try:
                applied.append(self.store.create(obj))
            except AlreadyExistsError:
                current = self.store.get(obj.kind, obj.meta.key())
                obj.meta.resource_version = current.meta.resource_version
                if not obj.meta.finalizers:
                    obj.meta.finalizers = list(current.meta.finalizers)
                applied.append(self.store.update(obj))
            logger.info(f"Applied {obj.kind} {obj.meta.key()}")
        return applied

    def run_once(self, timeout: float = 30.0, max_wait: Optional[float] = None) -> int:
        """Reconcile on the calling thread until nothing is left to do"""
        return self.manager.run_until_idle(timeout=timeout, max_wait=max_wait)

    def start(self):
        if not self.check_connectivity():
            raise ChaosControllerError("object store is not reachable")
        if isinstance(self.store, KubeObjectStore):
            self.store.start_watches(self.manager.watched_kinds())
        self.manager.start()

    def stop(self):
        self.manager.stop()
        if isinstance(self.store, KubeObjectStore):
            self.store.stop_watches()
