"""
Shared fixtures: an in-memory store with a fixed clock and object builders
"""
import pytest
from datetime import datetime, timedelta, timezone

from chaos_controller.chaos_engine import InMemoryFaultExecutor, build_default_registry
from chaos_controller.controllers import ErrorHandler, EventRecorder, RetryConfig
from chaos_controller.models import (
    Container, ContainerSelector, DelaySpec, DesiredPhase, Experiment, ExperimentStatus, NetworkChaosAction,
    NetworkChaosSpec, Node, ObjectMeta, Pod, PodChaosAction, PodChaosSpec, PodSelector, SelectorSpec, Template,
    TemplateType, Workflow, WorkflowSpec
)
from chaos_controller.store import InMemoryObjectStore

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# Retries without sleeping
FAST_RETRY = RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0, exponential_base=1.0, jitter=False)


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryObjectStore(clock=clock)


@pytest.fixture
def executor():
    return InMemoryFaultExecutor()


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def recorder(clock):
    return EventRecorder(clock=clock)


@pytest.fixture
def error_handler():
    return ErrorHandler()


@pytest.fixture
def make_pod(store):
    """Create a pod in the store"""

    def create(name, namespace="default", labels=None, node_name="node-a", phase="Running",
               containers=None, annotations=None, pod_ip=""):
        if containers is None:
            containers = [Container("main", ports=[8080])]
        pod = Pod(
            meta=ObjectMeta(name=name, namespace=namespace, labels=dict(labels or {}),
                            annotations=dict(annotations or {})),
            node_name=node_name,
            phase=phase,
            pod_ip=pod_ip,
            containers=containers,
        )
        return store.create(pod)

    return create


@pytest.fixture
def make_node(store):
    def create(name, labels=None):
        return store.create(Node(meta=ObjectMeta(name=name, namespace="", labels=dict(labels or {}))))

    return create


def network_delay(name="web-delay", labels=None, desired=DesiredPhase.RUNNING, duration=None,
                  annotations=None, meta_labels=None) -> Experiment:
    """Unsaved NetworkChaos delay experiment selecting pods by label"""
    return Experiment(
        kind="NetworkChaos",
        meta=ObjectMeta(name=name, namespace="default", labels=dict(meta_labels or {}),
                        annotations=dict(annotations or {})),
        spec=NetworkChaosSpec(
            selector=PodSelector(selector=SelectorSpec(label_selectors=dict(labels or {"app": "web"}))),
            action=NetworkChaosAction.DELAY,
            delay=DelaySpec(latency="100ms"),
            duration=duration,
        ),
        status=ExperimentStatus(desired_phase=desired),
    )


@pytest.fixture
def delay_experiment():
    return network_delay


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def fast_retry():
    return FAST_RETRY


def web_then_db(name="web-then-db", entry="the-entry") -> Workflow:
    """Unsaved workflow: a serial entry over a delay, a pause and a pod kill, plus a parallel fan-out"""
    return Workflow(
        meta=ObjectMeta(name=name, namespace="default"),
        spec=WorkflowSpec(entry=entry, templates=[
            Template(name="the-entry", type=TemplateType.SERIAL, deadline="10m",
                     tasks=["web-delay", "cool-down", "db-kill"]),
            Template(name="fan-out", type=TemplateType.PARALLEL, tasks=["cool-down", "cool-down"]),
            Template(name="web-delay", type="NetworkChaos", deadline="2s", embed_chaos=NetworkChaosSpec(
                selector=PodSelector(selector=SelectorSpec(label_selectors={"app": "web"})),
                action=NetworkChaosAction.DELAY,
                delay=DelaySpec(latency="100ms"),
            )),
            Template(name="cool-down", type=TemplateType.SUSPEND, deadline="1s"),
            Template(name="db-kill", type="PodChaos", deadline="1s", embed_chaos=PodChaosSpec(
                selector=ContainerSelector(selector=SelectorSpec(label_selectors={"app": "db"})),
                action=PodChaosAction.POD_KILL,
            )),
        ]),
    )


@pytest.fixture
def workflow_builder():
    return web_then_db
