"""
Tests for the workflow engine: node bookkeeping, rendering and the per-type node reconcilers
"""
import pytest
import random
from unittest.mock import Mock, patch

from chaos_controller.controllers.workflow import (
    ChaosNodeReconciler, ChildrenNodesFetcher, NodePhase, ParallelNodeReconciler, SerialNodeReconciler,
    SuspendNodeReconciler, WorkflowEntryReconciler, WorkflowNodeDispatcher, condition_equals,
    generate_node_name, get_condition, get_task_name_from_generated_name, infer_phase, list_entry_nodes,
    node_finished, relative_complement, render_nodes_by_templates, set_condition, task_name_of
)
from chaos_controller.controllers import ErrorCategory
from chaos_controller.errors import NoSuchTemplateError, StoreError, TemplatesRequiredError, UnsupportedNodeTypeError
from chaos_controller.models import (
    LABEL_CONTROLLED_BY, LABEL_WORKFLOW, PAUSE_ANNOTATION_KEY, Condition, ConditionStatus, ConditionType,
    EventType, NamespacedName, ObjectMeta, Record, RecordPhase, Result, TemplateType, Workflow, WorkflowNode,
    WorkflowNodeSpec, WorkflowSpec
)

WORKFLOW_KEY = NamespacedName("default", "web-then-db")
ACCOMPLISHED = Condition(ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "done")


def node(name, node_type=TemplateType.PARALLEL, tasks=(), originating_task=None):
    return WorkflowNode(
        meta=ObjectMeta(name=name, namespace="default"),
        spec=WorkflowNodeSpec(template_name=name, workflow_name="web-then-db", type=node_type,
                              tasks=list(tasks), originating_task=originating_task),
    )


def finish(store, key):
    latest = store.get(WorkflowNode.kind, key)
    set_condition(latest.status.conditions, ACCOMPLISHED)
    store.update_status(latest)


def children_of(store, parent):
    return store.list(WorkflowNode.kind, namespace="default", labels={LABEL_CONTROLLED_BY: parent.meta.name})


@pytest.fixture
def workflow(store, workflow_builder):
    return store.create(workflow_builder())


@pytest.fixture
def spawn(store, workflow, t0):
    """Create saved nodes rendered from the workflow's templates"""

    def create(parent, *tasks):
        return [store.create(n) for n in render_nodes_by_templates(workflow, parent, *tasks, now=t0)]

    return create


class TestConditions:
    """Test condition helpers"""

    def test_set_replaces_by_type(self):
        conditions = []
        set_condition(conditions, Condition(ConditionType.ACCOMPLISHED, ConditionStatus.FALSE))
        set_condition(conditions, Condition(ConditionType.SCHEDULED, ConditionStatus.TRUE))
        set_condition(conditions, Condition(ConditionType.ACCOMPLISHED, ConditionStatus.TRUE, "done"))

        assert len(conditions) == 2
        assert get_condition(conditions, ConditionType.ACCOMPLISHED).reason == "done"
        assert condition_equals(conditions, ConditionType.SCHEDULED, ConditionStatus.TRUE)
        assert get_condition(conditions, ConditionType.DEADLINE_EXCEED) is None

    def test_node_finished(self):
        accomplished = node("a")
        accomplished.status.conditions = [ACCOMPLISHED]
        timed_out = node("b")
        timed_out.status.conditions = [Condition(ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE)]

        assert node_finished(accomplished)
        assert node_finished(timed_out)
        assert not node_finished(node("c"))


class TestInferPhase:
    """Test phases derived from type and conditions"""

    def test_collection_nodes(self):
        fresh = node("a", TemplateType.SERIAL)
        waiting = node("b", TemplateType.SERIAL)
        waiting.status.conditions = [Condition(ConditionType.ACCOMPLISHED, ConditionStatus.FALSE)]

        assert infer_phase(fresh) == NodePhase.INIT
        assert infer_phase(waiting) == NodePhase.WAITING_FOR_CHILD

    def test_succeeded_and_failed(self):
        done = node("a")
        done.status.conditions = [ACCOMPLISHED]
        late = node("b")
        late.status.conditions = [Condition(ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE)]

        assert infer_phase(done) == NodePhase.SUCCEED
        assert infer_phase(late) == NodePhase.FAILED

    def test_leaf_nodes(self):
        chaos = node("a", "NetworkChaos")
        assert infer_phase(chaos) == NodePhase.WAITING_FOR_SCHEDULE

        chaos.status.chaos_resource = "a"
        assert infer_phase(chaos) == NodePhase.HOLDING

        chaos.status.conditions = [Condition(ConditionType.CHAOS_INJECTED, ConditionStatus.TRUE)]
        assert infer_phase(chaos) == NodePhase.RUNNING

        assert infer_phase(node("b", TemplateType.SUSPEND)) == NodePhase.HOLDING


class TestChildrenBookkeeping:
    """Test task names, multiset complements and the children fetcher"""

    def test_task_name_from_generated_name(self):
        assert get_task_name_from_generated_name("web-delay-x7k2p") == "web-delay"
        assert get_task_name_from_generated_name("plain") == "plain"

    def test_task_name_prefers_originating_task(self):
        assert task_name_of(node("web-delay-abcde", originating_task="web-delay")) == "web-delay"
        assert task_name_of(node("cool-down-abcde")) == "cool-down"

    @pytest.mark.parametrize("former,latter,expected", [
        (["a", "b", "c"], ["a", "b"], ["c"]),
        (["a", "a", "b"], ["a"], ["a", "b"]),
        (["a"], ["a", "b"], []),
        ([], ["a"], []),
    ])
    def test_relative_complement(self, former, latter, expected):
        assert relative_complement(former, latter) == expected

    def test_fetcher_splits_active_and_finished(self, store, workflow, spawn):
        parent = spawn(None, "fan-out")[0]
        first, second = spawn(parent, "cool-down", "cool-down")
        spawn(None, "cool-down")
        finish(store, second.key())

        active, finished = ChildrenNodesFetcher(store).fetch_children_nodes(parent)

        assert [n.meta.name for n in active] == [first.meta.name]
        assert [n.meta.name for n in finished] == [second.meta.name]


class TestRender:
    """Test rendering templates into nodes"""

    def test_generated_names(self):
        name = generate_node_name("web-delay", random.Random(1))

        assert name.startswith("web-delay-")
        assert len(name) == len("web-delay-") + 5
        assert generate_node_name("x", random.Random(1)) == generate_node_name("x", random.Random(1))

    def test_render_child(self, workflow_builder, t0):
        workflow = workflow_builder()
        parent = node("the-entry-abcde", TemplateType.SERIAL)

        child = render_nodes_by_templates(workflow, parent, "web-delay", now=t0)[0]

        assert child.meta.labels == {LABEL_WORKFLOW: "web-then-db", LABEL_CONTROLLED_BY: "the-entry-abcde"}
        assert child.spec.type == "NetworkChaos"
        assert child.spec.parent_node == "the-entry-abcde"
        assert child.spec.originating_task == "web-delay"
        assert (child.spec.deadline - t0).total_seconds() == 2
        assert child.spec.embed_chaos == workflow.spec.find_template("web-delay").embed_chaos
        assert child.spec.embed_chaos is not workflow.spec.find_template("web-delay").embed_chaos

    def test_render_entry_has_no_parent(self, workflow_builder, t0):
        entry = render_nodes_by_templates(workflow_builder(), None, "the-entry", now=t0)[0]

        assert entry.meta.labels == {LABEL_WORKFLOW: "web-then-db"}
        assert entry.spec.parent_node is None
        assert entry.spec.tasks == ["web-delay", "cool-down", "db-kill"]

    def test_unknown_template(self, workflow_builder):
        with pytest.raises(NoSuchTemplateError):
            render_nodes_by_templates(workflow_builder(), None, "missing")

    def test_no_templates(self):
        workflow = Workflow(meta=ObjectMeta(name="empty"), spec=WorkflowSpec(entry="x"))

        with pytest.raises(TemplatesRequiredError):
            render_nodes_by_templates(workflow, None, "x")


class TestTasksToStart:
    """Test the declared-versus-existing diff of collection nodes"""

    def test_parallel_starts_missing_tasks(self, store):
        parent = node("p", tasks=["a", "b", "c"])
        existing = [node("a-x1"), node("b-x2")]

        assert ParallelNodeReconciler(store).tasks_to_start(parent, existing, []) == (["c"], False)

    def test_parallel_redefined_restarts_everything(self, store):
        parent = node("p", tasks=["a"])

        assert ParallelNodeReconciler(store).tasks_to_start(parent, [node("a-x1")], [node("b-x2")]) == (["a"], True)

    def test_parallel_duplicate_tasks(self, store):
        parent = node("p", tasks=["a", "a"])

        assert ParallelNodeReconciler(store).tasks_to_start(parent, [node("a-x1")], []) == (["a"], False)

    def test_serial_waits_for_active_child(self, store):
        parent = node("s", TemplateType.SERIAL, tasks=["a", "b"])

        assert SerialNodeReconciler(store).tasks_to_start(parent, [node("a-x1")], []) == ([], False)

    def test_serial_starts_next_task(self, store):
        parent = node("s", TemplateType.SERIAL, tasks=["a", "b", "c"])

        assert SerialNodeReconciler(store).tasks_to_start(parent, [], [node("a-x1"), node("b-x2")]) == (["c"], False)

    def test_serial_out_of_order_restarts(self, store):
        parent = node("s", TemplateType.SERIAL, tasks=["a", "b"])

        assert SerialNodeReconciler(store).tasks_to_start(parent, [], [node("b-x1")]) == (["a"], True)

    def test_serial_all_done(self, store):
        parent = node("s", TemplateType.SERIAL, tasks=["a"])

        assert SerialNodeReconciler(store).tasks_to_start(parent, [], [node("a-x1")]) == ([], False)


class TestParallelNodeReconciler:
    """Test parallel nodes against the store"""

    @pytest.fixture
    def reconciler(self, store, recorder, error_handler, clock, fast_retry):
        return ParallelNodeReconciler(store, recorder, error_handler, clock=clock, retry=fast_retry)

    def test_spawns_all_children_then_accomplishes(self, store, recorder, reconciler, spawn):
        parent = spawn(None, "fan-out")[0]

        assert reconciler.reconcile(parent.key()) == Result()

        children = children_of(store, parent)
        assert [task_name_of(c) for c in children] == ["cool-down", "cool-down"]
        status = store.get(WorkflowNode.kind, parent.key()).status
        assert sorted(status.active_children) == sorted(c.meta.name for c in children)
        assert condition_equals(status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.FALSE)
        assert [e.reason for e in recorder.events_for(WorkflowNode.kind, parent.key())] == ["NodesCreated"]

        for child in children:
            finish(store, child.key())
        reconciler.reconcile(parent.key())

        status = store.get(WorkflowNode.kind, parent.key()).status
        assert status.active_children == []
        assert len(status.finished_children) == 2
        assert condition_equals(status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)
        assert len(children_of(store, parent)) == 2

    def test_stray_child_restarts_the_set(self, store, reconciler, spawn):
        parent = spawn(None, "fan-out")[0]
        stray = spawn(parent, "db-kill")[0]

        reconciler.reconcile(parent.key())

        children = children_of(store, parent)
        assert stray.meta.name not in [c.meta.name for c in children]
        assert [task_name_of(c) for c in children] == ["cool-down", "cool-down"]

    def test_stray_child_is_deleted_with_its_subtree(self, store, reconciler, spawn, delay_experiment):
        parent = spawn(None, "fan-out")[0]
        stray = spawn(parent, "the-entry")[0]
        grandchild = spawn(stray, "web-delay")[0]
        store.create(delay_experiment(grandchild.meta.name, meta_labels={LABEL_CONTROLLED_BY: grandchild.meta.name}))

        reconciler.reconcile(parent.key())

        names = [n.meta.name for n in store.list(WorkflowNode.kind)]
        assert stray.meta.name not in names
        assert grandchild.meta.name not in names
        assert store.list("NetworkChaos") == []
        assert [task_name_of(c) for c in children_of(store, parent)] == ["cool-down", "cool-down"]

    def test_partial_child_creation_is_healed(self, store, reconciler, spawn):
        parent = spawn(None, "fan-out")[0]
        create = store.create
        attempts = []

        def create_first_only(obj):
            attempts.append(obj.meta.name)
            if len(attempts) > 1:
                raise StoreError("quota exceeded")
            return create(obj)

        with patch.object(store, 'create', side_effect=create_first_only):
            with pytest.raises(StoreError):
                reconciler.reconcile(parent.key())

        kept = children_of(store, parent)
        assert [c.meta.name for c in kept] == attempts[:1]

        reconciler.reconcile(parent.key())

        children = children_of(store, parent)
        assert [task_name_of(c) for c in children] == ["cool-down", "cool-down"]
        assert attempts[0] in [c.meta.name for c in children]
        status = store.get(WorkflowNode.kind, parent.key()).status
        assert len(status.active_children) == 2

    def test_other_node_types_are_ignored(self, store, reconciler, spawn):
        serial = spawn(None, "the-entry")[0]

        reconciler.reconcile(serial.key())

        assert children_of(store, serial) == []

    def test_child_creation_failure_raises(self, store, reconciler, error_handler, spawn):
        parent = spawn(None, "fan-out")[0]

        with patch.object(store, 'create', side_effect=StoreError("quota exceeded")):
            with pytest.raises(StoreError):
                reconciler.reconcile(parent.key())

        assert error_handler.error_history[-1].category == ErrorCategory.CHILD_CREATION

    def test_missing_node(self, reconciler):
        assert reconciler.reconcile(NamespacedName("default", "gone")) == Result()


class TestSerialNodeReconciler:
    """Test serial nodes against the store"""

    @pytest.fixture
    def reconciler(self, store, recorder, error_handler, clock, fast_retry):
        return SerialNodeReconciler(store, recorder, error_handler, clock=clock, retry=fast_retry)

    def test_runs_tasks_one_at_a_time(self, store, reconciler, spawn):
        entry = spawn(None, "the-entry")[0]

        reconciler.reconcile(entry.key())
        reconciler.reconcile(entry.key())
        children = children_of(store, entry)
        assert [task_name_of(c) for c in children] == ["web-delay"]

        finish(store, children[0].key())
        reconciler.reconcile(entry.key())
        assert sorted(task_name_of(c) for c in children_of(store, entry)) == ["cool-down", "web-delay"]

        for child in children_of(store, entry):
            finish(store, child.key())
        reconciler.reconcile(entry.key())
        for child in children_of(store, entry):
            finish(store, child.key())
        reconciler.reconcile(entry.key())

        status = store.get(WorkflowNode.kind, entry.key()).status
        assert len(children_of(store, entry)) == 3
        assert len(status.finished_children) == 3
        assert condition_equals(status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)


class TestSuspendNodeReconciler:
    """Test suspend nodes"""

    def test_holds_until_deadline(self, store, clock, spawn, fast_retry):
        suspend = spawn(None, "cool-down")[0]
        reconciler = SuspendNodeReconciler(store, clock=clock, retry=fast_retry)

        assert reconciler.reconcile(suspend.key()) == Result(requeue_after=1.0)
        assert not node_finished(store.get(WorkflowNode.kind, suspend.key()))

        clock.advance(1)
        assert reconciler.reconcile(suspend.key()) == Result()

        finished = store.get(WorkflowNode.kind, suspend.key())
        assert condition_equals(finished.status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)
        assert condition_equals(finished.status.conditions, ConditionType.DEADLINE_EXCEED, ConditionStatus.TRUE)
        assert infer_phase(finished) == NodePhase.SUCCEED

    def test_finished_node_is_left_alone(self, store, clock, spawn, fast_retry):
        suspend = spawn(None, "cool-down")[0]
        finish(store, suspend.key())
        version = store.get(WorkflowNode.kind, suspend.key()).meta.resource_version
        clock.advance(5)

        SuspendNodeReconciler(store, clock=clock, retry=fast_retry).reconcile(suspend.key())

        assert store.get(WorkflowNode.kind, suspend.key()).meta.resource_version == version


class TestChaosNodeReconciler:
    """Test chaos nodes and the experiments they own"""

    @pytest.fixture
    def reconciler(self, store, recorder, clock, fast_retry):
        return ChaosNodeReconciler(store, recorder, clock=clock, poll_interval=0.5, retry=fast_retry)

    def test_creates_experiment_and_waits_for_deadline(self, store, recorder, reconciler, spawn):
        chaos = spawn(None, "web-delay")[0]

        assert reconciler.reconcile(chaos.key()) == Result(requeue_after=2.0)

        experiment = store.get("NetworkChaos", chaos.key())
        assert experiment.meta.labels == {LABEL_CONTROLLED_BY: chaos.meta.name, LABEL_WORKFLOW: "web-then-db"}
        assert experiment.spec.delay.latency == "100ms"

        latest = store.get(WorkflowNode.kind, chaos.key())
        assert latest.status.chaos_resource == chaos.meta.name
        assert infer_phase(latest) == NodePhase.RUNNING
        assert [e.reason for e in recorder.events_for(WorkflowNode.kind, chaos.key())] == ["ChaosCreated"]

        # A second pass keeps the same experiment
        reconciler.reconcile(chaos.key())
        assert len(store.list("NetworkChaos")) == 1

    def test_deadline_pauses_recovers_then_finishes(self, store, clock, recorder, reconciler, spawn):
        chaos = spawn(None, "web-delay")[0]
        reconciler.reconcile(chaos.key())
        experiment = store.get("NetworkChaos", chaos.key())
        experiment.status.records = [Record("default/web-0", ".", RecordPhase.INJECTED)]
        store.update_status(experiment)

        clock.advance(2)
        assert reconciler.reconcile(chaos.key()) == Result(requeue_after=0.5)
        assert store.get("NetworkChaos", chaos.key()).meta.annotations[PAUSE_ANNOTATION_KEY] == "true"

        # Still injected: the node waits
        assert reconciler.reconcile(chaos.key()) == Result(requeue_after=0.5)
        assert not node_finished(store.get(WorkflowNode.kind, chaos.key()))

        experiment = store.get("NetworkChaos", chaos.key())
        experiment.status.records[0].phase = RecordPhase.NOT_INJECTED
        store.update_status(experiment)
        assert reconciler.reconcile(chaos.key()) == Result()

        assert store.list("NetworkChaos") == []
        latest = store.get(WorkflowNode.kind, chaos.key())
        assert condition_equals(latest.status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)
        assert condition_equals(latest.status.conditions, ConditionType.CHAOS_INJECTED, ConditionStatus.FALSE)
        assert recorder.events_for(WorkflowNode.kind, chaos.key())[-1].reason == "ChaosFinished"

    def test_non_chaos_nodes_are_ignored(self, store, reconciler, spawn):
        suspend = spawn(None, "cool-down")[0]

        assert reconciler.reconcile(suspend.key()) == Result()
        assert store.get(WorkflowNode.kind, suspend.key()).status.chaos_resource is None


class TestWorkflowEntryReconciler:
    """Test workflow start and completion"""

    @pytest.fixture
    def reconciler(self, store, recorder, clock, fast_retry):
        return WorkflowEntryReconciler(store, recorder, clock=clock, retry=fast_retry)

    def test_creates_entry_once(self, store, recorder, reconciler, workflow, t0):
        reconciler.reconcile(WORKFLOW_KEY)
        reconciler.reconcile(WORKFLOW_KEY)

        entries = list_entry_nodes(store, workflow)
        assert len(entries) == 1
        assert entries[0].spec.template_name == "the-entry"

        status = store.get(Workflow.kind, WORKFLOW_KEY).status
        assert status.entry_node == entries[0].meta.name
        assert status.start_time == t0
        assert status.end_time is None
        assert condition_equals(status.conditions, ConditionType.SCHEDULED, ConditionStatus.TRUE)
        assert condition_equals(status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.FALSE)
        assert [e.reason for e in recorder.events_for(Workflow.kind, WORKFLOW_KEY)] == ["EntryCreated"]

    def test_accomplished_when_entry_finishes(self, store, clock, reconciler, workflow, t0):
        reconciler.reconcile(WORKFLOW_KEY)
        entry = list_entry_nodes(store, workflow)[0]
        finish(store, entry.key())

        clock.advance(30)
        reconciler.reconcile(WORKFLOW_KEY)

        status = store.get(Workflow.kind, WORKFLOW_KEY).status
        assert condition_equals(status.conditions, ConditionType.ACCOMPLISHED, ConditionStatus.TRUE)
        assert (status.end_time - t0).total_seconds() == 30
        assert status.start_time == t0

    def test_invalid_entry(self, store, recorder, reconciler, workflow_builder):
        workflow = store.create(workflow_builder(entry="missing"))

        assert reconciler.reconcile(WORKFLOW_KEY) == Result()

        assert list_entry_nodes(store, workflow) == []
        events = recorder.events_for(Workflow.kind, WORKFLOW_KEY)
        assert events[0].event_type == EventType.WARNING
        assert events[0].reason == "InvalidEntry"


class TestWorkflowNodeDispatcher:
    """Test routing of nodes to reconcilers"""

    @pytest.fixture
    def routes(self):
        return {TemplateType.SERIAL: Mock(), TemplateType.SUSPEND: Mock()}

    @pytest.fixture
    def chaos(self):
        return Mock()

    @pytest.fixture
    def dispatcher(self, store, routes, chaos, recorder):
        return WorkflowNodeDispatcher(store, routes, chaos, recorder)

    def test_routes_by_type(self, dispatcher, routes, chaos, spawn):
        entry, suspend, delay = spawn(None, "the-entry", "cool-down", "web-delay")

        dispatcher.reconcile(entry.key())
        dispatcher.reconcile(suspend.key())
        dispatcher.reconcile(delay.key())

        routes[TemplateType.SERIAL].reconcile.assert_called_once_with(entry.key())
        routes[TemplateType.SUSPEND].reconcile.assert_called_once_with(suspend.key())
        chaos.reconcile.assert_called_once_with(delay.key())

    def test_task_nodes_are_reported(self, store, dispatcher, recorder):
        task = store.create(node("decide-abcde", TemplateType.TASK))

        assert dispatcher.reconcile(task.key()) == Result()

        events = recorder.events_for(WorkflowNode.kind, task.key())
        assert [(e.event_type, e.reason) for e in events] == [(EventType.WARNING, "Unsupported")]

    def test_reconciler_for_unknown_builtin(self, dispatcher):
        with pytest.raises(UnsupportedNodeTypeError):
            dispatcher.reconciler_for(TemplateType.TASK)

    def test_missing_node(self, dispatcher, chaos):
        assert dispatcher.reconcile(NamespacedName("default", "gone")) == Result()
        chaos.reconcile.assert_not_called()
