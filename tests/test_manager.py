"""
Tests for the work queue and the controller manager
"""
import pytest
from unittest.mock import Mock

from chaos_controller.manager import ControllerManager, WorkQueue
from chaos_controller.models import NamespacedName, Result

KEY = NamespacedName("default", "web-delay")


class Ticker:
    """Monotonic clock that only moves when told to"""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def queue(ticker):
    return WorkQueue(base_delay=1.0, max_delay=4.0, clock=ticker)


class TestWorkQueue:
    """Test de-duplication, delays and rate limiting"""

    def test_duplicate_adds_collapse(self, queue):
        queue.add("a")
        queue.add("a")
        queue.add("b")

        assert queue.ready() == 2
        assert queue.get(timeout=0) == "a"
        assert queue.get(timeout=0) == "b"
        assert queue.get(timeout=0) is None

    def test_key_added_while_processing_is_requeued_after_done(self, queue):
        queue.add("a")
        assert queue.get(timeout=0) == "a"

        queue.add("a")
        assert queue.ready() == 0

        queue.done("a")
        assert queue.ready() == 1
        assert queue.get(timeout=0) == "a"

    def test_add_after(self, queue, ticker):
        queue.add_after("a", 5)

        assert queue.get(timeout=0) is None
        assert queue.next_delay() == 5

        ticker.now = 5
        assert queue.get(timeout=0) == "a"
        assert queue.next_delay() is None

    def test_add_after_keeps_earliest_deadline(self, queue, ticker):
        queue.add_after("a", 5)
        queue.add_after("a", 8)
        queue.add_after("a", 5)

        assert len(queue._delayed) == 1
        assert queue.next_delay() == 5

        queue.add_after("a", 2)
        assert queue.next_delay() == 2

        ticker.now = 2
        assert queue.get(timeout=0) == "a"
        queue.done("a")
        assert queue.next_delay() is None

        ticker.now = 5
        assert queue.get(timeout=0) is None

    def test_non_positive_delay_adds_now(self, queue):
        queue.add_after("a", 0)

        assert queue.ready() == 1

    def test_rate_limited_backoff(self, queue):
        delays = [queue.add_rate_limited("a") for _ in range(4)]

        assert delays == [1.0, 2.0, 4.0, 4.0]
        assert queue.num_requeues("a") == 4

        queue.forget("a")
        assert queue.num_requeues("a") == 0

    def test_shut_down(self, queue):
        queue.add("a")
        queue.shut_down()
        queue.add("b")

        assert queue.get(timeout=0) == "a"
        assert queue.get() is None


class TestControllerManager:
    """Test registration, event routing and single passes"""

    @pytest.fixture
    def manager(self, store):
        return ControllerManager(store, workers=1, base_delay=10.0, max_delay=60.0)

    def test_duplicate_registration(self, manager):
        manager.register("chaos", "NetworkChaos", Mock())

        with pytest.raises(ValueError):
            manager.register("chaos", "PodChaos", Mock())

    def test_watched_kinds(self, manager):
        manager.register("b", "WorkflowNode", Mock())
        manager.register("a", "NetworkChaos", Mock())
        manager.add_owner_mapping("PodChaos", lambda obj: [])

        assert manager.watched_kinds() == ["NetworkChaos", "PodChaos", "WorkflowNode"]

    def test_events_reach_watchers_and_owners(self, manager, store, delay_experiment):
        manager.register("records", "NetworkChaos", Mock())
        manager.register("schedule", "Schedule", Mock())
        owner = NamespacedName("default", "nightly")
        manager.add_owner_mapping("NetworkChaos", lambda obj: [("Schedule", owner)])
        manager.subscribe()

        store.create(delay_experiment())

        keys = {manager.queue.get(timeout=0), manager.queue.get(timeout=0)}
        assert keys == {("records", KEY), ("schedule", owner)}

    def test_enqueue_all(self, manager, store, delay_experiment):
        manager.register("records", "NetworkChaos", Mock())
        store.create(delay_experiment())
        store.create(delay_experiment("other"))

        manager.enqueue_all()

        assert manager.queue.ready() == 2

    def test_failed_pass_is_rate_limited(self, manager):
        reconciler = Mock()
        reconciler.reconcile.side_effect = RuntimeError("boom")
        manager.register("records", "NetworkChaos", reconciler)
        manager.enqueue("NetworkChaos", KEY)

        assert manager.process_next(timeout=0)

        assert manager.queue.num_requeues(("records", KEY)) == 1
        assert manager.queue.ready() == 0
        assert manager.queue.next_delay() > 0

    def test_requeue_after_resets_failures(self, manager):
        reconciler = Mock()
        reconciler.reconcile.side_effect = [RuntimeError("boom"), Result(requeue_after=30.0)]
        manager.register("records", "NetworkChaos", reconciler)
        manager.enqueue("NetworkChaos", KEY)
        manager.process_next(timeout=0)

        manager.enqueue("NetworkChaos", KEY)
        manager.process_next(timeout=0)

        assert manager.queue.num_requeues(("records", KEY)) == 0

    def test_requeue_flag(self, manager):
        reconciler = Mock()
        reconciler.reconcile.return_value = Result(requeue=True)
        manager.register("records", "NetworkChaos", reconciler)
        manager.enqueue("NetworkChaos", KEY)

        manager.process_next(timeout=0)

        assert manager.queue.num_requeues(("records", KEY)) == 1

    def test_empty_queue(self, manager):
        assert manager.process_next(timeout=0) is False

    def test_run_until_idle_skips_distant_requeues(self, manager, store, delay_experiment):
        reconciler = Mock()
        reconciler.reconcile.return_value = Result(requeue_after=120.0)
        manager.register("records", "NetworkChaos", reconciler)
        store.create(delay_experiment())

        passes = manager.run_until_idle(timeout=5, max_wait=1.0)

        assert passes == 1
        reconciler.reconcile.assert_called_once_with(KEY)

    def test_start_and_stop(self, manager, store, delay_experiment):
        reconciler = Mock()
        reconciler.reconcile.return_value = Result()
        manager.register("records", "NetworkChaos", reconciler)
        store.create(delay_experiment())

        manager.start()
        try:
            for _ in range(100):
                if reconciler.reconcile.called:
                    break
                manager.wait(0.05)
        finally:
            manager.stop()

        reconciler.reconcile.assert_called_with(KEY)
        assert manager.wait(0)
