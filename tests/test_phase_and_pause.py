"""
Tests for the desired phase reconciler, schedule pausing and event recorders
"""
import pytest
from unittest.mock import MagicMock, Mock, patch

from kubernetes.client.rest import ApiException

from chaos_controller.controllers import (
    ActiveLister, DesiredPhaseReconciler, EventRecorder, KubeEventRecorder, SchedulePauseReconciler,
    compute_desired_phase
)
from chaos_controller.errors import StoreError
from chaos_controller.models import (
    LABEL_CONTROLLED_BY, PAUSE_ANNOTATION_KEY, DesiredPhase, EventType, NamespacedName, ObjectMeta, Record,
    RecordPhase, Result, Schedule, ScheduleSpec
)

KEY = NamespacedName("default", "web-delay")
SCHEDULE_KEY = NamespacedName("default", "nightly")


class TestComputeDesiredPhase:
    """Test the running/stopped decision"""

    def test_running_without_duration(self, delay_experiment, t0):
        assert compute_desired_phase(delay_experiment(), t0) == (DesiredPhase.RUNNING, None)

    def test_paused(self, delay_experiment, t0):
        experiment = delay_experiment(annotations={PAUSE_ANNOTATION_KEY: "true"})

        assert compute_desired_phase(experiment, t0) == (DesiredPhase.STOPPED, None)

    def test_pause_annotation_must_be_true(self, delay_experiment, t0):
        experiment = delay_experiment(annotations={PAUSE_ANNOTATION_KEY: "false"})

        assert compute_desired_phase(experiment, t0)[0] == DesiredPhase.RUNNING

    def test_deleted(self, delay_experiment, t0):
        experiment = delay_experiment()
        experiment.meta.deletion_timestamp = t0

        assert compute_desired_phase(experiment, t0) == (DesiredPhase.STOPPED, None)

    def test_duration_remaining_and_exceeded(self, delay_experiment, t0):
        experiment = delay_experiment(duration="30s")
        experiment.meta.creation_timestamp = t0

        assert compute_desired_phase(experiment, t0) == (DesiredPhase.RUNNING, 30.0)

        experiment.meta.creation_timestamp = t0.replace(minute=59, hour=11)
        assert compute_desired_phase(experiment, t0) == (DesiredPhase.STOPPED, None)


class TestDesiredPhaseReconciler:
    """Test the desired phase write-back"""

    @pytest.fixture
    def reconciler(self, store, recorder, clock, fast_retry):
        return DesiredPhaseReconciler("NetworkChaos", store, recorder, clock=clock, retry=fast_retry)

    def test_sets_running_and_requeues_for_duration(self, store, recorder, reconciler, delay_experiment):
        store.create(delay_experiment(desired=None, duration="1m"))

        assert reconciler.reconcile(KEY) == Result(requeue_after=60.0)

        assert store.get("NetworkChaos", KEY).status.desired_phase == DesiredPhase.RUNNING
        assert [e.reason for e in recorder.events_for("NetworkChaos", KEY)] == ["Started"]

    def test_stops_once_duration_passes(self, store, clock, recorder, reconciler, delay_experiment):
        store.create(delay_experiment(duration="1m"))

        clock.advance(61)
        assert reconciler.reconcile(KEY) == Result()

        assert store.get("NetworkChaos", KEY).status.desired_phase == DesiredPhase.STOPPED
        assert [e.reason for e in recorder.events_for("NetworkChaos", KEY)] == ["Stopped"]

    def test_unchanged_phase_is_not_written(self, store, recorder, reconciler, delay_experiment):
        created = store.create(delay_experiment())

        reconciler.reconcile(KEY)

        assert store.get("NetworkChaos", KEY).meta.resource_version == created.meta.resource_version
        assert recorder.events_for("NetworkChaos", KEY) == []

    def test_pause_stops(self, store, reconciler, delay_experiment):
        store.create(delay_experiment(annotations={PAUSE_ANNOTATION_KEY: "true"}))

        reconciler.reconcile(KEY)

        assert store.get("NetworkChaos", KEY).status.desired_phase == DesiredPhase.STOPPED

    def test_missing(self, reconciler):
        assert reconciler.reconcile(KEY) == Result()

    def test_store_failure_requeues(self, store, reconciler, delay_experiment):
        store.create(delay_experiment(desired=None))

        with patch.object(store, 'update_status', side_effect=StoreError("etcd unavailable")):
            assert reconciler.reconcile(KEY) == Result(requeue=True)


@pytest.fixture
def make_schedule(store):
    def create(paused=False):
        annotations = {PAUSE_ANNOTATION_KEY: "true"} if paused else {}
        return store.create(Schedule(
            meta=ObjectMeta(name="nightly", namespace="default", annotations=annotations),
            spec=ScheduleSpec(schedule="@every 1h", type="NetworkChaos"),
        ))

    return create


def set_schedule_paused(store, paused):
    schedule = store.get(Schedule.kind, SCHEDULE_KEY)
    schedule.meta.annotations[PAUSE_ANNOTATION_KEY] = "true" if paused else "false"
    store.update(schedule)


def job_paused(store, name):
    return store.get("NetworkChaos", NamespacedName("default", name)).is_paused()


class TestActiveLister:
    """Test which jobs count as active"""

    def test_lists_only_live_jobs_of_the_schedule(self, store, clock, make_schedule, delay_experiment, t0):
        schedule = make_schedule()
        owned = {LABEL_CONTROLLED_BY: "nightly"}
        store.create(delay_experiment("job-1", meta_labels=owned))
        store.create(delay_experiment("other", meta_labels={LABEL_CONTROLLED_BY: "hourly"}))

        deleted = delay_experiment("job-2", meta_labels=owned)
        deleted.meta.deletion_timestamp = t0
        store.create(deleted)

        finished = delay_experiment("job-3", meta_labels=owned, duration="1s")
        finished.status.records = [Record("default/web-0", ".", RecordPhase.NOT_INJECTED)]
        store.create(finished)

        clock.advance(5)
        jobs = ActiveLister(store, clock).list_active_jobs(schedule)

        assert [job.meta.name for job in jobs] == ["job-1"]


class TestSchedulePauseReconciler:
    """Test pause propagation from a schedule to its jobs"""

    @pytest.fixture
    def jobs(self, store, delay_experiment):
        for name in ("job-1", "job-2"):
            store.create(delay_experiment(name, meta_labels={LABEL_CONTROLLED_BY: "nightly"}))

    @pytest.fixture
    def reconciler(self, store, clock, recorder, fast_retry):
        return SchedulePauseReconciler(store, ActiveLister(store, clock), recorder, retry=fast_retry)

    def test_pause_and_resume(self, store, reconciler, make_schedule, jobs):
        make_schedule(paused=True)

        reconciler.reconcile(SCHEDULE_KEY)
        assert job_paused(store, "job-1") and job_paused(store, "job-2")

        set_schedule_paused(store, False)
        reconciler.reconcile(SCHEDULE_KEY)
        assert not job_paused(store, "job-1") and not job_paused(store, "job-2")
        annotations = store.get("NetworkChaos", NamespacedName("default", "job-1")).meta.annotations
        assert annotations[PAUSE_ANNOTATION_KEY] == "false"

    def test_jobs_already_in_step_are_untouched(self, store, reconciler, make_schedule, jobs):
        make_schedule(paused=False)
        before = store.get("NetworkChaos", NamespacedName("default", "job-1")).meta.resource_version

        reconciler.reconcile(SCHEDULE_KEY)

        assert store.get("NetworkChaos", NamespacedName("default", "job-1")).meta.resource_version == before

    def test_only_jobs_out_of_step_are_written(self, store, reconciler, make_schedule, delay_experiment):
        owned = {LABEL_CONTROLLED_BY: "nightly"}
        store.create(delay_experiment("job-1", meta_labels=owned, annotations={PAUSE_ANNOTATION_KEY: "true"}))
        store.create(delay_experiment("job-2", meta_labels=owned, annotations={PAUSE_ANNOTATION_KEY: "false"}))
        make_schedule(paused=True)

        with patch.object(store, 'update', wraps=store.update) as update:
            reconciler.reconcile(SCHEDULE_KEY)

        assert update.call_count == 1
        assert update.call_args[0][0].meta.name == "job-2"
        assert job_paused(store, "job-1") and job_paused(store, "job-2")

    def test_missing_schedule(self, reconciler):
        assert reconciler.reconcile(SCHEDULE_KEY) == Result()

    def test_list_failure_emits_warning(self, store, recorder, make_schedule):
        make_schedule(paused=True)
        lister = Mock()
        lister.list_active_jobs.side_effect = StoreError("timeout")
        reconciler = SchedulePauseReconciler(store, lister, recorder)

        assert reconciler.reconcile(SCHEDULE_KEY) == Result()

        events = recorder.events_for(Schedule.kind, SCHEDULE_KEY)
        assert events[0].event_type == EventType.WARNING
        assert events[0].message == "Failed to list active jobs: timeout"

    def test_update_failure_aborts_the_batch(self, store, recorder, reconciler, make_schedule, jobs):
        make_schedule(paused=True)

        with patch.object(store, 'update', side_effect=StoreError("forbidden")) as update:
            reconciler.reconcile(SCHEDULE_KEY)

        assert update.call_count == 1
        events = recorder.events_for(Schedule.kind, SCHEDULE_KEY)
        assert [e.message for e in events] == ["Failed to set pause to true for default/job-1"]


class TestEventRecorders:
    """Test in-memory and cluster event recording"""

    def test_events_are_bounded(self, clock, delay_experiment):
        recorder = EventRecorder(clock=clock, max_events=2)
        experiment = delay_experiment()

        for reason in ("A", "B", "C"):
            recorder.event(experiment, EventType.NORMAL, reason, "")

        assert [e.reason for e in recorder.events] == ["B", "C"]

    def test_kube_recorder_publishes(self, clock, delay_experiment):
        core_api = MagicMock()
        recorder = KubeEventRecorder(core_api=core_api, clock=clock)

        recorder.event(delay_experiment(), EventType.WARNING, "Failed", "boom")

        namespace, body = core_api.create_namespaced_event.call_args[0]
        assert namespace == "default"
        assert body.involved_object.kind == "NetworkChaos"
        assert body.type == "Warning"
        assert body.reason == "Failed"

    def test_kube_recorder_survives_api_errors(self, clock, delay_experiment):
        core_api = MagicMock()
        core_api.create_namespaced_event.side_effect = ApiException(status=403, reason="Forbidden")
        recorder = KubeEventRecorder(core_api=core_api, clock=clock)

        event = recorder.event(delay_experiment(), EventType.NORMAL, "Started", "ok")

        assert event.reason == "Started"
        assert len(recorder.events) == 1
