"""
Scheduler Service Tests.

- Query views: running / queued with order / done / errored / stuck
- Removal with and without force
- Lock status
- Job container preparation and coordinator launch
"""

import pytest

from src.infra.config import SchedulerConfig
from src.scheduler import (
    DuplicateJobError,
    EngineError,
    FileExecutionLock,
    InvalidJobIdError,
    Job,
    JobNotFoundError,
    JobViewStatus,
    SchedulerService,
    StoreLeaseLock,
    SubmitOutcome,
)
from src.scheduler.service import build_lock


class TestQueries:

    def test_query_unknown_job(self, service: SchedulerService):
        with pytest.raises(JobNotFoundError):
            service.query("nope")

    def test_query_all_during_run(self, service: SchedulerService, new_process, fake_runner):
        """Scenario: A running, B and C queued behind it."""
        other = new_process()
        seen = {}

        def submit_and_look(handle):
            other.dispatcher.submit("B")
            other.dispatcher.submit("C")
            seen["snapshot"] = service.query_all()
            seen["a"] = service.query("A")
            seen["c"] = service.query("C")

        fake_runner.on("wait", "A", submit_and_look)
        service.schedule("A")

        snapshot = seen["snapshot"]
        assert snapshot.running == "A"
        assert snapshot.queue == ["B", "C"]
        assert snapshot.get("A").status == JobViewStatus.RUNNING
        assert snapshot.get("B").status == JobViewStatus.QUEUED
        assert snapshot.get("B").order == 0
        assert snapshot.get("C").order == 1
        assert seen["a"].status == JobViewStatus.RUNNING
        assert seen["c"].status == JobViewStatus.QUEUED

        final = service.query_all()
        assert final.running is None
        assert final.queue == []
        assert [(v.version, v.status) for v in final.jobs] == [
            ("A", JobViewStatus.DONE),
            ("B", JobViewStatus.DONE),
            ("C", JobViewStatus.DONE),
        ]

    def test_errored_and_stuck_views(self, service: SchedulerService, fake_runner):
        fake_runner.set_output("A", stderr="boom\n", exit_code=1)
        fake_runner.fail_on("wait", "B", EngineError("wait B: gone"))

        service.schedule("A")
        with pytest.raises(EngineError):
            service.schedule("B")

        assert service.query("A").status == JobViewStatus.ERRORED
        assert service.query("A").stderr == "boom\n"
        assert service.query("B").status == JobViewStatus.STUCK

    def test_running_job_without_record_still_reported(self, service: SchedulerService, persistence):
        """A stale marker is ignored unless the slot is actually held."""
        persistence.start_run(Job(version="ghost"))
        persistence.delete_jobs("ghost")
        with pytest.raises(JobNotFoundError):
            service.query("ghost")

        service.lock.try_acquire("ghost")

        assert service.query("ghost").status == JobViewStatus.RUNNING
        assert service.query_all().get("ghost").status == JobViewStatus.RUNNING


class TestRemove:

    def test_remove_queued_job(self, service: SchedulerService, new_process, fake_runner):
        """Scenario: B removed while queued never runs; its container goes too."""
        other = new_process()
        seen = {}

        def submit_and_remove(handle):
            other.dispatcher.submit("B")
            other.dispatcher.submit("C")
            seen["removed"] = service.remove("B")

        fake_runner.on("wait", "A", submit_and_remove)
        service.schedule("A")

        assert seen["removed"] == ["B"]
        assert fake_runner.ran() == ["A", "C"]
        assert ("B", True) in fake_runner.removed
        with pytest.raises(JobNotFoundError):
            service.query("B")

    def test_remove_unknown(self, service: SchedulerService):
        assert service.remove("nope") == []

    def test_remove_running_without_force_keeps_container(self, service: SchedulerService, fake_runner):
        fake_runner.on("wait", "A", lambda handle: service.remove("A"))

        service.schedule("A")

        # Only the executor's teardown after the run
        assert fake_runner.removed == [("A", True)]
        assert service.persistence.get_job("A") is None

    def test_force_remove_running_stops_container(self, service: SchedulerService, fake_runner):
        seen = {}

        def force_remove(handle):
            seen["removed"] = service.remove("A", force=True)
            seen["stopped"] = list(fake_runner.removed)

        fake_runner.on("wait", "A", force_remove)
        service.schedule("A")

        assert seen["removed"] == ["A"]
        assert seen["stopped"] == [("A", True)]
        assert service.persistence.get_job("A") is None
        assert not service.lock.is_held()

    def test_force_remove_running_keeps_draining(self, service: SchedulerService, fake_runner):
        """The killed container answers 404; the owner still runs what is queued."""
        outcomes = []

        def queue_b_then_kill_a(handle):
            second = SchedulerService.create(service.config, runner=fake_runner)
            outcomes.append(second.schedule("B"))
            service.remove("A", force=True)

        fake_runner.on("wait", "A", queue_b_then_kill_a)

        assert service.schedule("A") == SubmitOutcome.COMPLETED

        assert outcomes == [SubmitOutcome.QUEUED]
        assert fake_runner.ran() == ["A", "B"]
        assert service.queue_manager.list_queued() == []
        assert service.query("B").status == JobViewStatus.DONE
        assert service.persistence.get_job("A") is None
        assert not service.lock.is_held()

    def test_remove_all(self, service: SchedulerService, new_process, fake_runner):
        other = new_process()

        def queue_then_clear(handle):
            other.dispatcher.submit("B")
            other.dispatcher.submit("C")
            service.remove_all()

        fake_runner.on("wait", "A", queue_then_clear)
        service.schedule("A")

        assert fake_runner.ran() == ["A"]
        assert service.query_all().jobs == []
        assert fake_runner.pruned == ["bencher=runner"]

    def test_remove_all_force_stops_running(self, service: SchedulerService, fake_runner):
        fake_runner.on("wait", "A", lambda handle: service.remove_all(force=True))

        service.schedule("A")

        assert fake_runner.removed[0] == ("A", True)
        assert service.persistence.list_jobs() == []


class TestLockStatus:

    def test_free(self, service: SchedulerService):
        status = service.lock_status()

        assert status.held is False
        assert status.running is None

    def test_held_while_running(self, service: SchedulerService, new_process, fake_runner):
        other = new_process()
        seen = {}

        def look(handle):
            seen["b"] = service.lock_status()

        fake_runner.on("wait", "A", lambda handle: other.dispatcher.submit("B"))
        fake_runner.on("wait", "B", look)
        service.schedule("A")

        # Holder recorded at acquisition; the running marker tracks the drain
        assert seen["b"].held is True
        assert seen["b"].running == "B"
        assert seen["b"].holder.version == "A"
        assert service.lock_status().held is False


class TestSchedule:

    def test_queued_outcome(self, service: SchedulerService, new_process, fake_runner):
        other = new_process()
        outcomes = []

        def submit_from_second_invocation(handle):
            second = SchedulerService.create(service.config, runner=fake_runner)
            outcomes.append(second.schedule("B"))

        fake_runner.on("wait", "A", submit_from_second_invocation)
        outcomes.append(service.schedule("A"))

        assert outcomes == [SubmitOutcome.QUEUED, SubmitOutcome.COMPLETED]
        assert other.persistence.get_job("B").stdout == "B ok\n"


class TestPrepare:

    def test_job_container_spec(self, service: SchedulerService, config: SchedulerConfig, fake_runner):
        handle = service.prepare("v1", ["go", "test", "-bench", "."], workdir="/pkg/x")

        spec = fake_runner.containers["v1"]
        assert handle.name == "v1"
        assert spec.image == config.runner_image
        assert spec.command == ["go", "test", "-bench", "."]
        assert spec.working_dir == "/bencher/pkg/x"
        assert spec.entrypoint == [""]
        assert spec.env == {"CGO_ENABLED": "0"}
        assert spec.labels == {"bencher": "runner"}
        assert spec.mounts[0].source == str(config.versions_dir / "v1")
        assert spec.mounts[0].target == "/bencher"

    def test_existing_container_is_duplicate(self, service: SchedulerService):
        service.prepare("v1", ["true"])

        with pytest.raises(DuplicateJobError, match="container already exists"):
            service.prepare("v1", ["true"])

    def test_invalid_version(self, service: SchedulerService, fake_runner):
        with pytest.raises(InvalidJobIdError):
            service.prepare("a,b", ["true"])

        assert fake_runner.events == []


class TestLaunch:

    def test_coordinator_spec(self, service: SchedulerService, config: SchedulerConfig, fake_runner):
        fake_runner.name_generator = lambda: "eager_knuth"

        handle = service.launch("v1", debug=False)

        assert handle.name == "bencher_eager_knuth"
        assert fake_runner.pruned == ["bencher=server"]

        spec = fake_runner.containers["bencher_eager_knuth"]
        assert spec.image == config.server_image
        assert spec.command == ["python", "-m", "src", "sched", "v1"]
        assert spec.labels == {"bencher": "server"}
        assert spec.env["BENCHER_SERVER_DIR"] == "/bencher"
        assert [(m.source, m.target) for m in spec.mounts] == [
            ("/var/run/docker.sock", "/var/run/docker.sock"),
            (str(config.server_dir), "/bencher"),
        ]
        assert ("wait", "bencher_eager_knuth") not in fake_runner.events

    def test_debug_waits(self, service: SchedulerService, fake_runner):
        fake_runner.name_generator = lambda: "brave_curie"

        service.launch("v1", debug=True)

        assert ("wait", "bencher_brave_curie") in fake_runner.events

    def test_name_collision_retried(self, service: SchedulerService, fake_runner):
        names = iter(["brave_curie", "brave_curie", "happy_hopper"])
        fake_runner.name_generator = lambda: next(names)

        service.launch("v1")
        handle = service.launch("v2")

        assert handle.name == "bencher_happy_hopper"


class TestWiring:

    def test_build_lock_backends(self, config: SchedulerConfig, persistence):
        assert isinstance(build_lock(config, persistence), FileExecutionLock)

        config.lock_backend = "store"
        assert isinstance(build_lock(config, persistence), StoreLeaseLock)

    def test_close_closes_runner(self, service: SchedulerService, fake_runner):
        service.close()
        assert fake_runner.closed

    def test_store_backend_end_to_end(self, config: SchedulerConfig, fake_runner):
        config.lock_backend = "store"
        service = SchedulerService.create(config, runner=fake_runner)
        seen = {}

        fake_runner.on("wait", "A", lambda handle: seen.setdefault("lock", service.lock_status()))

        assert service.schedule("A") == SubmitOutcome.COMPLETED
        assert seen["lock"].held and seen["lock"].running == "A"
        assert service.lock_status().held is False
        assert service.query("A").status == JobViewStatus.DONE
