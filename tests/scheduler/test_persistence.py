"""
Job Store Tests.

- Job collection: upsert, delete subset, bulk clear
- Queue: FIFO, peek-then-pop, duplicates, removal from the middle
- Running marker and lease rows
- Durability across store instances
"""

import threading

import pytest

from src.scheduler import (
    DuplicateJobError,
    Job,
    JobStore,
    LockHolder,
    QueueOrderError,
    StoreError,
)


class TestJobCollection:
    """id -> Job mapping."""

    def test_get_missing_job_returns_none(self, persistence: JobStore):
        assert persistence.get_job("nope") is None

    def test_save_is_an_upsert(self, persistence: JobStore):
        persistence.save_job(Job(version="v1"))
        persistence.save_job(Job(version="v1", stdout="done\n"))

        jobs = persistence.list_jobs()
        assert len(jobs) == 1
        assert jobs[0].stdout == "done\n"

    def test_update_never_creates(self, persistence: JobStore):
        assert persistence.update_job(Job(version="v1", stdout="done\n")) is False
        assert persistence.get_job("v1") is None

        persistence.save_job(Job(version="v1"))

        assert persistence.update_job(Job(version="v1", stdout="done\n")) is True
        assert persistence.get_job("v1").stdout == "done\n"

    def test_list_jobs_ordered_by_key(self, persistence: JobStore):
        for version in ("b", "c", "a"):
            persistence.save_job(Job(version=version))

        assert [j.version for j in persistence.list_jobs()] == ["a", "b", "c"]

    def test_delete_returns_present_subset_in_request_order(self, persistence: JobStore):
        persistence.save_job(Job(version="a"))
        persistence.save_job(Job(version="c"))

        removed = persistence.delete_jobs("c", "b", "a")

        assert removed == ["c", "a"]
        assert persistence.list_jobs() == []

    def test_delete_nothing(self, persistence: JobStore):
        assert persistence.delete_jobs() == []

    def test_clear_drops_jobs_and_queue(self, persistence: JobStore):
        persistence.save_job(Job(version="a"))
        persistence.enqueue("a")

        persistence.clear()

        assert persistence.list_jobs() == []
        assert persistence.list_queue() == []


class TestQueue:
    """Durable FIFO queue of identifiers."""

    def test_fifo_order(self, persistence: JobStore):
        for version in ("v3", "v1", "v2"):
            persistence.enqueue(version)

        assert persistence.list_queue() == ["v3", "v1", "v2"]
        assert persistence.peek_front() == "v3"

    def test_peek_empty(self, persistence: JobStore):
        assert persistence.peek_front() is None

    def test_pop_front_removes_observed_front(self, persistence: JobStore):
        persistence.enqueue("a")
        persistence.enqueue("b")

        front = persistence.peek_front()
        persistence.pop_front(front)

        assert persistence.list_queue() == ["b"]

    def test_pop_front_mismatch_leaves_queue_untouched(self, persistence: JobStore):
        """Popping an id that is not at the front never corrupts the queue."""
        persistence.enqueue("a")
        persistence.enqueue("b")

        with pytest.raises(QueueOrderError) as exc_info:
            persistence.pop_front("b")

        assert exc_info.value.expected == "b"
        assert exc_info.value.actual == "a"
        assert persistence.list_queue() == ["a", "b"]

    def test_pop_front_on_empty_queue(self, persistence: JobStore):
        with pytest.raises(QueueOrderError):
            persistence.pop_front("a")

    def test_duplicate_enqueue_rejected(self, persistence: JobStore):
        persistence.enqueue("a")

        with pytest.raises(DuplicateJobError):
            persistence.enqueue("a")

        assert persistence.list_queue() == ["a"]

    def test_requeue_after_pop_goes_to_tail(self, persistence: JobStore):
        persistence.enqueue("a")
        persistence.enqueue("b")
        persistence.pop_front("a")

        persistence.enqueue("a")

        assert persistence.list_queue() == ["b", "a"]

    def test_remove_from_middle_preserves_order(self, persistence: JobStore):
        for version in ("a", "b", "c", "d"):
            persistence.enqueue(version)

        removed = persistence.remove_from_queue("c", "x", "a")

        assert removed == ["c", "a"]
        assert persistence.list_queue() == ["b", "d"]


class TestDurability:
    """State lives in the file, not in the instance."""

    def test_new_instance_sees_queue_and_jobs(self, persistence: JobStore, db_path):
        persistence.save_job(Job(version="a", stdout="x"))
        persistence.enqueue("b")

        reopened = JobStore(db_path)

        assert reopened.get_job("a").stdout == "x"
        assert reopened.list_queue() == ["b"]

    def test_concurrent_enqueues_lose_nothing(self, db_path):
        """Separate store instances enqueueing at once keep every entry."""
        JobStore(db_path)
        barrier = threading.Barrier(4)
        errors = []

        def submit(worker: int):
            store = JobStore(db_path)
            barrier.wait()
            try:
                for i in range(5):
                    store.enqueue(f"w{worker}-{i}")
            except StoreError as e:
                errors.append(e)

        threads = [threading.Thread(target=submit, args=(w,)) for w in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        queue = JobStore(db_path).list_queue()
        assert len(queue) == 20
        for worker in range(4):
            mine = [v for v in queue if v.startswith(f"w{worker}-")]
            assert mine == [f"w{worker}-{i}" for i in range(5)]

    def test_unopenable_database_raises_store_error(self, tmp_path):
        with pytest.raises(StoreError):
            JobStore(tmp_path)


class TestRunningMarker:
    """Which job the slot owner is executing."""

    def test_start_get_clear(self, persistence: JobStore):
        assert persistence.get_running() is None

        marker = persistence.start_run(Job(version="v1"))
        assert persistence.get_running() == marker
        assert persistence.get_job("v1") is not None

        persistence.start_run(Job(version="v2"))
        assert persistence.get_running().version == "v2"

        persistence.clear_running()
        assert persistence.get_running() is None

    def test_start_replaces_stale_output(self, persistence: JobStore):
        persistence.save_job(Job(version="v1", stdout="old\n", stderr="err\n"))

        persistence.start_run(Job(version="v1"))

        job = persistence.get_job("v1")
        assert job.stdout == ""
        assert job.stderr == ""

    def test_required_record_missing_writes_nothing(self, persistence: JobStore):
        """A dequeued job removed in the meantime is neither recreated nor marked."""
        assert persistence.start_run(Job(version="gone"), require_record=True) is None

        assert persistence.get_job("gone") is None
        assert persistence.get_running() is None

    def test_required_record_present(self, persistence: JobStore):
        persistence.save_job(Job(version="v1"))

        marker = persistence.start_run(Job(version="v1"), require_record=True)

        assert marker.version == "v1"
        assert persistence.get_running() == marker


class TestLease:
    """Single-row lease for the store-backed lock."""

    def test_only_one_lease(self, persistence: JobStore):
        first = LockHolder(version="a", pid=1, hostname="h")
        second = LockHolder(version="b", pid=2, hostname="h")

        assert persistence.try_take_lease(first) is True
        assert persistence.try_take_lease(second) is False
        assert persistence.get_lease().version == "a"

    def test_drop_lease(self, persistence: JobStore):
        assert persistence.drop_lease() is False

        persistence.try_take_lease(LockHolder(version="a", pid=1, hostname="h"))

        assert persistence.drop_lease() is True
        assert persistence.get_lease() is None

    def test_drop_lease_checks_token(self, persistence: JobStore):
        holder = LockHolder(version="a", pid=1, hostname="h")
        persistence.try_take_lease(holder)

        assert persistence.drop_lease("someone-else") is False
        assert persistence.get_lease().version == "a"

        assert persistence.drop_lease(holder.token) is True
        assert persistence.get_lease() is None
        assert persistence.drop_lease(holder.token) is False
