from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from pdfbot.schemas import GenerationFailure, GenerationSuccess, Job, PingAttempt
from pdfbot.store import RETRY_BASE_DELAY, SqlStore, StorageConfig

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def _store(tmp_path: Path, clock: Clock | None = None) -> SqlStore:
    return SqlStore(StorageConfig(db_path=tmp_path / "nested" / "jobs.db"), clock=clock)


def _job(job_id: str, created_at: datetime = START, **extra: Any) -> Job:
    return Job(id=job_id, url=f"https://example.com/{job_id}", created_at=created_at, **extra)


def _failure(at: datetime) -> GenerationFailure:
    return GenerationFailure(id=f"gen-{at.timestamp()}", generated_at=at, code="RENDER_ERROR", message="boom")


def _success(at: datetime) -> GenerationSuccess:
    return GenerationSuccess(id=f"gen-{at.timestamp()}", generated_at=at, storage={"local": "/tmp/x.pdf"})


def _ping(at: datetime, *, error: bool) -> PingAttempt:
    return PingAttempt(id=f"ping-{at.timestamp()}", url="https://hooks.example.com", sent_at=at, status=500 if error else 200, error=error)


def test_push_and_fetch_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    job = _job("a", meta={"nested": {"list": [1, 2]}}, options={"pdf": {"landscape": True}})

    stored = store.push_to_queue(job)

    assert stored == job
    assert store.get_by_id("a") == job
    assert store.get_by_id("a") == store.get_by_id("a")
    assert store.get_by_id("zzz") is None
    assert (tmp_path / "nested" / "jobs.db").exists()


def test_timestamps_are_written_as_utc(tmp_path: Path) -> None:
    clock = Clock(datetime(2024, 5, 1, 16, 30, tzinfo=timezone(timedelta(hours=2))))
    store = _store(tmp_path, clock)
    created_at = datetime(2024, 5, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    store.push_to_queue(_job("a", created_at))
    store.mark_as_completed("a")

    job = store.get_by_id("a")
    assert job is not None
    assert job.created_at == created_at
    assert job.created_at.utcoffset() == timedelta(0)
    assert job.completed_at == datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)
    assert job.completed_at.utcoffset() == timedelta(0)


def test_history_appends_and_completion(tmp_path: Path) -> None:
    clock = Clock()
    store = _store(tmp_path, clock)
    store.push_to_queue(_job("a"))

    store.log_generation("a", _failure(START))
    store.log_generation("a", _success(START + timedelta(minutes=1)))
    store.set_storage("a", {"local": "/tmp/x.pdf"})
    store.mark_as_completed("a")
    store.log_ping("a", _ping(START, error=False))

    job = store.get_by_id("a")
    assert job is not None
    assert [type(entry) for entry in job.generations] == [GenerationFailure, GenerationSuccess]
    assert job.storage == {"local": "/tmp/x.pdf"}
    assert job.completed_at == START
    assert len(job.pings) == 1


def test_updates_to_missing_jobs_raise(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(KeyError):
        store.mark_as_completed("missing")


def test_unfinished_respects_max_tries_and_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.push_to_queue(_job("old", START))
    store.push_to_queue(_job("new", START + timedelta(seconds=5)))
    store.push_to_queue(_job("done", START - timedelta(seconds=5), completed_at=START))
    for _ in range(3):
        store.log_generation("old", _failure(START))

    assert [job.id for job in store.get_all_unfinished(False, 5)] == ["old", "new"]
    assert [job.id for job in store.get_all_unfinished(False, 3)] == ["new"]


def test_unfinished_waits_for_exponential_backoff(tmp_path: Path) -> None:
    clock = Clock()
    store = _store(tmp_path, clock)
    store.push_to_queue(_job("a"))
    store.log_generation("a", _failure(START))
    store.log_generation("a", _failure(START))

    # two attempts: the next one is due after 2 * base delay
    clock.advance(RETRY_BASE_DELAY)
    assert store.get_all_unfinished(True, 5) == []
    assert [job.id for job in store.get_all_unfinished(False, 5)] == ["a"]

    clock.advance(RETRY_BASE_DELAY)
    assert [job.id for job in store.get_all_unfinished(True, 5)] == ["a"]


def test_get_list_filters_and_orders_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.push_to_queue(_job("pristine", START))
    store.push_to_queue(_job("failed", START + timedelta(seconds=1)))
    store.push_to_queue(_job("completed", START + timedelta(seconds=2), completed_at=START))
    store.log_generation("failed", _failure(START))

    assert [job.id for job in store.get_list()] == ["pristine"]
    assert [job.id for job in store.get_list(failed=True)] == ["failed", "pristine"]
    assert [job.id for job in store.get_list(completed=True)] == ["completed", "pristine"]
    assert [job.id for job in store.get_list(True, True, 2)] == ["completed", "failed"]
    assert store.get_list(True, True, 0) == []
    assert store.get_list(True, True, -1) == []


def test_pings_retry_selection(tmp_path: Path) -> None:
    clock = Clock()
    store = _store(tmp_path, clock)
    for job_id in ("never", "failed", "delivered", "exhausted"):
        store.push_to_queue(_job(job_id, completed_at=START))
    store.push_to_queue(_job("unfinished"))
    store.log_ping("failed", _ping(START, error=True))
    store.log_ping("delivered", _ping(START, error=False))
    for _ in range(2):
        store.log_ping("exhausted", _ping(START, error=True))

    ids = {job.id for job in store.get_next_without_successful_ping(False, 2)}
    assert ids == {"never", "failed"}

    waiting = {job.id for job in store.get_next_without_successful_ping(True, 2)}
    assert waiting == {"never"}

    clock.advance(RETRY_BASE_DELAY)
    assert {job.id for job in store.get_next_without_successful_ping(True, 2)} == {"never", "failed"}


def test_worker_lock_row(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.is_busy() is None
    store.set_is_busy(1234)
    assert store.is_busy() == 1234
    store.set_is_busy(None)
    assert store.is_busy() is None


def test_purge_modes(tmp_path: Path) -> None:
    clock = Clock(START + timedelta(hours=1))

    def seeded(name: str) -> SqlStore:
        store = SqlStore(StorageConfig(db_path=tmp_path / f"{name}.db"), clock=clock)
        store.push_to_queue(_job("completed", START, completed_at=START))
        store.push_to_queue(_job("pristine", START))
        store.push_to_queue(_job("fresh", START + timedelta(minutes=59)))
        store.push_to_queue(_job("failed", START))
        for _ in range(2):
            store.log_generation("failed", _failure(START))
        return store

    store = seeded("default")
    assert store.purge(False, False, 2, None) == 1
    assert {job.id for job in store.get_list(True, True)} == {"pristine", "fresh", "failed"}

    store = seeded("failed")
    assert store.purge(True, False, 2, None) == 2
    assert {job.id for job in store.get_list(True, True)} == {"pristine", "fresh"}

    store = seeded("pristine_aged")
    assert store.purge(False, True, 2, 600) == 2
    assert {job.id for job in store.get_list(True, True)} == {"fresh", "failed"}
