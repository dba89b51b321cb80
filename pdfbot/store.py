"""Persistence for jobs and the worker lock (SQLModel over SQLite)."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from sqlalchemy import Column
from sqlalchemy.dialects.sqlite import JSON as SQLITE_JSON
from sqlmodel import Field, Session, SQLModel, create_engine, select

from pdfbot.schemas import GenerationResult, Job, PingAttempt
from pdfbot.settings import get_settings

RETRY_BASE_DELAY = timedelta(seconds=60)
_LOCK_ROW_ID = 1


class PersistentStore(Protocol):
    """Operations the queue and processor need from a job store."""

    def push_to_queue(self, job: Job) -> Job: ...

    def get_by_id(self, job_id: str) -> Job | None: ...

    def get_list(self, failed: bool, completed: bool, limit: int | None) -> list[Job]: ...

    def get_all_unfinished(self, should_wait: bool, max_tries: int) -> list[Job]: ...

    def get_next_without_successful_ping(self, should_wait: bool, max_tries: int) -> list[Job]: ...

    def is_busy(self) -> int | None: ...

    def set_is_busy(self, pid: int | None) -> None: ...

    def purge(self, failed: bool, pristine: bool, max_tries: int, age: int | None) -> int: ...

    def log_generation(self, job_id: str, result: GenerationResult) -> None: ...

    def log_ping(self, job_id: str, result: PingAttempt) -> None: ...

    def mark_as_completed(self, job_id: str) -> None: ...

    def set_storage(self, job_id: str, storage: Mapping[str, Any]) -> None: ...

    def close(self) -> None: ...


class JobRecord(SQLModel, table=True):
    """Row backing a queued render job."""

    __tablename__ = "jobs"

    id: str = Field(primary_key=True)
    url: str
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SQLITE_JSON))
    options: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SQLITE_JSON))
    created_at: datetime = Field(index=True)
    completed_at: datetime | None = Field(default=None, index=True)
    generations: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(SQLITE_JSON))
    pings: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(SQLITE_JSON))
    storage: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SQLITE_JSON))


class WorkerLockRecord(SQLModel, table=True):
    """Single row holding the pid of the worker processing the queue."""

    __tablename__ = "worker_lock"

    id: int = Field(default=_LOCK_ROW_ID, primary_key=True)
    pid: int | None = None


@dataclass(frozen=True)
class StorageConfig:
    """Resolved database location."""

    db_path: Path

    @classmethod
    def from_env(cls) -> StorageConfig:
        return cls(db_path=get_settings().storage.db_path)


class SqlStore:
    """SQLite-backed implementation of :class:`PersistentStore`."""

    def __init__(
        self,
        config: StorageConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or StorageConfig.from_env()
        self.config.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = _create_engine(self.config.db_path)
        self._clock = clock or _utcnow
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine) as session:
            yield session

    def push_to_queue(self, job: Job) -> Job:
        payload = job.model_dump(mode="json")
        record = JobRecord(
            id=job.id,
            url=job.url,
            meta=payload["meta"],
            options=payload["options"],
            created_at=_utc(job.created_at),
            completed_at=_utc(job.completed_at) if job.completed_at else None,
            generations=payload["generations"],
            pings=payload["pings"],
            storage=payload["storage"],
        )
        with self.session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return _to_job(record)

    def get_by_id(self, job_id: str) -> Job | None:
        with self.session() as session:
            record = session.get(JobRecord, job_id)
            return _to_job(record) if record else None

    def get_list(self, failed: bool = False, completed: bool = False, limit: int | None = None) -> list[Job]:
        with self.session() as session:
            statement = select(JobRecord).order_by(JobRecord.created_at.desc())  # type: ignore[union-attr]
            records = list(session.exec(statement))
        jobs: list[Job] = []
        for record in records:
            if limit is not None and len(jobs) >= limit:
                break
            if record.completed_at is not None:
                if not completed:
                    continue
            elif record.generations and not failed:
                continue
            jobs.append(_to_job(record))
        return jobs

    def get_all_unfinished(self, should_wait: bool = False, max_tries: int = 5) -> list[Job]:
        now = self._clock()
        with self.session() as session:
            statement = (
                select(JobRecord)
                .where(JobRecord.completed_at == None)  # noqa: E711
                .order_by(JobRecord.created_at)
            )
            records = list(session.exec(statement))
        return [
            _to_job(record)
            for record in records
            if len(record.generations) < max_tries
            and (not should_wait or _is_due(record.generations, "generated_at", now))
        ]

    def get_next_without_successful_ping(self, should_wait: bool = False, max_tries: int = 5) -> list[Job]:
        now = self._clock()
        with self.session() as session:
            statement = (
                select(JobRecord)
                .where(JobRecord.completed_at != None)  # noqa: E711
                .order_by(JobRecord.completed_at)
            )
            records = list(session.exec(statement))
        jobs: list[Job] = []
        for record in records:
            pings = record.pings
            if pings and not pings[-1].get("error"):
                continue
            if len(pings) >= max_tries:
                continue
            if should_wait and not _is_due(pings, "sent_at", now):
                continue
            jobs.append(_to_job(record))
        return jobs

    def is_busy(self) -> int | None:
        with self.session() as session:
            record = session.get(WorkerLockRecord, _LOCK_ROW_ID)
            return record.pid if record else None

    def set_is_busy(self, pid: int | None) -> None:
        with self.session() as session:
            record = session.get(WorkerLockRecord, _LOCK_ROW_ID) or WorkerLockRecord(id=_LOCK_ROW_ID)
            record.pid = pid
            session.add(record)
            session.commit()

    def purge(
        self,
        failed: bool = False,
        pristine: bool = False,
        max_tries: int = 5,
        age: int | None = None,
    ) -> int:
        cutoff = self._clock() - timedelta(seconds=age) if age is not None else None
        removed = 0
        with self.session() as session:
            for record in list(session.exec(select(JobRecord))):
                if record.completed_at is None:
                    if cutoff is not None and _aware(record.created_at) > cutoff:
                        continue
                    tries = len(record.generations)
                    reached_max = tries >= max_tries
                    if not ((failed and reached_max) or (pristine and not reached_max)):
                        continue
                session.delete(record)
                removed += 1
            session.commit()
        return removed

    def log_generation(self, job_id: str, result: GenerationResult) -> None:
        entry = result.model_dump(mode="json")
        self._update(job_id, lambda record: setattr(record, "generations", [*record.generations, entry]))

    def log_ping(self, job_id: str, result: PingAttempt) -> None:
        entry = result.model_dump(mode="json")
        self._update(job_id, lambda record: setattr(record, "pings", [*record.pings, entry]))

    def mark_as_completed(self, job_id: str) -> None:
        completed_at = _utc(self._clock())
        self._update(job_id, lambda record: setattr(record, "completed_at", completed_at))

    def set_storage(self, job_id: str, storage: Mapping[str, Any]) -> None:
        payload = dict(storage)
        self._update(job_id, lambda record: setattr(record, "storage", payload))

    def close(self) -> None:
        self.engine.dispose()

    def _update(self, job_id: str, mutate: Callable[[JobRecord], None]) -> None:
        with self.session() as session:
            record = session.get(JobRecord, job_id)
            if not record:
                raise KeyError(f"Job {job_id} not found")
            mutate(record)
            session.add(record)
            session.commit()


def build_store(config: StorageConfig | None = None) -> SqlStore:
    """Convenience wrapper used by the API and CLI."""

    return SqlStore(config=config)


def _create_engine(db_path: Path):
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )


def _to_job(record: JobRecord) -> Job:
    return Job(
        id=record.id,
        url=record.url,
        meta=record.meta or {},
        options=record.options or {},
        created_at=_aware(record.created_at),
        completed_at=_aware(record.completed_at) if record.completed_at else None,
        generations=list(record.generations or []),
        pings=list(record.pings or []),
        storage=record.storage or {},
    )


def _is_due(attempts: Sequence[Mapping[str, Any]], timestamp_key: str, now: datetime) -> bool:
    """Exponential backoff: wait base * 2**(n-1) after the n-th attempt."""

    if not attempts:
        return True
    raw = attempts[-1].get(timestamp_key)
    if not isinstance(raw, str):
        return True
    try:
        last_attempt = _aware(datetime.fromisoformat(raw))
    except ValueError:
        return True
    delay = RETRY_BASE_DELAY * (2 ** (len(attempts) - 1))
    return now >= last_attempt + delay


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Older sqlmodel releases read SQLite datetimes back naive; values are written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


__all__ = [
    "PersistentStore",
    "JobRecord",
    "WorkerLockRecord",
    "StorageConfig",
    "SqlStore",
    "build_store",
    "RETRY_BASE_DELAY",
]
