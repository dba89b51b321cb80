"""Job admission, retrieval, and worker-lock coordination."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse
from uuid import uuid4

from pdfbot.errors import (
    ERROR_INVALID_URL,
    ERROR_META_NOT_OBJECT,
    ERROR_OPTIONS_NOT_OBJECT,
    call_store,
    create_error_response,
)
from pdfbot.lock import ExclusiveWorkerLock, ProcessLivenessProbe
from pdfbot.schemas import ErrorResponse, GenerationResult, Job, PingAttempt
from pdfbot.settings import QueueSettings
from pdfbot.store import PersistentStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TRIES = 5


@dataclass(frozen=True, slots=True)
class QueueConfig:
    """Per-queue admission rules. An empty allow-list admits every option key."""

    allowed_job_options: tuple[str, ...] = ()
    denied_job_options: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: QueueSettings) -> QueueConfig:
        return cls(
            allowed_job_options=settings.allowed_job_options,
            denied_job_options=settings.denied_job_options,
        )


class JobQueue:
    """Front door to the job store.

    Validation problems come back as :class:`ErrorResponse` values. Store
    failures surface as a bare :class:`~pdfbot.errors.StoreError`.
    """

    def __init__(
        self,
        store: PersistentStore,
        config: QueueConfig | None = None,
        *,
        probe: ProcessLivenessProbe | None = None,
    ) -> None:
        self.store = store
        self.config = config or QueueConfig()
        self._lock = ExclusiveWorkerLock(store, probe=probe)

    async def enqueue(
        self,
        url: Any,
        meta: Any = None,
        options: Any = None,
    ) -> Job | ErrorResponse:
        if not url or not is_valid_url(url):
            return create_error_response(ERROR_INVALID_URL)
        if meta is not None and not isinstance(meta, Mapping):
            return create_error_response(ERROR_META_NOT_OBJECT)
        if options is not None and not isinstance(options, Mapping):
            return create_error_response(ERROR_OPTIONS_NOT_OBJECT)

        job = Job(
            id=uuid4().hex,
            url=url,
            meta=dict(meta or {}),
            options=filter_keys(
                options or {},
                self.config.allowed_job_options,
                self.config.denied_job_options,
            ),
            created_at=datetime.now(timezone.utc),
        )
        LOGGER.debug("Pushing job to queue with data %r", job)
        return await call_store(self.store.push_to_queue, job)

    async def get_by_id(self, job_id: str) -> Job | None:
        return await call_store(self.store.get_by_id, job_id)

    async def get_list(
        self,
        failed: bool = False,
        completed: bool = False,
        limit: int | None = None,
    ) -> list[Job]:
        return await call_store(self.store.get_list, failed, completed, limit)

    async def get_all_unfinished(
        self,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> list[Job]:
        return await call_store(self.store.get_all_unfinished, should_wait, max_tries)

    async def get_next(
        self,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> Job | None:
        jobs = await self.get_all_unfinished(should_wait, max_tries)
        return jobs[0] if jobs else None

    async def get_next_without_successful_ping(
        self,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> list[Job]:
        return await call_store(self.store.get_next_without_successful_ping, should_wait, max_tries)

    async def purge(
        self,
        failed: bool = False,
        pristine: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
        age: int | None = None,
    ) -> int:
        return await call_store(self.store.purge, failed, pristine, max_tries, age)

    async def is_busy(self) -> bool:
        return await self._lock.is_busy()

    async def set_is_busy(self, busy: bool) -> None:
        if busy:
            await self._lock.claim()
        else:
            await self._lock.release()

    async def log_generation(self, job_id: str, result: GenerationResult) -> None:
        LOGGER.debug("Logging try for job ID %s", job_id)
        await call_store(self.store.log_generation, job_id, result)

    async def log_ping(self, job_id: str, result: PingAttempt) -> None:
        LOGGER.debug("Logging ping for job ID %s", job_id)
        await call_store(self.store.log_ping, job_id, result)

    async def mark_as_completed(self, job_id: str) -> None:
        LOGGER.debug("Marking job ID %s as completed", job_id)
        await call_store(self.store.mark_as_completed, job_id)

    async def set_storage(self, job_id: str, storage: Mapping[str, Any]) -> None:
        await call_store(self.store.set_storage, job_id, storage)

    async def close(self) -> None:
        await call_store(self.store.close)


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def filter_keys(
    unfiltered: Mapping[str, Any],
    allowed: Iterable[str],
    denied: Iterable[str] = (),
) -> dict[str, Any]:
    allowed_keys = set(allowed)
    denied_keys = set(denied)
    return {
        key: value
        for key, value in unfiltered.items()
        if (not allowed_keys or key in allowed_keys) and key not in denied_keys
    }


__all__ = ["JobQueue", "QueueConfig", "DEFAULT_MAX_TRIES", "filter_keys", "is_valid_url"]
