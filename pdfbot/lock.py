"""Single-worker lock stored alongside the job table."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Callable, Protocol

import psutil

from pdfbot.errors import call_store

if TYPE_CHECKING:
    from pdfbot.store import PersistentStore

LOGGER = logging.getLogger(__name__)


class ProcessLivenessProbe(Protocol):
    def is_alive(self, pid: int) -> bool: ...


class PsutilLivenessProbe:
    """Report whether a pid belongs to a running process on this host."""

    def is_alive(self, pid: int) -> bool:
        return psutil.pid_exists(pid)


class ExclusiveWorkerLock:
    """PID flag that lets one worker process the queue at a time.

    A stored pid whose process is gone counts as unheld and is cleared the next
    time the lock is observed. Observation and claim are separate store calls,
    so this is not an atomic test-and-set.
    """

    def __init__(
        self,
        store: PersistentStore,
        *,
        probe: ProcessLivenessProbe | None = None,
        pid_provider: Callable[[], int] = os.getpid,
    ) -> None:
        self._store = store
        self._probe = probe or PsutilLivenessProbe()
        self._pid_provider = pid_provider

    async def is_busy(self) -> bool:
        pid = await call_store(self._store.is_busy)
        if not pid:
            return False
        if not self._probe.is_alive(pid):
            LOGGER.info("Clearing stale worker lock held by pid %s", pid)
            await self.release()
            return False
        return True

    async def claim(self) -> None:
        pid = self._pid_provider()
        LOGGER.debug("Claiming worker lock for pid %s", pid)
        await call_store(self._store.set_is_busy, pid)

    async def release(self) -> None:
        await call_store(self._store.set_is_busy, None)
