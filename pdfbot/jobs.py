"""Job processing: generation, attempt logging, completion, notification."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping

from pdfbot.errors import is_error
from pdfbot.queue import DEFAULT_MAX_TRIES, JobQueue
from pdfbot.schemas import GenerationResult, Job, PingAttempt, WebhookOptions
from pdfbot.webhook import Notifier, WebhookDeliveryLogger

LOGGER = logging.getLogger(__name__)

GeneratorType = Callable[[str, Job], Awaitable[GenerationResult]]
WebhookConfig = WebhookOptions | Mapping[str, Any]


class JobProcessor:
    """Run jobs through the generator and record what happened."""

    def __init__(
        self,
        queue: JobQueue,
        generator: GeneratorType,
        *,
        notifier: Notifier | None = None,
    ) -> None:
        self.queue = queue
        self._generator = generator
        self._webhooks = WebhookDeliveryLogger(queue, notifier)

    async def process_job(self, job: Job, webhook_options: WebhookConfig | None = None) -> GenerationResult:
        """Generate ``job`` once and log the attempt.

        Failures leave the job unfinished so a later poll can retry it. On
        success the job is completed, its storage saved, and, when
        ``webhook_options`` is given, a webhook delivered with the refreshed
        job. A webhook transport error propagates to the caller.
        """

        response = await self._generator(job.url, job)
        await self.queue.log_generation(job.id, response)

        if is_error(response):
            return response

        LOGGER.info("Job %s was processed, marking job as complete.", job.id)
        await asyncio.gather(
            self.queue.mark_as_completed(job.id),
            self.queue.set_storage(job.id, response.storage),
        )
        if webhook_options is None:
            return response

        refreshed = await self.queue.get_by_id(job.id)
        if refreshed is None:
            LOGGER.warning("Job %s disappeared before its webhook could be sent", job.id)
            return response
        await self._webhooks.attempt_ping(refreshed, webhook_options)
        return response

    async def attempt_ping(self, job: Job, webhook_options: WebhookConfig) -> PingAttempt:
        return await self._webhooks.attempt_ping(job, webhook_options)

    async def process_next(
        self,
        *,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
        webhook_options: WebhookConfig | None = None,
    ) -> GenerationResult | None:
        """Process the oldest ready job while holding the worker lock."""

        if await self.queue.is_busy():
            LOGGER.info("Queue is busy, skipping")
            return None
        await self.queue.set_is_busy(True)
        try:
            job = await self.queue.get_next(should_wait, max_tries)
            if job is None:
                LOGGER.info("Queue is empty")
                return None
            return await self.process_job(job, webhook_options)
        finally:
            await self.queue.set_is_busy(False)

    async def process_unfinished(
        self,
        *,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
        webhook_options: WebhookConfig | None = None,
    ) -> list[GenerationResult]:
        """Process every ready job in order while holding the worker lock."""

        if await self.queue.is_busy():
            LOGGER.info("Queue is busy, skipping")
            return []
        await self.queue.set_is_busy(True)
        results: list[GenerationResult] = []
        try:
            jobs = await self.queue.get_all_unfinished(should_wait, max_tries)
            LOGGER.info("Found %d jobs to process", len(jobs))
            for job in jobs:
                results.append(await self.process_job(job, webhook_options))
        finally:
            await self.queue.set_is_busy(False)
        return results

    async def retry_failed_pings(
        self,
        webhook_options: WebhookConfig,
        *,
        should_wait: bool = False,
        max_tries: int = DEFAULT_MAX_TRIES,
    ) -> list[PingAttempt]:
        jobs = await self.queue.get_next_without_successful_ping(should_wait, max_tries)
        LOGGER.info("Retrying webhooks for %d jobs", len(jobs))
        return [await self._webhooks.attempt_ping(job, webhook_options) for job in jobs]


__all__ = ["JobProcessor", "GeneratorType"]
