"""Webhook delivery for completed jobs, plus ping attempt logging."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, Protocol
from uuid import uuid4

import httpx

from pdfbot import metrics
from pdfbot.schemas import Job, PingAttempt, WebhookOptions
from pdfbot.settings import WebhookSettings

if TYPE_CHECKING:
    from pdfbot.queue import JobQueue

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    async def ping(self, job: Job, options: WebhookOptions) -> PingAttempt: ...


def webhook_options_from_settings(settings: WebhookSettings) -> WebhookOptions | None:
    if not settings.url:
        return None
    return WebhookOptions(
        url=settings.url,
        secret=settings.secret,
        header_namespace=settings.header_namespace,
        timeout_seconds=settings.timeout_seconds,
    )


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookNotifier:
    """POST the job as JSON; HTTP errors are reported, transport errors raise."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def ping(self, job: Job, options: WebhookOptions) -> PingAttempt:
        payload = job.model_dump(mode="json")
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        namespace = options.header_namespace
        headers = {
            **options.headers,
            "Content-Type": "application/json",
            f"{namespace}Job-Id": job.id,
        }
        if options.secret:
            headers[f"{namespace}Signature"] = f"sha256={sign_payload(options.secret, body)}"

        sent_at = datetime.now(timezone.utc)
        async with httpx.AsyncClient(timeout=options.timeout_seconds, transport=self._transport) as client:
            response = await client.post(options.url, content=body, headers=headers)

        failed = response.is_error
        if failed:
            LOGGER.warning("Webhook for job %s returned HTTP %s", job.id, response.status_code)
        return PingAttempt(
            id=uuid4().hex,
            url=options.url,
            method="POST",
            payload=payload,
            sent_at=sent_at,
            status=response.status_code,
            response=_response_body(response),
            error=failed,
        )


class WebhookDeliveryLogger:
    """Send one notification and record it on the job's ping history."""

    def __init__(self, queue: JobQueue, notifier: Notifier | None = None) -> None:
        self._queue = queue
        self._notifier = notifier or WebhookNotifier()

    async def attempt_ping(self, job: Job, webhook_options: WebhookOptions | Mapping[str, Any]) -> PingAttempt:
        if isinstance(webhook_options, Mapping):
            webhook_options = WebhookOptions.model_validate(webhook_options)
        if not isinstance(webhook_options, WebhookOptions):
            raise TypeError("No webhook is configured.")

        response = await self._notifier.ping(job, webhook_options)
        metrics.record_ping(failed=response.error)
        await self._queue.log_ping(job.id, response)
        return response


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = [
    "Notifier",
    "WebhookNotifier",
    "WebhookDeliveryLogger",
    "sign_payload",
    "webhook_options_from_settings",
]
