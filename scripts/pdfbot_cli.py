#!/usr/bin/env python3
"""pdfbot CLI: push, inspect, process, and purge render jobs."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pdfbot.bootstrap import build_processor, build_queue
from pdfbot.errors import StoreError, is_error
from pdfbot.jobs import JobProcessor
from pdfbot.queue import JobQueue
from pdfbot.schemas import ErrorResponse, Job, WebhookOptions
from pdfbot.settings import Settings, get_settings
from pdfbot.webhook import webhook_options_from_settings

console = Console()
cli = typer.Typer(help="Queue web pages for PDF rendering and process the queue.")

_STATE: dict[str, str] = {"env_file": ".env"}


def _resolve_settings() -> Settings:
    return get_settings(_STATE["env_file"])


def _queue(settings: Settings) -> JobQueue:
    return build_queue(settings)


def _processor(settings: Settings, queue: JobQueue) -> JobProcessor:
    return build_processor(settings, queue=queue)


def _webhook_options(settings: Settings) -> Optional[WebhookOptions]:
    return webhook_options_from_settings(settings.webhook)


def _parse_json_object(raw: Optional[str], *, param_hint: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Invalid JSON: {exc.msg}", param_hint=param_hint) from exc


def _run(coro):  # type: ignore[no-untyped-def]
    try:
        return asyncio.run(coro)
    except StoreError:
        console.print("[red]The job store failed; see the log for details.[/]")
        raise typer.Exit(1)


async def _with_queue(settings: Settings, action):  # type: ignore[no-untyped-def]
    queue = _queue(settings)
    try:
        return await action(queue)
    finally:
        await queue.close()


def _print_job(job: Job) -> None:
    console.print_json(data=job.model_dump(mode="json"))


def _print_jobs(jobs: list[Job]) -> None:
    table = Table("ID", "URL", "Created", "Completed", "Tries", "Pings")
    for job in jobs:
        table.add_row(
            job.id,
            job.url,
            job.created_at.isoformat(timespec="seconds"),
            job.completed_at.isoformat(timespec="seconds") if job.completed_at else "-",
            str(len(job.generations)),
            str(len(job.pings)),
        )
    console.print(table)


@cli.callback()
def main(
    env_file: str = typer.Option(".env", "--env-file", help="Path to the .env file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    _STATE["env_file"] = env_file
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(name)s %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@cli.command()
def push(
    url: str = typer.Argument(..., help="URL to render."),
    meta: Optional[str] = typer.Option(None, "--meta", help="JSON object stored with the job."),
    options: Optional[str] = typer.Option(None, "--options", help="JSON object of render options."),
) -> None:
    """Add a job to the queue."""

    settings = _resolve_settings()
    meta_value = _parse_json_object(meta, param_hint="--meta")
    options_value = _parse_json_object(options, param_hint="--options")
    response = _run(_with_queue(settings, lambda queue: queue.enqueue(url, meta_value, options_value)))
    if isinstance(response, ErrorResponse):
        console.print(f"[red]{response.code}[/]: {response.message}")
        raise typer.Exit(1)
    console.print(f"Pushed job [bold]{response.id}[/]")


@cli.command("jobs")
def list_jobs(
    completed: bool = typer.Option(False, "--completed/--no-completed", help="Include completed jobs."),
    failed: bool = typer.Option(False, "--failed/--no-failed", help="Include jobs with failed attempts."),
    limit: int = typer.Option(10, min=1, help="Maximum number of jobs to list."),
) -> None:
    """List queued jobs, newest first."""

    settings = _resolve_settings()
    jobs = _run(_with_queue(settings, lambda queue: queue.get_list(failed, completed, limit)))
    if not jobs:
        console.print("No jobs.")
        return
    _print_jobs(jobs)


@cli.command("job")
def show_job(job_id: str = typer.Argument(..., help="Job identifier.")) -> None:
    """Show one job as JSON."""

    settings = _resolve_settings()
    job = _run(_with_queue(settings, lambda queue: queue.get_by_id(job_id)))
    if job is None:
        console.print(f"[red]Job {job_id} not found[/]")
        raise typer.Exit(1)
    _print_job(job)


@cli.command()
def shift(
    should_wait: bool = typer.Option(True, "--wait/--no-wait", help="Respect retry backoff."),
    max_tries: Optional[int] = typer.Option(None, "--max-tries", min=1),
) -> None:
    """Process the next job in the queue."""

    settings = _resolve_settings()
    tries = max_tries or settings.queue.max_tries

    async def _action(queue: JobQueue):  # type: ignore[no-untyped-def]
        processor = _processor(settings, queue)
        return await processor.process_next(
            should_wait=should_wait,
            max_tries=tries,
            webhook_options=_webhook_options(settings),
        )

    result = _run(_with_queue(settings, _action))
    if result is None:
        console.print("Nothing processed.")
        return
    if is_error(result):
        console.print(f"[red]{result.message}[/]")
        raise typer.Exit(1)
    console.print(f"Generated {result.storage.get('local')}")


@cli.command("shift-all")
def shift_all(
    should_wait: bool = typer.Option(True, "--wait/--no-wait", help="Respect retry backoff."),
    max_tries: Optional[int] = typer.Option(None, "--max-tries", min=1),
) -> None:
    """Process every ready job in the queue."""

    settings = _resolve_settings()
    tries = max_tries or settings.queue.max_tries

    async def _action(queue: JobQueue):  # type: ignore[no-untyped-def]
        processor = _processor(settings, queue)
        return await processor.process_unfinished(
            should_wait=should_wait,
            max_tries=tries,
            webhook_options=_webhook_options(settings),
        )

    results = _run(_with_queue(settings, _action))
    failures = sum(1 for result in results if is_error(result))
    console.print(f"Processed {len(results)} jobs ({failures} failed).")


@cli.command()
def generate(job_id: str = typer.Argument(..., help="Job identifier.")) -> None:
    """Generate a specific job now, ignoring the worker lock."""

    settings = _resolve_settings()

    async def _action(queue: JobQueue):  # type: ignore[no-untyped-def]
        job = await queue.get_by_id(job_id)
        if job is None:
            return None
        return await _processor(settings, queue).process_job(job, _webhook_options(settings))

    result = _run(_with_queue(settings, _action))
    if result is None:
        console.print(f"[red]Job {job_id} not found[/]")
        raise typer.Exit(1)
    if is_error(result):
        console.print(f"[red]{result.message}[/]")
        raise typer.Exit(1)
    console.print(f"Generated {result.storage.get('local')}")


@cli.command()
def ping(job_id: str = typer.Argument(..., help="Job identifier.")) -> None:
    """Send the completion webhook for a job."""

    settings = _resolve_settings()
    options = _webhook_options(settings)
    if options is None:
        console.print("[red]No webhook is configured (set WEBHOOK_URL).[/]")
        raise typer.Exit(1)

    async def _action(queue: JobQueue):  # type: ignore[no-untyped-def]
        job = await queue.get_by_id(job_id)
        if job is None:
            return None
        return await _processor(settings, queue).attempt_ping(job, options)

    response = _run(_with_queue(settings, _action))
    if response is None:
        console.print(f"[red]Job {job_id} not found[/]")
        raise typer.Exit(1)
    console.print(f"Webhook answered HTTP {response.status} (error={response.error})")


@cli.command("ping-retry-failed")
def ping_retry_failed(
    max_tries: Optional[int] = typer.Option(None, "--max-tries", min=1),
    should_wait: bool = typer.Option(True, "--wait/--no-wait", help="Respect retry backoff."),
) -> None:
    """Re-send webhooks for completed jobs without a successful ping."""

    settings = _resolve_settings()
    options = _webhook_options(settings)
    if options is None:
        console.print("[red]No webhook is configured (set WEBHOOK_URL).[/]")
        raise typer.Exit(1)
    tries = max_tries or settings.queue.max_tries

    async def _action(queue: JobQueue):  # type: ignore[no-untyped-def]
        processor = _processor(settings, queue)
        return await processor.retry_failed_pings(options, should_wait=should_wait, max_tries=tries)

    responses = _run(_with_queue(settings, _action))
    console.print(f"Sent {len(responses)} webhooks.")


@cli.command()
def purge(
    failed: bool = typer.Option(False, "--failed/--no-failed", help="Remove jobs that reached max tries."),
    pristine: bool = typer.Option(False, "--pristine/--no-pristine", help="Remove unfinished jobs below max tries."),
    max_tries: Optional[int] = typer.Option(None, "--max-tries", min=1),
    age: Optional[int] = typer.Option(None, "--age", min=0, help="Only remove jobs older than this many seconds."),
) -> None:
    """Remove completed jobs, plus failed or pristine ones when asked."""

    settings = _resolve_settings()
    tries = max_tries or settings.queue.max_tries
    removed = _run(_with_queue(settings, lambda queue: queue.purge(failed, pristine, tries, age)))
    console.print(f"Purged {removed} jobs.")


if __name__ == "__main__":
    cli()
