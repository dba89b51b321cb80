"""Render a job's URL to PDF, store it, and report the outcome as a value."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping
from uuid import uuid4

from pdfbot import metrics
from pdfbot.errors import ERROR_RENDER, error_message
from pdfbot.renderer import PlaywrightRenderer, RenderingEngine
from pdfbot.schemas import GenerationFailure, GenerationResult, GenerationSuccess, Job, StorageLocation
from pdfbot.settings import GeneratorSettings

LOGGER = logging.getLogger(__name__)

StoragePlugin = Callable[[str, Job], Awaitable[Mapping[str, Any]]]


class RenderTimeout(Exception):
    """The renderer did not settle within the configured timeout."""


@dataclass(slots=True)
class GeneratorConfig:
    """Everything a generator needs besides the rendering engine."""

    storage_path: Path
    options: dict[str, Any] = field(default_factory=dict)
    timeout_ms: int = 0

    @classmethod
    def from_settings(cls, settings: GeneratorSettings) -> GeneratorConfig:
        return cls(
            storage_path=settings.storage_path,
            options=settings.default_options(),
            timeout_ms=settings.timeout_ms,
        )


class Generator:
    """Callable pipeline: ``await generator(url, job) -> GenerationResult``."""

    def __init__(
        self,
        config: GeneratorConfig,
        *,
        engine: RenderingEngine | None = None,
        storage_plugins: Mapping[str, StoragePlugin] | None = None,
    ) -> None:
        self.config = config
        self._engine = engine or PlaywrightRenderer()
        self._storage_plugins = dict(storage_plugins or {})

    async def __call__(self, url: str, job: Job) -> GenerationResult:
        generation_id = uuid4().hex
        generated_at = datetime.now(timezone.utc)
        job_options = merge_options(self.config.options, job.options)
        started = time.perf_counter()

        LOGGER.debug("Creating PDF for url %s with options %s", url, job_options)

        try:
            document = await self._render(url, job_options)
            pdf_path = self.config.storage_path / "pdf" / f"{uuid4().hex}.pdf"
            LOGGER.debug("Saving PDF to %s", pdf_path)
            await document.to_file(pdf_path)
            storage: dict[str, Any] = {"local": str(pdf_path)}
            storage.update(await self._run_storage_plugins(str(pdf_path), job))
        except Exception as exc:
            metrics.record_generation(failed=True, seconds=time.perf_counter() - started)
            message = (
                f"{error_message(ERROR_RENDER)} {exc} "
                f"(job ID: {job.id}. Generation ID: {generation_id})"
            )
            LOGGER.warning("Generation %s for job %s failed: %s", generation_id, job.id, exc)
            return GenerationFailure(
                id=generation_id,
                generated_at=generated_at,
                code=ERROR_RENDER,
                message=message,
            )

        metrics.record_generation(failed=False, seconds=time.perf_counter() - started)
        return GenerationSuccess(id=generation_id, generated_at=generated_at, storage=storage)

    async def _render(self, url: str, options: Mapping[str, Any]):
        render = self._engine.create(url, options)
        timeout_ms = self.config.timeout_ms
        if not timeout_ms:
            return await render
        try:
            return await asyncio.wait_for(render, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise RenderTimeout(f"Timed out waiting for job after {timeout_ms}ms") from None

    async def _run_storage_plugins(self, pdf_path: str, job: Job) -> dict[str, Any]:
        if not self._storage_plugins:
            return {}
        names = list(self._storage_plugins)
        responses = await asyncio.gather(*(self._storage_plugins[name](pdf_path, job) for name in names))
        storage: dict[str, Any] = {}
        for name, response in zip(names, responses):
            location = StorageLocation(path=response["path"], meta=response.get("meta") or {})
            storage[name] = location.model_dump()
        return storage


def merge_options(defaults: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Deep-merge job options onto defaults.

    Nested mappings merge key by key; any other value from ``overrides``,
    lists included, replaces the default outright.
    """

    merged = copy.deepcopy(dict(defaults))
    for key, value in (overrides or {}).items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_options(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


__all__ = ["Generator", "GeneratorConfig", "RenderTimeout", "StoragePlugin", "merge_options"]
