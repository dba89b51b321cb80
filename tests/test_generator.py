from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import pytest

from pdfbot.generator import Generator, GeneratorConfig, merge_options
from pdfbot.renderer import RenderedDocument
from pdfbot.schemas import GenerationFailure, GenerationSuccess, Job
from pdfbot.storage_plugins import DirectoryStoragePlugin


class FakeEngine:
    def __init__(self, *, delay: float = 0.0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, Mapping[str, Any]]] = []

    async def create(self, url: str, options: Mapping[str, Any]) -> RenderedDocument:
        self.calls.append((url, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return RenderedDocument(url=url, pdf_bytes=b"%PDF-1.4 fake")


def _job(**overrides: Any) -> Job:
    data: dict[str, Any] = {
        "id": "job-1",
        "url": "https://example.com",
        "created_at": datetime.now(timezone.utc),
    }
    data.update(overrides)
    return Job(**data)


def _generator(tmp_path: Path, engine: FakeEngine, **config: Any) -> Generator:
    plugins = config.pop("storage_plugins", None)
    return Generator(GeneratorConfig(storage_path=tmp_path, **config), engine=engine, storage_plugins=plugins)


def test_merge_options_merges_mappings_and_replaces_lists() -> None:
    defaults = {"a": {"x": 1, "y": 2}, "b": [1, 2]}

    merged = merge_options(defaults, {"a": {"x": 9}, "b": [3]})

    assert merged == {"a": {"x": 9, "y": 2}, "b": [3]}
    assert defaults == {"a": {"x": 1, "y": 2}, "b": [1, 2]}


def test_merge_options_handles_missing_overrides() -> None:
    assert merge_options({"pdf": {"format": "A4"}}, None) == {"pdf": {"format": "A4"}}
    assert merge_options({}, {"cookies": [{"name": "sid"}]}) == {"cookies": [{"name": "sid"}]}


@pytest.mark.asyncio
async def test_generator_writes_pdf_and_reports_local_storage(tmp_path: Path) -> None:
    engine = FakeEngine()
    generator = _generator(tmp_path, engine, options={"pdf": {"format": "A4", "landscape": False}})

    result = await generator("https://example.com", _job(options={"pdf": {"landscape": True}}))

    assert isinstance(result, GenerationSuccess)
    local = Path(result.storage["local"])
    assert local.parent == tmp_path / "pdf"
    assert local.suffix == ".pdf"
    assert local.read_bytes() == b"%PDF-1.4 fake"
    assert engine.calls[0][1] == {"pdf": {"format": "A4", "landscape": True}}


@pytest.mark.asyncio
async def test_generator_times_out_into_render_error(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FakeEngine(delay=0.2), timeout_ms=50)

    result = await generator("https://example.com", _job(id="slow-job"))

    assert isinstance(result, GenerationFailure)
    assert result.error is True
    assert result.code == "RENDER_ERROR"
    assert result.message.startswith("PDF rendering failed:")
    assert "Timed out waiting for job after 50ms" in result.message
    assert "slow-job" in result.message
    assert result.id in result.message
    assert not (tmp_path / "pdf").exists()


@pytest.mark.asyncio
async def test_generator_without_timeout_waits_for_render(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FakeEngine(delay=0.05), timeout_ms=0)

    result = await generator("https://example.com", _job())

    assert isinstance(result, GenerationSuccess)


@pytest.mark.asyncio
async def test_generator_converts_render_errors_into_values(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FakeEngine(error=RuntimeError("net::ERR_NAME_NOT_RESOLVED")))

    result = await generator("https://nowhere.invalid", _job())

    assert isinstance(result, GenerationFailure)
    assert "net::ERR_NAME_NOT_RESOLVED" in result.message


@pytest.mark.asyncio
async def test_generator_fans_out_to_storage_plugins(tmp_path: Path) -> None:
    seen: list[str] = []

    async def alpha(path: str, job: Job) -> dict[str, Any]:
        seen.append(path)
        return {"path": f"s3://alpha/{job.id}.pdf", "meta": {"bucket": "alpha"}}

    async def beta(path: str, job: Job) -> dict[str, Any]:
        return {"path": f"/mnt/beta/{job.id}.pdf"}

    generator = _generator(tmp_path, FakeEngine(), storage_plugins={"alpha": alpha, "beta": beta})

    result = await generator("https://example.com", _job())

    assert isinstance(result, GenerationSuccess)
    assert set(result.storage) == {"local", "alpha", "beta"}
    assert result.storage["alpha"] == {"path": "s3://alpha/job-1.pdf", "meta": {"bucket": "alpha"}}
    assert result.storage["beta"] == {"path": "/mnt/beta/job-1.pdf", "meta": {}}
    assert seen == [result.storage["local"]]


@pytest.mark.asyncio
async def test_generator_reports_storage_plugin_failure(tmp_path: Path) -> None:
    async def broken(path: str, job: Job) -> dict[str, Any]:
        raise OSError("bucket unavailable")

    generator = _generator(tmp_path, FakeEngine(), storage_plugins={"broken": broken})

    result = await generator("https://example.com", _job())

    assert isinstance(result, GenerationFailure)
    assert "bucket unavailable" in result.message


@pytest.mark.asyncio
async def test_generation_ids_are_unique(tmp_path: Path) -> None:
    generator = _generator(tmp_path, FakeEngine())

    first = await generator("https://example.com", _job())
    second = await generator("https://example.com", _job())

    assert first.id != second.id


@pytest.mark.asyncio
async def test_directory_storage_plugin_copies_file(tmp_path: Path) -> None:
    source = tmp_path / "pdf" / "doc.pdf"
    source.parent.mkdir()
    source.write_bytes(b"%PDF-1.7")
    plugin = DirectoryStoragePlugin(tmp_path / "archive")

    response = await plugin(str(source), _job(id="abc"))

    copied = tmp_path / "archive" / "abc" / "doc.pdf"
    assert response["path"] == str(copied)
    assert copied.read_bytes() == b"%PDF-1.7"
    assert response["meta"]["size"] == len(b"%PDF-1.7")
    assert len(response["meta"]["sha256"]) == 64
