"""Wire queue, generator, and processor together from settings."""

from __future__ import annotations

from pdfbot.generator import Generator, GeneratorConfig, StoragePlugin
from pdfbot.jobs import JobProcessor
from pdfbot.queue import JobQueue, QueueConfig
from pdfbot.renderer import PlaywrightRenderer
from pdfbot.settings import Settings, get_settings
from pdfbot.storage_plugins import DirectoryStoragePlugin
from pdfbot.store import StorageConfig, build_store


def build_queue(settings: Settings | None = None) -> JobQueue:
    active = settings or get_settings()
    store = build_store(StorageConfig(db_path=active.storage.db_path))
    return JobQueue(store, QueueConfig.from_settings(active.queue))


def build_storage_plugins(settings: Settings) -> dict[str, StoragePlugin]:
    plugins: dict[str, StoragePlugin] = {}
    if settings.generator.archive_dir is not None:
        plugins["archive"] = DirectoryStoragePlugin(settings.generator.archive_dir)
    return plugins


def build_generator(settings: Settings | None = None) -> Generator:
    active = settings or get_settings()
    return Generator(
        GeneratorConfig.from_settings(active.generator),
        engine=PlaywrightRenderer(channel=active.generator.playwright_channel),
        storage_plugins=build_storage_plugins(active),
    )


def build_processor(settings: Settings | None = None, *, queue: JobQueue | None = None) -> JobProcessor:
    active = settings or get_settings()
    return JobProcessor(queue or build_queue(active), build_generator(active))
