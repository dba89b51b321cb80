"""Typed configuration objects backed by python-decouple settings."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

__all__ = [
    "QueueSettings",
    "GeneratorSettings",
    "WebhookSettings",
    "ApiSettings",
    "StorageSettings",
    "Settings",
    "load_config",
    "get_settings",
]


@dataclass(frozen=True, slots=True)
class QueueSettings:
    """Admission rules applied when jobs are pushed onto the queue."""

    allowed_job_options: tuple[str, ...]
    denied_job_options: tuple[str, ...]
    max_tries: int


@dataclass(frozen=True, slots=True)
class GeneratorSettings:
    """Knobs for the Chromium PDF renderer and local artifact layout."""

    storage_path: Path
    timeout_ms: int
    playwright_channel: str
    pdf_format: str
    print_background: bool
    emulate_media: str | None
    wait_until: str
    navigation_timeout_ms: int
    viewport_width: int
    viewport_height: int
    archive_dir: Path | None

    def default_options(self) -> dict[str, Any]:
        """Options every job starts from before its own overrides are merged in."""

        return {
            "goto": {"wait_until": self.wait_until, "timeout": self.navigation_timeout_ms},
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "emulate_media": self.emulate_media,
            "extra_http_headers": {},
            "cookies": [],
            "pdf": {"format": self.pdf_format, "print_background": self.print_background},
        }


@dataclass(frozen=True, slots=True)
class WebhookSettings:
    """Where and how completion notifications are delivered."""

    url: str | None
    secret: str | None
    header_namespace: str
    timeout_seconds: float


@dataclass(frozen=True, slots=True)
class ApiSettings:
    """HTTP surface configuration."""

    token: str | None
    post_push_command: tuple[str, ...]
    host: str
    port: int


@dataclass(frozen=True, slots=True)
class StorageSettings:
    """SQLite location for the job table and worker lock."""

    db_path: Path


@dataclass(frozen=True, slots=True)
class Settings:
    """Top-level immutable configuration container."""

    env_path: str
    queue: QueueSettings
    generator: GeneratorSettings
    webhook: WebhookSettings
    api: ApiSettings
    storage: StorageSettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a python-decouple config anchored to the .env file when it exists.

    Without the file, values resolve from the process environment and defaults.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def _int(cfg: DecoupleConfig, key: str, *, default: int) -> int:
    return cfg(key, cast=int, default=default)


def _bool(cfg: DecoupleConfig, key: str, *, default: bool) -> bool:
    return cfg(key, cast=bool, default=default)


def _optional(cfg: DecoupleConfig, key: str) -> str | None:
    raw = cfg(key, default="")
    return raw or None


def _csv_tuple(cfg: DecoupleConfig, key: str) -> tuple[str, ...]:
    raw = cfg(key, default="")
    if not raw:
        return tuple()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=4)
def get_settings(env_path: str = ".env") -> Settings:
    """Load and memoize structured settings for the current process."""

    cfg = load_config(env_path)

    queue = QueueSettings(
        allowed_job_options=_csv_tuple(cfg, "QUEUE_ALLOWED_JOB_OPTIONS"),
        denied_job_options=_csv_tuple(cfg, "QUEUE_DENIED_JOB_OPTIONS"),
        max_tries=_int(cfg, "QUEUE_MAX_TRIES", default=5),
    )
    if queue.max_tries < 1:
        msg = "QUEUE_MAX_TRIES must be >= 1"
        raise ValueError(msg)

    archive_dir = _optional(cfg, "STORAGE_ARCHIVE_DIR")
    generator = GeneratorSettings(
        storage_path=Path(cfg("STORAGE_PATH", default="storage")),
        timeout_ms=_int(cfg, "GENERATOR_TIMEOUT_MS", default=0),
        playwright_channel=cfg("PLAYWRIGHT_CHANNEL", default="chromium"),
        pdf_format=cfg("PDF_FORMAT", default="A4"),
        print_background=_bool(cfg, "PDF_PRINT_BACKGROUND", default=True),
        emulate_media=_optional(cfg, "PDF_EMULATE_MEDIA"),
        wait_until=cfg("NAVIGATION_WAIT_UNTIL", default="networkidle"),
        navigation_timeout_ms=_int(cfg, "NAVIGATION_TIMEOUT_MS", default=30000),
        viewport_width=_int(cfg, "VIEWPORT_WIDTH", default=1280),
        viewport_height=_int(cfg, "VIEWPORT_HEIGHT", default=800),
        archive_dir=Path(archive_dir) if archive_dir else None,
    )
    if generator.timeout_ms < 0:
        msg = "GENERATOR_TIMEOUT_MS must be >= 0"
        raise ValueError(msg)

    webhook = WebhookSettings(
        url=_optional(cfg, "WEBHOOK_URL"),
        secret=_optional(cfg, "WEBHOOK_SECRET"),
        header_namespace=cfg("WEBHOOK_HEADER_NAMESPACE", default="X-PDF-"),
        timeout_seconds=cfg("WEBHOOK_TIMEOUT_SECONDS", cast=float, default=10.0),
    )
    api = ApiSettings(
        token=_optional(cfg, "API_TOKEN"),
        post_push_command=_csv_tuple(cfg, "API_POST_PUSH_COMMAND"),
        host=cfg("HOST", default="127.0.0.1"),
        port=_int(cfg, "PORT", default=3000),
    )
    storage = StorageSettings(db_path=Path(cfg("DB_PATH", default="pdfbot.db")))

    return Settings(
        env_path=env_path,
        queue=queue,
        generator=generator,
        webhook=webhook,
        api=api,
        storage=storage,
    )
