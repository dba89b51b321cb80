"""Storage plugins that copy generated PDFs to additional destinations."""

from __future__ import annotations

import asyncio
import hashlib
import shutil
from pathlib import Path
from typing import Any

from pdfbot.schemas import Job


class DirectoryStoragePlugin:
    """Copy each PDF into ``target_dir/<job id>/`` and report its checksum."""

    def __init__(self, target_dir: Path) -> None:
        self.target_dir = target_dir

    async def __call__(self, local_path: str, job: Job) -> dict[str, Any]:
        return await asyncio.to_thread(self._copy, Path(local_path), job.id)

    def _copy(self, source: Path, job_id: str) -> dict[str, Any]:
        destination = self.target_dir / job_id / source.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        payload = destination.read_bytes()
        return {
            "path": str(destination),
            "meta": {
                "size": len(payload),
                "sha256": hashlib.sha256(payload).hexdigest(),
            },
        }
