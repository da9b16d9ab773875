"""
Static tree export — writes a ViewSet as plain files any static host can serve.

The tree is written into a staging directory next to the output directory
and swapped in with renames, so a half-written tree is never visible and a
failed write leaves the previous tree in place.
"""

import json
import logging
import shutil
from pathlib import Path

import aiofiles

from registry_express.models.views import (
    HTML_MEDIA_TYPE,
    JSON_MEDIA_TYPE,
    Artifact,
    ViewSet,
    candidate_paths,
)

logger = logging.getLogger(__name__)


class StaticTreeExporter:
    """Writes every artifact of a ViewSet below ``output_dir``."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.count = 0
        self.exports = 0

    @property
    def staging_dir(self) -> Path:
        return self.output_dir.with_name(self.output_dir.name + ".staging")

    @property
    def backup_dir(self) -> Path:
        return self.output_dir.with_name(self.output_dir.name + ".previous")

    async def export(self, view_set: ViewSet) -> None:
        staging = self.staging_dir
        if staging.exists():
            shutil.rmtree(staging)

        try:
            for path in view_set.paths():
                target = staging / path
                target.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(target, "wb") as f:
                    await f.write(view_set.artifacts[path].render())
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        self._swap_in(staging)
        self.count = len(view_set.artifacts)
        self.exports += 1
        logger.info(f"[Static] Wrote {self.count} files for {view_set.entry_count} entries to {self.output_dir}")

    def _swap_in(self, staging: Path) -> None:
        backup = self.backup_dir
        if backup.exists():
            shutil.rmtree(backup)
        if self.output_dir.exists():
            self.output_dir.rename(backup)
        staging.rename(self.output_dir)
        shutil.rmtree(backup, ignore_errors=True)

    async def finalize(self) -> None:
        logger.info(f"[Static] Export complete: {self.exports} tree(s) written to {self.output_dir}")


def _media_type(path: Path) -> str:
    if path.suffix == ".html":
        return HTML_MEDIA_TYPE
    if path.suffix == ".json":
        return JSON_MEDIA_TYPE
    return "application/octet-stream"


class DiskViewStore:
    """
    Serves a previously written static tree with the same lookup rules as a
    live ViewSet. Files are read on every request; nothing is cached.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def exists(self) -> bool:
        return (self.root / "registry.json").is_file()

    @property
    def entry_count(self) -> int:
        try:
            with open(self.root / "registry.json", encoding="utf-8") as f:
                return int(json.load(f).get("total", 0))
        except (OSError, ValueError):
            return 0

    def _file(self, path: str) -> Path | None:
        root = self.root.resolve()
        full = (root / path).resolve()
        if not full.is_relative_to(root) or not full.is_file():
            return None
        return full

    def resolve(self, logical_path: str, prefer_html: bool = False) -> Artifact | None:
        for candidate in candidate_paths(logical_path, prefer_html):
            full = self._file(candidate)
            if full is not None:
                return Artifact(path=candidate, body=full.read_bytes(), media_type=_media_type(full))
        return None
