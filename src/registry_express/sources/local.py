"""
Local directory source — walks a human-edited ``servers/`` tree.
"""

import hashlib
import logging
from pathlib import Path

import aiofiles

from registry_express.errors import FetchError

logger = logging.getLogger(__name__)


class LocalDirectorySource:
    """
    Reads ``*.json`` files below a root directory.

    Refs are ignored. The content id is a SHA-256 digest over every file path
    and its bytes, so unchanged trees are recognized without a commit id.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def describe(self) -> str:
        return f"local:{self.root}"

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root.resolve()):
            raise FetchError(f"Path escapes source root: {path}")
        return full

    async def list_tree(self, ref: str = "") -> list[str]:
        if not self.root.is_dir():
            logger.warning(f"[Local] Source directory {self.root} does not exist")
            return []
        return sorted(p.relative_to(self.root).as_posix() for p in self.root.rglob("*.json") if p.is_file())

    async def fetch_file(self, path: str, ref: str = "") -> bytes:
        try:
            async with aiofiles.open(self._resolve(path), "rb") as f:
                return await f.read()
        except OSError as e:
            raise FetchError(f"Cannot read {path}: {e}") from e

    async def current_content_id(self, ref: str = "") -> str:
        digest = hashlib.sha256()
        for path in await self.list_tree(ref):
            digest.update(path.encode("utf-8") + b"\0")
            digest.update(await self.fetch_file(path, ref) + b"\0")
        return digest.hexdigest()
