"""
Git checkout source — tracks a remote repository through a local bare clone.

Works with any git remote (HTTPS or SSH), not only GitHub. The clone never
gets a working tree: listings and file contents are read straight from the
object database with ``git ls-tree`` and ``git show``.
"""

import asyncio
import logging
from pathlib import Path

from registry_express.errors import FetchError

logger = logging.getLogger(__name__)


class GitCheckoutSource:
    def __init__(self, repo_url: str, clone_dir: Path, path: str = "servers", timeout: float = 60.0):
        self.repo_url = repo_url
        self.clone_dir = Path(clone_dir)
        self.path = path.strip("/")
        self.timeout = timeout

    def describe(self) -> str:
        return f"git:{self.repo_url}"

    async def _git(self, *args: str, cwd: Path | None = None) -> bytes:
        """Run one git command; raises FetchError on failure or timeout."""
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd or self.clone_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise FetchError(f"git {args[0]} timed out after {self.timeout:g}s") from None

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise FetchError(f"git {' '.join(args)} failed ({proc.returncode}): {message}")
        return stdout

    async def ensure_clone(self) -> None:
        if (self.clone_dir / "HEAD").exists():
            return
        logger.info(f"[Git] Cloning {self.repo_url} into {self.clone_dir}")
        self.clone_dir.parent.mkdir(parents=True, exist_ok=True)
        await self._git("clone", "--bare", "--quiet", self.repo_url, str(self.clone_dir), cwd=self.clone_dir.parent)

    async def current_content_id(self, ref: str) -> str:
        await self.ensure_clone()
        await self._git("fetch", "--quiet", "origin", ref)
        sha = (await self._git("rev-parse", "FETCH_HEAD")).decode().strip()
        logger.debug(f"[Git] {self.repo_url}@{ref} -> {sha[:8]}")
        return sha

    async def list_tree(self, ref: str) -> list[str]:
        await self.ensure_clone()
        args = ["ls-tree", "-r", "--name-only", ref]
        if self.path:
            args += ["--", self.path]
        output = (await self._git(*args)).decode("utf-8")
        return sorted(line for line in output.splitlines() if line.endswith(".json"))

    async def fetch_file(self, path: str, ref: str) -> bytes:
        return await self._git("show", f"{ref}:{path}")
