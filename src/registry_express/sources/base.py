"""
Source Provider Protocol — where raw entry files come from.

A provider answers three questions for a ref (branch, tag or commit):
which files exist, what is in one of them, and which content id the ref
currently resolves to. Providers that have no notion of refs ignore them.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from registry_express.models.entry import RawFile


@runtime_checkable
class SourceProvider(Protocol):
    """
    Protocol that all source adapters implement.

    Failures to reach the upstream are raised as ``FetchError``.
    """

    def describe(self) -> str:
        """Human-readable source label for logs and status output."""
        ...

    async def list_tree(self, ref: str) -> list[str]:
        """Paths of every entry file in the tree at ``ref``."""
        ...

    async def fetch_file(self, path: str, ref: str) -> bytes:
        """Raw content of one file at ``ref``."""
        ...

    async def current_content_id(self, ref: str) -> str:
        """Opaque id that changes whenever the tree at ``ref`` changes."""
        ...


async def collect_raw_files(
    provider: SourceProvider, ref: str, concurrency: int = 8
) -> list[RawFile]:
    """Fetch every file of the tree at ``ref``, sorted by path."""
    paths = await provider.list_tree(ref)
    sem = asyncio.Semaphore(concurrency)

    async def fetch_one(path: str) -> RawFile:
        async with sem:
            return RawFile(path=path, content=await provider.fetch_file(path, ref))

    files = await asyncio.gather(*(fetch_one(p) for p in paths))
    return sorted(files, key=lambda f: f.path)
