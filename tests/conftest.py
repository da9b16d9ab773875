"""Shared fixtures: sample entry documents, a servers tree, and an in-memory source."""

import asyncio
import hashlib
import json
from pathlib import Path

import pytest


def npm_package(identifier: str = "foo") -> dict:
    return {"registryType": "npm", "identifier": identifier, "transport": {"type": "stdio"}}


@pytest.fixture
def container_doc():
    return {
        "servers": [
            {
                "name": "io.example/foo",
                "description": "x",
                "versions": [{"version": "1.0.0", "isLatest": True, "packages": [npm_package()]}],
            }
        ]
    }


@pytest.fixture
def flat_doc():
    return {
        "name": "io.example/bar",
        "description": "y",
        "version": "2.0.0",
        "packages": [npm_package("bar")],
    }


@pytest.fixture
def versioned_doc():
    return {
        "name": "io.github.acme/weather",
        "title": "Weather",
        "description": "Forecasts over MCP",
        "repository": {"url": "https://github.com/acme/weather", "source": "github"},
        "websiteUrl": "https://acme.example/weather",
        "versions": [
            {
                "version": "1.1.0",
                "releaseDate": "2025-03-01T00:00:00Z",
                "isLatest": True,
                "packages": [
                    {
                        "registryType": "pypi",
                        "identifier": "acme-weather",
                        "version": "1.1.0",
                        "transport": {"type": "stdio"},
                        "environmentVariables": [
                            {"name": "WEATHER_API_KEY", "isRequired": True, "isSecret": True}
                        ],
                    }
                ],
            },
            {
                "version": "1.0.0",
                "releaseDate": "2025-01-15T00:00:00Z",
                "packages": [
                    {"registryType": "pypi", "identifier": "acme-weather", "transport": {"type": "stdio"}}
                ],
            },
        ],
    }


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


@pytest.fixture
def servers_dir(tmp_path, container_doc, flat_doc, versioned_doc):
    root = tmp_path / "servers"
    write_json(root / "example" / "foo.json", container_doc)
    write_json(root / "example" / "bar.json", flat_doc)
    write_json(root / "acme" / "weather.json", versioned_doc)
    return root


class MemorySource:
    """
    In-memory source provider.

    ``files`` maps paths to raw bytes; the content id is a digest of them.
    ``delay`` slows every call down and ``fail_with`` makes every call raise.
    """

    def __init__(self, files: dict[str, bytes] | None = None, delay: float = 0.0):
        self.files = dict(files or {})
        self.delay = delay
        self.fail_with: Exception | None = None
        self.tree_calls = 0

    def set_json(self, path: str, data) -> None:
        self.files[path] = json.dumps(data).encode("utf-8")

    def describe(self) -> str:
        return "memory:test"

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def list_tree(self, ref: str) -> list[str]:
        self.tree_calls += 1
        await self._pause()
        return sorted(self.files)

    async def fetch_file(self, path: str, ref: str) -> bytes:
        return self.files[path]

    async def current_content_id(self, ref: str) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        digest = hashlib.sha256()
        for path in sorted(self.files):
            digest.update(path.encode() + b"\0" + self.files[path] + b"\0")
        return digest.hexdigest()


@pytest.fixture
def memory_source(container_doc, flat_doc, versioned_doc):
    source = MemorySource()
    source.set_json("servers/foo.json", container_doc)
    source.set_json("servers/bar.json", flat_doc)
    source.set_json("servers/weather.json", versioned_doc)
    return source
