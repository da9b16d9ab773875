"""
ViewSet Model — the published, read-only artifact set.

A ViewSet is built once per ingestion pass and never mutated afterwards.
Artifacts are addressed by their path in the static tree, so the same
structure serves the live HTTP router and the on-disk export.
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Protocol


JSON_MEDIA_TYPE = "application/json"
HTML_MEDIA_TYPE = "text/html; charset=utf-8"


@dataclass(frozen=True)
class Artifact:
    """One published file: a JSON document, an HTML page, or raw bytes read from disk."""

    path: str
    body: dict | str | bytes
    media_type: str = JSON_MEDIA_TYPE

    def render(self) -> bytes:
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return (json.dumps(self.body, indent=2, ensure_ascii=False) + "\n").encode("utf-8")

    def json(self) -> dict:
        if isinstance(self.body, dict):
            return self.body
        return json.loads(self.render())


def candidate_paths(logical_path: str, prefer_html: bool = False) -> list[str]:
    """
    Static-host lookup order for a request path.

    Exact file, then directory index, then the ``.json`` sibling, then an
    HTML index page. Browsers (``prefer_html``) get the HTML index first.
    """
    path = logical_path.strip("/")
    prefix = f"{path}/" if path else ""
    indexes = [f"{prefix}index.json", f"{prefix}index.html"]
    if prefer_html:
        indexes.reverse()
    if not path:
        return indexes
    return [path, indexes[0], f"{path}.json", indexes[1]]


class ViewLookup(Protocol):
    """Anything the router can answer requests from."""

    @property
    def entry_count(self) -> int: ...

    def resolve(self, logical_path: str, prefer_html: bool = False) -> Artifact | None: ...


@dataclass(frozen=True)
class ViewSet:
    generated_at: str
    entry_names: tuple[str, ...] = ()
    artifacts: Mapping[str, Artifact] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "artifacts", MappingProxyType(dict(self.artifacts)))

    @property
    def entry_count(self) -> int:
        return len(self.entry_names)

    def get(self, path: str) -> Artifact | None:
        return self.artifacts.get(path)

    def resolve(self, logical_path: str, prefer_html: bool = False) -> Artifact | None:
        for candidate in candidate_paths(logical_path, prefer_html):
            artifact = self.artifacts.get(candidate)
            if artifact is not None:
                return artifact
        return None

    def paths(self) -> list[str]:
        return sorted(self.artifacts)


EMPTY_VIEW_SET = ViewSet(generated_at="")
