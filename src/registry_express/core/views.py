"""
View Builder — derives every published artifact from the canonical entry set.

``build_views`` is a pure function: the same entries and the same
``generated_at`` always produce an equal ViewSet, byte for byte.

Static tree layout (``{enc}`` is the percent-encoded identifier):

    registry.json                                    discovery document
    api/v0.1/servers.json                            summary list
    api/v0.1/servers/{enc}/versions.json             entry detail
    api/v0.1/servers/{enc}/versions/{version}.json   version detail (+ latest.json)
    {v0.1,v0}/servers/index.json                     client-protocol list
    {v0.1,v0}/servers/{enc}/versions/index.json      client-protocol versions
    {v0.1,v0}/servers/{enc}/versions/{version}.json  client-protocol version (+ latest.json)
    simple/index.{json,html}                         browsing index root
    simple/{enc}/index.{json,html}                   browsing index per entry
"""

import html
import logging
from datetime import datetime, timezone
from urllib.parse import quote

from registry_express.models.entry import Entry, VersionRecord
from registry_express.models.views import HTML_MEDIA_TYPE, JSON_MEDIA_TYPE, Artifact, ViewSet
from registry_express.parsers.identifier import encode_identifier

logger = logging.getLogger(__name__)


FORMAT_VERSION = "1"
API_PREFIX = "api/v0.1"
COMPAT_PREFIXES = ("v0.1", "v0")
OFFICIAL_SCHEMA = "https://static.modelcontextprotocol.io/schemas/2025-12-11/server.schema.json"
OFFICIAL_META_KEY = "io.modelcontextprotocol.registry/official"


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _release_timestamp(release_date: str | None, fallback: str) -> str:
    if not release_date:
        return fallback
    try:
        parsed = datetime.fromisoformat(release_date.replace("Z", "+00:00"))
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return utc_timestamp(parsed)


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


def _entry_header(entry: Entry) -> dict:
    return {
        "name": entry.name,
        "title": entry.title,
        "description": entry.description,
        "repository": entry.repository.to_dict() if entry.repository else None,
        "websiteUrl": entry.website_url,
    }


# ──────────────────────────────────────────────
# Plain Views
# ──────────────────────────────────────────────


def summary_item(entry: Entry) -> dict:
    return _drop_none(
        {
            "name": entry.name,
            "description": entry.description,
            "version": entry.latest.version,
            "repository": entry.repository.to_dict() if entry.repository else None,
            "websiteUrl": entry.website_url,
        }
    )


def entry_detail(entry: Entry) -> dict:
    detail = _drop_none(_entry_header(entry))
    detail["versions"] = [
        _drop_none(
            {"version": v.version, "releaseDate": v.release_date, "isLatest": v.is_latest}
        )
        for v in entry.versions
    ]
    return detail


def version_detail(entry: Entry, version: VersionRecord) -> dict:
    detail = _drop_none(
        {
            **_entry_header(entry),
            "version": version.version,
            "releaseDate": version.release_date,
            "isLatest": version.is_latest,
        }
    )
    detail["packages"] = [p.to_dict() for p in version.packages]
    if version.remotes:
        detail["remotes"] = [r.to_dict() for r in version.remotes]
    return detail


# ──────────────────────────────────────────────
# Client-Protocol Envelope
# ──────────────────────────────────────────────


def compat_envelope(entry: Entry, version: VersionRecord, generated_at: str) -> dict:
    """Wrap a version in the ``{server, _meta}`` envelope the official registry API returns."""
    server = _drop_none(
        {
            "$schema": OFFICIAL_SCHEMA,
            "name": entry.name,
            "title": entry.title,
            "description": entry.description,
            "icons": entry.icons,
            "repository": entry.repository.to_dict() if entry.repository else None,
            "version": version.version,
            "packages": [p.to_dict() for p in version.packages],
            "remotes": [r.to_dict() for r in version.remotes] if version.remotes else None,
            "websiteUrl": entry.website_url,
        }
    )
    return {
        "server": server,
        "_meta": {
            OFFICIAL_META_KEY: {
                "status": "active",
                "publishedAt": _release_timestamp(version.release_date, generated_at),
                "updatedAt": generated_at,
                "isLatest": version.is_latest,
            }
        },
    }


# ──────────────────────────────────────────────
# Browsing Index
# ──────────────────────────────────────────────


def _html_page(title: str, links: list[tuple[str, str]]) -> str:
    rows = "\n".join(
        f'    <a href="{html.escape(href)}">{html.escape(text)}</a><br/>' for href, text in links
    )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "  <head>\n"
        '    <meta name="registry-format-version" content="' + FORMAT_VERSION + '"/>\n'
        f"    <title>{html.escape(title)}</title>\n"
        "  </head>\n"
        "  <body>\n"
        f"    <h1>{html.escape(title)}</h1>\n"
        f"{rows}\n"
        "  </body>\n"
        "</html>\n"
    )


def _version_href(entry: Entry, version: VersionRecord) -> str:
    encoded = encode_identifier(entry.name)
    return f"../../{API_PREFIX}/servers/{encoded}/versions/{quote(version.version, safe='')}.json"


def simple_root(entries: list[Entry], generated_at: str) -> tuple[dict, str]:
    links = [(f"{encode_identifier(e.name)}/", e.name) for e in entries]
    body = {
        "formatVersion": FORMAT_VERSION,
        "generated": generated_at,
        "servers": [{"name": name, "href": href} for href, name in links],
    }
    return body, _html_page("Simple index", links)


def simple_entry(entry: Entry) -> tuple[dict, str]:
    links = [(_version_href(entry, v), v.version) for v in entry.versions]
    body = {
        "formatVersion": FORMAT_VERSION,
        "name": entry.name,
        "versions": [
            {"version": v.version, "isLatest": v.is_latest, "href": href}
            for v, (href, _) in zip(entry.versions, links)
        ],
    }
    return body, _html_page(f"Versions of {entry.name}", links)


# ──────────────────────────────────────────────
# Discovery Document
# ──────────────────────────────────────────────


def discovery_document(entries: list[Entry], generated_at: str) -> dict:
    return {
        "formatVersion": FORMAT_VERSION,
        "generated": generated_at,
        "total": len(entries),
        "nameEncoding": "percent-encoded single path segment",
        "endpoints": {
            "servers": f"{API_PREFIX}/servers.json",
            "serverVersions": f"{API_PREFIX}/servers/{{name}}/versions.json",
            "serverVersion": f"{API_PREFIX}/servers/{{name}}/versions/{{version}}.json",
            "compat": {
                "prefixes": list(COMPAT_PREFIXES),
                "servers": "{prefix}/servers",
                "serverVersions": "{prefix}/servers/{name}/versions",
                "serverVersion": "{prefix}/servers/{name}/versions/{version}",
            },
            "simple": {"json": "simple/index.json", "html": "simple/index.html"},
        },
    }


# ──────────────────────────────────────────────
# Builder
# ──────────────────────────────────────────────


def build_views(entries: list[Entry], generated_at: str | None = None) -> ViewSet:
    """
    Derive the complete artifact set for an entry set.

    Args:
        entries: Canonical entries; sorted by name here, so input order does not matter.
        generated_at: Generation timestamp; defaults to now.

    Returns:
        A new immutable ViewSet.
    """
    generated_at = generated_at or utc_timestamp()
    ordered = sorted(entries, key=lambda e: e.name)
    artifacts: dict[str, Artifact] = {}

    def add(path: str, body, media_type: str = JSON_MEDIA_TYPE) -> None:
        artifacts[path] = Artifact(path=path, body=body, media_type=media_type)

    add("registry.json", discovery_document(ordered, generated_at))
    add(
        f"{API_PREFIX}/servers.json",
        {
            "servers": [summary_item(e) for e in ordered],
            "total": len(ordered),
            "generated": generated_at,
        },
    )

    compat_list = {
        "servers": [compat_envelope(e, e.latest, generated_at) for e in ordered],
        "metadata": {"count": len(ordered), "lastRefresh": generated_at},
    }
    for prefix in COMPAT_PREFIXES:
        add(f"{prefix}/servers/index.json", compat_list)

    root_json, root_html = simple_root(ordered, generated_at)
    add("simple/index.json", root_json)
    add("simple/index.html", root_html, HTML_MEDIA_TYPE)

    for entry in ordered:
        encoded = encode_identifier(entry.name)
        api_dir = f"{API_PREFIX}/servers/{encoded}"
        add(f"{api_dir}/versions.json", entry_detail(entry))
        for version in entry.versions:
            add(f"{api_dir}/versions/{version.version}.json", version_detail(entry, version))
        add(f"{api_dir}/versions/latest.json", version_detail(entry, entry.latest))

        compat_versions = {
            "servers": [compat_envelope(entry, v, generated_at) for v in entry.versions],
            "metadata": {"count": len(entry.versions)},
        }
        for prefix in COMPAT_PREFIXES:
            compat_dir = f"{prefix}/servers/{encoded}/versions"
            add(f"{compat_dir}/index.json", compat_versions)
            for version in entry.versions:
                add(f"{compat_dir}/{version.version}.json", compat_envelope(entry, version, generated_at))
            add(f"{compat_dir}/latest.json", compat_envelope(entry, entry.latest, generated_at))

        entry_json, entry_html = simple_entry(entry)
        add(f"simple/{encoded}/index.json", entry_json)
        add(f"simple/{encoded}/index.html", entry_html, HTML_MEDIA_TYPE)

    logger.debug(f"[Views] Built {len(artifacts)} artifacts for {len(ordered)} entries")
    return ViewSet(
        generated_at=generated_at,
        entry_names=tuple(e.name for e in ordered),
        artifacts=artifacts,
    )
