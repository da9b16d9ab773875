"""
Request path resolution.

Entry identifiers contain a ``/``. Clients address them either literally as
two path segments (``io.github.acme/weather``) or percent-encoded as one
(``io.github.acme%2Fweather``). ASGI servers decode ``%2F`` before routing,
so resolution works on the raw request path instead: each segment is decoded
on its own, and segments that decode to something containing ``/`` are put
back into the canonical encoded form the view builder used.
"""

from registry_express.core.views import API_PREFIX, COMPAT_PREFIXES
from registry_express.models.views import Artifact, ViewLookup
from registry_express.parsers.identifier import (
    decode_identifier,
    encode_identifier,
    is_valid_identifier,
    join_segments,
)

# Path prefix (as segments) -> index of the segment holding the identifier.
IDENTIFIER_POSITIONS: dict[tuple[str, ...], int] = {
    **{(prefix, "servers"): 2 for prefix in COMPAT_PREFIXES},
    (*API_PREFIX.split("/"), "servers"): 3,
    ("simple",): 1,
}


def _canonical_segment(segment: str) -> str:
    decoded = decode_identifier(segment)
    if "/" in decoded:
        return encode_identifier(decoded)
    return decoded


def split_raw_path(raw_path: str | bytes) -> list[str]:
    """Canonical segments of a raw request path; the query string is dropped."""
    if isinstance(raw_path, bytes):
        raw_path = raw_path.decode("latin-1")
    path = raw_path.split("?", 1)[0].strip("/")
    if not path:
        return []
    return [_canonical_segment(s) for s in path.split("/")]


def identifier_position(segments: list[str]) -> int | None:
    for prefix, position in IDENTIFIER_POSITIONS.items():
        if tuple(segments[: len(prefix)]) == prefix and len(segments) > position:
            return position
    return None


def candidate_paths(raw_path: str | bytes) -> list[str]:
    """
    Logical paths to try for a request, in order.

    The literal two-segment identifier form comes first, then the path as
    given (which covers the single encoded segment).
    """
    segments = split_raw_path(raw_path)
    if not segments:
        return ["", "registry.json"]
    candidates = []

    position = identifier_position(segments)
    if position is not None and len(segments) > position + 1:
        namespace, short_name = segments[position], segments[position + 1]
        name = join_segments(namespace, short_name)
        if is_valid_identifier(name):
            merged = segments[:position] + [encode_identifier(name)] + segments[position + 2 :]
            candidates.append("/".join(merged))

    candidates.append("/".join(segments))
    return candidates


def resolve_request(lookup: ViewLookup, raw_path: str | bytes, prefer_html: bool = False) -> Artifact | None:
    for candidate in candidate_paths(raw_path):
        artifact = lookup.resolve(candidate, prefer_html)
        if artifact is not None:
            return artifact
    return None


def describe_miss(lookup: ViewLookup, raw_path: str | bytes) -> dict:
    """Body of a 404 response for a path that did not resolve."""
    segments = split_raw_path(raw_path)
    path = "/" + "/".join(segments)
    position = identifier_position(segments)
    if position is None:
        return {"error": "not_found", "message": f"No resource at {path}", "path": path}

    # Which candidate named a known entry decides between the two messages.
    for candidate in candidate_paths(raw_path):
        parts = candidate.split("/")
        name = decode_identifier(parts[position])
        if not is_valid_identifier(name):
            continue
        entry_root = "/".join(parts[: position + 1])
        known = lookup.resolve(entry_root) or lookup.resolve(f"{entry_root}/versions")
        if known is not None:
            return {
                "error": "version_not_found",
                "message": f"Requested version of {name} not found",
                "path": path,
                "server": name,
            }
        return {"error": "server_not_found", "message": f"Server {name} not found", "path": path, "server": name}

    return {"error": "not_found", "message": f"No resource at {path}", "path": path}
