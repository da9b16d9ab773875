"""
Entry Identifier Rules.

Identifiers look like ``io.github.user/server``: a dotted namespace, exactly
one ``/``, and a short name. Because the ``/`` collides with URL path
segmentation, published paths carry the identifier percent-encoded as a
single segment (``io.github.user%2Fserver``), while requests may use either
that form or two literal segments.
"""

import re
from urllib.parse import quote, unquote


SEPARATOR = "/"

IDENTIFIER_PATTERN = re.compile(r"^[a-z][a-z0-9-]*(\.[a-z][a-z0-9-]*)*/[a-z][a-z0-9-]*$")


def is_valid_identifier(name: str) -> bool:
    """Check a name against the identifier pattern."""
    return bool(IDENTIFIER_PATTERN.match(name))


def encode_identifier(name: str) -> str:
    """
    Encode an identifier into one path segment.

    'io.github.user/server' -> 'io.github.user%2Fserver'
    """
    return quote(name, safe="")


def decode_identifier(segment: str) -> str:
    """Reverse of ``encode_identifier``."""
    return unquote(segment)


def join_segments(namespace: str, short_name: str) -> str:
    """Re-join two literal path segments into an identifier."""
    return f"{unquote(namespace)}{SEPARATOR}{unquote(short_name)}"
