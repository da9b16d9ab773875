"""
Push notification checks: HMAC signature and tracked-ref filter.
"""

import hashlib
import hmac
import logging

from registry_express.errors import WebhookAuthError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
SIGNATURE_PREFIX = "sha256="


def sign(body: bytes, secret: str) -> str:
    """Header value a sender with ``secret`` would attach to ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> None:
    """
    Check ``signature`` against an HMAC-SHA256 of the raw ``body``.

    With no secret configured verification is skipped. Raises WebhookAuthError
    when a secret is configured and the signature is missing or wrong.
    """
    if not secret:
        return
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        raise WebhookAuthError("missing or malformed signature")
    if not hmac.compare_digest(sign(body, secret), signature.strip()):
        raise WebhookAuthError("signature mismatch")


def ref_matches(ref: str | None, branch: str) -> bool:
    """True if a push ``ref`` names the tracked branch (full or short form)."""
    if not ref:
        return False
    return ref == branch or ref == f"refs/heads/{branch}"
