"""
Error taxonomy for the registry engine.

Per-entry problems (validation, identifier conflicts) are collected during an
ingestion pass and reported, never raised out of it. Fetch and webhook errors
are raised and handled at the sync/HTTP boundary.
"""

from __future__ import annotations


class RegistryError(Exception):
    """Base class for all registry-express errors."""


class ConfigError(RegistryError):
    """Invalid configuration value."""


class NormalizationError(RegistryError):
    """A raw file (or part of it) could not be normalized."""

    kind = "normalization"

    def __init__(self, path: str, reason: str, name: str | None = None):
        self.path = path
        self.reason = reason
        self.name = name
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.name:
            return f"{self.path}: {self.name}: {self.reason}"
        return f"{self.path}: {self.reason}"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "path": self.path, "name": self.name, "reason": self.reason}


class ValidationError(NormalizationError):
    """A single entry failed validation and was dropped."""

    kind = "validation"


class IdentifierConflictError(ValidationError):
    """Two raw entries claimed the same identifier; the later one is rejected."""

    kind = "conflict"

    def __init__(self, path: str, name: str, first_path: str):
        self.first_path = first_path
        super().__init__(path, f"identifier already declared in {first_path}", name=name)


class FetchError(RegistryError):
    """Remote tree or file content could not be fetched."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class WebhookAuthError(RegistryError):
    """Webhook request carried a missing or invalid signature."""
