"""
Exporter Protocol — Base interface for view set writers.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from registry_express.models.views import ViewSet


@runtime_checkable
class Exporter(Protocol):
    """
    Protocol that all exporters must implement.

    Exporters receive a complete, immutable ViewSet and persist it in their
    target form. A failed export must leave the previous output untouched.
    """

    async def export(self, view_set: ViewSet) -> None:
        """Persist every artifact of one view set."""
        ...

    async def finalize(self) -> None:
        """Called once the exporter is no longer needed. Use for cleanup."""
        ...
