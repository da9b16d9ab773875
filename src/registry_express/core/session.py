"""
Registry session — the one piece of shared mutable state.

The session owns the live view reference and the build-in-progress flag.
Everything runs on one event loop, so both are plain attributes: the flag is
tested and set with no ``await`` in between, and a new view set is published
by a single assignment. Readers always see either the old or the new views.
"""

import logging
from dataclasses import dataclass, field

from registry_express.models.views import EMPTY_VIEW_SET, ViewLookup

logger = logging.getLogger(__name__)


@dataclass
class RegistrySession:
    source: str = ""
    branch: str = ""
    views: ViewLookup = field(default=EMPTY_VIEW_SET)
    commit: str | None = None
    last_build: str | None = None
    last_check: str | None = None
    next_check: str | None = None
    last_outcome: str | None = None
    last_error: str | None = None
    building: bool = False
    builds_completed: int = 0

    def try_begin_build(self) -> bool:
        """Claim the build slot. Returns False if a build already holds it."""
        if self.building:
            return False
        self.building = True
        return True

    def end_build(self) -> None:
        self.building = False

    def publish(self, views: ViewLookup, commit: str | None, built_at: str) -> None:
        """Replace the live views with a freshly built set."""
        self.views = views
        self.commit = commit
        self.last_build = built_at
        self.last_error = None
        self.builds_completed += 1
        logger.info(f"Published {views.entry_count} entries for {(commit or 'unknown')[:8]}")

    def record_failure(self, message: str) -> None:
        self.last_error = message

    def status(self) -> dict:
        return {
            "status": "building" if self.building else ("ok" if self.last_error is None else "degraded"),
            "source": self.source,
            "ref": self.branch,
            "commit": self.commit,
            "servers": self.views.entry_count,
            "lastBuild": self.last_build,
            "lastCheck": self.last_check,
            "nextCheck": self.next_check,
            "building": self.building,
            "lastOutcome": self.last_outcome,
            "lastError": self.last_error,
        }
