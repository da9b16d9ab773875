"""
Last-known-good build checkpoint.

Records which upstream content id was last built successfully, and when, so a
restarted process (or a repeated ``build`` run) can skip work it has already
done and never claims a commit it did not actually build.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path


logger = logging.getLogger(__name__)


@dataclass
class BuildCheckpoint:
    """Marker for the last successful build."""

    commit: str
    built_at: str
    entry_count: int
    source: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BuildCheckpoint":
        return cls(
            commit=data["commit"],
            built_at=data["built_at"],
            entry_count=int(data.get("entry_count", 0)),
            source=data.get("source", ""),
        )


class CheckpointStore:
    """JSON file holding one BuildCheckpoint."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> BuildCheckpoint | None:
        """Load the checkpoint, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                return BuildCheckpoint.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load checkpoint {self.path}: {e}")
            return None

    def save(self, checkpoint: BuildCheckpoint) -> None:
        """Write the checkpoint atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(checkpoint.to_dict(), f, indent=2)
        os.replace(tmp_path, self.path)
        logger.info(f"Checkpoint saved for commit {checkpoint.commit[:8]}")

