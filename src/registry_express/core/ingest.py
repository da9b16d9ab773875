"""
Ingestion pass — raw file set to canonical entry set.

Files are processed in sorted path order so that the first-declared-wins
rule for duplicate identifiers is deterministic regardless of the order a
source provider listed them in.
"""

import logging
from dataclasses import dataclass, field

from registry_express.errors import IdentifierConflictError, NormalizationError
from registry_express.models.entry import Entry, RawFile
from registry_express.parsers.entry_file import normalize

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    entries: list[Entry] = field(default_factory=list)
    errors: list[NormalizationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    files_processed: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return (
            f"{len(self.entries)} entries from {self.files_processed} file(s), "
            f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"
        )


def ingest(raw_files: list[RawFile]) -> IngestionReport:
    """Normalize every raw file and enforce global identifier uniqueness."""
    report = IngestionReport()
    declared_in: dict[str, str] = {}

    for raw_file in sorted(raw_files, key=lambda f: f.path):
        result = normalize(raw_file)
        report.files_processed += 1
        report.errors.extend(result.errors)
        report.warnings.extend(result.warnings)

        for entry in result.entries:
            first_path = declared_in.get(entry.name)
            if first_path is not None:
                report.errors.append(IdentifierConflictError(raw_file.path, entry.name, first_path))
                continue
            declared_in[entry.name] = raw_file.path
            report.entries.append(entry)
            logger.debug(f"[Ingest] {entry.name} ({len(entry.versions)} version(s))")

    for error in report.errors:
        logger.error(f"[Ingest] {error}")
    for warning in report.warnings:
        logger.warning(f"[Ingest] {warning}")

    report.entries.sort(key=lambda e: e.name)
    logger.info(f"[Ingest] {report.summary()}")
    return report
