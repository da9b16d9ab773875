"""
Entry File Parser — normalizes raw entry files into canonical entries.

Three file shapes are tolerated and detected structurally:

- container: ``{"servers": [ ... ]}``, each element normalized independently
- flat: ``{"name", "description", "version", "packages"}`` (official schema,
  one version)
- versioned: ``{"name", "description", "versions": [ ... ]}``

A bad entry never aborts the file: it is dropped and reported as a
``ValidationError``; the valid remainder is returned.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from registry_express.errors import NormalizationError, ValidationError
from registry_express.models.entry import (
    DESCRIPTION_MAX_LENGTH,
    Entry,
    EnvironmentVariable,
    PackageDistribution,
    RawFile,
    RegistryType,
    SourceLocation,
    Transport,
    TransportType,
    VersionRecord,
)
from registry_express.parsers.identifier import is_valid_identifier

logger = logging.getLogger(__name__)

RESERVED_VERSIONS = {"latest", "index"}


# ──────────────────────────────────────────────
# Shape Detection
# ──────────────────────────────────────────────


@dataclass
class ContainerShape:
    items: list


@dataclass
class FlatShape:
    data: dict


@dataclass
class VersionedShape:
    data: dict


Shape = ContainerShape | FlatShape | VersionedShape


def _is_flat(data: dict) -> bool:
    return (
        "versions" not in data
        and isinstance(data.get("version"), str)
        and ("packages" in data or "remotes" in data)
    )


def detect_shape(data, path: str) -> Shape:
    """
    Classify a decoded document as one of the recognized shapes.

    Raises:
        NormalizationError: If the document matches none of them.
    """
    if not isinstance(data, dict):
        raise NormalizationError(path, f"expected a JSON object, got {type(data).__name__}")
    if isinstance(data.get("servers"), list):
        return ContainerShape(items=data["servers"])
    if _is_flat(data):
        return FlatShape(data=data)
    if isinstance(data.get("versions"), list):
        return VersionedShape(data=data)
    raise NormalizationError(
        path, "unrecognized file shape: expected a servers array, versions array, or version+packages"
    )


# ──────────────────────────────────────────────
# Results
# ──────────────────────────────────────────────


@dataclass
class NormalizationResult:
    """Entries that survived validation plus everything that went wrong."""

    entries: list[Entry] = field(default_factory=list)
    errors: list[NormalizationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend(self, other: "NormalizationResult") -> None:
        self.entries.extend(other.entries)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


# ──────────────────────────────────────────────
# Version Merging
# ──────────────────────────────────────────────


def merge_versions(
    existing: list[VersionRecord], incoming: list[VersionRecord]
) -> list[VersionRecord]:
    """
    Merge version records keyed by their ``version`` string.

    A repeated version string replaces the earlier record in place; a new one
    is appended. Neither input list is modified.
    """
    merged = list(existing)
    index = {record.version: i for i, record in enumerate(merged)}
    for record in incoming:
        if record.version in index:
            merged[index[record.version]] = record
        else:
            index[record.version] = len(merged)
            merged.append(record)
    return merged


def settle_latest(versions: list[VersionRecord]) -> tuple[list[VersionRecord], str | None]:
    """
    Leave exactly one version flagged latest.

    The first flagged version in list order wins; when none is flagged the
    first version is used. Returns the new list and a warning, if any.
    """
    flagged = [i for i, v in enumerate(versions) if v.is_latest]
    winner = flagged[0] if flagged else 0
    warning = None
    if len(flagged) > 1:
        warning = (
            f"{len(flagged)} versions flagged isLatest; keeping {versions[winner].version}"
        )
    settled = [
        VersionRecord(
            version=v.version,
            release_date=v.release_date,
            is_latest=(i == winner),
            packages=v.packages,
            remotes=v.remotes,
        )
        for i, v in enumerate(versions)
    ]
    return settled, warning


# ──────────────────────────────────────────────
# Field Parsing
# ──────────────────────────────────────────────


class _EntryParser:
    """Parses one entry object; raises ValidationError on the first hard failure."""

    def __init__(self, path: str):
        self.path = path
        self.name: str | None = None
        self.warnings: list[str] = []

    def fail(self, reason: str) -> ValidationError:
        return ValidationError(self.path, reason, name=self.name)

    def warn(self, reason: str) -> None:
        label = f"{self.path}: {self.name}" if self.name else self.path
        self.warnings.append(f"{label}: {reason}")

    def optional_str(self, data: dict, key: str) -> str | None:
        value = data.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise self.fail(f"field {key!r} must be a string")
        return value

    def required_str(self, data: dict, key: str, where: str = "") -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise self.fail(f"missing required field {key!r}{where}")
        return value

    def optional_list(self, data: dict, key: str, where: str = "") -> list:
        value = data.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise self.fail(f"field {key!r}{where} must be an array")
        return value

    def optional_bool(self, data: dict, key: str, where: str = "") -> bool | None:
        value = data.get(key)
        if value is not None and not isinstance(value, bool):
            raise self.fail(f"field {key!r}{where} must be a boolean")
        return value

    def parse_entry(self, data, versions_data: list[dict]) -> Entry:
        if not isinstance(data, dict):
            raise self.fail("entry must be a JSON object")

        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise self.fail("missing required field 'name'")
        self.name = name
        if not is_valid_identifier(name):
            raise self.fail(f"invalid name format {name!r}")

        description = self.required_str(data, "description")
        if len(description) > DESCRIPTION_MAX_LENGTH:
            self.warn(f"description longer than {DESCRIPTION_MAX_LENGTH} characters")

        if not versions_data:
            raise self.fail("entry has no versions")

        records: list[VersionRecord] = []
        for i, raw_version in enumerate(versions_data):
            record = self.parse_version(raw_version, i)
            if any(r.version == record.version for r in records):
                self.warn(f"duplicate version {record.version!r}; later definition wins")
            records = merge_versions(records, [record])

        versions, latest_warning = settle_latest(records)
        if latest_warning:
            self.warn(latest_warning)

        return Entry(
            name=name,
            description=description,
            versions=versions,
            title=self.optional_str(data, "title"),
            repository=self.parse_repository(data.get("repository")),
            website_url=self.optional_str(data, "websiteUrl"),
            icons=data.get("icons") if isinstance(data.get("icons"), list) else None,
            source_path=self.path,
        )

    def parse_repository(self, data) -> SourceLocation | None:
        if data is None:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("url"), str):
            self.warn("ignoring repository without a url")
            return None
        return SourceLocation(
            url=data["url"],
            source=self.optional_str(data, "source"),
            subfolder=self.optional_str(data, "subfolder"),
            id=self.optional_str(data, "id"),
        )

    def parse_release_date(self, value) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            try:
                datetime.fromisoformat(value.replace("Z", "+00:00"))
                return value
            except ValueError:
                pass
        self.warn(f"ignoring malformed releaseDate {value!r}")
        return None

    def parse_version(self, data, index: int) -> VersionRecord:
        if not isinstance(data, dict):
            raise self.fail(f"version {index} must be a JSON object")
        version = data.get("version")
        if not isinstance(version, str) or not version.strip():
            raise self.fail(f"version {index}: missing version field")
        if version in RESERVED_VERSIONS or "/" in version:
            raise self.fail(f"version {index}: invalid version string {version!r}")

        packages_data = data.get("packages", [])
        if not isinstance(packages_data, list):
            raise self.fail(f"version {version}: packages must be an array")
        packages = [self.parse_package(p, version, j) for j, p in enumerate(packages_data)]

        remotes_data = data.get("remotes", [])
        if not isinstance(remotes_data, list):
            raise self.fail(f"version {version}: remotes must be an array")
        remotes = [
            self.parse_transport(r, f"version {version}, remote {j}")
            for j, r in enumerate(remotes_data)
        ]

        if not packages and not remotes:
            self.warn(f"version {version} has no packages")

        return VersionRecord(
            version=version,
            release_date=self.parse_release_date(data.get("releaseDate")),
            is_latest=data.get("isLatest") is True,
            packages=packages,
            remotes=remotes,
        )

    def parse_transport(self, data, where: str) -> Transport:
        if not isinstance(data, dict) or not data.get("type"):
            raise self.fail(f"{where}: missing transport.type")
        try:
            kind = TransportType(data["type"])
        except ValueError:
            raise self.fail(f"{where}: unknown transport type {data['type']!r}") from None
        url = data.get("url")
        if kind.requires_url and not (isinstance(url, str) and url):
            raise self.fail(f"{where}: {kind.value} transport requires a url")
        headers = data.get("headers") if isinstance(data.get("headers"), list) else None
        return Transport(type=kind, url=url, headers=headers)

    def parse_package(self, data, version: str, index: int) -> PackageDistribution:
        where = f"version {version}, package {index}"
        if not isinstance(data, dict):
            raise self.fail(f"{where}: package must be a JSON object")
        if not data.get("registryType"):
            raise self.fail(f"{where}: missing registryType")
        try:
            registry_type = RegistryType(data["registryType"])
        except ValueError:
            raise self.fail(f"{where}: unknown registryType {data['registryType']!r}") from None
        identifier = self.required_str(data, "identifier", f" in {where}")
        transport = self.parse_transport(data.get("transport"), where)

        env_vars = []
        for raw_var in self.optional_list(data, "environmentVariables", f" in {where}"):
            if not isinstance(raw_var, dict) or not isinstance(raw_var.get("name"), str):
                raise self.fail(f"{where}: environment variable without a name")
            env_vars.append(
                EnvironmentVariable(
                    name=raw_var["name"],
                    description=self.optional_str(raw_var, "description"),
                    is_required=self.optional_bool(raw_var, "isRequired", f" in {where}"),
                    is_secret=self.optional_bool(raw_var, "isSecret", f" in {where}"),
                    default=raw_var.get("default"),
                )
            )

        return PackageDistribution(
            registry_type=registry_type,
            identifier=identifier,
            transport=transport,
            version=self.optional_str(data, "version"),
            runtime_hint=self.optional_str(data, "runtimeHint"),
            registry_base_url=self.optional_str(data, "registryBaseUrl"),
            environment_variables=env_vars,
            package_arguments=list(self.optional_list(data, "packageArguments", f" in {where}")),
            runtime_arguments=list(self.optional_list(data, "runtimeArguments", f" in {where}")),
        )


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────


def _versions_for(data: dict) -> list:
    """Version list of a flat or versioned entry object."""
    if _is_flat(data):
        flat_version = {
            "version": data["version"],
            "isLatest": True,
            "packages": data.get("packages", []),
        }
        for key in ("remotes", "releaseDate"):
            if key in data:
                flat_version[key] = data[key]
        return [flat_version]
    versions = data.get("versions")
    return versions if isinstance(versions, list) else []


def _normalize_object(data, path: str) -> NormalizationResult:
    result = NormalizationResult()
    parser = _EntryParser(path)
    try:
        versions = _versions_for(data) if isinstance(data, dict) else []
        result.entries.append(parser.parse_entry(data, versions))
    except ValidationError as e:
        result.errors.append(e)
    result.warnings.extend(parser.warnings)
    return result


def normalize_document(data, path: str) -> NormalizationResult:
    """Normalize an already-decoded document."""
    try:
        shape = detect_shape(data, path)
    except NormalizationError as e:
        return NormalizationResult(errors=[e])

    match shape:
        case ContainerShape(items=items):
            result = NormalizationResult()
            for item in items:
                result.extend(_normalize_object(item, path))
            return result
        case FlatShape(data=obj) | VersionedShape(data=obj):
            return _normalize_object(obj, path)


def normalize(raw_file: RawFile) -> NormalizationResult:
    """
    Parse one raw file into canonical entries.

    Never raises for bad input: decode failures, unrecognized shapes and
    invalid entries are all returned in ``errors``.
    """
    try:
        data = json.loads(raw_file.content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return NormalizationResult(errors=[NormalizationError(raw_file.path, f"invalid JSON: {e}")])

    return normalize_document(data, raw_file.path)
