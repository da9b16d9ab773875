"""
Canonical Entry Model.

Every supported entry-file shape is normalized into these structures before
any view is derived from it. ``to_dict`` renders the versioned wire format
(camelCase keys, optional fields omitted) used by the source tree itself.
"""

from dataclasses import dataclass, field
from enum import Enum


DESCRIPTION_MAX_LENGTH = 100


@dataclass(frozen=True)
class RawFile:
    """A file discovered under the source root; lives for one ingestion pass."""

    path: str
    content: bytes


class RegistryType(str, Enum):
    """Package manager a distribution is published to."""

    NPM = "npm"
    PYPI = "pypi"
    OCI = "oci"
    NUGET = "nuget"
    MCPB = "mcpb"  # archive bundle


class TransportType(str, Enum):
    """How a client talks to a launched entry."""

    STDIO = "stdio"
    STREAMABLE_HTTP = "streamable-http"
    SSE = "sse"

    @property
    def requires_url(self) -> bool:
        return self is not TransportType.STDIO


def _compact(data: dict) -> dict:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class Transport:
    type: TransportType
    url: str | None = None
    headers: list[dict] | None = None

    def to_dict(self) -> dict:
        return _compact({"type": self.type.value, "url": self.url, "headers": self.headers})


@dataclass
class EnvironmentVariable:
    name: str
    description: str | None = None
    is_required: bool | None = None
    is_secret: bool | None = None
    default: str | None = None

    def to_dict(self) -> dict:
        return _compact(
            {
                "name": self.name,
                "description": self.description,
                "isRequired": self.is_required,
                "isSecret": self.is_secret,
                "default": self.default,
            }
        )


@dataclass
class PackageDistribution:
    """One installable distribution of an entry version."""

    registry_type: RegistryType
    identifier: str
    transport: Transport
    version: str | None = None
    runtime_hint: str | None = None
    registry_base_url: str | None = None
    environment_variables: list[EnvironmentVariable] = field(default_factory=list)
    package_arguments: list[dict] = field(default_factory=list)
    runtime_arguments: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = _compact(
            {
                "registryType": self.registry_type.value,
                "registryBaseUrl": self.registry_base_url,
                "identifier": self.identifier,
                "version": self.version,
                "runtimeHint": self.runtime_hint,
                "transport": self.transport.to_dict(),
            }
        )
        if self.environment_variables:
            data["environmentVariables"] = [v.to_dict() for v in self.environment_variables]
        if self.package_arguments:
            data["packageArguments"] = self.package_arguments
        if self.runtime_arguments:
            data["runtimeArguments"] = self.runtime_arguments
        return data


@dataclass
class SourceLocation:
    url: str
    source: str | None = None  # provenance kind, e.g. "github"
    subfolder: str | None = None
    id: str | None = None

    def to_dict(self) -> dict:
        return _compact(
            {"url": self.url, "source": self.source, "subfolder": self.subfolder, "id": self.id}
        )


@dataclass
class VersionRecord:
    version: str
    release_date: str | None = None
    is_latest: bool = False
    packages: list[PackageDistribution] = field(default_factory=list)
    remotes: list[Transport] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = _compact(
            {
                "version": self.version,
                "releaseDate": self.release_date,
                "isLatest": self.is_latest,
            }
        )
        data["packages"] = [p.to_dict() for p in self.packages]
        if self.remotes:
            data["remotes"] = [r.to_dict() for r in self.remotes]
        return data


@dataclass
class Entry:
    """
    A normalized registry entry.

    ``versions`` keeps source order (descending precedence) and carries
    exactly one record flagged ``is_latest`` once normalization is done.
    """

    name: str
    description: str
    versions: list[VersionRecord]
    title: str | None = None
    repository: SourceLocation | None = None
    website_url: str | None = None
    icons: list[dict] | None = None
    source_path: str | None = None  # raw file this entry came from

    @property
    def latest(self) -> VersionRecord:
        for version in self.versions:
            if version.is_latest:
                return version
        return self.versions[0]

    def to_dict(self) -> dict:
        return _compact(
            {
                "name": self.name,
                "title": self.title,
                "description": self.description,
                "repository": self.repository.to_dict() if self.repository else None,
                "websiteUrl": self.website_url,
                "icons": self.icons,
                "versions": [v.to_dict() for v in self.versions],
            }
        )
