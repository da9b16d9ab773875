"""Source providers for raw entry files."""

from registry_express.sources.base import SourceProvider, collect_raw_files
from registry_express.sources.git import GitCheckoutSource
from registry_express.sources.github import GitHubSource
from registry_express.sources.local import LocalDirectorySource


__all__ = [
    "SourceProvider",
    "collect_raw_files",
    "GitCheckoutSource",
    "GitHubSource",
    "LocalDirectorySource",
]
