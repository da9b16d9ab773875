"""
Runtime configuration, read from environment variables.

Every setting has a default so a bare ``registry-express serve`` inside a
checkout of a registry repository just works.
"""

import hashlib
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from registry_express.errors import ConfigError

logger = logging.getLogger(__name__)

SOURCES = ("local", "github", "git")

_GITHUB_REMOTE = re.compile(
    r"^(?:https?://(?:[^@/]+@)?github\.com/|git@github\.com:|ssh://git@github\.com/)"
    r"(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)


def parse_git_remote(url: str) -> tuple[str, str] | None:
    """
    Extract ``(owner, repo)`` from a GitHub remote URL.

    Handles ``https://github.com/o/r(.git)``, ``git@github.com:o/r(.git)``
    and ``ssh://git@github.com/o/r``. Returns None for anything else.
    """
    match = _GITHUB_REMOTE.match(url.strip())
    if not match:
        return None
    return match.group("owner"), match.group("repo")


def detect_github_remote(cwd: Path | None = None) -> tuple[str, str] | None:
    """Owner and repo of the ``origin`` remote of the enclosing checkout, if it is on GitHub."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return parse_git_remote(result.stdout)


def _env_int(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def default_clone_dir(repo_url: str) -> Path:
    digest = hashlib.md5(repo_url.encode("utf-8")).hexdigest()[:8]
    return Path(tempfile.gettempdir()) / f"mcp-registry-{digest}"


@dataclass
class RegistryConfig:
    source: str = "local"
    servers_dir: Path = Path("./servers")
    owner: str | None = None
    repo: str | None = None
    branch: str = "main"
    token: str | None = None
    repo_url: str | None = None
    servers_path: str = "servers"
    clone_dir: Path | None = None
    poll_interval: int = 300
    fetch_timeout: int = 30
    host: str = "127.0.0.1"
    port: int = 3443
    webhook_secret: str | None = None
    output_dir: Path = Path("./dist")
    checkpoint_file: Path | None = None

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ConfigError(f"Unknown source {self.source!r}. Use one of: {', '.join(SOURCES)}")
        if self.source == "github" and not (self.owner and self.repo):
            raise ConfigError("GitHub source needs GITHUB_OWNER and GITHUB_REPO")
        if self.source == "git" and not self.repo_url:
            raise ConfigError("Git source needs MCP_REGISTRY_REPO")
        if self.poll_interval < 0:
            raise ConfigError("MCP_POLL_INTERVAL must not be negative")
        if self.fetch_timeout <= 0:
            raise ConfigError("MCP_FETCH_TIMEOUT must be positive")
        if self.clone_dir is None and self.repo_url:
            self.clone_dir = default_clone_dir(self.repo_url)
        if self.checkpoint_file is None:
            self.checkpoint_file = self.output_dir.parent / ".registry_checkpoint.json"

    @classmethod
    def from_env(cls, env: dict | None = None, detect_remote: bool = True) -> "RegistryConfig":
        env = dict(os.environ) if env is None else env

        owner = env.get("GITHUB_OWNER") or None
        repo = env.get("GITHUB_REPO") or None
        repo_url = env.get("MCP_REGISTRY_REPO") or None
        source = env.get("MCP_SOURCE") or None

        if source in (None, "github") and not (owner and repo) and detect_remote:
            detected = detect_github_remote()
            if detected:
                owner, repo = detected
                logger.debug(f"Detected GitHub remote {owner}/{repo}")

        if source is None:
            if owner and repo:
                source = "github"
            elif repo_url:
                source = "git"
            else:
                source = "local"

        output_dir = Path(env.get("MCP_OUTPUT_DIR") or "./dist")
        clone_dir = env.get("MCP_CLONE_DIR")
        checkpoint_file = env.get("MCP_CHECKPOINT_FILE")

        return cls(
            source=source,
            servers_dir=Path(env.get("MCP_SERVERS_DIR") or "./servers"),
            owner=owner,
            repo=repo,
            branch=env.get("GITHUB_BRANCH") or "main",
            token=env.get("GITHUB_TOKEN") or None,
            repo_url=repo_url,
            servers_path=env.get("MCP_REGISTRY_PATH") or "servers",
            clone_dir=Path(clone_dir) if clone_dir else None,
            poll_interval=_env_int(env, "MCP_POLL_INTERVAL", 300),
            fetch_timeout=_env_int(env, "MCP_FETCH_TIMEOUT", 30),
            host=env.get("MCP_HOST") or "127.0.0.1",
            port=_env_int(env, "MCP_PORT", 3443),
            webhook_secret=env.get("MCP_WEBHOOK_SECRET") or None,
            output_dir=output_dir,
            checkpoint_file=Path(checkpoint_file) if checkpoint_file else None,
        )

    def make_source(self):
        """Instantiate the configured SourceProvider."""
        from registry_express.sources import GitCheckoutSource, GitHubSource, LocalDirectorySource

        match self.source:
            case "github":
                return GitHubSource(
                    self.owner,
                    self.repo,
                    path=self.servers_path,
                    token=self.token,
                    timeout=float(self.fetch_timeout),
                )
            case "git":
                return GitCheckoutSource(
                    self.repo_url,
                    self.clone_dir,
                    path=self.servers_path,
                    timeout=float(self.fetch_timeout),
                )
            case _:
                return LocalDirectorySource(self.servers_dir)
