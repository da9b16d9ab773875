"""Tests for environment configuration."""

from pathlib import Path

import pytest

from registry_express.config import RegistryConfig, default_clone_dir, parse_git_remote
from registry_express.errors import ConfigError
from registry_express.sources import GitCheckoutSource, GitHubSource, LocalDirectorySource


def from_env(**env) -> RegistryConfig:
    return RegistryConfig.from_env(env, detect_remote=False)


class TestParseGitRemote:
    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/registry",
            "https://github.com/acme/registry.git",
            "https://token@github.com/acme/registry.git",
            "git@github.com:acme/registry.git",
            "ssh://git@github.com/acme/registry",
            "https://github.com/acme/registry/\n",
        ],
    )
    def test_github_remotes(self, url):
        assert parse_git_remote(url) == ("acme", "registry")

    @pytest.mark.parametrize("url", ["https://gitlab.com/acme/registry.git", "not a url", ""])
    def test_other_remotes(self, url):
        assert parse_git_remote(url) is None


class TestRegistryConfig:
    def test_defaults(self):
        config = from_env()
        assert config.source == "local"
        assert config.servers_dir == Path("./servers")
        assert config.branch == "main"
        assert config.poll_interval == 300
        assert config.fetch_timeout == 30
        assert config.host == "127.0.0.1"
        assert config.port == 3443
        assert config.webhook_secret is None
        assert config.checkpoint_file == Path(".registry_checkpoint.json")

    def test_github_inferred(self):
        config = from_env(GITHUB_OWNER="acme", GITHUB_REPO="registry", GITHUB_BRANCH="prod")
        assert config.source == "github"
        assert config.branch == "prod"

    def test_git_inferred_with_clone_dir(self):
        config = from_env(MCP_REGISTRY_REPO="https://git.example.com/registry.git")
        assert config.source == "git"
        assert config.clone_dir == default_clone_dir("https://git.example.com/registry.git")
        assert config.clone_dir.name.startswith("mcp-registry-")

    def test_explicit_values(self):
        config = from_env(
            MCP_SOURCE="local",
            MCP_SERVERS_DIR="/data/servers",
            MCP_POLL_INTERVAL="60",
            MCP_PORT="8080",
            MCP_WEBHOOK_SECRET="s3cret",
            MCP_OUTPUT_DIR="/srv/registry/dist",
        )
        assert config.servers_dir == Path("/data/servers")
        assert config.poll_interval == 60
        assert config.port == 8080
        assert config.webhook_secret == "s3cret"
        assert config.checkpoint_file == Path("/srv/registry/.registry_checkpoint.json")

    def test_invalid_integer(self):
        with pytest.raises(ConfigError, match="MCP_PORT"):
            from_env(MCP_PORT="eighty")

    def test_unknown_source(self):
        with pytest.raises(ConfigError, match="Unknown source"):
            from_env(MCP_SOURCE="svn")

    def test_github_requires_repo(self):
        with pytest.raises(ConfigError, match="GITHUB_OWNER"):
            from_env(MCP_SOURCE="github")

    def test_make_source(self, tmp_path):
        assert isinstance(from_env(MCP_SERVERS_DIR=str(tmp_path)).make_source(), LocalDirectorySource)
        github = from_env(GITHUB_OWNER="acme", GITHUB_REPO="registry", GITHUB_TOKEN="t").make_source()
        assert isinstance(github, GitHubSource)
        assert github.key == "acme/registry"
        git = from_env(MCP_REGISTRY_REPO="git@example.com:registry.git", MCP_CLONE_DIR=str(tmp_path)).make_source()
        assert isinstance(git, GitCheckoutSource)
        assert git.clone_dir == tmp_path
