"""
GitHub source — reads the entry tree through the GitHub REST API.

Only what is committed on the tracked ref is ever served: the ref is first
resolved to a commit sha, and the tree listing and every file fetch are
pinned to that sha so a push landing mid-fetch cannot produce a mixed tree.
"""

import asyncio
import logging
import os
from urllib.parse import quote

import httpx

from registry_express.core.resilience import CircuitBreaker, ExponentialBackoff
from registry_express.errors import FetchError

logger = logging.getLogger(__name__)


class GitHubSource:
    """
    Entry files under ``path`` in ``owner/repo``.

    Requests retry with exponential backoff on timeouts, connection errors,
    rate limiting and 5xx responses; a circuit breaker keyed by repository
    stops hammering an upstream that keeps failing.
    """

    API_URL = "https://api.github.com"
    USER_AGENT = "registry-express"

    def __init__(
        self,
        owner: str,
        repo: str,
        path: str = "servers",
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        backoff: ExponentialBackoff | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        api_url: str = API_URL,
    ):
        self.owner = owner
        self.repo = repo
        self.path = path.strip("/")
        self.token = token or os.environ.get("GITHUB_TOKEN")
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.backoff = backoff or ExponentialBackoff(base_delay=1.0, max_delay=30.0, max_retries=3)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, timeout=120.0)
        self._client = client
        self._owns_client = client is None

        if not self.token:
            logger.warning("No GITHUB_TOKEN. GitHub API requests will be rate-limited.")

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}"

    def describe(self) -> str:
        return f"github:{self.key}/{self.path}"

    # ──────────────────────────────────────────────
    # HTTP Layer
    # ──────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "User-Agent": self.USER_AGENT,
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                follow_redirects=True,
                headers=headers,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubSource":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _is_rate_limited(self, resp: httpx.Response) -> bool:
        if resp.status_code == 429:
            return True
        return resp.status_code == 403 and resp.headers.get("x-ratelimit-remaining") == "0"

    async def _request(
        self, url: str, params: dict | None = None, accept: str | None = None, attempt: int = 0
    ) -> httpx.Response:
        """GET with retry; returns only 200 responses and raises FetchError otherwise."""
        if self.circuit_breaker.is_open(self.key):
            raise FetchError(f"Circuit open for {self.key}; skipping request", url=url)

        headers = {"Accept": accept} if accept else None
        try:
            resp = await self._get_client().get(url, params=params, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            if self.backoff.should_retry(attempt):
                delay = self.backoff.calculate_delay(attempt)
                logger.debug(
                    f"Request failed ({type(e).__name__}), retry {attempt + 1} after {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                return await self._request(url, params, accept, attempt + 1)
            self.circuit_breaker.record_failure(self.key)
            raise FetchError(f"GitHub request failed after {attempt + 1} attempt(s): {e}", url=url) from e

        if resp.status_code == 200:
            self.circuit_breaker.record_success(self.key)
            return resp

        retryable = self._is_rate_limited(resp) or resp.status_code >= 500
        if retryable and self.backoff.should_retry(attempt):
            delay = self.backoff.calculate_delay(attempt)
            retry_after = resp.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                delay = min(float(retry_after), self.backoff.max_delay)
            logger.warning(f"GitHub API {resp.status_code} for {url}. Retrying in {delay:.1f}s...")
            await asyncio.sleep(delay)
            return await self._request(url, params, accept, attempt + 1)

        if retryable:
            self.circuit_breaker.record_failure(self.key)
        raise FetchError(
            f"GitHub API error ({resp.status_code}): {resp.text[:200]}",
            url=url,
            status_code=resp.status_code,
        )

    # ──────────────────────────────────────────────
    # Source Provider API
    # ──────────────────────────────────────────────

    def _repo_url(self, suffix: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/{suffix}"

    async def current_content_id(self, ref: str) -> str:
        resp = await self._request(self._repo_url(f"commits/{quote(ref, safe='')}"))
        try:
            sha = resp.json()["sha"]
        except (ValueError, KeyError) as e:
            raise FetchError(f"Unexpected commit response for {ref}: {e}") from e
        logger.debug(f"[GitHub] {self.key}@{ref} -> {sha[:8]}")
        return sha

    async def list_tree(self, ref: str) -> list[str]:
        resp = await self._request(
            self._repo_url(f"git/trees/{quote(ref, safe='')}"), params={"recursive": "1"}
        )
        try:
            data = resp.json()
        except ValueError as e:
            raise FetchError(f"Unexpected tree response for {ref}: {e}") from e
        # Partial listings are never published.
        if data.get("truncated"):
            raise FetchError(f"Tree listing for {self.key}@{ref} was truncated by GitHub")

        prefix = f"{self.path}/" if self.path else ""
        paths = [
            item["path"]
            for item in data.get("tree", [])
            if item.get("type") == "blob"
            and item["path"].startswith(prefix)
            and item["path"].endswith(".json")
        ]
        logger.info(f"[GitHub] Found {len(paths)} JSON file(s) in {self.describe()}@{ref[:8]}")
        return sorted(paths)

    async def fetch_file(self, path: str, ref: str) -> bytes:
        resp = await self._request(
            self._repo_url(f"contents/{quote(path)}"),
            params={"ref": ref},
            accept="application/vnd.github.raw",
        )
        return resp.content
