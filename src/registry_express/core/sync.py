"""
Sync Coordinator — keeps the live views in step with the upstream tree.

Rebuilds are triggered by the poll loop, by push webhooks and by manual
refresh requests. At most one rebuild runs at a time: a trigger arriving
while one is running is answered with ``skipped-in-progress`` instead of
being queued. A failed rebuild publishes nothing, so the last good views
keep being served.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum

from registry_express.core.checkpoint import BuildCheckpoint, CheckpointStore
from registry_express.core.ingest import IngestionReport, ingest
from registry_express.core.session import RegistrySession
from registry_express.core.views import build_views, utc_timestamp
from registry_express.core.webhook import ref_matches
from registry_express.errors import FetchError
from registry_express.exporters.static import DiskViewStore, StaticTreeExporter
from registry_express.sources.base import SourceProvider, collect_raw_files

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    REBUILT = "rebuilt"
    NO_CHANGE = "no-change"
    SKIPPED_IN_PROGRESS = "skipped-in-progress"
    FAILED = "failed"


class SyncCoordinator:
    """
    Drives the fetch → ingest → build → publish pipeline for one source.

    Args:
        provider: Where raw entry files come from.
        session: Shared live state; a fresh one is created if omitted.
        branch: Tracked ref.
        exporter: Optional static tree writer; also enables serving the
            written tree straight after a restart.
        checkpoints: Optional last-known-good marker store.
        poll_interval: Seconds between upstream checks; 0 disables polling.
        fetch_timeout: Upper bound in seconds for each remote phase.
        webhook_secret: Shared secret for push notifications.
    """

    def __init__(
        self,
        provider: SourceProvider,
        session: RegistrySession | None = None,
        branch: str = "main",
        exporter: StaticTreeExporter | None = None,
        checkpoints: CheckpointStore | None = None,
        poll_interval: float = 300.0,
        fetch_timeout: float = 30.0,
        webhook_secret: str | None = None,
    ):
        self.provider = provider
        self.branch = branch
        self.session = session or RegistrySession()
        self.session.source = provider.describe()
        self.session.branch = branch
        self.exporter = exporter
        self.checkpoints = checkpoints
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self.webhook_secret = webhook_secret
        self.last_report: IngestionReport | None = None

        self._tasks: set[asyncio.Task] = set()
        self._poller: asyncio.Task | None = None

    # ──────────────────────────────────────────────
    # Rebuild
    # ──────────────────────────────────────────────

    async def _bounded(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            raise FetchError(f"{what} timed out after {self.fetch_timeout:g}s") from None

    async def current_content_id(self) -> str:
        return await self._bounded(self.provider.current_content_id(self.branch), "Upstream check")

    async def refresh(self, trigger: str = "manual", force: bool = False) -> SyncOutcome:
        """
        Run one sync pass unless another one is already running.

        Args:
            trigger: Label for logs ("poll", "webhook", "manual", "startup").
            force: Rebuild even if the upstream content id is unchanged.
        """
        if not self.session.try_begin_build():
            logger.info(f"Refresh ({trigger}) skipped: a build is already in progress")
            return SyncOutcome.SKIPPED_IN_PROGRESS

        try:
            outcome = await self._rebuild(trigger, force)
        except (FetchError, OSError) as e:
            logger.error(f"Refresh ({trigger}) failed: {e}")
            self.session.record_failure(str(e))
            outcome = SyncOutcome.FAILED
        except Exception as e:
            logger.exception(f"Refresh ({trigger}) failed unexpectedly")
            self.session.record_failure(f"{type(e).__name__}: {e}")
            outcome = SyncOutcome.FAILED
        finally:
            self.session.end_build()

        self.session.last_outcome = outcome.value
        return outcome

    async def _rebuild(self, trigger: str, force: bool) -> SyncOutcome:
        self.session.last_check = utc_timestamp()
        content_id = await self.current_content_id()

        if not force and content_id == self.session.commit:
            logger.debug(f"Refresh ({trigger}): {content_id[:8]} already built")
            return SyncOutcome.NO_CHANGE

        logger.info(f"Refresh ({trigger}): building {self.provider.describe()}@{content_id[:8]}")
        raw_files = await self._bounded(collect_raw_files(self.provider, content_id), "Tree fetch")

        report = ingest(raw_files)
        self.last_report = report
        generated_at = utc_timestamp()
        views = build_views(report.entries, generated_at)

        if self.exporter is not None:
            await self.exporter.export(views)

        self.session.publish(views, content_id, generated_at)

        if self.checkpoints is not None:
            checkpoint = BuildCheckpoint(
                commit=content_id,
                built_at=generated_at,
                entry_count=views.entry_count,
                source=self.provider.describe(),
            )
            try:
                self.checkpoints.save(checkpoint)
            except OSError as e:
                # Views are already live at this point.
                logger.warning(f"Failed to save checkpoint: {e}")

        logger.info(f"Refresh ({trigger}) complete: {report.summary()}")
        return SyncOutcome.REBUILT

    # ──────────────────────────────────────────────
    # Startup
    # ──────────────────────────────────────────────

    async def start(self) -> SyncOutcome:
        """
        Bring the session up to date at process start.

        A written tree whose checkpoint matches the current upstream id is
        served as-is. If the upstream cannot be reached or the startup build
        fails, a checkpointed tree is still served and the failure is recorded.
        """
        checkpoint = self.checkpoints.load() if self.checkpoints else None
        store = DiskViewStore(self.exporter.output_dir) if self.exporter else None
        reusable = checkpoint is not None and store is not None and store.exists()

        try:
            content_id = await self.current_content_id()
        except FetchError as e:
            if not reusable:
                logger.error(f"Startup check failed: {e}")
                self.session.record_failure(str(e))
                self.session.last_outcome = SyncOutcome.FAILED.value
                return SyncOutcome.FAILED
            logger.warning(f"Startup check failed ({e}); serving last good tree")
            self._serve_last_good(store, checkpoint, str(e))
            self.session.last_outcome = SyncOutcome.FAILED.value
            return SyncOutcome.FAILED

        if reusable and checkpoint.commit == content_id:
            logger.info(f"Serving existing tree for {content_id[:8]} from {store.root}")
            self.session.publish(store, checkpoint.commit, checkpoint.built_at)
            self.session.last_outcome = SyncOutcome.NO_CHANGE.value
            return SyncOutcome.NO_CHANGE

        outcome = await self.refresh("startup", force=True)
        if outcome is SyncOutcome.FAILED and reusable:
            logger.warning("Startup build failed; serving last good tree")
            self._serve_last_good(store, checkpoint, self.session.last_error)
        return outcome

    def _serve_last_good(self, store: DiskViewStore, checkpoint: BuildCheckpoint, error: str | None) -> None:
        self.session.publish(store, checkpoint.commit, checkpoint.built_at)
        self.session.record_failure(error or "startup build failed")

    # ──────────────────────────────────────────────
    # Triggers
    # ──────────────────────────────────────────────

    def trigger_background(self, trigger: str) -> asyncio.Task:
        """Schedule a refresh without awaiting it; the task is kept until done."""
        task = asyncio.create_task(self.refresh(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_polling(self) -> None:
        while True:
            next_at = datetime.now(timezone.utc) + timedelta(seconds=self.poll_interval)
            self.session.next_check = utc_timestamp(next_at)
            await asyncio.sleep(self.poll_interval)
            self.trigger_background("poll")

    def start_polling(self) -> None:
        if self.poll_interval <= 0 or self._poller is not None:
            return
        logger.info(f"Polling {self.provider.describe()} every {self.poll_interval:.0f}s")
        self._poller = asyncio.create_task(self.run_polling())

    def handle_webhook(self, event: str | None, payload: dict) -> str:
        """
        React to a verified push notification.

        Returns "pong" for ping events, "ignored" for pushes to other refs,
        otherwise "skipped-in-progress" or "scheduled".
        """
        if event == "ping":
            return "pong"
        if event not in (None, "push"):
            logger.info(f"Webhook event {event!r} ignored")
            return "ignored"
        ref = payload.get("ref")
        if not ref_matches(ref, self.branch):
            logger.info(f"Webhook push to {ref!r} ignored (tracking {self.branch})")
            return "ignored"
        if self.session.building:
            return SyncOutcome.SKIPPED_IN_PROGRESS.value
        self.trigger_background("webhook")
        return "scheduled"

    async def stop(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        aclose = getattr(self.provider, "aclose", None)
        if aclose is not None:
            await aclose()

        if self.exporter is not None:
            await self.exporter.finalize()
