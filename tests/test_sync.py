"""Tests for the registry session, sync coordinator and webhook checks."""

import asyncio

import pytest

from registry_express.core.checkpoint import CheckpointStore
from registry_express.core.session import RegistrySession
from registry_express.core.sync import SyncCoordinator, SyncOutcome
from registry_express.core.views import build_views
from registry_express.core.webhook import ref_matches, sign, verify_signature
from registry_express.errors import FetchError, WebhookAuthError
from registry_express.exporters import DiskViewStore, StaticTreeExporter

from conftest import MemorySource


@pytest.fixture
def coordinator(memory_source):
    return SyncCoordinator(memory_source, poll_interval=0, fetch_timeout=1.0)


def extra_entry(name: str = "io.example/extra") -> dict:
    return {
        "name": name,
        "description": "e",
        "version": "0.1.0",
        "packages": [{"registryType": "oci", "identifier": "ghcr.io/example/extra", "transport": {"type": "stdio"}}],
    }


# ═══════════════════════════════════════════
# Registry Session
# ═══════════════════════════════════════════


class TestRegistrySession:
    def test_build_guard(self):
        session = RegistrySession()
        assert session.try_begin_build() is True
        assert session.try_begin_build() is False
        session.end_build()
        assert session.try_begin_build() is True

    def test_publish_swaps_views(self):
        session = RegistrySession()
        views = build_views([], "2025-01-01T00:00:00.000Z")
        session.record_failure("old error")
        session.publish(views, "abc", "2025-01-01T00:00:00.000Z")
        assert session.views is views
        assert session.commit == "abc"
        assert session.last_error is None
        assert session.builds_completed == 1

    def test_status_fields(self):
        status = RegistrySession(source="memory:test", branch="main").status()
        assert status["status"] == "ok"
        assert status["servers"] == 0
        assert set(status) >= {"source", "ref", "commit", "lastBuild", "lastCheck", "nextCheck", "building", "lastError"}

    def test_status_degraded_after_failure(self):
        session = RegistrySession()
        session.record_failure("upstream down")
        assert session.status()["status"] == "degraded"


# ═══════════════════════════════════════════
# Refresh
# ═══════════════════════════════════════════


class TestRefresh:
    @pytest.mark.asyncio
    async def test_initial_refresh_rebuilds(self, coordinator):
        outcome = await coordinator.refresh()
        session = coordinator.session
        assert outcome is SyncOutcome.REBUILT
        assert session.views.entry_count == 3
        assert session.commit is not None
        assert session.last_build is not None
        assert session.last_outcome == "rebuilt"
        assert session.building is False

    @pytest.mark.asyncio
    async def test_unchanged_upstream_is_no_change(self, coordinator, memory_source):
        await coordinator.refresh()
        calls = memory_source.tree_calls
        assert await coordinator.refresh() is SyncOutcome.NO_CHANGE
        assert memory_source.tree_calls == calls

    @pytest.mark.asyncio
    async def test_force_rebuilds_unchanged_upstream(self, coordinator):
        await coordinator.refresh()
        assert await coordinator.refresh(force=True) is SyncOutcome.REBUILT
        assert coordinator.session.builds_completed == 2

    @pytest.mark.asyncio
    async def test_changed_upstream_rebuilds(self, coordinator, memory_source):
        await coordinator.refresh()
        memory_source.set_json("servers/extra.json", extra_entry())
        assert await coordinator.refresh() is SyncOutcome.REBUILT
        assert coordinator.session.views.entry_count == 4

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_single_build(self, coordinator, memory_source):
        memory_source.delay = 0.05
        outcomes = await asyncio.gather(coordinator.refresh("poll"), coordinator.refresh("webhook"))
        assert sorted(o.value for o in outcomes) == ["rebuilt", "skipped-in-progress"]
        assert coordinator.session.builds_completed == 1
        assert memory_source.tree_calls == 1

    @pytest.mark.asyncio
    async def test_invalid_entries_do_not_fail_build(self, coordinator, memory_source):
        memory_source.files["servers/broken.json"] = b"{oops"
        assert await coordinator.refresh() is SyncOutcome.REBUILT
        assert coordinator.session.views.entry_count == 3
        assert len(coordinator.last_report.errors) == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_previous_views(self, coordinator, memory_source):
        await coordinator.refresh()
        views, commit = coordinator.session.views, coordinator.session.commit
        memory_source.fail_with = FetchError("upstream down")
        assert await coordinator.refresh() is SyncOutcome.FAILED
        assert coordinator.session.views is views
        assert coordinator.session.commit == commit
        assert coordinator.session.last_error == "upstream down"
        assert coordinator.session.building is False

    @pytest.mark.asyncio
    async def test_fetch_timeout_then_recovery(self, memory_source):
        coordinator = SyncCoordinator(memory_source, poll_interval=0, fetch_timeout=0.05)
        await coordinator.refresh("poll")
        commit = coordinator.session.commit

        memory_source.set_json("servers/extra.json", extra_entry())
        memory_source.delay = 0.5
        assert await coordinator.refresh("poll") is SyncOutcome.FAILED
        assert coordinator.session.commit == commit
        assert coordinator.session.views.entry_count == 3
        assert "timed out" in coordinator.session.last_error

        memory_source.delay = 0.0
        assert await coordinator.refresh("poll") is SyncOutcome.REBUILT
        assert coordinator.session.commit != commit
        assert coordinator.session.views.entry_count == 4
        assert coordinator.session.last_error is None

    @pytest.mark.asyncio
    async def test_mistyped_entry_is_dropped_not_fatal(self, coordinator, memory_source, flat_doc):
        broken = dict(flat_doc, name="io.example/broken")
        broken["packages"] = [dict(flat_doc["packages"][0], environmentVariables=5)]
        memory_source.set_json("servers/broken.json", broken)
        task = coordinator.trigger_background("poll")
        assert await task is SyncOutcome.REBUILT
        assert coordinator.session.views.entry_count == 3
        assert coordinator.last_report.errors[0].name == "io.example/broken"
        assert coordinator.session.status()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded_as_failure(self, coordinator, memory_source):
        await coordinator.refresh()
        views = coordinator.session.views
        memory_source.fail_with = ValueError("tree response is not JSON")
        task = coordinator.trigger_background("poll")
        assert await task is SyncOutcome.FAILED
        assert coordinator.session.views is views
        assert coordinator.session.building is False
        status = coordinator.session.status()
        assert status["status"] == "degraded"
        assert status["lastOutcome"] == "failed"
        assert "tree response is not JSON" in status["lastError"]

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_keeps_rebuild(self, memory_source, tmp_path):
        blocked = tmp_path / "checkpoint.json"
        blocked.mkdir()
        coordinator = SyncCoordinator(memory_source, checkpoints=CheckpointStore(blocked), poll_interval=0)
        assert await coordinator.refresh() is SyncOutcome.REBUILT
        assert coordinator.session.views.entry_count == 3
        assert coordinator.session.status()["status"] == "ok"


# ═══════════════════════════════════════════
# Static Export & Startup
# ═══════════════════════════════════════════


class TestStartup:
    def make(self, source, tmp_path, **kwargs) -> SyncCoordinator:
        return SyncCoordinator(
            source,
            exporter=StaticTreeExporter(tmp_path / "dist"),
            checkpoints=CheckpointStore(tmp_path / "checkpoint.json"),
            poll_interval=0,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_refresh_writes_tree_and_checkpoint(self, memory_source, tmp_path):
        coordinator = self.make(memory_source, tmp_path)
        await coordinator.refresh()
        assert (tmp_path / "dist" / "registry.json").is_file()
        checkpoint = CheckpointStore(tmp_path / "checkpoint.json").load()
        assert checkpoint.commit == coordinator.session.commit
        assert checkpoint.entry_count == 3

    @pytest.mark.asyncio
    async def test_start_reuses_matching_tree(self, memory_source, tmp_path):
        await self.make(memory_source, tmp_path).refresh()

        fresh_source = MemorySource(files=memory_source.files)
        restarted = self.make(fresh_source, tmp_path)
        assert await restarted.start() is SyncOutcome.NO_CHANGE
        assert isinstance(restarted.session.views, DiskViewStore)
        assert restarted.session.views.entry_count == 3
        assert fresh_source.tree_calls == 0
        assert await restarted.refresh() is SyncOutcome.NO_CHANGE

    @pytest.mark.asyncio
    async def test_start_rebuilds_when_upstream_moved(self, memory_source, tmp_path):
        await self.make(memory_source, tmp_path).refresh()
        memory_source.set_json("servers/extra.json", extra_entry())
        restarted = self.make(memory_source, tmp_path)
        assert await restarted.start() is SyncOutcome.REBUILT
        assert restarted.session.views.entry_count == 4

    @pytest.mark.asyncio
    async def test_start_serves_last_tree_when_upstream_down(self, memory_source, tmp_path):
        await self.make(memory_source, tmp_path).refresh()
        memory_source.fail_with = FetchError("offline")
        restarted = self.make(memory_source, tmp_path)
        assert await restarted.start() is SyncOutcome.FAILED
        assert restarted.session.views.entry_count == 3
        assert restarted.session.last_error == "offline"

    @pytest.mark.asyncio
    async def test_start_serves_last_tree_when_startup_build_fails(self, memory_source, tmp_path):
        first = self.make(memory_source, tmp_path)
        await first.refresh()
        built_commit = first.session.commit

        memory_source.set_json("servers/extra.json", extra_entry())
        memory_source.delay = 0.5
        restarted = self.make(memory_source, tmp_path, fetch_timeout=0.05)
        assert await restarted.start() is SyncOutcome.FAILED
        assert isinstance(restarted.session.views, DiskViewStore)
        assert restarted.session.views.entry_count == 3
        assert restarted.session.commit == built_commit
        assert "timed out" in restarted.session.last_error
        assert restarted.session.status()["status"] == "degraded"

        memory_source.delay = 0.0
        assert await restarted.refresh() is SyncOutcome.REBUILT
        assert restarted.session.views.entry_count == 4

    @pytest.mark.asyncio
    async def test_stop_finalizes_exporter(self, memory_source, tmp_path, caplog):
        coordinator = self.make(memory_source, tmp_path)
        await coordinator.refresh()
        with caplog.at_level("INFO", logger="registry_express.exporters.static"):
            await coordinator.stop()
        assert "Export complete: 1 tree(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_start_without_anything_to_serve(self, tmp_path):
        source = MemorySource()
        source.fail_with = FetchError("offline")
        coordinator = self.make(source, tmp_path)
        assert await coordinator.start() is SyncOutcome.FAILED
        assert coordinator.session.views.entry_count == 0


# ═══════════════════════════════════════════
# Triggers
# ═══════════════════════════════════════════


class TestTriggers:
    @pytest.mark.asyncio
    async def test_background_task_tracked_until_done(self, coordinator):
        task = coordinator.trigger_background("poll")
        assert task in coordinator._tasks
        assert await task is SyncOutcome.REBUILT
        await asyncio.sleep(0)
        assert task not in coordinator._tasks

    @pytest.mark.asyncio
    async def test_polling_loop(self, memory_source):
        coordinator = SyncCoordinator(memory_source, poll_interval=0.01)
        coordinator.start_polling()
        await asyncio.sleep(0.1)
        await coordinator.stop()
        assert coordinator.session.builds_completed == 1
        assert coordinator.session.next_check is not None
        assert coordinator.session.last_outcome in ("rebuilt", "no-change")

    @pytest.mark.asyncio
    async def test_polling_disabled(self, coordinator):
        coordinator.start_polling()
        assert coordinator._poller is None

    @pytest.mark.asyncio
    async def test_webhook_ping(self, coordinator):
        assert coordinator.handle_webhook("ping", {"zen": "hi"}) == "pong"

    @pytest.mark.asyncio
    async def test_webhook_other_branch_ignored(self, coordinator):
        assert coordinator.handle_webhook("push", {"ref": "refs/heads/feature"}) == "ignored"
        assert coordinator._tasks == set()

    @pytest.mark.asyncio
    async def test_webhook_push_schedules_refresh(self, coordinator):
        assert coordinator.handle_webhook("push", {"ref": "refs/heads/main"}) == "scheduled"
        await asyncio.gather(*coordinator._tasks)
        assert coordinator.session.views.entry_count == 3

    @pytest.mark.asyncio
    async def test_webhook_while_building(self, coordinator):
        coordinator.session.try_begin_build()
        assert coordinator.handle_webhook("push", {"ref": "main"}) == "skipped-in-progress"

    @pytest.mark.asyncio
    async def test_stop_closes_provider(self, memory_source):
        closed = []

        async def aclose():
            closed.append(True)

        memory_source.aclose = aclose
        await SyncCoordinator(memory_source, poll_interval=0).stop()
        assert closed == [True]


# ═══════════════════════════════════════════
# Webhook Signature
# ═══════════════════════════════════════════


class TestWebhookSignature:
    BODY = b'{"ref": "refs/heads/main"}'

    def test_valid_signature(self):
        verify_signature(self.BODY, sign(self.BODY, "s3cret"), "s3cret")

    def test_known_digest(self):
        assert sign(b"", "key") == (
            "sha256=5d5d139563c95b5967b9bd9a8c9b233a9dedb45072794cd232dc1b74832607d0"
        )

    def test_no_secret_skips_verification(self):
        verify_signature(self.BODY, None, None)

    def test_missing_signature(self):
        with pytest.raises(WebhookAuthError):
            verify_signature(self.BODY, None, "s3cret")

    def test_wrong_signature(self):
        with pytest.raises(WebhookAuthError):
            verify_signature(self.BODY, sign(self.BODY, "other"), "s3cret")

    def test_tampered_body(self):
        with pytest.raises(WebhookAuthError):
            verify_signature(self.BODY + b" ", sign(self.BODY, "s3cret"), "s3cret")

    @pytest.mark.parametrize(
        "ref,expected",
        [("refs/heads/main", True), ("main", True), ("refs/heads/mainline", False), ("refs/tags/main", False), (None, False)],
    )
    def test_ref_matches(self, ref, expected):
        assert ref_matches(ref, "main") is expected
