"""
HTTP front end — FastAPI application serving the published views.

Two modes share one route table:
- live: a SyncCoordinator keeps the views current; the app exposes status,
  manual refresh and the push webhook;
- static: a previously written tree is served from disk and the sync
  endpoints answer 404.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from registry_express import __version__
from registry_express.core.sync import SyncCoordinator, SyncOutcome
from registry_express.core.webhook import EVENT_HEADER, SIGNATURE_HEADER, verify_signature
from registry_express.errors import WebhookAuthError
from registry_express.models.views import ViewLookup
from registry_express.server.routing import describe_miss, resolve_request

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def _raw_path(request: Request) -> bytes:
    return request.scope.get("raw_path") or request.url.path.encode("utf-8")


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def create_app(coordinator: SyncCoordinator | None = None, store: ViewLookup | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        coordinator: Live mode; started and stopped with the app lifespan.
        store: Static mode; any ViewLookup, usually a DiskViewStore.
    """
    if (coordinator is None) == (store is None):
        raise ValueError("create_app needs exactly one of coordinator or store")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if coordinator is not None:
            if not coordinator.webhook_secret:
                logger.warning("[Server] Webhook signature verification disabled (no secret configured)")
            outcome = await coordinator.start()
            logger.info(f"[Server] Initial sync: {outcome.value} ({coordinator.session.views.entry_count} servers)")
            coordinator.start_polling()
        try:
            yield
        finally:
            if coordinator is not None:
                await coordinator.stop()
                logger.info("[Server] Sync coordinator stopped")

    app = FastAPI(title="registry-express", version=__version__, lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    def current_views() -> ViewLookup:
        if coordinator is not None:
            return coordinator.session.views
        return store

    # ──────────────────────────────────────────────
    # Error Handlers
    # ──────────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            body = await asyncio.to_thread(describe_miss, current_views(), _raw_path(request))
            return JSONResponse(status_code=404, content=body)
        return _error(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"[Server] Unhandled error for {request.method} {request.url.path}")
        return _error(500, "internal_error", "Internal server error")

    # ──────────────────────────────────────────────
    # Sync Endpoints
    # ──────────────────────────────────────────────

    @app.get("/_status")
    async def status():
        if coordinator is None:
            return {"status": "static", "mode": "static", "servers": store.entry_count}
        return {"mode": "live", **coordinator.session.status()}

    @app.post("/_refresh")
    async def refresh(force: bool = False):
        if coordinator is None:
            return _error(404, "not_found", "Refresh is not available in static mode")
        outcome = await coordinator.refresh("manual", force=force)
        body = {"outcome": outcome.value, "servers": coordinator.session.views.entry_count}
        if outcome is SyncOutcome.FAILED:
            return JSONResponse(status_code=502, content={**body, "error": coordinator.session.last_error})
        return body

    @app.post("/webhook")
    async def webhook(request: Request):
        if coordinator is None:
            return _error(404, "not_found", "Webhooks are not accepted in static mode")

        body = await request.body()
        try:
            verify_signature(body, request.headers.get(SIGNATURE_HEADER), coordinator.webhook_secret)
        except WebhookAuthError as e:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"[Security] Rejected webhook from {client}: {e}")
            return _error(403, "forbidden", "Invalid webhook signature")

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            return _error(400, "bad_request", "Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            return _error(400, "bad_request", "Webhook body must be a JSON object")

        outcome = coordinator.handle_webhook(request.headers.get(EVENT_HEADER), payload)
        status_code = 202 if outcome in ("scheduled", SyncOutcome.SKIPPED_IN_PROGRESS.value) else 200
        return JSONResponse(status_code=status_code, content={"ok": True, "outcome": outcome})

    # ──────────────────────────────────────────────
    # Published Views
    # ──────────────────────────────────────────────

    @app.get("/{path:path}")
    async def serve_view(request: Request, path: str):
        views = current_views()
        raw_path = _raw_path(request)
        # A DiskViewStore reads files, so resolution runs off the event loop.
        artifact = await asyncio.to_thread(resolve_request, views, raw_path, _wants_html(request))
        if artifact is None:
            body = await asyncio.to_thread(describe_miss, views, raw_path)
            return JSONResponse(status_code=404, content=body)
        return Response(content=artifact.render(), media_type=artifact.media_type)

    return app
