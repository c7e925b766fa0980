from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from flywheel.common import log_event
from flywheel.pipeline import CycleOrchestrator, EventBroadcaster
from flywheel.runtime.settings import AppSettings
from flywheel.storage import StatsStore
from flywheel.trading import EntrantRegistry

from .auth import BearerTokenAuth, SlidingWindowRateLimiter, admin_guard

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

JOIN_REJECTION_STATUS = {
    "no_active_keyword": status.HTTP_409_CONFLICT,
    "keyword_not_found": status.HTTP_403_FORBIDDEN,
    "must_hold_token": status.HTTP_403_FORBIDDEN,
    "invalid_owner": status.HTTP_400_BAD_REQUEST,
}


class JoinRequest(BaseModel):
    owner: str = Field(min_length=32, max_length=44)
    message: str = Field(min_length=1, max_length=500)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message, **extra})


def create_app(
    *,
    logger: logging.Logger,
    settings: AppSettings,
    store: StatsStore,
    broadcaster: EventBroadcaster,
    orchestrator: CycleOrchestrator | None = None,
    registry: EntrantRegistry | None = None,
) -> FastAPI:
    app = FastAPI(title="flywheel", docs_url=None, redoc_url=None)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.frontend_origins) or ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    require_admin = admin_guard(
        auth=BearerTokenAuth(settings.admin_bearer_token),
        limiter=SlidingWindowRateLimiter(
            max_requests=settings.admin_rate_limit_requests,
            window_seconds=settings.admin_rate_limit_window_seconds,
        ),
        logger=logger,
    )

    @app.exception_handler(HTTPException)
    async def http_error_handler(_request: Request, error: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content={"ok": False, "error": str(error.detail)},
            headers=getattr(error, "headers", None),
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "signing": orchestrator is not None,
            "scheduler": settings.enable_scheduler and orchestrator is not None,
            "state": orchestrator.state.value if orchestrator is not None else "disabled",
            "subscribers": broadcaster.subscriber_count,
        }

    @app.get("/public/stats")
    async def public_stats() -> dict[str, Any]:
        return store.snapshot().to_dict()

    @app.get("/public/config")
    async def public_config() -> dict[str, Any]:
        config = store.snapshot().config
        payload: dict[str, Any] = {
            "mint": config.mint or settings.mint_address,
            "dev": config.dev or settings.dev_public_key,
            "network": config.network or settings.network,
            "decimals": config.decimals,
            "terminal_policy": settings.terminal_policy,
            "entry_mode": settings.entry_mode,
            "cycle_interval_seconds": settings.cycle_interval_seconds,
        }
        if registry is not None:
            payload["keyword"] = registry.keyword
        return payload

    @app.post("/join")
    async def join(body: JoinRequest) -> JSONResponse:
        if registry is None:
            return _error(status.HTTP_409_CONFLICT, "no_active_keyword")
        try:
            decision = await registry.register(owner=body.owner.strip(), message=body.message)
        except Exception as error:
            log_event(
                logger,
                level="warning",
                event="join_holder_check_failed",
                message="Holder check failed during join",
                error=str(error),
            )
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "holder_check_unavailable")

        if not decision.accepted:
            return _error(JOIN_REJECTION_STATUS.get(decision.reason, 400), decision.reason)
        return JSONResponse({"ok": True, "entrants": decision.entrants})

    @app.get("/events")
    async def events() -> StreamingResponse:
        return StreamingResponse(
            broadcaster.stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/admin/last-run", dependencies=[Depends(require_admin)])
    async def admin_last_run() -> dict[str, Any]:
        last_run = store.snapshot().last_run
        trace = orchestrator.last_trace if orchestrator is not None else None
        result = orchestrator.last_result if orchestrator is not None else None
        return {
            "ok": True,
            "state": orchestrator.state.value if orchestrator is not None else "disabled",
            "last_run": None if last_run is None else {
                "kind": last_run.kind,
                "status": last_run.status,
                "started_at": last_run.started_at,
                "finished_at": last_run.finished_at,
            },
            "trace": trace.to_dict() if trace is not None else None,
            "result": result.to_dict() if result is not None else None,
        }

    async def _run_admin_action(action: str) -> JSONResponse:
        if orchestrator is None:
            missing = settings.missing_signing_fields()
            return _error(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                "signing is not configured",
                missing=missing,
            )

        log_event(logger, level="info", event="admin_action", message="Admin action requested", action=action)
        try:
            if action == "force-sync":
                result = await orchestrator.force_sync()
            else:
                result = await orchestrator.run_cycle()
        except Exception as error:
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(error))
        return JSONResponse({"ok": True, "result": result.to_dict()})

    @app.post("/admin/run-once", dependencies=[Depends(require_admin)])
    async def admin_run_once() -> JSONResponse:
        return await _run_admin_action("run-once")

    @app.post("/admin/force-sync", dependencies=[Depends(require_admin)])
    async def admin_force_sync() -> JSONResponse:
        return await _run_admin_action("force-sync")

    return app
