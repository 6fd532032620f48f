"""FastAPI server exposing session snapshots, selection and analytics."""

import asyncio
import logging
import time
from typing import Optional, List

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .models import SessionRecord

logger = logging.getLogger(__name__)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log slow requests for debugging."""

    def __init__(self, app, config: Optional[dict] = None):
        super().__init__(app)
        self.config = config or {}

        server_config = self.config.get("server", {})
        self.slow_threshold = server_config.get("slow_request_threshold_seconds", 1.0)

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        if elapsed > self.slow_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} "
                f"took {elapsed:.2f}s"
            )

        return response


class SessionResponse(BaseModel):
    """Response containing one visible session."""
    session_id: str
    display_name: str
    project_path: str
    last_prompt: str
    status: str
    last_update: str
    agent_pid: Optional[int] = None
    tab_title: Optional[str] = None
    waiting_since: Optional[str] = None
    selected: bool = False


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    selected_session_id: Optional[str] = None
    taken_at: str


class SelectionResponse(BaseModel):
    selected_session_id: Optional[str] = None


class ActivationResponse(BaseModel):
    """What a terminal-activation collaborator needs."""
    session_id: str
    agent_pid: Optional[int] = None
    project_path: str


class ReloadResponse(BaseModel):
    changed: bool
    session_count: int


class CleanResponse(BaseModel):
    removed: List[str]


class DeleteLogsResponse(BaseModel):
    deleted: int


def _session_response(record: SessionRecord, selected_id: Optional[str]) -> SessionResponse:
    return SessionResponse(
        **record.to_dict(),
        selected=record.session_id == selected_id,
    )


def create_app(
    monitor=None,
    aggregator=None,
    config: Optional[dict] = None,
    lifespan=None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        monitor: SessionMonitor instance
        aggregator: ConcurrencyAggregator instance
        config: Configuration dictionary
        lifespan: Optional ASGI lifespan context manager

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Agent Monitor",
        description="Live status of concurrently running Claude Code sessions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.config = config or {}
    app.add_middleware(RequestTimingMiddleware, config=config)

    app.state.monitor = monitor
    app.state.aggregator = aggregator

    def _require_monitor():
        if not app.state.monitor:
            raise HTTPException(status_code=503, detail="Session monitor not configured")
        return app.state.monitor

    def _require_aggregator():
        if not app.state.aggregator:
            raise HTTPException(status_code=503, detail="Analytics not configured")
        return app.state.aggregator

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "agent-monitor"}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        monitor = app.state.monitor
        return {
            "status": "healthy",
            "monitor_running": bool(monitor and monitor.is_running),
            "sessions": len(monitor.snapshot) if monitor else 0,
        }

    @app.get("/sessions", response_model=SessionListResponse)
    async def list_sessions():
        """List visible sessions, waiting ones first, then most recently updated."""
        monitor = _require_monitor()
        snapshot = monitor.snapshot
        selected_id = monitor.registry.selected_session_id
        return SessionListResponse(
            sessions=[_session_response(r, selected_id) for r in snapshot.sorted_records()],
            selected_session_id=selected_id,
            taken_at=snapshot.taken_at.isoformat(),
        )

    @app.post("/sessions/clean-ended", response_model=CleanResponse)
    async def clean_ended_sessions():
        """Delete the logs of ended sessions."""
        monitor = _require_monitor()
        removed = await monitor.submit(monitor.registry.clean_ended_sessions)
        await monitor.reload()
        return CleanResponse(removed=removed)

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str):
        """Get one visible session."""
        monitor = _require_monitor()
        record = monitor.snapshot.get(session_id)
        if not record:
            raise HTTPException(status_code=404, detail="Session not found")
        return _session_response(record, monitor.registry.selected_session_id)

    @app.post("/sessions/{session_id}/select", response_model=SelectionResponse)
    async def select_session(session_id: str):
        """Toggle selection of a session."""
        monitor = _require_monitor()
        if session_id not in monitor.snapshot:
            raise HTTPException(status_code=404, detail="Session not found")
        selected = await monitor.submit(monitor.registry.select, session_id)
        return SelectionResponse(selected_session_id=selected)

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str):
        """Delete a session's log; the session disappears."""
        monitor = _require_monitor()
        deleted = await monitor.submit(monitor.registry.delete_session_log, session_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Session log not found")
        await monitor.reload()
        return {"status": "deleted", "session_id": session_id}

    @app.get("/selection/activation", response_model=ActivationResponse)
    async def activation_target():
        """Pid and project path of the selected session."""
        monitor = _require_monitor()
        target = monitor.registry.activation_target()
        if not target:
            raise HTTPException(status_code=404, detail="No session selected")
        return ActivationResponse(**target.to_dict())

    @app.delete("/logs", response_model=DeleteLogsResponse)
    async def delete_all_logs():
        """Delete every session log and the global event stream."""
        monitor = _require_monitor()
        deleted = await monitor.submit(monitor.registry.delete_all_logs)
        await monitor.reload()
        return DeleteLogsResponse(deleted=deleted)

    @app.post("/reload", response_model=ReloadResponse)
    async def reload():
        """Reload the session logs now."""
        monitor = _require_monitor()
        result = await monitor.reload()
        return ReloadResponse(changed=result.changed, session_count=len(result.snapshot))

    @app.get("/analytics/productivity")
    async def productivity():
        """Today's per-session working time and concurrency."""
        aggregator = _require_aggregator()
        report = await asyncio.to_thread(aggregator.report)
        return report.to_dict()

    @app.get("/analytics/concurrency")
    async def concurrency():
        """Today's concurrency periods only."""
        aggregator = _require_aggregator()
        report = await asyncio.to_thread(aggregator.report)
        return {
            "periods": [p.to_dict() for p in report.periods],
            "peak_concurrency": report.peak_concurrency,
            "average_concurrency": report.average_concurrency,
        }

    return app
