"""
ui/web_app.py — FastAPI server for the Sentinel actuation guard.

REST endpoints
--------------
GET  /health                  JSON health check
GET  /api/state               Live telemetry snapshot + version
POST /api/command             Submit a command       {"command": "set rpm 1500"}
POST /api/admin/command       Admin override submit  {"command": "..."}
POST /api/telemetry/import    Merge a CSV export     {"content": "rpm,temp\\n1800,40"}
POST /api/telemetry/profile   Load a reference reading {"profile": "HIGH_LOAD"}
GET  /api/audit               Recent audit records (newest first) ?limit=N
GET  /api/audit/export        Whole audit buffer as a JSON download

WebSocket
---------
ws://<host>:<port>/ws

Messages pushed by server (JSON):
  {"type": "verdict",   "allowed": false, "decision": "DENIED", ...}
  {"type": "committed", "version": 7, "state": {...}}
  {"type": "audit",     "transaction_id": "tx_...", ...}
  {"type": "telemetry", "source": "CSV_IMPORT", "version": 8, ...}
"""

from __future__ import annotations

import asyncio
import json
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from core.logger import get_logger
from pipeline.controller import (
    ON_AUDIT_RECORDED,
    ON_STATE_COMMITTED,
    ON_TELEMETRY_IMPORTED,
    ON_VERDICT,
    GuardController,
)

_log = get_logger()


# ── Request bodies ────────────────────────────────────────────────────────────

class CommandRequest(BaseModel):
    command: str = Field(min_length=1, max_length=4000)


class CsvImportRequest(BaseModel):
    content: str = Field(min_length=1)


class ProfileRequest(BaseModel):
    profile: str = Field(min_length=1)


# ── EventBus → WebSocket bridge ───────────────────────────────────────────────

class _EventBridge:
    """Forwards controller events to every connected WebSocket client."""

    def __init__(self) -> None:
        self.clients: Set[WebSocket] = set()
        self._lock = threading.Lock()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def wire(self, ctrl: GuardController) -> None:
        ctrl.subscribe(ON_VERDICT, lambda d: self.push({"type": "verdict", **d}))
        ctrl.subscribe(ON_STATE_COMMITTED, lambda d: self.push({"type": "committed", **d}))
        ctrl.subscribe(ON_AUDIT_RECORDED, lambda d: self.push({"type": "audit", **d}))
        ctrl.subscribe(ON_TELEMETRY_IMPORTED, lambda d: self.push({"type": "telemetry", **d}))

    def add(self, ws: WebSocket) -> None:
        with self._lock:
            self.clients.add(ws)

    def discard(self, ws: WebSocket) -> None:
        with self._lock:
            self.clients.discard(ws)

    def push(self, msg: Dict[str, Any]) -> None:
        """Thread-safe push of a JSON message; no-op before startup."""
        if self.loop is None or not self.clients:
            return
        asyncio.run_coroutine_threadsafe(self._broadcast(msg), self.loop)

    async def _broadcast(self, msg: Dict[str, Any]) -> None:
        text = json.dumps(msg, default=str)
        with self._lock:
            targets = list(self.clients)
        dead: List[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_text(text)
            except Exception:  # noqa: BLE001
                dead.append(ws)
        for ws in dead:
            self.discard(ws)


# ── App factory ───────────────────────────────────────────────────────────────

def create_app(controller: GuardController) -> FastAPI:
    """
    Build the API around an initialised controller.

    Handlers that reach the controller are plain ``def`` functions so FastAPI
    runs them on its worker threadpool; oracle calls may block for seconds.
    """
    bridge = _EventBridge()
    bridge.wire(controller)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        bridge.loop = asyncio.get_running_loop()
        _log.info("web_app", "startup", {})
        yield
        bridge.loop = None
        controller.shutdown()

    app = FastAPI(title="Sentinel Actuation Guard", version="1.0", lifespan=lifespan)
    app.state.controller = controller

    @app.get("/health")
    def health() -> JSONResponse:
        snap = controller.store.snapshot()
        return JSONResponse({
            "status": "ok",
            "oracle_backend": controller.config.oracle.backend,
            "state_version": snap.version,
            "clients": len(bridge.clients),
        })

    @app.get("/api/state")
    def state() -> JSONResponse:
        snap = controller.store.snapshot()
        return JSONResponse({
            "version": snap.version,
            "connector": controller.connector_name,
            "state": snap.state.to_dict(),
        })

    @app.post("/api/command")
    def command(body: CommandRequest) -> JSONResponse:
        outcome = controller.submit(body.command)
        return JSONResponse(outcome.to_dict())

    @app.post("/api/admin/command")
    def admin_command(body: CommandRequest) -> JSONResponse:
        outcome = controller.submit(body.command, admin=True)
        return JSONResponse(outcome.to_dict())

    @app.post("/api/telemetry/import")
    def telemetry_import(body: CsvImportRequest) -> JSONResponse:
        try:
            result = controller.import_csv(body.content)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from None
        return JSONResponse({
            "applied": bool(result.partial_state),
            "mapped": result.partial_state,
            "unmapped": result.unmapped,
            "rejected": result.rejected,
            "version": controller.store.version,
        })

    @app.post("/api/telemetry/profile")
    def telemetry_profile(body: ProfileRequest) -> JSONResponse:
        try:
            snap = controller.load_profile(body.profile)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown profile: {body.profile}") from None
        return JSONResponse({"version": snap.version, "state": snap.state.to_dict()})

    @app.get("/api/audit")
    def audit(limit: int = Query(default=50, ge=1, le=1000)) -> JSONResponse:
        return JSONResponse([r.to_dict() for r in controller.audit.recent(limit)])

    @app.get("/api/audit/export")
    def audit_export() -> Response:
        return Response(
            content=controller.audit.export_json(),
            media_type="application/json",
            headers={"Content-Disposition": 'attachment; filename="sentinel_audit.json"'},
        )

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        bridge.add(ws)
        snap = controller.store.snapshot()
        await ws.send_text(json.dumps({
            "type": "snapshot",
            "version": snap.version,
            "state": snap.state.to_dict(),
        }))
        try:
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            bridge.discard(ws)

    return app


def start_web_server(
    controller: GuardController,
    host: str = "127.0.0.1",
    port: int = 7860,
) -> None:
    """
    Build the app around *controller* and run uvicorn in the current thread.

    Blocking — returns when the server stops.
    """
    import uvicorn  # type: ignore

    config = uvicorn.Config(
        create_app(controller),
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)
    _log.info("web_app", "server_start", {"host": host, "port": port})
    server.run()
