"""
safetrip/main.py
============================================
FastAPI Application for Tourist Safety Monitoring
============================================

Entry point of the monitoring engine. Combines a thin REST surface over the
core services with the recurring sweeps that run in background threads.

Architecture Overview:
---------------------
- REST API: sessions, location batches, alerts (/sessions, /locations, /alerts)
- WebSocket: operator log stream (/logs) and live alert stream (/alerts/stream)
- Scheduler: expiry, anomaly and escalation sweeps (daemon threads)

Run:
    uvicorn safetrip.main:app --host 0.0.0.0 --port 8000
"""

# Environment Configuration
from dotenv import load_dotenv
load_dotenv()

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from safetrip.Controller.errors import install_exception_handlers
from safetrip.Controller.Routes import alerts, locations, sessions
from safetrip.Core import alert_ws, log_ws
from safetrip.Core.config import settings
from safetrip.DB.database import test_db_connection
from safetrip.DB.session import SessionLocal
from safetrip.Services.alert_manager import alert_manager
from safetrip.Services.anomaly_detector import anomaly_detector
from safetrip.Services.scheduler import Scheduler
from safetrip.Services.session_manager import session_manager


def _parse_origins(csv_value: str):
    """
    Parse comma-separated origins.

    Returns:
        Tuple of (is_wildcard, origins)

    Examples:
        "*" -> (True, ["*"])
        "https://app.com,https://police.app.com" -> (False, [...])
        "" -> (False, [])
    """
    if not csv_value:
        return (False, [])

    csv_value = csv_value.strip()

    if csv_value == "*":
        return (True, ["*"])

    origins = [origin.strip() for origin in csv_value.split(",") if origin.strip()]
    return (False, origins)


_http_allow_all, _http_origins = _parse_origins(settings.HTTP_ALLOWED_ORIGINS)
_ws_allow_all, _ws_origins = _parse_origins(settings.WS_ALLOWED_ORIGINS)


# ============================================================
# APPLICATION LIFESPAN MANAGEMENT
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        1. Give the websocket managers the running event loop
        2. Build the scheduler and start it (unless SCHEDULER_ENABLED=false)

    Shutdown:
        - Stop the sweeps and wait for in-flight runs
    """
    loop = asyncio.get_running_loop()
    log_ws.log_ws_manager.set_main_loop(loop)
    alert_ws.alert_ws_manager.set_main_loop(loop)

    scheduler = Scheduler(
        SessionLocal,
        session_manager,
        anomaly_detector,
        alert_manager,
    )
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        print("[SERVICES] Starting scheduler...")
        scheduler.start()
    else:
        print("[SERVICES] ⚠️  Scheduler is disabled")

    print("[STARTUP] ✅ Application initialization complete")

    yield

    print("[SHUTDOWN] 🛑 Application shutdown initiated")
    scheduler.stop()


# ============================================================
# APPLICATION INSTANCE CREATION
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_http_origins,
    allow_credentials=not _http_allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_exception_handlers(app)


@app.get("/health")
def health():
    """Liveness + database reachability."""
    return {
        "status": "ok",
        "database": "ok" if test_db_connection() else "unreachable",
        "scheduler": bool(getattr(app.state, "scheduler", None) and app.state.scheduler.running),
    }


# ============================================================
# REST API ROUTE REGISTRATION
# ============================================================
app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
app.include_router(locations.router, prefix="/locations", tags=["locations"])
app.include_router(alerts.router, prefix="/alerts", tags=["alerts"])


# ============================================================
# WEBSOCKET ENDPOINTS
# ============================================================
async def socket_handler(ws: WebSocket, manager):
    """
    Generic websocket lifecycle: origin check, register, receive loop,
    unregister.
    """
    origin = ws.headers.get("origin")

    if (not _ws_allow_all) and (origin not in _ws_origins):
        print(f"[WS] ❌ Connection rejected - unauthorized origin: {origin}")
        await ws.close(code=1008)
        return

    await manager.register(ws)

    try:
        while True:
            message = await ws.receive_text()
            await manager.handle_message(ws, message)
    except Exception as e:
        print(f"[WS] Connection closed: {e}")
    finally:
        manager.unregister(ws)


@app.websocket("/logs")
async def websocket_logs(ws: WebSocket):
    """
    Operator log stream.

    Message Format:
        {"msg_type": "log" | "error" | "warning", "message": "..."}
    """
    await socket_handler(ws, log_ws.log_ws_manager)


@app.websocket("/alerts/stream")
async def websocket_alerts(ws: WebSocket):
    """
    Live alert events (alert_created, alert_escalated) for dashboards.
    """
    await socket_handler(ws, alert_ws.alert_ws_manager)
