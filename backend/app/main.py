"""FastAPI application entry point."""

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.routes import api_router
from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.security import decode_access_token
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.services.change_feed import WATCHED_TABLES, ws_manager
from app.services.errors import OrderEngineError

from app import models  # noqa: F401  registers every table on Base.metadata

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting restaurant order engine")

    # Create tables if they don't exist (for SQLite dev)
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    yield

    logger.info("Shutting down restaurant order engine")


app = FastAPI(
    title="Restaurant Order Engine",
    description="Dining orders, table occupancy and settlement",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(OrderEngineError)
async def order_engine_error_handler(request: Request, exc: OrderEngineError):
    """Map business errors to their HTTP status with a ``detail`` message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Liveness and database check."""
    database = "healthy"
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database = "unhealthy"
    finally:
        db.close()

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": database,
            "websocket_manager": f"healthy ({ws_manager.get_connection_count()} connections)",
        },
    }


# ===== WebSocket change feed =====

async def _authenticate_websocket(websocket: WebSocket, token: Optional[str]) -> Optional[int]:
    """Authenticate a WebSocket connection. Returns user_id or None (rejected).

    The token comes from the query string, falling back to the
    ``access_token`` cookie. Connections without valid auth are closed with
    1008 Policy Violation.
    """
    payload = decode_access_token(token) if token else None
    if not payload:
        cookie_token = websocket.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if not payload or not payload.get("sub"):
        logger.warning("Change feed WebSocket rejected: no valid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    return int(payload["sub"])


def _parse_channels(channels: Optional[str]) -> List[str]:
    if not channels:
        return sorted(WATCHED_TABLES)
    requested = [ch.strip() for ch in channels.split(",") if ch.strip()]
    return [ch for ch in requested if ch in WATCHED_TABLES]


@app.websocket("/ws/changes")
async def websocket_changes(
    websocket: WebSocket,
    channels: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    """Committed row changes on orders, order lines, sides, tables and payments.

    ``channels`` is a comma-separated subset of the watched tables (default: all).
    """
    user_id = await _authenticate_websocket(websocket, token)
    if user_id is None:
        return

    channel_list = _parse_channels(channels)
    if not channel_list:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if not await ws_manager.connect(websocket, channel_list[0], user_id=user_id):
        return
    for channel in channel_list[1:]:
        await ws_manager.connect(websocket, channel, user_id=user_id, accept=False)

    try:
        await websocket.send_json({
            "type": "connected",
            "channels": channel_list,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Change feed WebSocket error: {e}", exc_info=True)
    finally:
        for channel in channel_list:
            ws_manager.disconnect(websocket, channel)
