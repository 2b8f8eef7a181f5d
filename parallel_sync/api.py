"""
FastAPI surface of the sync layer.

Routes:
    GET  /api/sync/pull?section=S001&since=0
    POST /api/sync/push
    POST /api/presence/heartbeat
    GET  /api/presence?section=S001
    GET  /health
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .changelog import ChangeLog
from .config import load_config, resolve_paths
from .errors import LockTimeoutError
from .locks import LockRegistry
from .models import HeartbeatRequest, PushRequest
from .presence import PresenceRegistry
from .segment_store import SegmentStore
from .sync import DeltaSyncService


logger = logging.getLogger("parallel-sync")

router = APIRouter()


def build_service(
    cfg: Dict[str, Any],
    base_dir: Optional[str | Path] = None,
    logger: Optional[logging.Logger] = None,
) -> DeltaSyncService:
    """Wire the stores named in ``cfg['paths']`` into a DeltaSyncService."""
    log = logger or logging.getLogger("parallel-sync")
    paths = resolve_paths(cfg, base_dir)
    sync_cfg = cfg.get("sync", {})
    locks = LockRegistry(paths["locks_dir"], timeout=float(sync_cfg.get("lock_timeout_seconds", 10)))
    return DeltaSyncService(
        changelog=ChangeLog(paths["sync_dir"], locks, logger=log),
        presence=PresenceRegistry(
            paths["presence"],
            locks,
            stale_seconds=float(sync_cfg.get("presence_stale_seconds", 12)),
            logger=log,
        ),
        store=SegmentStore(paths["segments"], locks, logger=log),
        default_section=sync_cfg.get("default_section", "S001"),
        logger=log,
    )


def _service(request: Request) -> DeltaSyncService:
    return request.app.state.sync_service


@router.get("/health")
def health_check():
    return {"status": "healthy"}


@router.get("/api/sync/pull")
def pull(request: Request, section: Optional[str] = None, since: int = Query(0, ge=0)):
    service = _service(request)
    try:
        delta = service.pull(section, since)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("[api] Pull failed for section %s", section)
        return JSONResponse(status_code=500, content={"error": str(exc)})
    return delta.to_dict()


@router.post("/api/sync/push")
def push(request: Request, body: PushRequest):
    service = _service(request)
    try:
        record = service.push(body.section, body.row_id, body.changes, origin=body.origin)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LockTimeoutError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True, "rev": record.rev, "timestamp": record.timestamp}


@router.post("/api/presence/heartbeat")
def heartbeat(request: Request, body: HeartbeatRequest):
    service = _service(request)
    try:
        entry = service.heartbeat(body.user_label, body.section, body.row_id)
    except LockTimeoutError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True, "timestamp": entry.timestamp}


@router.get("/api/presence")
def presence(request: Request, section: Optional[str] = None):
    service = _service(request)
    try:
        entries = service.presence.list_active(section or service.default_section)
    except LockTimeoutError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"presence": [entry.to_dict() for entry in entries]}


def create_app(cfg: Optional[Dict[str, Any]] = None, service: Optional[DeltaSyncService] = None) -> FastAPI:
    app = FastAPI(
        title="parallel-sync",
        description="Delta sync and presence for the parallel-text editor",
        version="0.1.0",
    )
    app.state.sync_service = service or build_service(cfg or load_config())
    app.include_router(router)
    return app
