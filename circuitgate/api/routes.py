from __future__ import annotations

from fastapi import APIRouter, HTTPException

from circuitgate.core.errors import ConfigError
from circuitgate.core.service import get_context

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/services")
def health_services():
    ctx = get_context()
    return ctx.overall_status()


@router.get("/breakers")
def list_breakers():
    ctx = get_context()
    return ctx.breaker_statuses()


@router.get("/breakers/{service_key}")
def get_breaker(service_key: str):
    ctx = get_context()
    status = ctx.breaker_status(service_key)
    if not status:
        raise HTTPException(status_code=404, detail="Breaker not found")
    return status


@router.post("/breakers/{service_key}/reset")
def reset_breaker(service_key: str):
    ctx = get_context()
    status = ctx.reset_breaker(service_key)
    if not status:
        raise HTTPException(status_code=404, detail="Breaker not found")
    return status


@router.post("/admin/reload-config")
def reload_config():
    ctx = get_context()
    try:
        ctx.reload_config()
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "reloaded"}
