# backend/app/api/run.py
from fastapi import APIRouter, HTTPException, Request

from backend.app.status import run_status_store

router = APIRouter()


@router.get("/run/status")
async def run_status() -> dict:
    return {"ok": True, "status": run_status_store.snapshot()}


@router.post("/run/wake")
async def wake(request: Request) -> dict:
    components = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Scheduler is not running.")
    components.scheduler.wake()
    return {"ok": True}
