# File: api/routers/health.py
from fastapi import APIRouter, Request


router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return {
        "status": "ok",
        "backend_cache": bool(orchestrator and orchestrator.cache_client.is_configured),
        "speech": bool(orchestrator and orchestrator.speech is not None),
    }
