# api/routers/history.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies.services import get_history_store
from api.models.recognition_models import HistoryResponse
from services.history_store import HistoryFormatError, HistoryStore

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=HistoryResponse)
async def list_history(store: HistoryStore = Depends(get_history_store)) -> HistoryResponse:
    try:
        entries = store.load_all()
    except HistoryFormatError as e:
        logger.error(f"❌ History log unreadable: {e}")
        raise HTTPException(status_code=500, detail="History log is unreadable")
    return HistoryResponse(count=len(entries), entries=entries)


@router.delete("/{index}")
async def delete_history_entry(index: int, store: HistoryStore = Depends(get_history_store)) -> dict:
    try:
        removed = store.delete(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="History entry not found")
    return {"status": "deleted", "id": removed.id}


@router.delete("/")
async def clear_history(store: HistoryStore = Depends(get_history_store)) -> dict:
    store.clear()
    return {"status": "cleared"}
