# File: api/models/recognition_models.py
from pydantic import BaseModel
from typing import Any, Dict, List, Optional

from state.artwork_schema import ArtworkRecord, HistoryEntry, NarrationBundle


class RecognitionResponse(BaseModel):
    session_id: str
    status: str
    bundle: NarrationBundle
    confidence_level: str
    template: str
    from_cache: bool = False


class RecognitionFailure(BaseModel):
    session_id: str
    status: str = "failed"
    failure_kind: str
    message: str
    provisional: Optional[ArtworkRecord] = None


class ProgressResponse(BaseModel):
    status: str
    data: Dict[str, Any]


class HistoryResponse(BaseModel):
    count: int
    entries: List[HistoryEntry]
