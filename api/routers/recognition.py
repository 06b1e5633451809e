# api/routers/recognition.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from api.dependencies.services import get_orchestrator, get_tracker
from api.models.recognition_models import ProgressResponse, RecognitionFailure, RecognitionResponse
from services.acquisition_orchestrator import AcquisitionOrchestrator
from services.errors import http_status_for, user_message
from services.progress_tracker import ProgressTracker

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 15 * 1024 * 1024


async def _read_upload(file: UploadFile) -> bytes:
    chunk_size = 64 * 1024
    content = bytearray()
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > MAX_IMAGE_SIZE:
            raise HTTPException(status_code=413, detail="Image too large (limit 15MB)")
    if not content:
        raise HTTPException(status_code=400, detail="Empty image")
    return bytes(content)


@router.post("/", response_model=RecognitionResponse, responses={400: {"model": RecognitionFailure}, 502: {"model": RecognitionFailure}, 503: {"model": RecognitionFailure}, 504: {"model": RecognitionFailure}})
async def recognize_artwork(
    image: UploadFile = File(...),
    session_id: Optional[str] = Form(None),
    owner: str = Form("default"),
    orchestrator: AcquisitionOrchestrator = Depends(get_orchestrator),
):
    """
    Runs one recognition session over the uploaded photo and returns the
    narration bundle with its confidence tier and narrative template.
    """
    image_bytes = await _read_upload(image)
    outcome = await orchestrator.run(image_bytes, session_id=session_id, owner=owner)

    if outcome.error is not None:
        failure = RecognitionFailure(
            session_id=outcome.session_id,
            failure_kind=outcome.error.kind.value,
            message=user_message(outcome.error),
            provisional=outcome.provisional,
        )
        return JSONResponse(
            status_code=http_status_for(outcome.error.kind),
            content=failure.model_dump(mode="json"),
        )

    return RecognitionResponse(
        session_id=outcome.session_id,
        status="success",
        bundle=outcome.bundle,
        confidence_level=outcome.level.value,
        template=outcome.template.value,
        from_cache=outcome.from_cache,
    )


@router.get("/{session_id}", response_model=ProgressResponse)
async def get_recognition_progress(
    session_id: str,
    tracker: ProgressTracker = Depends(get_tracker),
) -> ProgressResponse:
    progress = tracker.get_progress(session_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return ProgressResponse(status="success", data=progress)
