# api/main.py
from dotenv import load_dotenv
import os

env = os.getenv("APP_ENV", "local")
if env == "local":
    load_dotenv(".env.local")
else:
    load_dotenv(".env")

print(f"🔧 Loaded environment: {env}")

from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging
from fastapi.middleware.cors import CORSMiddleware

from agents.verification_agent import VerificationAgent
from clients.backend_cache_client import BackendCacheClient
from services.acquisition_orchestrator import AcquisitionOrchestrator
from services.config import Settings, load_settings, resolve_api_key
from services.errors import AcquisitionError
from services.history_store import HistoryStore
from services.llm_factory import LLMFactory, LLMProvider
from services.narration_service import NarrationService
from services.progress_tracker import ProgressTracker
from services.speech_service import SpeechService

from api.routers import (
    health,
    recognition,
    history,
)

logger = logging.getLogger(__name__)


def build_speech_service(settings: Settings):
    if settings.llm_provider != LLMProvider.OPENAI:
        return None
    try:
        api_key = resolve_api_key(settings)
    except AcquisitionError as e:
        logger.warning(f"⚠️ Audio pre-generation disabled: {e}")
        return None
    client = LLMFactory.get_client(LLMProvider.OPENAI, api_key=api_key)
    return SpeechService(client, settings.data_dir / "audio", settings.tts_model, settings.tts_voice)


def build_orchestrator(settings: Settings) -> AcquisitionOrchestrator:
    cache_client = BackendCacheClient(settings.backend_api_url, settings.backend_api_key)
    if not cache_client.is_configured:
        logger.warning("⚠️ Backend cache not configured, every session will generate")

    return AcquisitionOrchestrator(
        narrator=NarrationService(settings),
        cache_client=cache_client,
        verifier=VerificationAgent(),
        history_store=HistoryStore(settings.data_dir),
        speech=build_speech_service(settings),
        tracker=ProgressTracker(),
        total_budget=settings.total_budget_seconds,
        generation_budget=settings.generation_budget_seconds,
        narration_language=settings.narration_language,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Artwork Narration Backend")
    try:
        settings = load_settings()
        orchestrator = build_orchestrator(settings)
    except Exception as e:
        logger.error(f"❌ Failed to initialize services: {e}", exc_info=True)
        raise
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.history_store = orchestrator.history_store
    yield
    await orchestrator.tracker.shutdown()
    logger.info("🛑 Shutting down Artwork Narration Backend")


app = FastAPI(
    title="Artwork Narration API",
    version="1.0.0",
    description="Recognises photographed artworks and serves cached or generated narration.",
    lifespan=lifespan
)

# CORS Configuration
origins = []
if env == "local":
    origins = ["http://localhost:3000", "http://localhost:5173"]  # Common dev ports
else:
    origins_str = os.getenv("ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(recognition.router, prefix="/recognition", tags=["Recognition"])
app.include_router(history.router, prefix="/history", tags=["History"])


@app.get("/")
async def root():
    return {"message": "Artwork Narration Backend Running Successfully 🚀"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
