# api/dependencies/services.py
from fastapi import Request

from services.acquisition_orchestrator import AcquisitionOrchestrator
from services.history_store import HistoryStore
from services.progress_tracker import ProgressTracker


def get_orchestrator(request: Request) -> AcquisitionOrchestrator:
    return request.app.state.orchestrator


def get_tracker(request: Request) -> ProgressTracker:
    return request.app.state.orchestrator.tracker


def get_history_store(request: Request) -> HistoryStore:
    return request.app.state.history_store
