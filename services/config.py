# services/config.py
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from dotenv import dotenv_values

from services.errors import AcquisitionError, FailureKind

logger = logging.getLogger(__name__)

API_KEY_ACCOUNT = "openai_api_key"
APP_CONFIG_FILE = "app_config.env"
PREFERENCES_FILE = "preferences.json"
PREFERENCES_KEY = "openai_api_key"


class SecretStore(Protocol):
    """Secure on-device credential storage."""

    def read(self, account: str) -> Optional[str]:
        ...


@dataclass(frozen=True)
class Settings:
    openai_model: str = "gpt-4o-mini"
    quick_identify_model: str = "gpt-4o-mini"
    llm_provider: str = "openai"
    backend_api_url: Optional[str] = None
    backend_api_key: Optional[str] = None
    data_dir: Path = Path("~/.artwork_narration").expanduser()
    narration_language: str = "zh"
    total_budget_seconds: float = 20.0
    generation_budget_seconds: float = 12.0
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"

    @property
    def backend_configured(self) -> bool:
        return bool(self.backend_api_url and self.backend_api_key)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise AcquisitionError(
            FailureKind.INVALID_CONFIGURATION, details=f"{name} must be a number, got {raw!r}"
        ) from e


def load_settings() -> Settings:
    data_dir = Path(os.getenv("ARTWORK_DATA_DIR", "~/.artwork_narration")).expanduser()
    return Settings(
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        quick_identify_model=os.getenv("QUICK_IDENTIFY_MODEL", "gpt-4o-mini"),
        llm_provider=os.getenv("LLM_PROVIDER", "openai"),
        backend_api_url=os.getenv("BACKEND_API_URL") or None,
        backend_api_key=os.getenv("BACKEND_API_KEY") or None,
        data_dir=data_dir,
        narration_language=os.getenv("NARRATION_LANGUAGE", "zh"),
        total_budget_seconds=_env_float("TOTAL_BUDGET_SECONDS", 20.0),
        generation_budget_seconds=_env_float("GENERATION_BUDGET_SECONDS", 12.0),
        tts_model=os.getenv("TTS_MODEL", "tts-1"),
        tts_voice=os.getenv("TTS_VOICE", "alloy"),
    )


def _nonempty(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _from_secret_store(store: Optional[SecretStore]) -> Optional[str]:
    if store is None:
        return None
    try:
        return _nonempty(store.read(API_KEY_ACCOUNT))
    except Exception as e:
        logger.warning(f"⚠️ Secret store read failed: {e}")
        return None


def _from_app_config(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    values = dotenv_values(path)
    return _nonempty(values.get("OPENAI_API_KEY"))


def _from_preferences(path: Path) -> Optional[str]:
    if not path.is_file():
        return None
    try:
        prefs = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise AcquisitionError(
            FailureKind.INVALID_CONFIGURATION, details=f"unreadable {path.name}: {e}"
        ) from e
    if not isinstance(prefs, dict):
        raise AcquisitionError(FailureKind.INVALID_CONFIGURATION, details=f"{path.name} is not an object")
    value = prefs.get(PREFERENCES_KEY)
    return _nonempty(value) if isinstance(value, str) else None


def resolve_api_key(
    settings: Settings,
    secret_store: Optional[SecretStore] = None,
    app_config_path: Optional[Path] = None,
) -> str:
    """
    First non-empty key wins:
    secret store > bundled app config > OPENAI_API_KEY > legacy preferences.
    Raises:
        AcquisitionError(API_KEY_MISSING) when none of them holds a key.
    """
    app_config_path = app_config_path or settings.data_dir / APP_CONFIG_FILE
    resolvers = (
        ("secret store", lambda: _from_secret_store(secret_store)),
        ("app config", lambda: _from_app_config(app_config_path)),
        ("environment", lambda: _nonempty(os.getenv("OPENAI_API_KEY"))),
        ("preferences", lambda: _from_preferences(settings.data_dir / PREFERENCES_FILE)),
    )

    for origin, resolver in resolvers:
        key = resolver()
        if key:
            logger.debug(f"🔑 API key resolved from {origin}")
            return key

    raise AcquisitionError(FailureKind.API_KEY_MISSING)
