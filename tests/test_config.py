import json

import pytest

from services.config import Settings, load_settings, resolve_api_key
from services.errors import AcquisitionError, FailureKind


class DictSecretStore:
    def __init__(self, values):
        self.values = values

    def read(self, account):
        return self.values.get(account)


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return Settings(data_dir=tmp_path)


def _write_app_config(tmp_path, key):
    (tmp_path / "app_config.env").write_text(f"OPENAI_API_KEY={key}\n", encoding="utf-8")


def _write_preferences(tmp_path, prefs):
    (tmp_path / "preferences.json").write_text(json.dumps(prefs), encoding="utf-8")


def test_secret_store_wins(settings, tmp_path, monkeypatch):
    _write_app_config(tmp_path, "sk-config")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    _write_preferences(tmp_path, {"openai_api_key": "sk-prefs"})

    key = resolve_api_key(settings, DictSecretStore({"openai_api_key": "sk-secret"}))

    assert key == "sk-secret"


def test_app_config_before_environment(settings, tmp_path, monkeypatch):
    _write_app_config(tmp_path, "sk-config")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    assert resolve_api_key(settings, DictSecretStore({})) == "sk-config"


def test_environment_before_preferences(settings, tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    _write_preferences(tmp_path, {"openai_api_key": "sk-prefs"})

    assert resolve_api_key(settings) == "sk-env"


def test_preferences_as_last_resort(settings, tmp_path):
    _write_preferences(tmp_path, {"openai_api_key": "sk-prefs"})
    assert resolve_api_key(settings) == "sk-prefs"


def test_blank_values_are_skipped(settings, tmp_path, monkeypatch):
    _write_app_config(tmp_path, "   ")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    _write_preferences(tmp_path, {"openai_api_key": "sk-prefs"})

    key = resolve_api_key(settings, DictSecretStore({"openai_api_key": "  "}))

    assert key == "sk-prefs"


def test_missing_key(settings):
    with pytest.raises(AcquisitionError) as exc:
        resolve_api_key(settings)
    assert exc.value.kind is FailureKind.API_KEY_MISSING


def test_corrupt_preferences(settings, tmp_path):
    (tmp_path / "preferences.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(AcquisitionError) as exc:
        resolve_api_key(settings)
    assert exc.value.kind is FailureKind.INVALID_CONFIGURATION


def test_explicit_app_config_path(settings, tmp_path):
    bundled = tmp_path / "bundled.env"
    bundled.write_text("OPENAI_API_KEY=sk-bundled\n", encoding="utf-8")

    assert resolve_api_key(settings, app_config_path=bundled) == "sk-bundled"


def test_load_settings_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("ARTWORK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("BACKEND_API_URL", "https://cache.example.org")
    monkeypatch.setenv("BACKEND_API_KEY", "anon")
    monkeypatch.setenv("NARRATION_LANGUAGE", "en")
    monkeypatch.setenv("GENERATION_BUDGET_SECONDS", "8")

    settings = load_settings()

    assert settings.data_dir == tmp_path
    assert settings.backend_configured
    assert settings.narration_language == "en"
    assert settings.generation_budget_seconds == 8.0


def test_backend_requires_url_and_key(monkeypatch):
    monkeypatch.setenv("BACKEND_API_URL", "https://cache.example.org")
    monkeypatch.delenv("BACKEND_API_KEY", raising=False)

    assert not load_settings().backend_configured


def test_bad_budget_is_invalid_configuration(monkeypatch):
    monkeypatch.setenv("TOTAL_BUDGET_SECONDS", "twenty")

    with pytest.raises(AcquisitionError) as exc:
        load_settings()
    assert exc.value.kind is FailureKind.INVALID_CONFIGURATION
