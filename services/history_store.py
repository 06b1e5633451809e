# services/history_store.py
"""
Local log of completed recognition sessions.

The log is a JSON document ``{"version": 2, "entries": [...]}`` holding
records most-recent-first. Each record carries its own ``schema_version``;
records without one are recognised as the legacy camelCase shape that
embedded the photo as base64. Legacy records are decoded once, their photo
is moved to ``photos/<id>.jpg`` and the log is rewritten in the current
shape, so a second load performs no writes.
"""
import base64
import binascii
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from state.artwork_schema import DEFAULT_NARRATION_LANGUAGE, ArtworkRecord, HistoryEntry

logger = logging.getLogger(__name__)

LOG_VERSION = 2
RECORD_SCHEMA_VERSION = 2
LEGACY_SCHEMA_VERSION = 1

HISTORY_FILE = "history.json"
PHOTOS_DIR = "photos"

# Reference date of the legacy timestamps
LEGACY_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)


class HistoryFormatError(ValueError):
    """Raised when the history log or one of its records cannot be decoded."""
    pass


def _parse_legacy_timestamp(value: Any) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return LEGACY_EPOCH + timedelta(seconds=float(value))
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise HistoryFormatError(f"Unsupported legacy timestamp: {value!r}")


def _legacy_artwork(info: Dict[str, Any]) -> ArtworkRecord:
    return ArtworkRecord(
        title=info.get("title") or "",
        artist=info.get("artist") or "",
        year=info.get("year"),
        style=info.get("style"),
        medium=info.get("medium"),
        museum=info.get("museum"),
        sources=info.get("sources") or [],
        image_url=info.get("imageURL"),
        recognized=info.get("recognized", True),
    )


class HistoryStore:
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / HISTORY_FILE
        self.photos_dir = self.data_dir / PHOTOS_DIR
        self._entries: Optional[List[HistoryEntry]] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def load_all(self) -> List[HistoryEntry]:
        """Entries most-recent-first. Migrates legacy records on first read."""
        if self._entries is None:
            self._entries = self._load()
        return list(self._entries)

    def append(self, entry: HistoryEntry) -> None:
        entries = self.load_all()
        entries.insert(0, entry)
        self._save(entries)
        self._entries = entries
        logger.info(f"📝 History entry {entry.id} appended ({len(entries)} total)")

    def delete(self, index: int) -> HistoryEntry:
        """Remove the entry at index. Its photo file is left in place."""
        entries = self.load_all()
        if index < 0 or index >= len(entries):
            raise IndexError(f"History index {index} out of range")
        removed = entries.pop(index)
        self._save(entries)
        self._entries = entries
        return removed

    def clear(self) -> None:
        self._save([])
        self._entries = []

    def store_photo(self, entry_id: str, image_bytes: bytes) -> str:
        return self._write_photo(entry_id, image_bytes)

    def photo_bytes(self, entry: HistoryEntry) -> Optional[bytes]:
        if not entry.photo_path:
            return None
        path = self._resolve_photo(entry.photo_path)
        if not path.is_file():
            return None
        return path.read_bytes()

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------
    def _decoders(self) -> Dict[int, Callable[[Dict[str, Any]], Tuple[HistoryEntry, bool]]]:
        return {
            LEGACY_SCHEMA_VERSION: self._decode_v1,
            RECORD_SCHEMA_VERSION: self._decode_v2,
        }

    @staticmethod
    def _record_version(record: Dict[str, Any]) -> Optional[int]:
        if "schema_version" in record:
            return record["schema_version"]
        if "artworkInfo" in record or "userPhotoData" in record:
            return LEGACY_SCHEMA_VERSION
        return None

    def _load(self) -> List[HistoryEntry]:
        if not self.path.exists():
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise HistoryFormatError(f"Unreadable history log: {e}") from e

        # The oldest logs are a bare array of records
        if isinstance(data, list):
            records, log_version = data, None
        elif isinstance(data, dict):
            records, log_version = data.get("entries", []), data.get("version")
        else:
            raise HistoryFormatError("History log must be an object or an array")

        decoders = self._decoders()
        entries: List[HistoryEntry] = []
        migrated = 0
        for record in records:
            version = self._record_version(record)
            decoder = decoders.get(version)
            if decoder is None:
                raise HistoryFormatError(f"Unsupported history record version {version}")
            entry, changed = decoder(record)
            entries.append(entry)
            migrated += int(changed)

        if migrated or log_version != LOG_VERSION:
            logger.info(f"🔄 Migrated {migrated} legacy history record(s), rewriting log")
            self._save(entries)

        return entries

    def _decode_v2(self, record: Dict[str, Any]) -> Tuple[HistoryEntry, bool]:
        payload = {k: v for k, v in record.items() if k != "schema_version"}
        try:
            return HistoryEntry.model_validate(payload), False
        except ValidationError as e:
            raise HistoryFormatError(f"Invalid history record: {e}") from e

    def _decode_v1(self, record: Dict[str, Any]) -> Tuple[HistoryEntry, bool]:
        entry_id = str(record.get("id") or uuid.uuid4())

        photo_path = record.get("userPhotoPath")
        inline_photo = record.get("userPhotoData")
        if inline_photo:
            try:
                photo = base64.b64decode(inline_photo, validate=True)
            except (binascii.Error, ValueError) as e:
                raise HistoryFormatError(f"Corrupt inline photo in record {entry_id}") from e
            photo_path = self._write_photo(entry_id, photo)

        try:
            entry = HistoryEntry(
                id=entry_id,
                artwork=_legacy_artwork(record.get("artworkInfo") or {}),
                narration=record.get("narration") or "",
                artist_introduction=record.get("artistIntroduction"),
                narration_language=record.get("narrationLanguage") or DEFAULT_NARRATION_LANGUAGE,
                confidence=record.get("confidence"),
                created_at=_parse_legacy_timestamp(record.get("timestamp")),
                photo_path=photo_path,
            )
        except (ValidationError, ValueError) as e:
            raise HistoryFormatError(f"Invalid legacy history record {entry_id}: {e}") from e
        return entry, True

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def _resolve_photo(self, photo_path: str) -> Path:
        path = Path(photo_path)
        return path if path.is_absolute() else self.data_dir / path

    def _write_photo(self, entry_id: str, data: bytes) -> str:
        relative = f"{PHOTOS_DIR}/{entry_id}.jpg"
        target = self.data_dir / relative
        if target.is_file() and target.read_bytes() == data:
            return relative

        self.photos_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_suffix(".tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(target)
        return relative

    def _save(self, entries: List[HistoryEntry]) -> None:
        """Write the log atomically (write .tmp, then rename)."""
        data = {
            "version": LOG_VERSION,
            "entries": [
                {"schema_version": RECORD_SCHEMA_VERSION, **entry.model_dump(mode="json")}
                for entry in entries
            ],
        }
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        tmp_path.replace(self.path)
