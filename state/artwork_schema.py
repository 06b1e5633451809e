# File: state/artwork_schema.py
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_NARRATION_LANGUAGE = "zh"


class FrozenModel(BaseModel):
    """Immutable value. Use derive() to get a copy with some fields changed."""

    model_config = ConfigDict(frozen=True)

    def derive(self, **changes):
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


class ArtworkIdentity(FrozenModel):
    normalized_title: str
    normalized_artist: str
    combined_hash: str
    year: Optional[str] = None


class ArtworkRecord(FrozenModel):
    title: str
    artist: str
    year: Optional[str] = None
    style: Optional[str] = None
    medium: Optional[str] = None
    museum: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    # False means a style-level description, not a specific artwork
    recognized: bool = True

    @field_validator("sources", mode="before")
    @classmethod
    def _dedupe_sources(cls, value):
        if not value:
            return []
        seen = []
        for url in value:
            if url and url not in seen:
                seen.append(url)
        return seen


class NarrationBundle(ArtworkRecord):
    summary: str = ""
    narration: str = ""
    artist_introduction: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return 0.0
        return min(max(float(value), 0.0), 1.0)

    def to_record(self) -> ArtworkRecord:
        return ArtworkRecord.model_validate(
            self.model_dump(include=set(ArtworkRecord.model_fields))
        )


class QuickGuess(FrozenModel):
    """Coarse result of quick identification."""
    title: str
    artist: str
    year: Optional[str] = None


class RecognitionCandidate(FrozenModel):
    artwork_name: str
    artist: Optional[str] = None
    confidence: float = 0.0


class CachedArtwork(NarrationBundle):
    """A row of the shared backend cache."""
    id: Optional[str] = None
    combined_hash: str = ""
    view_count: int = 0

    def to_bundle(self, artist_introduction: Optional[str] = None) -> NarrationBundle:
        data = self.model_dump(include=set(NarrationBundle.model_fields))
        if artist_introduction:
            data["artist_introduction"] = artist_introduction
        return NarrationBundle.model_validate(data)


class ArtistIntroduction(FrozenModel):
    name: str
    introduction: Optional[str] = None
    id: Optional[str] = None


class HistoryEntry(FrozenModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    artwork: ArtworkRecord
    narration: str
    artist_introduction: Optional[str] = None
    narration_language: str = DEFAULT_NARRATION_LANGUAGE
    confidence: Optional[float] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    photo_path: Optional[str] = None
