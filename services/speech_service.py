# services/speech_service.py
import asyncio
import hashlib
import logging
import re
from pathlib import Path
from typing import List, Optional

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

MAX_SEGMENT_CHARS = 300
SENTENCE_END = re.compile(r"(?<=[。！？!?.；;\n])")


def language_tag_for(content_language: Optional[str]) -> str:
    lang = (content_language or "").lower()
    if lang.startswith("zh"):
        return "zh-CN"
    if lang.startswith("en"):
        return "en-US"
    return "zh-CN"


def normalize_for_speech(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def split_text_for_speech(text: str, max_chars: int = MAX_SEGMENT_CHARS) -> List[str]:
    """
    Splits narration into sentence-aligned segments of at most max_chars.
    A sentence longer than max_chars is cut hard.
    """
    text = normalize_for_speech(text)
    if not text:
        return []

    segments: List[str] = []
    current = ""
    for sentence in SENTENCE_END.split(text):
        if not sentence.strip():
            continue
        if len((current + sentence).strip()) <= max_chars:
            current += sentence
            continue

        if current.strip():
            segments.append(current.strip())
        sentence = sentence.strip()
        while len(sentence) > max_chars:
            segments.append(sentence[:max_chars])
            sentence = sentence[max_chars:].strip()
        current = sentence

    if current.strip():
        segments.append(current.strip())
    return segments


def segment_cache_key(text: str, language: str, voice: str, speed: float) -> str:
    raw = f"{normalize_for_speech(text)}|{language}|{voice}|{speed:.2f}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SpeechService:
    """Pre-renders narration audio into an on-disk cache without playing it."""

    def __init__(
        self,
        client: AsyncOpenAI,
        cache_dir: Path,
        model: str = "tts-1",
        voice: str = "alloy",
        speed: float = 1.0,
    ):
        self.client = client
        self.cache_dir = Path(cache_dir)
        self.model = model
        self.voice = voice
        self.speed = speed

    def cached_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.mp3"

    async def _render(self, segment: str, path: Path) -> None:
        response = await self.client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=segment,
            speed=self.speed,
            response_format="mp3",
        )
        tmp = path.with_suffix(".tmp")
        await asyncio.to_thread(tmp.write_bytes, response.content)
        await asyncio.to_thread(tmp.replace, path)

    async def prepare(self, text: str, language_tag: str) -> List[Path]:
        """
        Renders every segment not already cached. Returns the segment files in
        playback order.
        """
        segments = split_text_for_speech(text)
        if not segments:
            return []

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        paths = []
        rendered = 0
        for segment in segments:
            path = self.cached_path(segment_cache_key(segment, language_tag, self.voice, self.speed))
            paths.append(path)
            if path.exists():
                continue
            await self._render(segment, path)
            rendered += 1

        logger.info(f"🔊 Prepared {len(segments)} audio segments ({rendered} rendered, {language_tag})")
        return paths
