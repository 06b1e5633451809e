# services/narration_service.py
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from services.config import SecretStore, Settings, resolve_api_key
from services.confidence import HIGH_THRESHOLD
from services.errors import AcquisitionError, FailureKind
from services.llm_factory import LLMFactory, LLMProvider
from state.artwork_schema import NarrationBundle, QuickGuess
from utils.artwork_identity import UNKNOWN_ARTIST, UNRESOLVED_TITLE, clean_title
from utils.sanitization import extract_json_object, optional_text

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

LANGUAGE_NAMES = {"zh": "Simplified Chinese", "en": "English"}

QUICK_IDENTIFY_SYSTEM_PROMPT = (
    "You are an art historian. Identify the basic facts of an artwork "
    "(title, artist, year) quickly. Answer in {language}."
)

QUICK_IDENTIFY_PROMPT = f"""
Identify this artwork. Return JSON only:
{{
  "title": "standard title of the work, or '{UNRESOLVED_TITLE}' if you cannot tell",
  "artist": "artist's standard full name, or '{UNKNOWN_ARTIST}' if you cannot tell",
  "year": "year of creation if certain, otherwise null"
}}
Do not guess. When unsure use '{UNRESOLVED_TITLE}' / '{UNKNOWN_ARTIST}' and null.
"""

NARRATION_SYSTEM_PROMPT = (
    "You are a museum guide and art historian. Give accurate, engaging "
    "narration about artworks in {language}."
)

NARRATION_PROMPT = f"""
Analyse this artwork and narrate it according to how certain the identification is.

Report a confidence between 0.0 and 1.0:
- >= 0.8: the specific work and artist are clearly identified. Give a full narration of 300-400 words.
  title, artist, year and style must be exact and must agree with the narration.
- 0.5 - 0.8: only the style is recognisable. Open by saying the exact work cannot be determined,
  then describe the style in 100-200 words. Do not invent a title, artist or history.
- < 0.5: nothing is recognisable. Give a short friendly note (50-100 words) suggesting a retry.

Never invent facts. Split the narration into short paragraphs separated by blank lines.

Return JSON:
{{
  "title": "title, a descriptive title for style-level results, or '{UNRESOLVED_TITLE}'",
  "artist": "artist's full name or '{UNKNOWN_ARTIST}'",
  "year": "exact year or null",
  "style": "style or movement or null",
  "medium": "medium or null",
  "museum": "holding museum or null",
  "summary": "one or two sentences",
  "narration": "the narration text",
  "artistIntroduction": null,
  "confidence": 0.85,
  "sources": []
}}
"""


def to_acquisition_error(e: Exception) -> AcquisitionError:
    """Map SDK and parsing failures onto the session failure taxonomy."""
    if isinstance(e, AcquisitionError):
        return e
    # APITimeoutError subclasses APIConnectionError
    if isinstance(e, openai.APITimeoutError):
        return AcquisitionError(FailureKind.TIMEOUT, details=str(e))
    if isinstance(e, openai.APIConnectionError):
        return AcquisitionError(FailureKind.NETWORK_UNAVAILABLE, details=str(e))
    if isinstance(e, openai.APIStatusError):
        return AcquisitionError(FailureKind.UPSTREAM_ERROR, details=e.message, code=e.status_code)
    if isinstance(e, (json.JSONDecodeError, ValueError)):
        return AcquisitionError(FailureKind.INVALID_RESPONSE, details=str(e))
    return AcquisitionError(FailureKind.REQUEST_FAILED, details=str(e))


def parse_quick_guess(content: str) -> QuickGuess:
    try:
        data = extract_json_object(content)
    except ValueError as e:
        raise AcquisitionError(FailureKind.INVALID_RESPONSE, details=str(e)) from e

    title = clean_title(optional_text(data.get("title")) or UNRESOLVED_TITLE) or UNRESOLVED_TITLE
    artist = optional_text(data.get("artist")) or UNKNOWN_ARTIST
    return QuickGuess(title=title, artist=artist, year=optional_text(data.get("year")))


def _parse_sources(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(url).strip() for url in value if isinstance(url, str) and url.strip()]


def _parse_confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_bundle(content: str) -> NarrationBundle:
    """
    Builds a NarrationBundle from the model's JSON payload.
    Raises:
        AcquisitionError(INVALID_RESPONSE): unparsable payload or empty narration.
    """
    try:
        data: Dict[str, Any] = extract_json_object(content)
    except ValueError as e:
        raise AcquisitionError(FailureKind.INVALID_RESPONSE, details=str(e)) from e

    narration = optional_text(data.get("narration")) or ""
    if not narration:
        raise AcquisitionError(FailureKind.INVALID_RESPONSE, details="empty narration")

    confidence = _parse_confidence(data.get("confidence"))
    return NarrationBundle(
        title=clean_title(optional_text(data.get("title")) or UNRESOLVED_TITLE),
        artist=optional_text(data.get("artist")) or UNKNOWN_ARTIST,
        year=optional_text(data.get("year")),
        style=optional_text(data.get("style")),
        medium=optional_text(data.get("medium")),
        museum=optional_text(data.get("museum")),
        sources=_parse_sources(data.get("sources")),
        summary=optional_text(data.get("summary")) or "",
        narration=narration,
        artist_introduction=optional_text(
            data.get("artistIntroduction", data.get("artist_introduction"))
        ),
        confidence=confidence,
        recognized=confidence >= HIGH_THRESHOLD,
    )


class NarrationService:
    """
    Vision/narration calls against an OpenAI-compatible chat endpoint.
    Every public method raises AcquisitionError only.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[AsyncOpenAI] = None,
        secret_store: Optional[SecretStore] = None,
    ):
        self.settings = settings
        self._client = client
        self._secret_store = secret_store

    def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client

        provider = self.settings.llm_provider
        api_key = None
        if provider == LLMProvider.OPENAI:
            api_key = resolve_api_key(self.settings, self._secret_store)
        try:
            self._client = LLMFactory.get_client(provider, api_key=api_key)
        except ValueError as e:
            raise AcquisitionError(FailureKind.INVALID_CONFIGURATION, details=str(e)) from e
        return self._client

    def _language(self) -> str:
        code = self.settings.narration_language.split("-")[0].lower()
        return LANGUAGE_NAMES.get(code, LANGUAGE_NAMES["zh"])

    def _messages(self, system_prompt: str, prompt: str, image_b64: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": system_prompt.format(language=self._language())},
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                    {"type": "text", "text": prompt},
                ],
            },
        ]

    async def quick_identify(self, image_b64: str) -> QuickGuess:
        logger.info("🔍 Quick identification request")
        try:
            response = await self._get_client().chat.completions.create(
                model=self.settings.quick_identify_model,
                messages=self._messages(QUICK_IDENTIFY_SYSTEM_PROMPT, QUICK_IDENTIFY_PROMPT, image_b64),
                max_tokens=200,
                temperature=0.3,
                response_format={"type": "json_object"},
            )
            if not response.choices or not response.choices[0].message.content:
                raise AcquisitionError(FailureKind.INVALID_RESPONSE, details="empty response")
            return parse_quick_guess(response.choices[0].message.content)
        except AcquisitionError:
            raise
        except Exception as e:
            raise to_acquisition_error(e) from e

    async def generate_streaming(self, image_b64: str, on_progress: Optional[ProgressCallback] = None) -> NarrationBundle:
        """
        Streams the full narration. Deltas only advance a character counter
        handed to on_progress; the text is parsed once the stream ends.
        """
        logger.info("📡 Streaming narration request")
        parts: List[str] = []
        received = 0
        try:
            stream = await self._get_client().chat.completions.create(
                model=self.settings.openai_model,
                messages=self._messages(NARRATION_SYSTEM_PROMPT, NARRATION_PROMPT, image_b64),
                max_tokens=1200,
                temperature=0.5,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if not delta:
                    continue
                parts.append(delta)
                received += len(delta)
                if on_progress is not None:
                    on_progress(received)
        except AcquisitionError:
            raise
        except Exception as e:
            raise to_acquisition_error(e) from e

        logger.info(f"✅ Stream finished ({received} chars)")
        return parse_bundle("".join(parts))

    async def generate(self, image_b64: str) -> NarrationBundle:
        logger.info("📡 Narration request (non-streaming)")
        try:
            response = await self._get_client().chat.completions.create(
                model=self.settings.openai_model,
                messages=self._messages(NARRATION_SYSTEM_PROMPT, NARRATION_PROMPT, image_b64),
                max_tokens=1200,
                temperature=0.5,
                response_format={"type": "json_object"},
            )
            if not response.choices or not response.choices[0].message.content:
                raise AcquisitionError(FailureKind.INVALID_RESPONSE, details="empty response")
            return parse_bundle(response.choices[0].message.content)
        except AcquisitionError:
            raise
        except Exception as e:
            raise to_acquisition_error(e) from e
