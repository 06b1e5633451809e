# agents/verification_agent.py
import asyncio
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from cachetools import TTLCache

from clients.artic_client import search_art_institute
from clients.met_museum_client import search_met_museum
from clients.wikipedia_client import search_wikipedia
from state.artwork_schema import ArtworkRecord, NarrationBundle, RecognitionCandidate
from utils.artwork_identity import is_unknown_artist, is_unresolved_title

logger = logging.getLogger(__name__)

SourceSearch = Callable[[RecognitionCandidate], Optional[ArtworkRecord]]

# Fixed priority order, first success wins
DEFAULT_SOURCES: Sequence[Tuple[str, SourceSearch]] = (
    ("met_museum", search_met_museum),
    ("art_institute", search_art_institute),
    ("wikipedia", search_wikipedia),
)

STYLE_MARKERS = ("风格", "style")

MEMORY_SIZE = 200
MEMORY_TTL = 24 * 3600


def is_style_description(bundle: NarrationBundle) -> bool:
    title = bundle.title.lower()
    return not bundle.recognized and any(marker in title for marker in STYLE_MARKERS)


def candidates_for(bundle: NarrationBundle) -> List[RecognitionCandidate]:
    """Lookup keys derived from a generated bundle, most specific first."""
    if is_unresolved_title(bundle.title) or is_style_description(bundle):
        return []

    artist = None if is_unknown_artist(bundle.artist) else bundle.artist
    candidates = [RecognitionCandidate(artwork_name=bundle.title, artist=artist, confidence=bundle.confidence)]
    if artist:
        candidates.append(RecognitionCandidate(artwork_name=bundle.title, artist=None, confidence=bundle.confidence))
    return candidates


class VerificationAgent:
    """
    Cross-checks a generated bundle against reference sources.
    Results are remembered by identity hash so later sessions can reuse them.
    """

    def __init__(self, sources: Optional[Sequence[Tuple[str, SourceSearch]]] = None):
        self.sources = list(sources or DEFAULT_SOURCES)
        self.memory: TTLCache = TTLCache(maxsize=MEMORY_SIZE, ttl=MEMORY_TTL)

    def recall(self, combined_hash: str) -> Optional[ArtworkRecord]:
        return self.memory.get(combined_hash)

    def remember(self, combined_hash: str, record: ArtworkRecord) -> None:
        self.memory[combined_hash] = record

    async def _search(self, candidate: RecognitionCandidate) -> Optional[ArtworkRecord]:
        for name, search in self.sources:
            try:
                record = await asyncio.to_thread(search, candidate)
            except Exception as e:
                logger.warning(f"⚠️ Reference source {name} failed: {e}")
                continue
            if record is None:
                continue

            if is_unknown_artist(record.artist) and candidate.artist:
                record = record.derive(artist=candidate.artist)
            logger.info(f"✅ Verified by {name}: '{record.title}' by '{record.artist}'")
            return record
        return None

    async def run(self, bundle: NarrationBundle, combined_hash: Optional[str] = None) -> Optional[ArtworkRecord]:
        if combined_hash:
            remembered = self.recall(combined_hash)
            if remembered is not None:
                logger.info(f"🧠 Reusing verification for {combined_hash[:12]}")
                return remembered

        candidates = candidates_for(bundle)
        if not candidates:
            logger.info(f"Skipping verification for '{bundle.title}'")
            return None

        logger.info(f"🔎 VerificationAgent → {len(candidates)} candidate(s) for '{bundle.title}'")
        for candidate in candidates:
            record = await self._search(candidate)
            if record is not None:
                if combined_hash:
                    self.remember(combined_hash, record)
                return record

        logger.info(f"No reference source confirmed '{bundle.title}'")
        return None
