# clients/met_museum_client.py
import logging
import re
from typing import Dict, List, Optional, Tuple

import requests

from state.artwork_schema import ArtworkRecord, RecognitionCandidate

logger = logging.getLogger(__name__)

MET_SEARCH_URL = "https://collectionapi.metmuseum.org/public/collection/v1/search"
MET_OBJECT_URL = "https://collectionapi.metmuseum.org/public/collection/v1/objects/{object_id}"
MET_PAGE_URL = "https://www.metmuseum.org/art/collection/search/{object_id}"

MAX_RESULTS_SCORED = 5
REQUEST_TIMEOUT = 5

DATE_PREFIXES = re.compile(r"^(?:ca\.|c\.|circa)\s*", re.IGNORECASE)

# Works better known under another name in the collection
ALIASES = {
    "mona lisa": ["La Gioconda", "Gioconda"],
}


def search_queries(candidate: RecognitionCandidate) -> List[str]:
    queries = [candidate.artwork_name]
    if candidate.artist:
        queries.append(f"{candidate.artist} {candidate.artwork_name}")
        queries.append(candidate.artist)
    lowered = candidate.artwork_name.lower()
    for name, aliases in ALIASES.items():
        if name in lowered:
            queries.extend(aliases)
    return queries


def score_match(candidate: RecognitionCandidate, record: ArtworkRecord) -> int:
    """Title: exact +3, partial +1. Artist: exact +2, partial +1, mismatch -1."""
    score = 0
    wanted_title = candidate.artwork_name.strip().lower()
    title = record.title.strip().lower()
    if wanted_title == title:
        score += 3
    elif wanted_title in title or title in wanted_title:
        score += 1

    if candidate.artist:
        wanted_artist = candidate.artist.strip().lower()
        artist = record.artist.strip().lower()
        if wanted_artist == artist:
            score += 2
        elif wanted_artist in artist or artist in wanted_artist:
            score += 1
        else:
            score -= 1
    return score


def _clean_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = DATE_PREFIXES.sub("", value.strip()).strip()
    return cleaned or None


def fetch_object(object_id: int) -> Optional[ArtworkRecord]:
    try:
        resp = requests.get(MET_OBJECT_URL.format(object_id=object_id), timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        data: Dict = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Met object {object_id} request failed: {e}")
        return None

    title = (data.get("title") or "").strip()
    if not title:
        return None

    artist = (
        data.get("artistDisplayName")
        or data.get("culture")
        or data.get("artistAlphaSort")
        or "Unknown Artist"
    ).strip()

    style = data.get("period") or None
    culture = data.get("culture")
    if not style and culture and culture != artist:
        style = culture

    return ArtworkRecord(
        title=title,
        artist=artist,
        year=_clean_date(data.get("objectDate")),
        style=style,
        medium=data.get("medium") or None,
        museum=data.get("department") or None,
        sources=[MET_PAGE_URL.format(object_id=object_id)],
        image_url=data.get("primaryImage") or None,
    )


def _search_ids(query: str) -> List[int]:
    try:
        resp = requests.get(MET_SEARCH_URL, params={"q": query}, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        return resp.json().get("objectIDs") or []
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Met search failed for '{query}': {e}")
        return []


def search_met_museum(candidate: RecognitionCandidate) -> Optional[ArtworkRecord]:
    """Best of the first few hits across several query strategies."""
    for query in search_queries(candidate):
        object_ids = _search_ids(query)
        if not object_ids:
            continue

        best: Optional[Tuple[int, ArtworkRecord]] = None
        for object_id in object_ids[:MAX_RESULTS_SCORED]:
            record = fetch_object(object_id)
            if record is None:
                continue
            score = score_match(candidate, record)
            if best is None or score > best[0]:
                best = (score, record)

        if best is not None and best[0] >= 0:
            logger.info(f"🏛️ Met match (score {best[0]}): '{best[1].title}' by '{best[1].artist}'")
            return best[1]
        logger.info(f"Met results for '{query}' did not match well enough")

    return None
