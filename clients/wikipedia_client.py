# clients/wikipedia_client.py
import logging
import re
from typing import List, Optional
from urllib.parse import quote

import requests

from state.artwork_schema import ArtworkRecord, RecognitionCandidate

logger = logging.getLogger(__name__)

WIKIPEDIA_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary/{title}"
REQUEST_TIMEOUT = 5

YEAR_PATTERN = re.compile(r"\b(?:painted|created|made|completed)\s+(?:in\s+)?(\d{4})\b", re.IGNORECASE)
BY_PATTERN = re.compile(r"\bby\s+(\S+)", re.IGNORECASE)
STYLE_KEYWORDS = [
    "Renaissance", "Impressionism", "Baroque", "Modern",
    "Contemporary", "Romantic", "Neoclassical",
]
HEADERS = {"User-Agent": "artwork-narration/0.1"}


def _queries(candidate: RecognitionCandidate) -> List[str]:
    queries = [candidate.artwork_name]
    if candidate.artist:
        queries.append(f"{candidate.artwork_name} {candidate.artist}")
    if "mona lisa" in candidate.artwork_name.lower():
        queries.extend(["Mona Lisa", "La Gioconda"])
    return queries


def artist_from_extract(extract: str) -> Optional[str]:
    match = BY_PATTERN.search(extract)
    return match.group(1).strip(" ,.") if match else None


def year_from_extract(extract: str) -> Optional[str]:
    match = YEAR_PATTERN.search(extract)
    return match.group(1) if match else None


def style_from_extract(extract: str) -> Optional[str]:
    lowered = extract.lower()
    for keyword in STYLE_KEYWORDS:
        if keyword.lower() in lowered:
            return keyword
    return None


def search_wikipedia(candidate: RecognitionCandidate) -> Optional[ArtworkRecord]:
    for query in _queries(candidate):
        url = WIKIPEDIA_SUMMARY_URL.format(title=quote(query.replace(" ", "_"), safe=""))
        try:
            resp = requests.get(url, headers=HEADERS, timeout=REQUEST_TIMEOUT)
            if resp.status_code != 200:
                continue
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Wikipedia request failed for '{query}': {e}")
            continue

        title = data.get("title")
        extract = data.get("extract")
        if not title or not extract:
            continue

        artist = candidate.artist or artist_from_extract(extract) or "Unknown Artist"
        page_url = ((data.get("content_urls") or {}).get("desktop") or {}).get("page")

        logger.info(f"📚 Wikipedia match: '{title}' by '{artist}'")
        return ArtworkRecord(
            title=title,
            artist=artist,
            year=year_from_extract(extract),
            style=style_from_extract(extract),
            sources=[page_url] if page_url else [],
            image_url=(data.get("thumbnail") or {}).get("source"),
        )

    return None
