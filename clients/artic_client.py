# clients/artic_client.py
import logging
import re
from typing import Optional

import requests

from state.artwork_schema import ArtworkRecord, RecognitionCandidate

logger = logging.getLogger(__name__)

ARTIC_SEARCH_URL = "https://api.artic.edu/api/v1/artworks/search"
ARTIC_DETAIL_URL = "https://api.artic.edu/api/v1/artworks/{artwork_id}"
ARTIC_PAGE_URL = "https://www.artic.edu/artworks/{artwork_id}"
ARTIC_IMAGE_URL = "https://www.artic.edu/iiif/2/{image_id}/full/843,/0/default.jpg"
MUSEUM_NAME = "Art Institute of Chicago"

REQUEST_TIMEOUT = 5
DATE_PREFIXES = re.compile(r"^(?:ca\.|c\.)\s*", re.IGNORECASE)


def search_art_institute(candidate: RecognitionCandidate) -> Optional[ArtworkRecord]:
    try:
        resp = requests.get(
            ARTIC_SEARCH_URL,
            params={"q": candidate.artwork_name, "limit": 1},
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        hits = resp.json().get("data") or []
        if not hits or hits[0].get("id") is None:
            return None
        artwork_id = hits[0]["id"]

        resp = requests.get(ARTIC_DETAIL_URL.format(artwork_id=artwork_id), timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
        data = resp.json().get("data") or {}
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Art Institute request failed for '{candidate.artwork_name}': {e}")
        return None

    title = (data.get("title") or "").strip()
    if not title:
        return None

    artist = (data.get("artist_display") or "").strip()
    if not artist and data.get("artist_titles"):
        artist = ", ".join(data["artist_titles"])
    artist = artist or "Unknown Artist"

    year = data.get("date_display")
    if year:
        year = DATE_PREFIXES.sub("", year.strip()).strip() or None

    style = (data.get("style_title") or data.get("classification_title") or "").strip() or None
    image_id = data.get("image_id")

    logger.info(f"🏛️ Art Institute match: '{title}' by '{artist}'")
    return ArtworkRecord(
        title=title,
        artist=artist,
        year=year,
        style=style,
        medium=data.get("medium_display") or None,
        museum=MUSEUM_NAME,
        sources=[ARTIC_PAGE_URL.format(artwork_id=artwork_id)],
        image_url=ARTIC_IMAGE_URL.format(image_id=image_id) if image_id else None,
    )
