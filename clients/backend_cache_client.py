# clients/backend_cache_client.py
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from cachetools import TTLCache

from state.artwork_schema import ArtistIntroduction, ArtworkIdentity, CachedArtwork, NarrationBundle
from utils.artwork_identity import best_match, normalize_text, resolve

logger = logging.getLogger(__name__)

ARTWORKS_PATH = "/rest/v1/artworks"
ARTISTS_PATH = "/rest/v1/artists"
INCREMENT_VIEW_PATH = "/rest/v1/rpc/increment_artwork_view_count"

READ_TIMEOUT = 8.0
RETRY_DELAY = 1.0

RECENT_CACHE_SIZE = 20
RECENT_CACHE_TTL = 24 * 3600

# Fuzzy lookups fetch rows sharing a short prefix, then match locally
SIMILAR_PREFIX_LENGTH = 3
SIMILAR_LIMIT = 10

ARTWORK_FIELDS = (
    "title", "artist", "year", "style", "medium", "museum", "image_url",
    "sources", "summary", "narration", "confidence", "recognized",
)


class BackendCacheError(Exception):
    """Raised when the shared cache cannot serve or store a record."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _prefix(text: str) -> str:
    # PostgREST wildcards and filter separators cannot appear in the pattern
    cleaned = "".join(ch for ch in text if ch not in "*%,()")
    return cleaned[:SIMILAR_PREFIX_LENGTH].strip()


def _artwork_from_row(row: Dict[str, Any]) -> CachedArtwork:
    return CachedArtwork(
        id=str(row["id"]) if row.get("id") is not None else None,
        combined_hash=row.get("combined_hash") or "",
        view_count=row.get("view_count") or 0,
        title=row.get("title") or "",
        artist=row.get("artist") or "",
        year=row.get("year"),
        style=row.get("style"),
        medium=row.get("medium"),
        museum=row.get("museum"),
        image_url=row.get("image_url"),
        sources=row.get("sources") or [],
        summary=row.get("summary") or "",
        narration=row.get("narration") or "",
        artist_introduction=row.get("artist_introduction"),
        confidence=row.get("confidence"),
        recognized=row.get("recognized", True),
    )


class BackendCacheClient:
    """
    PostgREST client for the shared artwork cache.
    Artworks are keyed by combined_hash, biographies by normalized artist name.
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        timeout: float = READ_TIMEOUT,
        retry_delay: float = RETRY_DELAY,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.recent: TTLCache = TTLCache(maxsize=RECENT_CACHE_SIZE, ttl=RECENT_CACHE_TTL)

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key or "",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Any] = None,
        prefer: Optional[str] = None,
        retries: int = 0,
    ) -> Any:
        if not self.is_configured:
            raise BackendCacheError("backend cache is not configured")

        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        for attempt in range(retries + 1):
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.request(
                        method, url, params=params, json=body, headers=self._headers(prefer)
                    ) as resp:
                        text = await resp.text()
                        if resp.status in (401, 403):
                            raise BackendCacheError(f"authentication failed ({resp.status})", resp.status)
                        if resp.status >= 400:
                            raise BackendCacheError(f"{method} {path} failed ({resp.status}): {text[:200]}", resp.status)
                        if not text:
                            return None
                        return json.loads(text)

            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if attempt < retries:
                    logger.warning(f"⚠️ Backend {method} {path} network error, retrying in {self.retry_delay}s: {e}")
                    await asyncio.sleep(self.retry_delay)
                    continue
                raise BackendCacheError(f"network error: {e}") from e
            except json.JSONDecodeError as e:
                raise BackendCacheError(f"malformed response from {path}: {e}") from e

        return None

    async def find_artwork(self, combined_hash: str) -> Optional[CachedArtwork]:
        if combined_hash in self.recent:
            logger.info(f"✅ Artwork {combined_hash[:12]} served from recent cache")
            return self.recent[combined_hash]

        rows = await self._request(
            "GET",
            ARTWORKS_PATH,
            params={"combined_hash": f"eq.{combined_hash}", "select": "*", "limit": "1"},
            retries=1,
        )
        if not rows:
            return None

        artwork = _artwork_from_row(rows[0])
        self.recent[combined_hash] = artwork
        return artwork

    async def save_artwork(self, bundle: NarrationBundle, identity: ArtworkIdentity) -> None:
        if bundle.confidence < 0.8 or not bundle.recognized:
            raise ValueError("Only recognized bundles with confidence >= 0.8 may be cached")

        row = bundle.model_dump(include=set(ARTWORK_FIELDS))
        row.update(
            combined_hash=identity.combined_hash,
            normalized_title=identity.normalized_title,
            normalized_artist=identity.normalized_artist,
        )
        await self._request(
            "POST",
            ARTWORKS_PATH,
            params={"on_conflict": "combined_hash"},
            body=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )
        self.recent[identity.combined_hash] = CachedArtwork(combined_hash=identity.combined_hash, **bundle.model_dump())
        logger.info(f"💾 Artwork saved to backend cache: {bundle.title} ({identity.combined_hash[:12]})")

    async def increment_view_count(self, artwork_id: Optional[str]) -> None:
        """Best effort; failures are logged and dropped."""
        if not artwork_id:
            return
        try:
            await self._request("POST", INCREMENT_VIEW_PATH, body={"artwork_id": artwork_id})
        except BackendCacheError as e:
            logger.debug(f"View count increment failed for {artwork_id}: {e}")

    async def _find_artist_rows(self, column: str, value: str) -> List[Dict[str, Any]]:
        rows = await self._request(
            "GET",
            ARTISTS_PATH,
            params={column: f"eq.{value}", "select": "id,name,artist_introduction", "limit": "1"},
            retries=1,
        )
        return rows or []

    async def _find_fuzzy_artist_rows(self, normalized: str) -> List[Dict[str, Any]]:
        prefix = _prefix(normalized)
        if not prefix:
            return []
        rows = await self._request(
            "GET",
            ARTISTS_PATH,
            params={
                "normalized_name": f"ilike.{prefix}*",
                "select": "id,name,artist_introduction",
                "limit": str(SIMILAR_LIMIT),
            },
            retries=1,
        )
        target = resolve("", normalized)
        row = best_match(target, ((resolve("", r.get("name")), r) for r in rows or []))
        return [row] if row is not None else []

    async def find_similar_artwork(self, identity: ArtworkIdentity) -> Optional[CachedArtwork]:
        """
        Cached artwork that fuzzy-matches identity under a different hash,
        e.g. the same painting saved earlier under a slightly different spelling.
        """
        title_prefix = _prefix(identity.normalized_title)
        artist_prefix = _prefix(identity.normalized_artist)
        if not title_prefix or not artist_prefix:
            return None

        rows = await self._request(
            "GET",
            ARTWORKS_PATH,
            params={
                "normalized_title": f"ilike.{title_prefix}*",
                "normalized_artist": f"ilike.{artist_prefix}*",
                "select": "*",
                "limit": str(SIMILAR_LIMIT),
            },
            retries=1,
        )
        artworks = [_artwork_from_row(row) for row in rows or []]
        found = best_match(identity, ((resolve(a.title, a.artist), a) for a in artworks))
        if found is not None:
            logger.info(f"🔄 Similar cached artwork: '{found.title}' by '{found.artist}'")
        return found

    async def find_artist_introduction(self, name: str) -> Optional[ArtistIntroduction]:
        """Exact name, then normalized name, then the closest fuzzy match."""
        rows = await self._find_artist_rows("name", name)
        normalized = normalize_text(name)
        if not rows and normalized and normalized != name:
            rows = await self._find_artist_rows("normalized_name", normalized)
        if not rows:
            rows = await self._find_fuzzy_artist_rows(normalized)
        if not rows:
            return None

        row = rows[0]
        return ArtistIntroduction(
            name=row.get("name") or name,
            introduction=row.get("artist_introduction") or None,
            id=str(row["id"]) if row.get("id") is not None else None,
        )

    async def save_artist_introduction(self, name: str, introduction: str) -> None:
        await self._request(
            "POST",
            ARTISTS_PATH,
            params={"on_conflict": "normalized_name"},
            body={
                "name": name,
                "normalized_name": normalize_text(name),
                "artist_introduction": introduction,
            },
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.info(f"💾 Artist introduction saved for {name}")
