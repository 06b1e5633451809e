# utils/artwork_identity.py
"""
Turns free-text (title, artist) pairs into a stable cache identity.

Pipeline: clean title markers -> collapse known title variants ->
normalize for hashing -> sha256("title|artist").
"""
import hashlib
import re
from typing import Iterable, Optional, Tuple, TypeVar

from rapidfuzz.distance import Levenshtein

from state.artwork_schema import ArtworkIdentity

TITLE_MARKERS = ("《", "》")

UNRESOLVED_TITLE = "无法识别"
UNKNOWN_ARTIST = "未知艺术家"

UNRESOLVED_TITLES = frozenset({UNRESOLVED_TITLE, "无法识别的作品", "unknown", "unidentified"})
UNKNOWN_ARTISTS = frozenset({UNKNOWN_ARTIST, "未知", "unknown", "unknown artist"})

# Same painting series, different lighting names. Longest variants go first so
# "日落时" collapses as a whole instead of leaving a stray "时".
TITLE_VARIANTS = {
    "日落时": "日出",
    "黄昏时": "日出",
    "傍晚时": "日出",
    "日落": "日出",
    "黄昏": "日出",
    "傍晚": "日出",
    "夕阳": "日出",
    "晨光": "日出",
    "黎明": "日出",
    "sunset": "sunrise",
    "sundown": "sunrise",
    "dusk": "sunrise",
    "twilight": "sunrise",
    "dawn": "sunrise",
    "daybreak": "sunrise",
}

FILLER_WORDS = ("the", "a", "an", "la", "le", "les", "un", "une")

FUZZY_THRESHOLD = 0.85

T = TypeVar("T")

_ASCII_WORD = re.compile(r"^[A-Za-z ]+$")
_WHITESPACE = re.compile(r"\s+")
_ASCII_UPPER = re.compile(r"[A-Z]+")


def _variant_pattern(variant: str) -> "re.Pattern[str]":
    if _ASCII_WORD.match(variant):
        return re.compile(rf"\b{re.escape(variant)}\b", re.IGNORECASE)
    return re.compile(re.escape(variant))


_VARIANT_PATTERNS = [
    (_variant_pattern(variant), canonical)
    for variant, canonical in sorted(TITLE_VARIANTS.items(), key=lambda kv: -len(kv[0]))
]

_LEADING_FILLER = re.compile(rf"^(?:{'|'.join(FILLER_WORDS)})\s+(?=\S)")
_TRAILING_FILLER = re.compile(rf"(?<=\S)\s+(?:{'|'.join(FILLER_WORDS)})$")


def clean_title(title: Optional[str]) -> str:
    """Strip the title marker glyphs and surrounding whitespace."""
    text = title or ""
    for marker in TITLE_MARKERS:
        text = text.replace(marker, "")
    return text.strip()


def canonicalize_title_variants(title: str) -> str:
    text = clean_title(title)
    for pattern, canonical in _VARIANT_PATTERNS:
        text = pattern.sub(canonical, text)
    return text


def _lower_ascii(text: str) -> str:
    # str.lower() would also fold non-Latin scripts
    return _ASCII_UPPER.sub(lambda m: m.group(0).lower(), text)


def normalize_text(text: Optional[str]) -> str:
    normalized = text or ""
    for marker in TITLE_MARKERS:
        normalized = normalized.replace(marker, "")

    normalized = _WHITESPACE.sub(" ", normalized).strip()
    normalized = _lower_ascii(normalized)

    normalized = _LEADING_FILLER.sub("", normalized)
    normalized = _TRAILING_FILLER.sub("", normalized)

    return normalized.strip()


def identity_hash(normalized_title: str, normalized_artist: str) -> str:
    combined = f"{normalized_title}|{normalized_artist}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def resolve(title: Optional[str], artist: Optional[str], year: Optional[str] = None) -> ArtworkIdentity:
    normalized_title = normalize_text(canonicalize_title_variants(title or ""))
    normalized_artist = normalize_text(artist)
    return ArtworkIdentity(
        normalized_title=normalized_title,
        normalized_artist=normalized_artist,
        combined_hash=identity_hash(normalized_title, normalized_artist),
        year=year,
    )


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance over code points with unit costs."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def matches(a: ArtworkIdentity, b: ArtworkIdentity, fuzzy: bool = True) -> bool:
    if a.combined_hash == b.combined_hash:
        return True
    if not fuzzy:
        return False
    return (
        similarity(a.normalized_title, b.normalized_title) > FUZZY_THRESHOLD
        and similarity(a.normalized_artist, b.normalized_artist) > FUZZY_THRESHOLD
    )


def best_match(target: ArtworkIdentity, candidates: Iterable[Tuple[ArtworkIdentity, T]]) -> Optional[T]:
    """
    Value of the candidate closest to target among those that fuzzy-match it,
    or None. Closeness is the summed title and artist similarity.
    """
    best: Optional[T] = None
    best_score = -1.0
    for identity, value in candidates:
        if not matches(target, identity, fuzzy=True):
            continue
        score = (
            similarity(target.normalized_title, identity.normalized_title)
            + similarity(target.normalized_artist, identity.normalized_artist)
        )
        if score > best_score:
            best, best_score = value, score
    return best


def is_unresolved_title(title: Optional[str]) -> bool:
    return not (title or "").strip() or clean_title(title).lower() in UNRESOLVED_TITLES


def is_unknown_artist(artist: Optional[str]) -> bool:
    return not (artist or "").strip() or artist.strip().lower() in UNKNOWN_ARTISTS
