# agents/bundle_merger_agent.py
import logging
from typing import Any, Optional

from state.artwork_schema import ArtworkRecord, NarrationBundle
from utils.artwork_identity import (
    FUZZY_THRESHOLD,
    canonicalize_title_variants,
    is_unknown_artist,
    is_unresolved_title,
    normalize_text,
    similarity,
)

logger = logging.getLogger(__name__)

CORROBORATION_BONUS = 0.1

MERGEABLE_FIELDS = ("title", "artist", "year", "style", "medium", "museum", "image_url")


def is_missing(field: str, value: Any) -> bool:
    """Empty values and the unresolved placeholders count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        if not value.strip():
            return True
        if field == "title":
            return is_unresolved_title(value)
        if field == "artist":
            return is_unknown_artist(value)
    return False


def _comparable_title(title: str) -> str:
    return normalize_text(canonicalize_title_variants(title))


class BundleMergerAgent:
    """
    Fills gaps in a generated bundle from a verified record.
    Populated fields of the bundle always win.
    """

    def corroborates(self, bundle: NarrationBundle, verified: ArtworkRecord) -> bool:
        if is_unresolved_title(bundle.title) or is_unresolved_title(verified.title):
            return False
        ours = _comparable_title(bundle.title)
        theirs = _comparable_title(verified.title)
        return ours == theirs or similarity(ours, theirs) > FUZZY_THRESHOLD

    def merge(self, bundle: NarrationBundle, verified: Optional[ArtworkRecord]) -> NarrationBundle:
        if verified is None:
            return bundle

        changes = {}
        for field in MERGEABLE_FIELDS:
            ours = getattr(bundle, field)
            theirs = getattr(verified, field)
            if is_missing(field, ours) and not is_missing(field, theirs):
                changes[field] = theirs

        changes["sources"] = bundle.sources + [s for s in verified.sources if s not in bundle.sources]

        if self.corroborates(bundle, verified):
            # rounded so 0.7 + 0.1 lands on the 0.8 threshold
            changes["confidence"] = round(min(1.0, bundle.confidence + CORROBORATION_BONUS), 6)

        filled = sorted(set(changes) - {"sources", "confidence"})
        logger.info(
            f"🔀 Merged verification into '{bundle.title}': filled {filled or 'nothing'}, "
            f"confidence {bundle.confidence:.2f} → {changes.get('confidence', bundle.confidence):.2f}"
        )
        return bundle.derive(**changes)


bundle_merger_agent = BundleMergerAgent()
