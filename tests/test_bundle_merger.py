import pytest

from agents.bundle_merger_agent import BundleMergerAgent
from services.confidence import ConfidenceLevel, classify
from state.artwork_schema import ArtworkRecord, NarrationBundle


@pytest.fixture
def merger():
    return BundleMergerAgent()


def _bundle(**overrides):
    data = dict(
        title="Impression, Sunrise",
        artist="Monet",
        narration="A harbour at dawn.",
        confidence=0.6,
        sources=["https://example.org/a"],
    )
    data.update(overrides)
    return NarrationBundle(**data)


def _verified(**overrides):
    data = dict(
        title="Impression, Sunrise",
        artist="Claude Monet",
        year="1872",
        museum="Musée Marmottan Monet",
        sources=["https://example.org/a", "https://example.org/b"],
    )
    data.update(overrides)
    return ArtworkRecord(**data)


def test_populated_field_wins(merger):
    merged = merger.merge(_bundle(artist="Monet"), _verified(artist="Claude Monet"))
    assert merged.artist == "Monet"


def test_empty_field_is_filled(merger):
    merged = merger.merge(_bundle(artist=""), _verified(artist="Claude Monet"))
    assert merged.artist == "Claude Monet"


def test_sentinel_fields_are_filled(merger):
    merged = merger.merge(_bundle(artist="未知艺术家"), _verified())
    assert merged.artist == "Claude Monet"
    assert merged.year == "1872"
    assert merged.museum == "Musée Marmottan Monet"


def test_sources_are_unioned_without_duplicates(merger):
    merged = merger.merge(_bundle(), _verified())
    assert merged.sources == ["https://example.org/a", "https://example.org/b"]


def test_corroboration_nudges_confidence(merger):
    merged = merger.merge(_bundle(confidence=0.6), _verified())
    assert merged.confidence == pytest.approx(0.7)


def test_corroboration_can_promote_to_high(merger):
    merged = merger.merge(_bundle(confidence=0.7), _verified())
    assert classify(merged.confidence) is ConfidenceLevel.HIGH


def test_corroboration_is_capped(merger):
    merged = merger.merge(_bundle(confidence=0.95), _verified())
    assert merged.confidence == 1.0


def test_unrelated_record_does_not_corroborate(merger):
    merged = merger.merge(_bundle(confidence=0.6), _verified(title="The Water Lily Pond"))
    assert merged.confidence == pytest.approx(0.6)
    assert merged.title == "Impression, Sunrise"


def test_no_verification_leaves_bundle_untouched(merger):
    bundle = _bundle()
    assert merger.merge(bundle, None) is bundle


def test_merge_returns_new_value(merger):
    bundle = _bundle(year=None)
    merged = merger.merge(bundle, _verified())
    assert bundle.year is None
    assert merged.year == "1872"
    assert merged.narration == bundle.narration
