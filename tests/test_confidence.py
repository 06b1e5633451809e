import pytest

from services.confidence import (
    ConfidenceLevel,
    NarrativeTemplate,
    classify,
    is_cache_eligible,
    template_for,
    verifies_in_background,
)


@pytest.mark.parametrize("score,level", [
    (1.0, ConfidenceLevel.HIGH),
    (0.80, ConfidenceLevel.HIGH),
    (0.79, ConfidenceLevel.MEDIUM),
    (0.5, ConfidenceLevel.MEDIUM),
    (0.49, ConfidenceLevel.LOW),
    (0.0, ConfidenceLevel.LOW),
])
def test_classify_thresholds(score, level):
    assert classify(score) is level


def test_only_high_is_cache_eligible_and_verified_in_background():
    assert is_cache_eligible(ConfidenceLevel.HIGH)
    assert verifies_in_background(ConfidenceLevel.HIGH)
    for level in (ConfidenceLevel.MEDIUM, ConfidenceLevel.LOW):
        assert not is_cache_eligible(level)
        assert not verifies_in_background(level)


def test_templates_per_level():
    assert template_for(ConfidenceLevel.HIGH) is NarrativeTemplate.FULL
    assert template_for(ConfidenceLevel.MEDIUM) is NarrativeTemplate.DISCLAIMER
    assert template_for(ConfidenceLevel.LOW) is NarrativeTemplate.APOLOGETIC
