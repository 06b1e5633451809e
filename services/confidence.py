# services/confidence.py
from enum import Enum

HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.5


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NarrativeTemplate(str, Enum):
    FULL = "full"
    DISCLAIMER = "disclaimer"
    APOLOGETIC = "apologetic"


def classify(confidence: float) -> ConfidenceLevel:
    if confidence >= HIGH_THRESHOLD:
        return ConfidenceLevel.HIGH
    if confidence >= MEDIUM_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def is_cache_eligible(level: ConfidenceLevel) -> bool:
    return level is ConfidenceLevel.HIGH


def verifies_in_background(level: ConfidenceLevel) -> bool:
    """High confidence results are shown first and verified off the critical path."""
    return level is ConfidenceLevel.HIGH


def template_for(level: ConfidenceLevel) -> NarrativeTemplate:
    return {
        ConfidenceLevel.HIGH: NarrativeTemplate.FULL,
        ConfidenceLevel.MEDIUM: NarrativeTemplate.DISCLAIMER,
        ConfidenceLevel.LOW: NarrativeTemplate.APOLOGETIC,
    }[level]
