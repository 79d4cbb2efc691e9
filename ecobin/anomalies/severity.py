"""
Severity classification.

Severity is the ratio of the observed value to a per-rule baseline:

    ratio > high_ratio    → high
    ratio > medium_ratio  → medium
    otherwise             → low

e.g. a battery drop of 25 points against a 10-point baseline is 2.5 → high.
"""

from enum import StrEnum


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify_severity(
    observed: float,
    baseline: float,
    high_ratio: float = 2.0,
    medium_ratio: float = 1.5,
) -> Severity:
    if baseline <= 0:
        raise ValueError("baseline must be positive")
    ratio = abs(observed) / baseline
    if ratio > high_ratio:
        return Severity.HIGH
    if ratio > medium_ratio:
        return Severity.MEDIUM
    return Severity.LOW
