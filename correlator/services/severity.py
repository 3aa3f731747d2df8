"""Normalize feed severity vocabularies and CVSS data to the canonical four levels."""

from typing import Literal

SeverityLevel = Literal["critical", "high", "medium", "low"]

SEVERITY_ORDER: tuple[SeverityLevel, ...] = ("low", "medium", "high", "critical")

# Unknown severity with no usable CVSS score is reported as medium.
_DEFAULT_SEVERITY: SeverityLevel = "medium"

# Severity aliases (case-insensitive) -> canonical level.
_SEVERITY_ALIASES: dict[str, SeverityLevel] = {
    "critical": "critical",
    "crit": "critical",
    "high": "high",
    "important": "high",
    "medium": "medium",
    "med": "medium",
    "moderate": "medium",
    "low": "low",
    "minor": "low",
    "negligible": "low",
    "info": "low",
    "informational": "low",
    "none": "low",
    "unimportant": "low",
}

# CVSS score bands -> severity (used when the severity label is missing or unknown).
_CVSS_TO_SEVERITY: list[tuple[float, SeverityLevel]] = [
    (9.0, "critical"),
    (7.0, "high"),
    (4.0, "medium"),
    (0.0, "low"),
]

# Weights for a rough base-score estimate from a CVSS v3/v4 vector when no score is published.
_VECTOR_WEIGHTS: dict[str, float] = {
    "AV:N": 2.0,
    "AV:A": 1.5,
    "AC:L": 1.0,
    "PR:N": 1.0,
    "UI:N": 0.5,
    "C:H": 1.5,
    "I:H": 1.5,
    "A:H": 1.5,
}


def cvss_to_severity(score: float | None) -> SeverityLevel:
    """Map a CVSS base score to a level; missing or out-of-range scores map to medium."""
    if score is None or not 0 <= score <= 10:
        return _DEFAULT_SEVERITY
    for floor, level in _CVSS_TO_SEVERITY:
        if score >= floor:
            return level
    return "low"


def estimate_cvss_from_vector(vector: str | None) -> float | None:
    """
    Estimate a 0-10 score from a CVSS:3.x / CVSS:4.0 vector string.
    Returns None for anything that is not a v3/v4 vector.
    """
    if not vector or not isinstance(vector, str):
        return None
    if not (vector.startswith("CVSS:3") or vector.startswith("CVSS:4")):
        return None
    score = 0.0
    for part in vector.split("/"):
        score += _VECTOR_WEIGHTS.get(part.strip(), 0.0)
    return min(round(score, 1), 10.0)


def normalize_severity(raw_severity: str | None, raw_cvss: float | None = None) -> SeverityLevel:
    """
    Map any feed severity label and/or CVSS score to one of critical, high, medium, low.
    Tries aliases first, then CVSS bands, then falls back to medium. Total over all inputs.
    """
    if raw_severity and isinstance(raw_severity, str) and raw_severity.strip():
        normalized = raw_severity.strip().lower()
        if normalized in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[normalized]
    return cvss_to_severity(raw_cvss)


def severity_rank(level: str) -> int:
    """Higher is more severe; unknown labels rank below low."""
    try:
        return SEVERITY_ORDER.index(level)  # type: ignore[arg-type]
    except ValueError:
        return -1
