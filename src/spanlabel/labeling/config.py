"""Configuration for span labeling: role vocabulary, policy, options, settings.

Environment Variables:
    SPAN_ENABLE_REPAIR: "true" to issue a second model call on strict failure
        (default: "false", which re-checks the primary response leniently)
    SPAN_DEFENSIVE_META: "true" to fill in a missing ``meta`` object before
        schema validation (default: "false")
    SPAN_CACHE_TTL: Result cache TTL in seconds (default: 3600)
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

DEFAULT_CONFIDENCE = 0.7
MAX_SPANS_LIMIT = 80
TECHNICAL_OVERLAP_BONUS = 0.05


@dataclass(frozen=True)
class RoleVocabulary:
    """Allowed span categories plus the default and length-exempt roles."""

    roles: frozenset[str]
    default: str
    technical: str

    def __post_init__(self) -> None:
        if self.default not in self.roles:
            raise ValueError(f"default role {self.default!r} is not in the vocabulary")
        if self.technical not in self.roles:
            raise ValueError(f"technical role {self.technical!r} is not in the vocabulary")

    def describe(self) -> str:
        return ", ".join(sorted(self.roles))


DEFAULT_VOCABULARY = RoleVocabulary(
    roles=frozenset({
        "Wardrobe",
        "Appearance",
        "Lighting",
        "TimeOfDay",
        "CameraMove",
        "Framing",
        "Environment",
        "Color",
        "Technical",
        "Descriptive",
    }),
    default="Descriptive",
    technical="Technical",
)


@dataclass(frozen=True)
class ValidationPolicy:
    """Caller-configurable content rules."""

    non_technical_word_limit: int = 6
    allow_overlap: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "nonTechnicalWordLimit": self.non_technical_word_limit,
            "allowOverlap": self.allow_overlap,
        }


@dataclass(frozen=True)
class ProcessingOptions:
    """Processing caps, thresholds and versioning."""

    max_spans: int = 20
    min_confidence: float = 0.5
    template_version: str = "v1"


DEFAULT_POLICY = ValidationPolicy()
DEFAULT_OPTIONS = ProcessingOptions()


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


@dataclass
class LabelingSettings:
    """Runtime switches for the retry orchestrator."""

    enable_repair: bool = False
    defensive_meta: bool = False
    cache_ttl_seconds: int = 3600
    vocabulary: RoleVocabulary = field(default_factory=lambda: DEFAULT_VOCABULARY)

    @classmethod
    def from_env(cls) -> "LabelingSettings":
        ttl_raw = os.environ.get("SPAN_CACHE_TTL", "3600")
        try:
            ttl = int(ttl_raw)
        except ValueError:
            ttl = 3600
        return cls(
            enable_repair=_parse_bool(os.environ.get("SPAN_ENABLE_REPAIR", "false")),
            defensive_meta=_parse_bool(os.environ.get("SPAN_DEFENSIVE_META", "false")),
            cache_ttl_seconds=ttl if ttl > 0 else 3600,
        )


def _as_number(value: Any) -> float | None:
    """Coerce ints, floats and numeric strings; reject bools and non-finite values."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def sanitize_policy(raw: Any) -> ValidationPolicy:
    """Merge caller policy over defaults, replacing unusable values.

    Args:
        raw: Mapping with ``nonTechnicalWordLimit`` and/or ``allowOverlap``
            (snake_case keys are accepted too). Anything else yields defaults.

    Returns:
        A ValidationPolicy with a positive word limit.
    """
    if not isinstance(raw, Mapping):
        return DEFAULT_POLICY

    limit_raw = raw.get("nonTechnicalWordLimit", raw.get("non_technical_word_limit"))
    limit = _as_number(limit_raw)
    word_limit = int(limit) if limit is not None and limit >= 1 else DEFAULT_POLICY.non_technical_word_limit

    overlap_raw = raw.get("allowOverlap", raw.get("allow_overlap"))
    return ValidationPolicy(
        non_technical_word_limit=word_limit,
        allow_overlap=overlap_raw is True,
    )


def sanitize_options(raw: Any) -> ProcessingOptions:
    """Merge caller options over defaults, capping ``max_spans`` at MAX_SPANS_LIMIT."""
    if not isinstance(raw, Mapping):
        return DEFAULT_OPTIONS

    max_spans_raw = _as_number(raw.get("maxSpans", raw.get("max_spans")))
    if max_spans_raw is not None and max_spans_raw.is_integer() and max_spans_raw > 0:
        max_spans = min(int(max_spans_raw), MAX_SPANS_LIMIT)
    else:
        max_spans = DEFAULT_OPTIONS.max_spans

    min_conf_raw = _as_number(raw.get("minConfidence", raw.get("min_confidence")))
    if min_conf_raw is not None and 0.0 <= min_conf_raw <= 1.0:
        min_confidence = min_conf_raw
    else:
        min_confidence = DEFAULT_OPTIONS.min_confidence

    version_raw = raw.get("templateVersion", raw.get("template_version"))
    template_version = str(version_raw) if version_raw not in (None, "") else DEFAULT_OPTIONS.template_version

    return ProcessingOptions(
        max_spans=max_spans,
        min_confidence=min_confidence,
        template_version=template_version,
    )
