"""Span reconciliation: one validation attempt over untrusted model spans.

Pipeline per attempt:
  1. Text presence check
  2. Re-anchoring onto the source via PositionIndex
  3. Role normalization against the injected vocabulary
  4. Confidence clamping
  5. Non-technical word limit
  6. Exact duplicate removal
  7. Overlap resolution (confidence wins, technical role gets a small bonus)
  8. Confidence floor
  9. Truncation to max_spans by rank, re-sorted to document order

Attempt 1 is strict: per-span problems become errors and the caller escalates
to a repair pass. Attempt 2 is lenient: the same problems drop the span with
a note, so the outcome is always ok.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from .config import (
    DEFAULT_CONFIDENCE,
    DEFAULT_VOCABULARY,
    TECHNICAL_OVERLAP_BONUS,
    ProcessingOptions,
    RoleVocabulary,
    ValidationPolicy,
)
from .position_index import PositionIndex
from .types import LabelingResult, RawSpanCandidate, ReconciledSpan, ValidationOutcome

logger = logging.getLogger(__name__)

STRICT_ATTEMPT = 1
LENIENT_ATTEMPT = 2

# Letters/digits, allowing inner apostrophes and hyphens ("don't", "well-lit").
_WORD = re.compile(r"[^\W_]+(?:['\-][^\W_]+)*")


def word_count(text: str) -> int:
    """Count Unicode words in ``text``."""
    if not text:
        return 0
    return len(_WORD.findall(text))


def clamp_confidence(value: Any) -> float:
    """Clamp to [0, 1]; anything non-numeric (bools, NaN, strings) becomes 0.7."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if math.isnan(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def normalize_role(role: Any, vocabulary: RoleVocabulary, lenient: bool) -> str | None:
    """Return the canonical role, the default (lenient only) or None."""
    if isinstance(role, str) and role in vocabulary.roles:
        return role
    return vocabulary.default if lenient else None


def _sort_key(span: ReconciledSpan) -> tuple[int, int]:
    return (span.start, -span.end)


def _candidate_fields(candidate: RawSpanCandidate | Mapping[str, Any]) -> RawSpanCandidate:
    if isinstance(candidate, RawSpanCandidate):
        return candidate
    if isinstance(candidate, Mapping):
        return RawSpanCandidate(
            text=candidate.get("text"),
            start=candidate.get("start"),
            end=candidate.get("end"),
            role=candidate.get("role"),
            confidence=candidate.get("confidence"),
        )
    return RawSpanCandidate()


def _meta_notes(meta: Mapping[str, Any] | None) -> list[str]:
    if not meta:
        return []
    notes = meta.get("notes")
    if isinstance(notes, str):
        return [notes] if notes else []
    if isinstance(notes, list):
        return [n for n in notes if isinstance(n, str) and n]
    return []


def _meta_version(meta: Mapping[str, Any] | None, options: ProcessingOptions) -> str:
    version = meta.get("version") if meta else None
    if isinstance(version, str) and version.strip():
        return version.strip()
    return options.template_version


def _resolve_overlaps(
    spans: list[ReconciledSpan],
    vocabulary: RoleVocabulary,
    notes: list[str],
) -> list[ReconciledSpan]:
    def score(span: ReconciledSpan) -> float:
        bonus = TECHNICAL_OVERLAP_BONUS if span.role == vocabulary.technical else 0.0
        return span.confidence + bonus

    resolved: list[ReconciledSpan] = []
    for span in spans:
        last = resolved[-1] if resolved else None
        if last is None or span.start >= last.end:
            resolved.append(span)
            continue

        winner = span if score(span) > score(last) else last
        notes.append(
            f'Overlap between "{last.text}" ({last.start}-{last.end}, conf={last.confidence:.2f}) '
            f'and "{span.text}" ({span.start}-{span.end}, conf={span.confidence:.2f}); '
            f'kept "{winner.text}".'
        )
        if winner is span:
            resolved[-1] = span
    return resolved


def reconcile(
    spans: Sequence[RawSpanCandidate | Mapping[str, Any]],
    meta: Mapping[str, Any] | None,
    text: str,
    policy: ValidationPolicy,
    options: ProcessingOptions,
    attempt: int = STRICT_ATTEMPT,
    index: PositionIndex | None = None,
    vocabulary: RoleVocabulary = DEFAULT_VOCABULARY,
    is_adversarial: bool = False,
    analysis_trace: str | None = None,
) -> ValidationOutcome:
    """Run one reconciliation attempt.

    Args:
        spans: Candidates from the schema validator (dicts are accepted too).
        meta: Response meta; its version and notes are carried over.
        text: Exact source text.
        policy: Word limit and overlap rules.
        options: Span cap, confidence floor and template version.
        attempt: 1 for strict, 2 (or higher) for lenient.
        index: Call-scoped PositionIndex over ``text``; built when omitted.
        vocabulary: Allowed roles plus default and technical roles.
        is_adversarial: Model flagged the input; ignore all candidates.
        analysis_trace: Optional model reasoning trace passed through.

    Returns:
        ValidationOutcome with spans in document order.
    """
    if index is None or index.text != text:
        index = PositionIndex(text)

    lenient = attempt > STRICT_ATTEMPT
    errors: list[str] = []
    notes: list[str] = []
    autofix_notes: list[str] = []
    overlap_notes: list[str] = []
    floor_notes: list[str] = []
    truncation_notes: list[str] = []

    seen: set[tuple[int, int, str]] = set()
    sanitized: list[ReconciledSpan] = []

    for i, raw in enumerate([] if is_adversarial else spans):
        label = f"span[{i}]"
        candidate = _candidate_fields(raw)

        if not isinstance(candidate.text, str) or not candidate.text:
            if lenient:
                notes.append(f"{label} dropped: missing text")
            else:
                errors.append(f"{label} missing text")
            continue

        preferred = candidate.start if isinstance(candidate.start, int) else 0
        match = index.find_best_match(candidate.text, preferred)
        if match is None:
            if lenient:
                notes.append(f"{label} dropped: text not found in source")
            else:
                errors.append(f'{label} text "{candidate.text}" not found in source')
            continue

        start, end = match
        if candidate.start != start or candidate.end != end:
            autofix_notes.append(
                f"{label} indices auto-adjusted from {candidate.start}-{candidate.end} to {start}-{end}"
            )

        role = normalize_role(candidate.role, vocabulary, lenient)
        if role is None:
            errors.append(
                f'{label} role "{candidate.role}" is not in the allowed set ({vocabulary.describe()})'
            )
            continue

        if role != vocabulary.technical and word_count(candidate.text) > policy.non_technical_word_limit:
            if lenient:
                notes.append(f"{label} dropped: exceeds non-technical word limit")
            else:
                errors.append(
                    f"{label} exceeds non-technical word limit ({policy.non_technical_word_limit} words)"
                )
            continue

        span = ReconciledSpan(
            text=candidate.text,
            start=start,
            end=end,
            role=role,
            confidence=clamp_confidence(candidate.confidence),
        )
        if span.key in seen:
            notes.append(f"{label} ignored: duplicate span")
            continue
        seen.add(span.key)
        sanitized.append(span)

    sanitized.sort(key=_sort_key)

    if policy.allow_overlap:
        resolved = sanitized
    else:
        resolved = _resolve_overlaps(sanitized, vocabulary, overlap_notes)

    kept: list[ReconciledSpan] = []
    for span in resolved:
        if span.confidence >= options.min_confidence:
            kept.append(span)
        else:
            floor_notes.append(
                f'Dropped "{span.text}" at {span.start}-{span.end} '
                f"(confidence {span.confidence:.2f} below threshold {options.min_confidence})."
            )

    final = kept
    if len(kept) > options.max_spans:
        ranked = sorted(kept, key=lambda s: (-s.confidence, s.start))
        final = sorted(ranked[: options.max_spans], key=_sort_key)
        truncation_notes.append(
            f"Truncated spans to maxSpans={options.max_spans}; removed {len(kept) - len(final)} spans."
        )

    combined = [
        *_meta_notes(meta),
        *notes,
        *autofix_notes,
        *overlap_notes,
        *floor_notes,
        *truncation_notes,
    ]
    if is_adversarial:
        combined.append("adversarial input flagged")

    if errors:
        logger.debug("[Reconciler] attempt=%d errors=%d", attempt, len(errors))
    logger.debug(
        "[Reconciler] attempt=%d candidates=%d kept=%d",
        attempt, len(spans), len(final),
    )

    return ValidationOutcome(
        ok=not errors,
        errors=errors,
        result=LabelingResult(
            spans=final,
            version=_meta_version(meta, options),
            notes=" | ".join(combined),
            is_adversarial=is_adversarial,
            analysis_trace=analysis_trace,
        ),
    )
