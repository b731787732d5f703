"""Span labeling data types.

Wire types (what the model sends and what callers receive) are TypedDicts;
engine values are dataclasses.

- RawSpanCandidate: one untrusted span item after schema validation
- ReconciledSpan: a span re-anchored onto the source text
- LabelingResult: the span set plus meta handed back to callers
- ValidationOutcome: one reconciliation attempt (ok flag, errors, result)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypedDict


class SpanPayload(TypedDict):
    """Span as serialized in a labeling response."""
    text: str
    start: int
    end: int
    role: str
    confidence: float


class MetaPayload(TypedDict):
    """Response metadata; ``notes`` holds pipe-delimited diagnostics."""
    version: str
    notes: str


class LabelingResponse(TypedDict, total=False):
    spans: list[SpanPayload]
    meta: MetaPayload
    isAdversarial: bool
    analysisTrace: str


@dataclass
class RawSpanCandidate:
    """Span as claimed by the model. Offsets are hints, not truth."""

    text: Any = None
    start: int | None = None
    end: int | None = None
    role: Any = None
    confidence: Any = None


@dataclass(frozen=True)
class ReconciledSpan:
    text: str
    start: int
    end: int
    role: str
    confidence: float

    @property
    def key(self) -> tuple[int, int, str]:
        return (self.start, self.end, self.text)

    def to_dict(self) -> SpanPayload:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "role": self.role,
            "confidence": self.confidence,
        }


@dataclass
class LabelingResult:
    spans: list[ReconciledSpan] = field(default_factory=list)
    version: str = "v1"
    notes: str = ""
    is_adversarial: bool = False
    analysis_trace: str | None = None

    def to_dict(self) -> LabelingResponse:
        data: LabelingResponse = {
            "spans": [span.to_dict() for span in self.spans],
            "meta": {"version": self.version, "notes": self.notes},
        }
        if self.is_adversarial:
            data["isAdversarial"] = True
        if self.analysis_trace:
            data["analysisTrace"] = self.analysis_trace
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LabelingResult":
        """Rebuild a result from ``to_dict()`` output (used by the result cache)."""
        meta = data.get("meta") or {}
        return cls(
            spans=[ReconciledSpan(**span) for span in data.get("spans", [])],
            version=meta.get("version", "v1"),
            notes=meta.get("notes", ""),
            is_adversarial=bool(data.get("isAdversarial", False)),
            analysis_trace=data.get("analysisTrace"),
        )


@dataclass
class ValidationOutcome:
    ok: bool
    errors: list[str]
    result: LabelingResult
