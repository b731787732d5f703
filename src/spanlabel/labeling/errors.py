"""Exception taxonomy for span labeling.

Per-span problems are never raised: they are collected as strings on the
ValidationOutcome and either escalate the batch to the repair pass (strict
attempt) or are dropped with a note (lenient attempt).
"""

from __future__ import annotations


def format_reasons(reasons: list[str]) -> str:
    """Render reasons as a numbered, newline-separated list."""
    return "\n".join(f"{i}. {reason}" for i, reason in enumerate(reasons, start=1))


class SpanLabelingError(Exception):
    """Base class for every error surfaced by the labeling engine."""


class InputError(SpanLabelingError):
    """The caller's request is unusable (e.g. empty text)."""


class _ReasonedError(SpanLabelingError):
    headline = "span labeling failed"

    def __init__(self, reasons: list[str] | str) -> None:
        self.reasons = [reasons] if isinstance(reasons, str) else list(reasons)
        super().__init__(f"{self.headline}:\n{format_reasons(self.reasons)}")


class ParseError(_ReasonedError):
    """The model response is not parseable JSON."""

    headline = "Invalid JSON"


class SchemaError(_ReasonedError):
    """The parsed response does not match the fixed response shape."""

    headline = "LLM response failed schema validation"


class RepairFailedError(_ReasonedError):
    """Lenient reconciliation still reported errors."""

    headline = "Repair attempt failed validation"


class ModelInvocationError(SpanLabelingError):
    """The model invoker gave up (non-retryable status or retries exhausted)."""
