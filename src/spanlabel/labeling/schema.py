"""Response shape validation for span labeling model output.

The model must return ``{"spans": [...], "meta": {"version": str, "notes": str}}``.
Span items keep only ``text``, ``start``, ``end``, ``role`` and ``confidence``;
anything else is stripped instead of failing the whole response.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import DEFAULT_CONFIDENCE, DEFAULT_VOCABULARY, ProcessingOptions, RoleVocabulary
from .errors import SchemaError
from .types import RawSpanCandidate


class SpanItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str | None = None
    start: int | None = Field(default=None, ge=0)
    end: int | None = Field(default=None, ge=0)
    role: Any = None
    confidence: Any = DEFAULT_CONFIDENCE

    @field_validator("start", "end", mode="before")
    @classmethod
    def _integer_offset(cls, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a non-negative integer")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("must be a non-negative integer")
            return int(value)
        return value


class ResponseMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str
    notes: str


class LabelResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    spans: list[SpanItem]
    meta: ResponseMeta
    is_adversarial: bool = Field(
        default=False,
        validation_alias=AliasChoices("isAdversarial", "is_adversarial"),
    )
    analysis_trace: str | None = None


@dataclass
class ValidatedResponse:
    """Schema-clean response ready for reconciliation."""

    candidates: list[RawSpanCandidate]
    meta: dict[str, str]
    is_adversarial: bool = False
    analysis_trace: str | None = None
    raw: Any = field(default=None, repr=False)


def _format_error(error: Any) -> str:
    loc = ".".join(str(part) for part in error["loc"]) or "(root)"
    return f"{loc}: {error['msg']}"


def validate_schema(value: Any, vocabulary: RoleVocabulary = DEFAULT_VOCABULARY) -> ValidatedResponse:
    """Validate a parsed response and apply field defaults.

    Missing ``role`` becomes ``vocabulary.default``; missing ``confidence``
    becomes 0.7. Role validity is not checked here.

    Raises:
        SchemaError: listing every violated field path.
    """
    try:
        parsed = LabelResponse.model_validate(value)
    except ValidationError as e:
        raise SchemaError([_format_error(err) for err in e.errors()]) from e

    candidates = [
        RawSpanCandidate(
            text=item.text,
            start=item.start,
            end=item.end,
            role=vocabulary.default if item.role is None else item.role,
            confidence=item.confidence,
        )
        for item in parsed.spans
    ]
    return ValidatedResponse(
        candidates=candidates,
        meta={"version": parsed.meta.version, "notes": parsed.meta.notes},
        is_adversarial=parsed.is_adversarial,
        analysis_trace=parsed.analysis_trace,
        raw=value,
    )


def inject_default_meta(value: Any, options: ProcessingOptions) -> Any:
    """Fill in a missing or partial ``meta`` object in place.

    Some models drop fields they consider optional. Non-dict values are
    returned untouched so the schema check still reports them.
    """
    if not isinstance(value, dict):
        return value

    meta = value.get("meta")
    if not isinstance(meta, dict):
        spans = value.get("spans")
        count = len(spans) if isinstance(spans, list) else 0
        value["meta"] = {"version": options.template_version, "notes": f"Labeled {count} spans"}
        return value

    if not isinstance(meta.get("version"), str) or not meta["version"]:
        meta["version"] = options.template_version
    if not isinstance(meta.get("notes"), str):
        meta["notes"] = ""
    return value
