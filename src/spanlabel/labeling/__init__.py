"""Span labeling reconciliation engine.

Takes untrusted model output plus the exact source text and produces a
source-consistent, policy-compliant span set.

Modules:
    parsing: Fence stripping + JSON parsing with object extraction fallback
    schema: Response shape validation and field defaults
    position_index: Call-scoped nearest-occurrence substring lookup
    reconciler: Strict/lenient per-attempt span reconciliation
    orchestrator: Generate -> validate -> repair state machine
    prompts: System prompt and payload builders
    config: Role vocabulary, policy/options sanitization, settings
"""

from .config import (
    DEFAULT_OPTIONS,
    DEFAULT_POLICY,
    DEFAULT_VOCABULARY,
    LabelingSettings,
    ProcessingOptions,
    RoleVocabulary,
    ValidationPolicy,
    sanitize_options,
    sanitize_policy,
)
from .errors import (
    InputError,
    ModelInvocationError,
    ParseError,
    RepairFailedError,
    SchemaError,
    SpanLabelingError,
)
from .orchestrator import LabelingState, LabelSpansRequest, RetryOrchestrator, label_spans
from .parsing import parse_response
from .position_index import PositionIndex
from .reconciler import reconcile
from .schema import validate_schema
from .types import LabelingResult, RawSpanCandidate, ReconciledSpan, ValidationOutcome

__all__ = [
    # Config
    "DEFAULT_OPTIONS",
    "DEFAULT_POLICY",
    "DEFAULT_VOCABULARY",
    "LabelingSettings",
    "ProcessingOptions",
    "RoleVocabulary",
    "ValidationPolicy",
    "sanitize_options",
    "sanitize_policy",
    # Errors
    "SpanLabelingError",
    "InputError",
    "ParseError",
    "SchemaError",
    "RepairFailedError",
    "ModelInvocationError",
    # Pipeline
    "parse_response",
    "validate_schema",
    "PositionIndex",
    "reconcile",
    "RetryOrchestrator",
    "LabelingState",
    "LabelSpansRequest",
    "label_spans",
    # Types
    "RawSpanCandidate",
    "ReconciledSpan",
    "LabelingResult",
    "ValidationOutcome",
]
