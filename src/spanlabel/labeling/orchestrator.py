"""Retry orchestrator: generate -> validate -> repair for span labeling.

States:
  BUILD_PRIMARY_PROMPT -> CALL_MODEL -> PARSE_AND_VALIDATE_SCHEMA -> RECONCILE_STRICT
  RECONCILE_STRICT ok                      -> DONE
  RECONCILE_STRICT failed, repair enabled  -> BUILD_REPAIR_PROMPT -> CALL_MODEL
                                              -> PARSE_AND_VALIDATE_SCHEMA -> RECONCILE_LENIENT
  RECONCILE_STRICT failed, repair disabled -> RECONCILE_LENIENT (same primary response)

A primary parse/schema failure goes straight to BUILD_REPAIR_PROMPT when repair
is enabled and is terminal otherwise. The repair response failing parse/schema
is always terminal.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from spanlabel.shared.cache.protocol import ResultCache, build_cache_key
from spanlabel.shared.llm.protocol import ModelInvoker

from .config import (
    LabelingSettings,
    ProcessingOptions,
    ValidationPolicy,
    sanitize_options,
    sanitize_policy,
)
from .errors import InputError, ParseError, RepairFailedError, SchemaError
from .parsing import parse_response
from .position_index import PositionIndex
from .prompts import (
    build_base_payload,
    build_repair_payload,
    build_system_prompt,
    build_user_payload,
    estimate_max_tokens,
)
from .reconciler import LENIENT_ATTEMPT, STRICT_ATTEMPT, reconcile
from .schema import ValidatedResponse, inject_default_meta, validate_schema
from .types import LabelingResult, ValidationOutcome

logger = logging.getLogger(__name__)

MODEL_TEMPERATURE = 0.0


class LabelingState(str, Enum):
    BUILD_PRIMARY_PROMPT = "build_primary_prompt"
    CALL_MODEL = "call_model"
    PARSE_AND_VALIDATE_SCHEMA = "parse_and_validate_schema"
    RECONCILE_STRICT = "reconcile_strict"
    BUILD_REPAIR_PROMPT = "build_repair_prompt"
    RECONCILE_LENIENT = "reconcile_lenient"
    DONE = "done"
    FAILED = "failed"


class LabelSpansRequest(BaseModel):
    """Caller request. Loose numeric/policy values are sanitized, not rejected."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., description="Source text to label")
    max_spans: Any = Field(default=None, alias="maxSpans")
    min_confidence: Any = Field(default=None, alias="minConfidence")
    policy: Any = Field(default=None)
    template_version: Any = Field(default=None, alias="templateVersion")


def _coerce_request(request: LabelSpansRequest | Mapping[str, Any]) -> LabelSpansRequest:
    if isinstance(request, LabelSpansRequest):
        parsed = request
    elif isinstance(request, Mapping) and isinstance(request.get("text"), str):
        parsed = LabelSpansRequest.model_validate(dict(request))
    else:
        raise InputError("text is required")

    if not parsed.text.strip():
        raise InputError("text is required")
    return parsed


class RetryOrchestrator:
    """Drives one or two model calls and picks strict or lenient reconciliation.

    Each ``run`` builds its own PositionIndex and state trail, so one instance
    can serve concurrent calls. ``trail`` exposes the states visited by the
    most recently started run.
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        settings: LabelingSettings | None = None,
        cache: ResultCache | None = None,
    ) -> None:
        self._invoker = invoker
        self.settings = settings or LabelingSettings()
        self._cache = cache
        self.trail: list[LabelingState] = []

    def _enter(self, trail: list[LabelingState], state: LabelingState) -> None:
        trail.append(state)
        logger.debug("[Orchestrator] -> %s", state.value)

    async def _call_model(
        self,
        trail: list[LabelingState],
        system_prompt: str,
        user_payload: str,
        max_tokens: int,
    ) -> str:
        self._enter(trail, LabelingState.CALL_MODEL)
        return await self._invoker(system_prompt, user_payload, max_tokens, MODEL_TEMPERATURE)

    def _parse_and_validate(
        self, trail: list[LabelingState], raw: str, options: ProcessingOptions
    ) -> ValidatedResponse:
        self._enter(trail, LabelingState.PARSE_AND_VALIDATE_SCHEMA)
        value = parse_response(raw)
        if self.settings.defensive_meta:
            value = inject_default_meta(value, options)
        return validate_schema(value, self.settings.vocabulary)

    def _reconcile(
        self,
        trail: list[LabelingState],
        response: ValidatedResponse,
        text: str,
        index: PositionIndex,
        policy: ValidationPolicy,
        options: ProcessingOptions,
        attempt: int,
    ) -> ValidationOutcome:
        state = LabelingState.RECONCILE_STRICT if attempt == STRICT_ATTEMPT else LabelingState.RECONCILE_LENIENT
        self._enter(trail, state)
        return reconcile(
            response.candidates,
            response.meta,
            text,
            policy,
            options,
            attempt=attempt,
            index=index,
            vocabulary=self.settings.vocabulary,
            is_adversarial=response.is_adversarial,
            analysis_trace=response.analysis_trace,
        )

    def _finish(
        self, trail: list[LabelingState], result: LabelingResult, cache_key: str
    ) -> LabelingResult:
        self._enter(trail, LabelingState.DONE)
        if self._cache is not None:
            self._cache.set(cache_key, result.to_dict(), ttl=self.settings.cache_ttl_seconds)
        logger.info(
            "[Orchestrator] labeled %d spans in %d model call(s)",
            len(result.spans),
            trail.count(LabelingState.CALL_MODEL),
        )
        return result

    async def run(self, request: LabelSpansRequest | Mapping[str, Any]) -> LabelingResult:
        """Label spans for one request.

        Raises:
            InputError: Empty or missing text.
            ParseError / SchemaError: Structurally bad model output that the
                repair pass did not fix (or repair disabled).
            RepairFailedError: Lenient reconciliation still reported errors.
            Exception: Whatever the model invoker raises, unchanged.
        """
        trail: list[LabelingState] = []
        self.trail = trail
        req = _coerce_request(request)
        text = req.text
        policy = sanitize_policy(req.policy)
        options = sanitize_options({
            "maxSpans": req.max_spans,
            "minConfidence": req.min_confidence,
            "templateVersion": req.template_version,
        })

        vocabulary = self.settings.vocabulary
        cache_key = build_cache_key(
            text,
            {
                **policy.to_payload(),
                "maxSpans": options.max_spans,
                "minConfidence": options.min_confidence,
                "roles": sorted(vocabulary.roles),
                "defaultRole": vocabulary.default,
                "technicalRole": vocabulary.technical,
            },
            options.template_version,
        )
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("[Orchestrator] cache hit %s", cache_key)
                self._enter(trail, LabelingState.DONE)
                return LabelingResult.from_dict(cached)

        index = PositionIndex(text)
        max_tokens = estimate_max_tokens(options.max_spans)

        self._enter(trail, LabelingState.BUILD_PRIMARY_PROMPT)
        base = build_base_payload(text, policy, options)
        primary_raw = await self._call_model(
            trail,
            build_system_prompt(vocabulary, policy),
            build_user_payload(base),
            max_tokens,
        )

        primary_failure: ParseError | SchemaError | None = None
        try:
            primary = self._parse_and_validate(trail, primary_raw, options)
        except (ParseError, SchemaError) as e:
            if not self.settings.enable_repair:
                self._enter(trail, LabelingState.FAILED)
                logger.error("[Orchestrator] primary response unusable, repair disabled: %s", e)
                raise
            logger.warning("[Orchestrator] primary response unusable, repairing: %s", e.reasons)
            primary_failure = e
            primary = None

        if primary is not None:
            outcome = self._reconcile(trail, primary, text, index, policy, options, STRICT_ATTEMPT)
            if outcome.ok:
                return self._finish(trail, outcome.result, cache_key)

            logger.warning(
                "[Orchestrator] strict reconciliation failed with %d error(s)", len(outcome.errors)
            )
            if not self.settings.enable_repair:
                lenient = self._reconcile(trail, primary, text, index, policy, options, LENIENT_ATTEMPT)
                return self._finish(trail, self._require_ok(trail, lenient), cache_key)

            feedback_errors = outcome.errors
            original_response: Any = primary.raw
        else:
            feedback_errors = primary_failure.reasons
            original_response = primary_raw

        self._enter(trail, LabelingState.BUILD_REPAIR_PROMPT)
        repair_raw = await self._call_model(
            trail,
            build_system_prompt(vocabulary, policy, repair=True),
            build_repair_payload(base, feedback_errors, original_response),
            max_tokens,
        )

        try:
            repaired = self._parse_and_validate(trail, repair_raw, options)
        except (ParseError, SchemaError) as e:
            self._enter(trail, LabelingState.FAILED)
            logger.error("[Orchestrator] repair response unusable: %s", e.reasons)
            if primary_failure is None:
                raise
            reasons = [f"primary: {r}" for r in primary_failure.reasons]
            reasons += [f"repair: {r}" for r in e.reasons]
            raise type(e)(reasons) from e

        lenient = self._reconcile(trail, repaired, text, index, policy, options, LENIENT_ATTEMPT)
        return self._finish(trail, self._require_ok(trail, lenient), cache_key)

    def _require_ok(self, trail: list[LabelingState], outcome: ValidationOutcome) -> LabelingResult:
        if not outcome.ok:
            self._enter(trail, LabelingState.FAILED)
            logger.error("[Orchestrator] lenient reconciliation failed: %s", outcome.errors)
            raise RepairFailedError(outcome.errors)
        return outcome.result


async def label_spans(
    request: LabelSpansRequest | Mapping[str, Any],
    invoker: ModelInvoker,
    *,
    settings: LabelingSettings | None = None,
    cache: ResultCache | None = None,
) -> LabelingResult:
    """Label spans in ``request['text']`` with one RetryOrchestrator run."""
    return await RetryOrchestrator(invoker, settings=settings, cache=cache).run(request)
