"""Prompt builders for span labeling and repair."""

from __future__ import annotations

import json
from typing import Any

from .config import DEFAULT_VOCABULARY, ProcessingOptions, RoleVocabulary, ValidationPolicy
from .errors import format_reasons

REPAIR_INSTRUCTIONS = (
    "Fix the indices and roles described above without changing span text. "
    "Do not invent new spans."
)

_SYSTEM_PROMPT = """\
You label short prompt spans for a video prompt editor.

Roles: {roles}.

Rules:
- Propose and label salient spans directly from the provided text.
- Use exact substrings; do not invent or paraphrase.
- Return start/end as approximate 0-based character offsets (they will be auto-corrected to match the exact text).
- Focus on providing the exact text and correct role; indices will be recalculated server-side.
- Do not overlap spans unless explicitly allowed.
- Non-{technical} spans must be <= {word_limit} words (unless a different limit is provided in policy).
- Use "{default}" if unsure.
- Prefer fewer, more meaningful spans over many trivial ones.
- Confidence must be in the range [0, 1] (use 0.7 when unsure).
- Output ONLY valid JSON matching:
  {{"spans":[{{"text":string,"start":number,"end":number,"role":string,"confidence":number}}], "meta":{{"version":string,"notes":string}}}}
- The response must start with "{{" and be valid JSON (no markdown fences)."""

_REPAIR_SUFFIX = """

If validation feedback is provided, correct the issues without altering span text."""


def build_system_prompt(
    vocabulary: RoleVocabulary = DEFAULT_VOCABULARY,
    policy: ValidationPolicy | None = None,
    repair: bool = False,
) -> str:
    """Render the labeling system prompt from the injected vocabulary."""
    word_limit = policy.non_technical_word_limit if policy else 6
    prompt = _SYSTEM_PROMPT.format(
        roles=vocabulary.describe(),
        technical=vocabulary.technical,
        word_limit=word_limit,
        default=vocabulary.default,
    )
    return prompt + _REPAIR_SUFFIX if repair else prompt


def build_task_description(max_spans: int, policy: ValidationPolicy) -> str:
    task = f"Identify up to {max_spans} spans and assign roles."
    if policy.allow_overlap:
        task += " Overlapping spans are allowed."
    return task


def build_base_payload(text: str, policy: ValidationPolicy, options: ProcessingOptions) -> dict[str, Any]:
    return {
        "task": build_task_description(options.max_spans, policy),
        "policy": policy.to_payload(),
        "text": text,
        "templateVersion": options.template_version,
    }


def build_user_payload(base: dict[str, Any]) -> str:
    return json.dumps(base, ensure_ascii=False)


def build_repair_payload(
    base: dict[str, Any],
    errors: list[str],
    original_response: Any,
) -> str:
    """Embed the numbered error list and the full original response.

    ``original_response`` is the parsed JSON value when the primary response
    parsed, otherwise the raw response text.
    """
    payload = dict(base)
    payload["validation"] = {
        "errors": errors,
        "errorSummary": format_reasons(errors),
        "originalResponse": original_response,
        "instructions": REPAIR_INSTRUCTIONS,
    }
    return json.dumps(payload, ensure_ascii=False, default=str)


def estimate_max_tokens(max_spans: int) -> int:
    """Output token budget: fixed envelope plus a per-span allowance."""
    return 400 + 25 * max_spans
