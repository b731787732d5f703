"""Shared test fixtures."""
import json

import pytest

from spanlabel.labeling.config import ProcessingOptions, ValidationPolicy


class ScriptedInvoker:
    """Fake ModelInvoker returning canned responses in order."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    async def __call__(self, system_prompt, user_payload, max_tokens, temperature):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_payload": user_payload,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if not self._responses:
            raise AssertionError("model called more times than scripted")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def model_response(spans, version="v1", notes="", **extra):
    return json.dumps({"spans": spans, "meta": {"version": version, "notes": notes}, **extra})


@pytest.fixture
def diner_text():
    return "A wide shot of a diner at dusk."


@pytest.fixture
def policy():
    return ValidationPolicy(non_technical_word_limit=6, allow_overlap=False)


@pytest.fixture
def options():
    return ProcessingOptions(max_spans=20, min_confidence=0.5, template_version="v1")


@pytest.fixture
def scripted_invoker():
    return ScriptedInvoker


@pytest.fixture
def make_response():
    return model_response
