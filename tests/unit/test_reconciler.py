"""Tests for span reconciliation (strict and lenient attempts)."""
import pytest

from spanlabel.labeling.config import DEFAULT_VOCABULARY, ProcessingOptions, ValidationPolicy
from spanlabel.labeling.position_index import PositionIndex
from spanlabel.labeling.reconciler import (
    LENIENT_ATTEMPT,
    STRICT_ATTEMPT,
    clamp_confidence,
    normalize_role,
    reconcile,
    word_count,
)
from spanlabel.labeling.types import RawSpanCandidate

META = {"version": "v1", "notes": ""}


def span(text, start=None, end=None, role="Descriptive", confidence=0.9):
    return RawSpanCandidate(text=text, start=start, end=end, role=role, confidence=confidence)


class TestHelpers:
    @pytest.mark.parametrize("text,expected", [
        ("", 0),
        ("dusk", 1),
        ("a diner at dusk", 4),
        ("don't stop", 2),
        ("well-lit room", 2),
        ("  35mm   lens ", 2),
        ("café au lait", 3),
    ])
    def test_word_count(self, text, expected):
        assert word_count(text) == expected

    @pytest.mark.parametrize("value,expected", [
        (0.42, 0.42),
        (1.5, 1.0),
        (-0.2, 0.0),
        (1, 1.0),
        ("high", 0.7),
        (None, 0.7),
        (True, 0.7),
        (float("nan"), 0.7),
    ])
    def test_clamp_confidence(self, value, expected):
        assert clamp_confidence(value) == expected

    def test_normalize_role(self):
        assert normalize_role("Lighting", DEFAULT_VOCABULARY, lenient=False) == "Lighting"
        assert normalize_role("lighting", DEFAULT_VOCABULARY, lenient=False) is None
        assert normalize_role("Mood", DEFAULT_VOCABULARY, lenient=True) == "Descriptive"
        assert normalize_role(7, DEFAULT_VOCABULARY, lenient=True) == "Descriptive"


class TestReanchoring:
    def test_wrong_offsets_corrected_with_note(self, diner_text, policy, options):
        """Model offsets are hints; the span is moved onto the real text."""
        outcome = reconcile([span("diner", 0, 5, role="Environment")], META, diner_text, policy, options)
        assert outcome.ok
        result_span = outcome.result.spans[0]
        assert (result_span.start, result_span.end) == (17, 22)
        assert diner_text[17:22] == "diner"
        assert "span[0] indices auto-adjusted from 0-5 to 17-22" in outcome.result.notes

    def test_correct_offsets_leave_no_note(self, diner_text, policy, options):
        outcome = reconcile([span("dusk", 26, 30, role="TimeOfDay")], META, diner_text, policy, options)
        assert outcome.ok
        assert outcome.result.notes == ""

    def test_missing_offsets_are_located(self, diner_text, policy, options):
        outcome = reconcile([span("dusk")], META, diner_text, policy, options)
        assert (outcome.result.spans[0].start, outcome.result.spans[0].end) == (26, 30)
        assert "auto-adjusted from None-None to 26-30" in outcome.result.notes

    def test_repeated_text_uses_nearest_occurrence(self, policy, options):
        text = "red car, blue car, green car"
        outcome = reconcile([span("car", 22, 25)], META, text, policy, options)
        assert (outcome.result.spans[0].start, outcome.result.spans[0].end) == (25, 28)

    def test_mismatched_index_rebuilt(self, diner_text, policy, options):
        stale = PositionIndex("something else entirely")
        outcome = reconcile([span("dusk")], META, diner_text, policy, options, index=stale)
        assert outcome.result.spans[0].start == 26

    def test_shared_index_telemetry(self, diner_text, policy, options):
        index = PositionIndex(diner_text)
        reconcile([span("dusk"), span("diner")], META, diner_text, policy, options, index=index)
        assert index.telemetry().total_requests == 2

    def test_dict_candidates_accepted(self, diner_text, policy, options):
        outcome = reconcile(
            [{"text": "dusk", "start": 26, "end": 30, "role": "TimeOfDay", "confidence": 0.8}],
            META, diner_text, policy, options,
        )
        assert outcome.result.spans[0].role == "TimeOfDay"


class TestStrictAttempt:
    def test_missing_text_is_error(self, diner_text, policy, options):
        outcome = reconcile([span(None)], META, diner_text, policy, options)
        assert not outcome.ok
        assert outcome.errors == ["span[0] missing text"]

    def test_text_not_in_source_is_error(self, diner_text, policy, options):
        outcome = reconcile([span("sunrise", 0, 7)], META, diner_text, policy, options)
        assert not outcome.ok
        assert outcome.errors == ['span[0] text "sunrise" not found in source']

    def test_unknown_role_is_error(self, diner_text, policy, options):
        outcome = reconcile([span("dusk", role="Mood")], META, diner_text, policy, options)
        assert not outcome.ok
        assert outcome.errors[0].startswith('span[0] role "Mood" is not in the allowed set (')

    def test_word_limit_is_error(self, diner_text, policy, options):
        outcome = reconcile([span("A wide shot of a diner at dusk")], META, diner_text, policy, options)
        assert outcome.errors == ["span[0] exceeds non-technical word limit (6 words)"]

    def test_technical_role_exempt_from_word_limit(self, diner_text, policy, options):
        outcome = reconcile(
            [span("A wide shot of a diner at dusk", role="Technical")], META, diner_text, policy, options,
        )
        assert outcome.ok
        assert len(outcome.result.spans) == 1

    def test_errors_accumulate_per_span(self, diner_text, policy, options):
        outcome = reconcile(
            [span(None), span("dusk"), span("sunrise")], META, diner_text, policy, options,
        )
        assert len(outcome.errors) == 2
        assert outcome.errors[1].startswith("span[2]")
        assert [s.text for s in outcome.result.spans] == ["dusk"]


class TestLenientAttempt:
    def test_problems_become_notes(self, diner_text, policy, options):
        outcome = reconcile(
            [
                span(None),
                span("sunrise"),
                span("A wide shot of a diner at dusk", 0, 30),
                span("dusk", 26, 30, role="Mood"),
            ],
            META, diner_text, policy, options, attempt=LENIENT_ATTEMPT,
        )
        assert outcome.ok
        assert outcome.errors == []
        notes = outcome.result.notes.split(" | ")
        assert notes == [
            "span[0] dropped: missing text",
            "span[1] dropped: text not found in source",
            "span[2] dropped: exceeds non-technical word limit",
        ]
        assert outcome.result.spans[0].role == "Descriptive"

    def test_attempts_above_two_are_lenient(self, diner_text, policy, options):
        outcome = reconcile([span("sunrise")], META, diner_text, policy, options, attempt=3)
        assert outcome.ok


class TestDedupAndOverlap:
    def test_exact_duplicate_ignored(self, diner_text, policy, options):
        outcome = reconcile(
            [span("dusk", 26, 30), span("dusk", 26, 30)], META, diner_text, policy, options,
        )
        assert outcome.ok
        assert len(outcome.result.spans) == 1
        assert outcome.result.notes == "span[1] ignored: duplicate span"

    def test_higher_confidence_wins_overlap(self, diner_text, policy, options):
        outcome = reconcile(
            [span("wide shot", 2, 11, confidence=0.6), span("shot", 7, 11, role="Framing", confidence=0.9)],
            META, diner_text, policy, options,
        )
        assert [s.text for s in outcome.result.spans] == ["shot"]
        assert outcome.result.notes == (
            'Overlap between "wide shot" (2-11, conf=0.60) and "shot" (7-11, conf=0.90); kept "shot".'
        )

    def test_technical_bonus_breaks_near_tie(self, diner_text, policy, options):
        outcome = reconcile(
            [span("wide shot", 2, 11, confidence=0.62), span("shot", 7, 11, role="Technical", confidence=0.6)],
            META, diner_text, policy, options,
        )
        assert [s.role for s in outcome.result.spans] == ["Technical"]

    def test_equal_score_keeps_earlier_span(self, diner_text, policy, options):
        outcome = reconcile(
            [span("shot", 7, 11, confidence=0.8), span("wide shot", 2, 11, confidence=0.8)],
            META, diner_text, policy, options,
        )
        assert [s.text for s in outcome.result.spans] == ["wide shot"]

    def test_overlap_allowed_keeps_both(self, diner_text, options):
        policy = ValidationPolicy(allow_overlap=True)
        outcome = reconcile(
            [span("shot", 7, 11), span("wide shot", 2, 11)], META, diner_text, policy, options,
        )
        assert [s.text for s in outcome.result.spans] == ["wide shot", "shot"]
        assert outcome.result.notes == ""

    def test_adjacent_spans_do_not_overlap(self, diner_text, policy, options):
        outcome = reconcile(
            [span("a diner", 15, 22), span(" at dusk", 22, 30)], META, diner_text, policy, options,
        )
        assert len(outcome.result.spans) == 2


class TestFloorAndTruncation:
    def test_confidence_floor_drops_with_note(self, diner_text, policy, options):
        outcome = reconcile(
            [span("dusk", 26, 30, confidence=0.3), span("diner", 17, 22)], META, diner_text, policy, options,
        )
        assert outcome.ok
        assert [s.text for s in outcome.result.spans] == ["diner"]
        assert outcome.result.notes == 'Dropped "dusk" at 26-30 (confidence 0.30 below threshold 0.5).'

    def test_floor_is_inclusive(self, diner_text, policy, options):
        outcome = reconcile([span("dusk", 26, 30, confidence=0.5)], META, diner_text, policy, options)
        assert len(outcome.result.spans) == 1

    def test_truncation_keeps_highest_confidence_in_document_order(self, diner_text, policy):
        options = ProcessingOptions(max_spans=2)
        outcome = reconcile(
            [
                span("wide", 2, 6, confidence=0.9),
                span("diner", 17, 22, confidence=0.6),
                span("dusk", 26, 30, confidence=0.8),
            ],
            META, diner_text, policy, options,
        )
        assert [s.text for s in outcome.result.spans] == ["wide", "dusk"]
        assert outcome.result.notes == "Truncated spans to maxSpans=2; removed 1 spans."

    def test_output_sorted_by_start(self, diner_text, policy, options):
        outcome = reconcile(
            [span("dusk", 26, 30), span("wide", 2, 6), span("diner", 17, 22)],
            META, diner_text, policy, options,
        )
        assert [s.start for s in outcome.result.spans] == [2, 17, 26]


class TestResultMeta:
    def test_empty_span_list_is_success(self, diner_text, policy, options):
        outcome = reconcile([], META, diner_text, policy, options)
        assert outcome.ok
        assert outcome.result.spans == []

    def test_meta_notes_come_first(self, diner_text, policy, options):
        outcome = reconcile(
            [span("diner", 0, 5), span("dusk", 26, 30, confidence=0.1)],
            {"version": "v7", "notes": "model says hi"}, diner_text, policy, options,
        )
        assert outcome.result.version == "v7"
        parts = outcome.result.notes.split(" | ")
        assert parts[0] == "model says hi"
        assert parts[1].startswith("span[0] indices auto-adjusted")
        assert parts[2].startswith('Dropped "dusk"')

    def test_blank_meta_version_falls_back(self, diner_text, policy):
        options = ProcessingOptions(template_version="v3")
        outcome = reconcile([], {"version": "  ", "notes": ""}, diner_text, policy, options)
        assert outcome.result.version == "v3"

    def test_confidence_clamped_on_output(self, diner_text, policy, options):
        outcome = reconcile(
            [span("dusk", 26, 30, confidence=1.7), span("diner", 17, 22, confidence="sure")],
            META, diner_text, policy, options,
        )
        assert [s.confidence for s in outcome.result.spans] == [0.7, 1.0]

    def test_adversarial_input_yields_no_spans(self, diner_text, policy, options):
        outcome = reconcile(
            [span("dusk", 26, 30)], META, diner_text, policy, options,
            attempt=STRICT_ATTEMPT, is_adversarial=True, analysis_trace="prompt injection",
        )
        assert outcome.ok
        assert outcome.result.spans == []
        assert outcome.result.notes == "adversarial input flagged"
        assert outcome.result.to_dict()["isAdversarial"] is True
        assert outcome.result.to_dict()["analysisTrace"] == "prompt injection"


class TestScenarios:
    def test_misplaced_duplicates_collapse(self, diner_text, policy, options):
        """Two claims for "wide shot" with different offsets land on one span."""
        outcome = reconcile(
            [span("wide shot", 0, 9, role="Framing"), span("wide shot", 2, 11, role="Framing")],
            META, diner_text, policy, options,
        )
        assert [(s.start, s.end) for s in outcome.result.spans] == [(2, 11)]
        assert "span[1] ignored: duplicate span" in outcome.result.notes

    def test_overlap_keeps_more_confident_span(self, diner_text, policy, options):
        outcome = reconcile(
            [span("a diner", confidence=0.5), span("diner at dusk", confidence=0.8)],
            META, diner_text, policy, options,
        )
        assert [s.text for s in outcome.result.spans] == ["diner at dusk"]

    def test_ten_word_span_against_limit_six(self, policy, options):
        text = "slow dolly in across the quiet rain soaked neon lit street at night"
        long_span = "across the quiet rain soaked neon lit street at night"
        assert word_count(long_span) == 10

        dropped = reconcile([span(long_span)], META, text, policy, options, attempt=LENIENT_ATTEMPT)
        kept = reconcile([span(long_span, role="Technical")], META, text, policy, options)

        assert dropped.result.spans == []
        assert [s.text for s in kept.result.spans] == [long_span]

    def test_output_invariants(self, policy):
        text = "red car, blue car, green car under grey sky at noon"
        options = ProcessingOptions(max_spans=3, min_confidence=0.4)
        candidates = [
            span("car", 0, 3, confidence=0.9),
            span("blue car", 9, 17, confidence=0.6),
            span("car", 30, 33, confidence=0.3),
            span("green car", 19, 28, confidence=0.8),
            span("grey sky", 40, 48, role="Color", confidence=0.7),
            span("noon", 50, 54, role="TimeOfDay", confidence=0.95),
        ]

        first = reconcile(candidates, META, text, policy, options)
        second = reconcile(candidates, META, text, policy, options)

        spans = first.result.spans
        assert first.result == second.result
        assert len(spans) <= options.max_spans
        for s in spans:
            assert text[s.start:s.end] == s.text
            assert s.confidence >= options.min_confidence
        assert [s.start for s in spans] == sorted(s.start for s in spans)
        for prev, cur in zip(spans, spans[1:]):
            assert cur.start >= prev.end
