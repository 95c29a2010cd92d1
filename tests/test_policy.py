"""Tests for the pairwise dedup decision policy and LLM verification fallback."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from resolution_service.errors import ServiceUnavailableError
from resolution_service.quote_dedup.policy import (
    UNRELATED_FALLBACK,
    DedupAction,
    DuplicateVerifier,
    LLMRelationship,
    LLMVerdict,
    analyze_quote_pair,
    parse_verdict,
    select_canonical_quote,
)

from conftest import FakeLLM

STORED = "We are going to cut taxes for everyone in America this year, I promise you that"


class TestAnalyzeQuotePair:
    def test_ellipsis_fragment_auto_merges(self):
        analysis = analyze_quote_pair("...cut taxes for everyone in America...", STORED)
        assert analysis.action is DedupAction.auto_merge
        assert analysis.ellipsis == 1.0

    def test_identical_text_auto_merges_on_containment(self):
        analysis = analyze_quote_pair(STORED, STORED)
        assert analysis.action is DedupAction.auto_merge
        assert analysis.score == 1.0

    def test_shorter_side_chosen_by_raw_length(self):
        # The stored quote is the shorter one here.
        analysis = analyze_quote_pair(STORED + " and next year too", STORED)
        assert analysis.action is DedupAction.auto_merge

    def test_partial_overlap_needs_llm(self):
        shorter = "Our economy is strong and it keeps getting stronger every single day"
        longer = "Our economy is strong and it keeps getting stronger, believe me, every week"
        analysis = analyze_quote_pair(shorter, longer)
        assert analysis.action is DedupAction.llm_verify
        assert 0.75 < analysis.containment <= 0.90

    def test_unrelated_text_is_no_match(self):
        analysis = analyze_quote_pair("I love pizza", STORED)
        assert analysis.action is DedupAction.no_match
        assert analysis.ellipsis is None


class TestVerdict:
    @pytest.mark.parametrize(
        "relationship,confidence,expected",
        [
            (LLMRelationship.IDENTICAL, 0.9, True),
            (LLMRelationship.SUBSET, 0.71, True),
            (LLMRelationship.SUBSET, 0.7, False),
            (LLMRelationship.PARAPHRASE, 0.99, False),
            (LLMRelationship.SAME_TOPIC, 0.99, False),
        ],
    )
    def test_is_duplicate(self, relationship, confidence, expected):
        assert LLMVerdict(relationship=relationship, confidence=confidence).is_duplicate is expected

    def test_parse_valid_payload(self):
        verdict = parse_verdict(
            {"relationship": "subset", "confidence": 0.85, "canonical": "B", "explanation": "excerpt"}
        )
        assert verdict.relationship is LLMRelationship.SUBSET
        assert verdict.canonical == "B"

    def test_parse_clamps_confidence(self):
        assert parse_verdict({"relationship": "IDENTICAL", "confidence": 3}).confidence == 1.0

    @pytest.mark.parametrize(
        "payload",
        [None, {}, {"relationship": "MAYBE", "confidence": 0.9}, {"relationship": "IDENTICAL", "confidence": "x"}],
    )
    def test_parse_malformed_falls_back(self, payload):
        assert parse_verdict(payload) == UNRELATED_FALLBACK


class TestDuplicateVerifier:
    async def test_without_llm_degrades(self):
        assert await DuplicateVerifier(None).verify("a", "b", "Speaker") == UNRELATED_FALLBACK

    async def test_service_failure_degrades(self):
        llm = FakeLLM(error=ServiceUnavailableError("llm", "timed out"))
        verdict = await DuplicateVerifier(llm).verify("a", "b", "Speaker")
        assert verdict.relationship is LLMRelationship.UNRELATED
        assert verdict.confidence == 0.5

    async def test_prompt_carries_both_quotes_and_speaker(self):
        llm = FakeLLM([{"relationship": "IDENTICAL", "confidence": 0.95, "canonical": "A", "explanation": "same"}])
        verdict = await DuplicateVerifier(llm).verify("first text", "second text", "Jane Doe")
        assert verdict.is_duplicate
        assert "first text" in llm.prompts[0]
        assert "second text" in llm.prompts[0]
        assert "Jane Doe" in llm.prompts[0]


@dataclass
class _Q:
    text: str
    first_seen_at: datetime


class TestSelectCanonicalQuote:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_prefers_clearly_longer(self):
        short = _Q("cut taxes for everyone", self.now - timedelta(days=1))
        long = _Q("we are going to cut taxes for everyone in america", self.now)
        assert select_canonical_quote([short, long]) is long

    def test_prefers_ellipsis_free_at_similar_length(self):
        clipped = _Q("cut taxes for everyone...", self.now - timedelta(days=1))
        clean = _Q("cut taxes for everyone now", self.now)
        assert select_canonical_quote([clipped, clean]) is clean

    def test_earliest_seen_breaks_ties(self):
        older = _Q("cut taxes for everyone", self.now - timedelta(days=1))
        newer = _Q("cut taxes for everybody", self.now)
        assert select_canonical_quote([newer, older]) is older

    def test_naive_and_aware_timestamps_compare(self):
        naive = _Q("cut taxes for everyone", datetime(2025, 1, 1))
        aware = _Q("cut taxes for everybody", self.now)
        assert select_canonical_quote([aware, naive]) is naive
