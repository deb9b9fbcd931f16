"""Tests for multi-factor confidence scoring."""

from datetime import datetime, timedelta, timezone

import pytest

from rfp_engine.schemas.answer import AnswerSource, ConfidenceBand
from rfp_engine.services.answer.confidence_score import (
    ConfidenceInputs,
    compute_confidence,
    confidence_band,
    estimate_question_parts,
    score_answer_coverage,
    score_context_relevance,
    score_source_authority,
    score_source_recency,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

SSO_ANSWER = (
    "Yes. Our platform supports SAML 2.0 and OpenID Connect single sign-on with Okta, "
    "Azure AD and Ping Identity out of the box, including SCIM provisioning."
)


@pytest.fixture
def grounded_inputs():
    sources = [
        AnswerSource(id="c1", document_id="d1", chunk_key="security#1", relevance=0.9),
        AnswerSource(id="c2", document_id="d1", chunk_key="security#2", relevance=0.7),
    ]
    return ConfidenceInputs(
        question_text="Do you support single sign-on?",
        answer_text=SSO_ANSWER,
        llm_confidence=0.9,
        found=True,
        sources=sources,
        similarity_scores=[0.9, 0.7],
        source_dates=[NOW - timedelta(days=10), NOW - timedelta(days=200)],
        now=NOW,
    )


class TestComputeConfidence:
    def test_grounded_answer_breakdown(self, grounded_inputs):
        result = compute_confidence(grounded_inputs)

        assert result.breakdown.context_relevance == 87
        assert result.breakdown.source_recency == 92
        assert result.breakdown.answer_coverage == 85
        assert result.breakdown.source_authority == 80
        assert result.breakdown.consistency == 85
        assert result.confidence == pytest.approx(0.8705, abs=1e-4)
        assert result.band == ConfidenceBand.MEDIUM

    def test_no_passages_scores_zero_relevance(self):
        inputs = ConfidenceInputs(
            question_text="What is your uptime SLA?",
            answer_text="Not enough information in the provided context.",
            llm_confidence=0.2,
            found=False,
            now=NOW,
        )

        result = compute_confidence(inputs)

        assert result.breakdown.context_relevance == 0
        assert result.band == ConfidenceBand.LOW
        assert 0.0 <= result.confidence <= 1.0

    def test_confidence_is_bounded_for_extreme_inputs(self):
        inputs = ConfidenceInputs(
            question_text="Q?",
            answer_text="A" * 5000,
            llm_confidence=5.0,
            found=True,
            sources=[AnswerSource(id=str(i), document_id="d", relevance=1.0) for i in range(10)],
            similarity_scores=[1.0] * 10,
            source_dates=[NOW] * 10,
            now=NOW,
        )

        result = compute_confidence(inputs)

        assert 0.0 <= result.confidence <= 1.0
        for value in result.breakdown.model_dump().values():
            assert 0 <= value <= 100


@pytest.mark.parametrize(
    "confidence, band",
    [
        (0.95, ConfidenceBand.HIGH),
        (0.90, ConfidenceBand.HIGH),
        (0.8999, ConfidenceBand.MEDIUM),
        (0.70, ConfidenceBand.MEDIUM),
        (0.6999, ConfidenceBand.LOW),
        (0.0, ConfidenceBand.LOW),
    ],
)
def test_confidence_band_boundaries(confidence, band):
    assert confidence_band(confidence) == band


@pytest.mark.parametrize(
    "question, parts",
    [
        ("Do you encrypt data at rest?", 1),
        ("Where is data stored? Who can access it? How long is it kept?", 3),
        ("Describe:\n1. backups\n2. restores\n3. testing", 3),
        ("Describe encryption, backups and restores and testing", 3),
        ("List your certifications; include expiry dates", 2),
        ("", 1),
    ],
)
def test_estimate_question_parts(question, parts):
    assert estimate_question_parts(question) == parts


def test_hedging_lowers_coverage():
    base = ConfidenceInputs(
        question_text="Do you offer 24/7 support?",
        answer_text="Support is available around the clock through phone, chat and email channels.",
        llm_confidence=0.8,
        found=True,
    )
    hedged = ConfidenceInputs(
        question_text=base.question_text,
        answer_text="Support is typically available, but we cannot confirm hours; generally via email.",
        llm_confidence=0.8,
        found=True,
    )

    assert score_answer_coverage(hedged) < score_answer_coverage(base)


def test_content_library_answers_have_full_authority():
    inputs = ConfidenceInputs(
        question_text="Q?", answer_text="Approved answer", llm_confidence=0.95, found=True,
        from_content_library=True,
    )

    assert score_source_authority(inputs) == 100


def test_undated_sources_get_neutral_recency():
    inputs = ConfidenceInputs(question_text="Q?", answer_text="A", llm_confidence=0.5, found=True, now=NOW)

    assert score_source_recency(inputs) == 60


def test_context_relevance_uses_top_and_average():
    inputs = ConfidenceInputs(
        question_text="Q?", answer_text="A", llm_confidence=0.0, found=True, similarity_scores=[1.0, 0.0],
    )

    # 1.0 * 0.5 + 0.5 * 0.3
    assert score_context_relevance(inputs) == 65
