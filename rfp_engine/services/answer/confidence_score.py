"""Multi-factor confidence scoring for generated answers.

Each factor is scored 0-100 independently and combined with fixed weights:

    context_relevance  40%
    source_recency     25%
    answer_coverage    20%
    source_authority   10%
    consistency         5%

The overall confidence is ``weighted_sum / 100`` and therefore lies in
[0, 1]. Bands: >= 0.90 high, >= 0.70 medium, otherwise low.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from rfp_engine.schemas.answer import AnswerSource, ConfidenceBand, ConfidenceBreakdown

CONFIDENCE_WEIGHTS = {
    "context_relevance": 0.40,
    "source_recency": 0.25,
    "answer_coverage": 0.20,
    "source_authority": 0.10,
    "consistency": 0.05,
}

HIGH_BAND_THRESHOLD = 0.90
MEDIUM_BAND_THRESHOLD = 0.70

UNDATED_RECENCY_SCORE = 60

HEDGING_PATTERNS = [
    re.compile(r"\bnot enough information\b", re.IGNORECASE),
    re.compile(r"\bunable to determine\b", re.IGNORECASE),
    re.compile(r"\bverify in the solicitation\b", re.IGNORECASE),
    re.compile(r"\bcannot confirm\b", re.IGNORECASE),
    re.compile(r"\bbest.?practice\b", re.IGNORECASE),
    re.compile(r"\btypically\b", re.IGNORECASE),
    re.compile(r"\bgenerally\b", re.IGNORECASE),
]

_NUMBERED_ITEM = re.compile(r"(?:^|\n)\s*(?:\d+[.)]\s|[a-z][.)]\s)", re.IGNORECASE)
_AND_WORD = re.compile(r"\band\b", re.IGNORECASE)


@dataclass
class ConfidenceInputs:
    question_text: str
    answer_text: str
    llm_confidence: float
    found: bool
    sources: List[AnswerSource] = field(default_factory=list)
    similarity_scores: List[float] = field(default_factory=list)
    source_dates: List[Optional[datetime]] = field(default_factory=list)
    from_content_library: bool = False
    now: Optional[datetime] = None


@dataclass
class ConfidenceResult:
    confidence: float
    band: ConfidenceBand
    breakdown: ConfidenceBreakdown


def _clamp_score(value: float) -> int:
    return int(round(min(100.0, max(0.0, value))))


def confidence_band(confidence: float) -> ConfidenceBand:
    if confidence >= HIGH_BAND_THRESHOLD:
        return ConfidenceBand.HIGH
    if confidence >= MEDIUM_BAND_THRESHOLD:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


def estimate_question_parts(question: str) -> int:
    """Rough count of sub-questions: question marks, numbered items, 'and's, semicolons."""
    if not question:
        return 1

    question_marks = question.count("?")
    if question_marks > 1:
        return question_marks

    numbered_items = len(_NUMBERED_ITEM.findall(question))
    if numbered_items > 1:
        return numbered_items

    and_count = len(_AND_WORD.findall(question))
    if and_count >= 2:
        return and_count + 1

    semicolons = question.count(";")
    if semicolons >= 1:
        return semicolons + 1

    return 1


def score_context_relevance(inputs: ConfidenceInputs) -> int:
    """Blend of top hit (50%), average hit (30%) and model confidence (20%).

    Zero when nothing was retrieved.
    """
    scores = inputs.similarity_scores
    if not scores:
        return 0
    top = scores[0]
    average = sum(scores) / len(scores)
    raw = top * 0.50 + average * 0.30 + inputs.llm_confidence * 0.20
    return _clamp_score(raw * 100)


def _age_score(age_days: float) -> int:
    if age_days < 30:
        return 100
    if age_days < 180:
        return 80
    if age_days < 365:
        return 60
    return 30


def score_source_recency(inputs: ConfidenceInputs) -> int:
    now = inputs.now or datetime.now(timezone.utc)
    scores = []
    for created_at in inputs.source_dates:
        if created_at is None:
            continue
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        age_days = max(0.0, (now - created_at).total_seconds() / 86400)
        scores.append(_age_score(age_days))

    if not scores:
        return UNDATED_RECENCY_SCORE

    best = max(scores)
    average = sum(scores) / len(scores)
    return _clamp_score(best * 0.6 + average * 0.4)


def score_answer_coverage(inputs: ConfidenceInputs) -> int:
    answer = (inputs.answer_text or "").strip()
    if not answer:
        return 0

    score = 50
    parts = estimate_question_parts(inputs.question_text)
    length = len(answer)

    if parts <= 1:
        if length >= 50:
            score += 20
        elif length >= 20:
            score += 10
    else:
        expected_min_length = parts * 80
        if length >= expected_min_length:
            score += 25
        elif length >= expected_min_length * 0.5:
            score += 15
        else:
            score -= 10

    if inputs.found:
        score += 15

    hedges = sum(1 for pattern in HEDGING_PATTERNS if pattern.search(answer))
    score -= hedges * 5

    return _clamp_score(score)


def score_source_authority(inputs: ConfidenceInputs) -> int:
    if inputs.from_content_library:
        return 100

    sources = inputs.sources
    if not sources:
        return 50 if inputs.found else 30

    score = 50
    if len(sources) >= 5:
        score += 20
    elif len(sources) >= 3:
        score += 15
    else:
        score += 10

    if any(s.document_id for s in sources):
        score += 10
    if any(s.relevance is not None and s.relevance > 0.7 for s in sources):
        score += 10

    return _clamp_score(score)


def score_consistency(inputs: ConfidenceInputs) -> int:
    answer = inputs.answer_text or ""
    score = 70

    if inputs.found and inputs.llm_confidence < 0.4:
        score -= 20
    if not inputs.found and inputs.llm_confidence > 0.8:
        score -= 15
    if answer and len(answer) < 30:
        score -= 10
    if inputs.found and len(answer) > 100:
        score += 15

    return _clamp_score(score)


def compute_confidence(inputs: ConfidenceInputs) -> ConfidenceResult:
    """Score every factor and combine them into a confidence in [0, 1]."""
    breakdown = ConfidenceBreakdown(
        context_relevance=score_context_relevance(inputs),
        source_recency=score_source_recency(inputs),
        answer_coverage=score_answer_coverage(inputs),
        source_authority=score_source_authority(inputs),
        consistency=score_consistency(inputs),
    )
    weighted_sum = sum(
        getattr(breakdown, factor) * weight for factor, weight in CONFIDENCE_WEIGHTS.items()
    )
    confidence = round(min(1.0, max(0.0, weighted_sum / 100)), 4)
    return ConfidenceResult(confidence=confidence, band=confidence_band(confidence), breakdown=breakdown)
