"""Answer, confidence and generation-outcome schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ConfidenceBand(str, Enum):
    """Coarse confidence bucket derived from the numeric score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConfidenceBreakdown(BaseModel):
    """Five independently scored factors, each 0-100."""

    context_relevance: int = Field(..., ge=0, le=100, description="How well retrieved passages match the question")
    source_recency: int = Field(..., ge=0, le=100, description="Freshness of retrieved sources")
    answer_coverage: int = Field(..., ge=0, le=100, description="Whether the answer addresses every sub-part")
    source_authority: int = Field(..., ge=0, le=100, description="Trust tier of the source documents")
    consistency: int = Field(..., ge=0, le=100, description="Agreement between model signals and the answer")


class AnswerSource(BaseModel):
    """Citation used to produce an answer."""

    id: str = Field(..., description="Chunk or content-library item id")
    document_id: Optional[str] = None
    file_name: Optional[str] = None
    chunk_key: Optional[str] = None
    text_content: Optional[str] = Field(default=None, description="Excerpt of the cited passage")
    relevance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    created_at: Optional[datetime] = None


class PropagationResult(BaseModel):
    """Counts from one automatic propagation pass."""

    applied: int = 0
    skipped: int = 0


class GenerationStatus(str, Enum):
    """Tagged result of one generation unit."""
    GENERATED = "generated"
    SKIPPED = "skipped"
    FAILED = "failed"


class GenerationOutcome(BaseModel):
    """Result of generating (or not) the answer for one question."""

    question_id: str
    status: GenerationStatus
    reason: Optional[str] = Field(default=None, description="Why the unit was skipped or failed")
    answer_id: Optional[str] = None
    confidence: Optional[float] = None
    confidence_band: Optional[ConfidenceBand] = None
    from_content_library: bool = False

    @classmethod
    def skipped(cls, question_id: str, reason: str) -> "GenerationOutcome":
        return cls(question_id=question_id, status=GenerationStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, question_id: str, reason: str) -> "GenerationOutcome":
        return cls(question_id=question_id, status=GenerationStatus.FAILED, reason=reason)
