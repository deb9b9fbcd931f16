"""Clustering request, response and configuration schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rfp_engine.schemas.pipeline import FailedQuestion

ANSWER_PREVIEW_LENGTH = 150


def build_answer_preview(text: Optional[str]) -> Optional[str]:
    """First 150 characters of an answer, with an ellipsis when truncated."""
    if not text:
        return None
    if len(text) <= ANSWER_PREVIEW_LENGTH:
        return text
    return text[:ANSWER_PREVIEW_LENGTH] + "..."


class ClusteringThresholds(BaseModel):
    """Per-tenant clustering thresholds.

    Both values lie in [0, 1]; ``similar_threshold`` is clamped so that it
    never exceeds ``cluster_threshold``.
    """

    cluster_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    similar_threshold: float = Field(default=0.80, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def clamp_similar_threshold(self) -> "ClusteringThresholds":
        if self.similar_threshold > self.cluster_threshold:
            self.similar_threshold = self.cluster_threshold
        return self


class ClusterMember(BaseModel):
    """Denormalized view of a question inside a cluster."""

    question_id: str
    question_text: str
    similarity: float = Field(..., ge=0.0, le=1.0, description="Cosine similarity to the master")
    has_answer: bool = False
    answer_preview: Optional[str] = None


class QuestionClusterSchema(BaseModel):
    """One semantic group of questions."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    opportunity_id: Optional[UUID] = None
    master_question_id: UUID
    master_question_text: str
    members: List[ClusterMember] = Field(default_factory=list)
    question_count: int
    avg_similarity: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SimilarQuestionLink(BaseModel):
    """Pair that is similar but below the clustering threshold."""

    question_id: str
    similar_question_id: str
    similarity: float


class ClusterQuestionsRequest(BaseModel):
    opportunity_id: Optional[UUID] = None
    force_recluster: bool = False


class ClusterQuestionsResponse(BaseModel):
    clusters_created: int
    questions_processed: int
    clusters: List[QuestionClusterSchema] = Field(default_factory=list)
    similar_links: List[SimilarQuestionLink] = Field(default_factory=list)
    failed_questions: List[FailedQuestion] = Field(default_factory=list)


class GetClustersResponse(BaseModel):
    clusters: List[QuestionClusterSchema] = Field(default_factory=list)
    total_clusters: int


class SimilarQuestion(BaseModel):
    """Suggestion returned by the similar-questions lookup."""

    question_id: str
    question_text: str
    similarity: float
    has_answer: bool = False
    answer_preview: Optional[str] = None
    in_same_cluster: bool = False
    cluster_id: Optional[str] = None
    section_id: Optional[str] = None
    section_title: Optional[str] = None


class FindSimilarQuestionsResponse(BaseModel):
    question_id: str
    question_text: str
    similar_questions: List[SimilarQuestion] = Field(default_factory=list)
    threshold: float
    limit: int


class ApplyAnswerRequest(BaseModel):
    """Manual override: copy one answer (or custom text) onto target questions."""

    source_question_id: UUID
    target_question_ids: List[str] = Field(..., min_length=1)
    custom_text: Optional[str] = Field(default=None, description="Text to apply instead of the source answer")


class ApplyAnswerResponse(BaseModel):
    applied: List[str] = Field(default_factory=list)
    failed: List[FailedQuestion] = Field(default_factory=list)
