"""Answer pipeline run schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field


class PipelineStage(str, Enum):
    """Run state machine: PREPARING -> GENERATING -> PROPAGATING -> DONE, or FAILED."""
    PREPARING = "PREPARING"
    GENERATING = "GENERATING"
    PROPAGATING = "PROPAGATING"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.DONE, PipelineStage.FAILED)


class FailedQuestion(BaseModel):
    """Per-question failure recorded against a run or an override request."""

    question_id: str
    reason: str


class RunAnswerGenerationRequest(BaseModel):
    org_id: UUID
    kb_ids: Optional[List[UUID]] = Field(default=None, description="Restrict retrieval to these knowledge bases")
    force_recluster: bool = False


class PipelineRunSchema(BaseModel):
    """Progress record of an answer-generation run."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    org_id: UUID
    stage: PipelineStage
    questions_total: int = 0
    questions_processed: int = 0
    questions_answered: int = 0
    answers_generated: int = 0
    answers_propagated: int = 0
    clusters_created: int = 0
    failed_questions: List[FailedQuestion] = Field(default_factory=list)
    error_message: Optional[str] = None
    temporal_workflow_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def summary(self) -> str:
        """Human-readable outcome, e.g. "42 of 50 questions answered"."""
        if self.stage == PipelineStage.FAILED:
            return f"Run failed: {self.error_message or 'unknown error'} ({self.questions_answered} of {self.questions_total} questions answered)"
        if self.stage == PipelineStage.DONE:
            return f"{self.questions_answered} of {self.questions_total} questions answered"
        return f"{self.stage.value.lower()}: {self.questions_processed} of {self.questions_total} questions processed"
