"""Answer submission and evaluation schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AnswerSubmitRequest(BaseModel):
    question_text: str = Field(..., min_length=1, max_length=5000)
    answer_text: str = Field(..., min_length=1, max_length=20000)


class AnswerSubmitResponse(BaseModel):
    submission_id: UUID
    status: str
    message: str


class EvaluateRequest(BaseModel):
    submission_id: UUID


class EvaluationScores(BaseModel):
    """Scores returned by the scorer (or the fixed fallback when degraded)."""

    content_score: int
    structure_score: int
    language_score: int
    examples_score: int
    total_score: int
    feedback: Optional[str] = None
    degraded: bool = Field(False, description="Scorer unavailable; fallback scores returned")


class EvaluationResponse(EvaluationScores):
    id: UUID
    submission_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}
