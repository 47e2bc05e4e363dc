"""CRUD operations for answer submissions and evaluations."""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.answer import AnswerEvaluation, AnswerSubmission

logger = logging.getLogger(__name__)


def add_submission(
    db: AsyncSession,
    user_id: uuid.UUID,
    question_text: str,
    answer_text: str,
    now: datetime,
) -> AnswerSubmission:
    """Stage a submission; the caller commits it."""
    submission = AnswerSubmission(
        id=uuid.uuid4(),
        user_id=user_id,
        question_text=question_text,
        answer_text=answer_text,
        status="submitted",
        created_at=now,
    )
    db.add(submission)
    return submission


async def get_submission(
    db: AsyncSession, submission_id: uuid.UUID, user_id: uuid.UUID | None = None
) -> AnswerSubmission | None:
    """Get a submission, optionally only if it belongs to ``user_id``."""
    query = select(AnswerSubmission).where(AnswerSubmission.id == submission_id)
    if user_id is not None:
        query = query.where(AnswerSubmission.user_id == user_id)
    result = await db.execute(query.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_evaluation_by_submission(
    db: AsyncSession, submission_id: uuid.UUID
) -> AnswerEvaluation | None:
    result = await db.execute(
        select(AnswerEvaluation).where(AnswerEvaluation.submission_id == submission_id)
    )
    return result.scalar_one_or_none()


async def insert_evaluation_once(
    db: AsyncSession,
    submission_id: uuid.UUID,
    scores: dict[str, Any],
    now: datetime,
) -> AnswerEvaluation:
    """
    Store the evaluation for a submission, keeping the first one written.

    Args:
        db: Database session
        submission_id: Evaluated submission
        scores: Score fields plus feedback and degraded flag
        now: Creation time

    Returns:
        The stored evaluation (new or pre-existing)
    """
    existing = await get_evaluation_by_submission(db, submission_id)
    if existing is not None:
        return existing

    evaluation = AnswerEvaluation(
        submission_id=submission_id,
        content_score=scores["content_score"],
        structure_score=scores["structure_score"],
        language_score=scores["language_score"],
        examples_score=scores["examples_score"],
        total_score=scores["total_score"],
        feedback=scores.get("feedback"),
        degraded=scores.get("degraded", False),
        feedback_json=scores,
        created_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(evaluation)
    except IntegrityError:
        logger.info(f"Evaluation for submission {submission_id} already stored")
        return await get_evaluation_by_submission(db, submission_id)
    return evaluation
