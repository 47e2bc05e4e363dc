"""Answer evaluation with Anthropic Claude and a deterministic fallback."""

import asyncio
import json
import re
import uuid
from datetime import datetime
from typing import Any, Optional

import structlog
from anthropic import AsyncAnthropic
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.time_utils import utcnow
from app.crud import answer as answer_crud
from app.crud import outbox as outbox_crud
from app.models.answer import AnswerEvaluation, AnswerSubmission

logger = structlog.get_logger()

EVALUATE_OUTBOX_KIND = "answer.evaluate"

# Maximum marks per criterion.
SCORE_LIMITS = {
    "content_score": 16,
    "structure_score": 12,
    "language_score": 8,
    "examples_score": 4,
}

FALLBACK_SCORES = {
    "content_score": 8,
    "structure_score": 6,
    "language_score": 4,
    "examples_score": 2,
    "total_score": 20,
    "feedback": "Evaluation completed",
}

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def fallback_scores() -> dict[str, Any]:
    """Fixed scores returned whenever the scorer cannot be used."""
    return {**FALLBACK_SCORES, "degraded": True}


def build_prompt(question_text: str, answer_text: str) -> str:
    return (
        "Evaluate this UPSC mains answer.\n"
        f'Question: "{question_text}"\n'
        f'Answer: "{answer_text}"\n'
        "Reply with JSON only: "
        '{"content_score": 0-16, "structure_score": 0-12, '
        '"language_score": 0-8, "examples_score": 0-4, "feedback": "..."}'
    )


def parse_scores(text: str) -> dict[str, Any]:
    """
    Extract scores from the model reply.

    Each criterion is clamped to its range and the total is recomputed.

    Raises:
        ValueError: If no JSON object with all criteria is found
    """
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise ValueError("No JSON object in scorer response")
    raw = json.loads(match.group(0))

    scores: dict[str, Any] = {}
    for key, limit in SCORE_LIMITS.items():
        if key not in raw:
            raise ValueError(f"Scorer response missing {key}")
        scores[key] = max(0, min(int(raw[key]), limit))
    scores["total_score"] = sum(scores[key] for key in SCORE_LIMITS)
    scores["feedback"] = str(raw.get("feedback") or "")
    scores["degraded"] = False
    return scores


async def _call_scorer(question_text: str, answer_text: str) -> str:
    client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
    message = await client.messages.create(
        model=settings.EVALUATION_MODEL,
        max_tokens=1000,
        messages=[{"role": "user", "content": build_prompt(question_text, answer_text)}],
    )
    return "".join(block.text for block in message.content if block.type == "text")


async def score_answer(question_text: str, answer_text: str) -> dict[str, Any]:
    """
    Score an answer, never raising.

    Any failure (missing key, timeout, API error, unparsable reply) yields the
    fallback scores tagged ``degraded``.

    Args:
        question_text: The question
        answer_text: The student's answer

    Returns:
        Dict with the four criterion scores, total, feedback and degraded flag
    """
    if not settings.ANTHROPIC_API_KEY:
        logger.warning("evaluation.scorer_not_configured")
        return fallback_scores()

    try:
        reply = await asyncio.wait_for(
            _call_scorer(question_text, answer_text),
            timeout=settings.EVALUATION_TIMEOUT_SECONDS,
        )
        scores = parse_scores(reply)
    except asyncio.TimeoutError:
        logger.warning("evaluation.timeout", timeout=settings.EVALUATION_TIMEOUT_SECONDS)
        return fallback_scores()
    except Exception as exc:
        logger.warning("evaluation.degraded", error=str(exc), error_type=type(exc).__name__)
        return fallback_scores()

    logger.info("evaluation.scored", total_score=scores["total_score"])
    return scores


class EvaluationService:
    """Stores submissions and their (single) evaluation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit(
        self,
        user_id: uuid.UUID,
        question_text: str,
        answer_text: str,
        now: Optional[datetime] = None,
    ) -> AnswerSubmission:
        """Store a submission and queue its evaluation in the same commit."""
        now = now or utcnow()
        submission = answer_crud.add_submission(self.db, user_id, question_text, answer_text, now)
        outbox_crud.enqueue(
            self.db, EVALUATE_OUTBOX_KIND, {"submission_id": str(submission.id)}, now
        )
        await self.db.commit()
        logger.info("evaluation.submitted", submission_id=str(submission.id), user_id=str(user_id))
        return submission

    async def evaluate_submission(
        self,
        submission_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> AnswerEvaluation:
        """
        Evaluate a submission once; later calls return the stored result.

        Args:
            submission_id: Submission to evaluate
            user_id: Owner check, when called on behalf of a user
            now: Current time

        Raises:
            NotFoundError: Unknown submission (or not owned by ``user_id``)
        """
        now = now or utcnow()
        submission = await answer_crud.get_submission(self.db, submission_id, user_id)
        if submission is None:
            raise NotFoundError("Submission not found")

        existing = await answer_crud.get_evaluation_by_submission(self.db, submission_id)
        if existing is not None:
            return existing

        scores = await score_answer(submission.question_text, submission.answer_text)
        try:
            evaluation = await answer_crud.insert_evaluation_once(
                self.db, submission_id, scores, now
            )
            submission.status = "evaluated"
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "evaluation.stored",
            submission_id=str(submission_id),
            total_score=evaluation.total_score,
            degraded=evaluation.degraded,
        )
        return evaluation

    async def get_evaluation(
        self, submission_id: uuid.UUID, user_id: uuid.UUID
    ) -> AnswerEvaluation:
        if await answer_crud.get_submission(self.db, submission_id, user_id) is None:
            raise NotFoundError("Submission not found")
        evaluation = await answer_crud.get_evaluation_by_submission(self.db, submission_id)
        if evaluation is None:
            raise NotFoundError("Evaluation not ready")
        return evaluation
