"""Tests for answer evaluation and its fallback."""

import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.crud import answer as answer_crud
from app.models.outbox import OutboxMessage
from app.services import evaluation_service
from app.services.evaluation_service import (
    EVALUATE_OUTBOX_KIND,
    EvaluationService,
    fallback_scores,
    parse_scores,
    score_answer,
)

MODEL_REPLY = (
    "Here is the evaluation:\n"
    '{"content_score": 12, "structure_score": 9, "language_score": 6, '
    '"examples_score": 3, "feedback": "Good use of examples"}'
)


@pytest.fixture
def scorer_configured(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", "test-anthropic-key")


def scorer_returning(reply: str):
    async def fake_call(question_text, answer_text):
        return reply

    return fake_call


class TestParseScores:
    def test_parses_embedded_json(self) -> None:
        scores = parse_scores(MODEL_REPLY)

        assert scores["content_score"] == 12
        assert scores["total_score"] == 30
        assert scores["feedback"] == "Good use of examples"
        assert scores["degraded"] is False

    def test_clamps_and_recomputes_total(self) -> None:
        scores = parse_scores(
            '{"content_score": 40, "structure_score": -3, "language_score": 8, '
            '"examples_score": 4, "total_score": 99}'
        )

        assert scores["content_score"] == 16
        assert scores["structure_score"] == 0
        assert scores["total_score"] == 28

    @pytest.mark.parametrize("reply", ["no json here", '{"content_score": 5}'])
    def test_rejects_incomplete_reply(self, reply) -> None:
        with pytest.raises(ValueError):
            parse_scores(reply)


class TestScoreAnswer:
    @pytest.mark.asyncio
    async def test_without_key_falls_back(self) -> None:
        assert await score_answer("Q", "A") == fallback_scores()

    @pytest.mark.asyncio
    async def test_uses_model_reply(self, scorer_configured, monkeypatch) -> None:
        monkeypatch.setattr(evaluation_service, "_call_scorer", scorer_returning(MODEL_REPLY))

        scores = await score_answer("Q", "A")

        assert scores["total_score"] == 30
        assert scores["degraded"] is False

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, scorer_configured, monkeypatch) -> None:
        async def slow_call(question_text, answer_text):
            await asyncio.sleep(5)
            return MODEL_REPLY

        monkeypatch.setattr(evaluation_service, "_call_scorer", slow_call)
        monkeypatch.setattr(settings, "EVALUATION_TIMEOUT_SECONDS", 0.01)

        scores = await score_answer("Q", "A")

        assert scores["degraded"] is True
        assert scores["total_score"] == 20
        assert scores["feedback"] == "Evaluation completed"

    @pytest.mark.asyncio
    async def test_api_error_falls_back(self, scorer_configured, monkeypatch) -> None:
        async def failing_call(question_text, answer_text):
            raise ConnectionError("unreachable")

        monkeypatch.setattr(evaluation_service, "_call_scorer", failing_call)

        assert (await score_answer("Q", "A"))["degraded"] is True

    @pytest.mark.asyncio
    async def test_unparsable_reply_falls_back(self, scorer_configured, monkeypatch) -> None:
        monkeypatch.setattr(evaluation_service, "_call_scorer", scorer_returning("I cannot grade this."))

        assert (await score_answer("Q", "A"))["degraded"] is True


class TestEvaluationService:
    @pytest.mark.asyncio
    async def test_submit_queues_evaluation(self, db_session: AsyncSession, student, now, fetch_rows) -> None:
        submission = await EvaluationService(db_session).submit(student.id, "Q", "A", now)

        assert submission.status == "submitted"
        messages = await fetch_rows(OutboxMessage, kind=EVALUATE_OUTBOX_KIND)
        assert [m.payload for m in messages] == [{"submission_id": str(submission.id)}]

    @pytest.mark.asyncio
    async def test_evaluates_once(self, db_session: AsyncSession, student, scorer_configured, monkeypatch, now) -> None:
        calls = []

        async def counting_call(question_text, answer_text):
            calls.append(question_text)
            return MODEL_REPLY

        monkeypatch.setattr(evaluation_service, "_call_scorer", counting_call)
        service = EvaluationService(db_session)
        submission = await service.submit(student.id, "Q", "A", now)

        first = await service.evaluate_submission(submission.id, student.id, now)
        second = await service.evaluate_submission(submission.id, student.id, now)

        assert first.id == second.id
        assert first.total_score == 30
        assert len(calls) == 1
        stored = await answer_crud.get_submission(db_session, submission.id)
        assert stored.status == "evaluated"

    @pytest.mark.asyncio
    async def test_other_users_submission(self, db_session: AsyncSession, student, other_student, now) -> None:
        service = EvaluationService(db_session)
        submission = await service.submit(student.id, "Q", "A", now)

        with pytest.raises(NotFoundError):
            await service.evaluate_submission(submission.id, other_student.id, now)

    @pytest.mark.asyncio
    async def test_get_evaluation_not_ready(self, db_session: AsyncSession, student, now) -> None:
        service = EvaluationService(db_session)
        submission = await service.submit(student.id, "Q", "A", now)

        with pytest.raises(NotFoundError, match="Evaluation not ready"):
            await service.get_evaluation(submission.id, student.id)

        await service.evaluate_submission(submission.id, now=now)
        evaluation = await service.get_evaluation(submission.id, student.id)
        assert evaluation.degraded is True

    @pytest.mark.asyncio
    async def test_get_evaluation_unknown_submission(self, db_session: AsyncSession, student) -> None:
        with pytest.raises(NotFoundError, match="Submission not found"):
            await EvaluationService(db_session).get_evaluation(uuid.uuid4(), student.id)
