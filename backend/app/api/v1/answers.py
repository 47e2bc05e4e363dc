"""Answer submission and evaluation API endpoints."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user
from app.core.database import get_db
from app.core.exceptions import BillingError
from app.models.user import UserProfile
from app.schemas.answer import (
    AnswerSubmitRequest,
    AnswerSubmitResponse,
    EvaluateRequest,
    EvaluationResponse,
)
from app.schemas.entitlement import EntitlementCheckResult
from app.services.entitlement_service import EntitlementService
from app.services.evaluation_service import EvaluationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/answers", tags=["answers"])

EVALUATION_FEATURE = "answer_evaluation"


@router.post(
    "/submit",
    response_model=AnswerSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": EntitlementCheckResult}},
)
async def submit_answer(
    body: AnswerSubmitRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Submit an answer for evaluation.

    Gated by the ``answer_evaluation`` entitlement; the evaluation itself is
    queued and runs in the background.
    """
    entitlements = EntitlementService(db)
    check = await entitlements.check_entitlement(current_user.id, EVALUATION_FEATURE)
    if not check.allowed:
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=check.model_dump())

    await entitlements.increment_usage(current_user.id, EVALUATION_FEATURE)
    submission = await EvaluationService(db).submit(
        current_user.id, body.question_text, body.answer_text
    )
    return AnswerSubmitResponse(
        submission_id=submission.id,
        status=submission.status,
        message="Answer submitted. Evaluation in progress.",
    )


@router.post("/evaluate", response_model=EvaluationResponse)
async def evaluate_answer(
    body: EvaluateRequest,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> EvaluationResponse:
    """Evaluate a submission now, or return its stored evaluation.

    Scorer failures never surface: the fallback scores come back with
    ``degraded=true``.
    """
    service = EvaluationService(db)
    try:
        evaluation = await service.evaluate_submission(body.submission_id, current_user.id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return EvaluationResponse.model_validate(evaluation)


@router.get("/{submission_id}/evaluation", response_model=EvaluationResponse)
async def get_evaluation(
    submission_id: uuid.UUID,
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> EvaluationResponse:
    """Get the stored evaluation of one of the current user's submissions."""
    service = EvaluationService(db)
    try:
        evaluation = await service.get_evaluation(submission_id, current_user.id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return EvaluationResponse.model_validate(evaluation)
