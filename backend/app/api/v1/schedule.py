"""Study schedule API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_active_user
from app.core.database import get_db
from app.crud import schedule as schedule_crud
from app.models.user import UserProfile
from app.services.calendar_export import build_calendar

router = APIRouter(prefix="/schedule", tags=["schedule"])


@router.get("/export", response_class=Response)
async def export_schedule(
    current_user: Annotated[UserProfile, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Response:
    """Download the active study schedule as an iCalendar file.

    Raises:
        HTTPException: 404 if the user has no active schedule
    """
    schedule = await schedule_crud.get_active_schedule(db, current_user.id)
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active schedule found",
        )

    tasks = await schedule_crud.get_tasks(db, schedule.id)
    return Response(
        content=build_calendar(tasks),
        media_type="text/calendar",
        headers={"Content-Disposition": 'attachment; filename="study-schedule.ics"'},
    )
