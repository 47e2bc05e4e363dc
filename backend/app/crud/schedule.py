"""CRUD operations for study schedules."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.schedule import ScheduleTask, StudySchedule


async def get_active_schedule(db: AsyncSession, user_id: uuid.UUID) -> StudySchedule | None:
    result = await db.execute(
        select(StudySchedule)
        .where(StudySchedule.user_id == user_id, StudySchedule.is_active.is_(True))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_tasks(db: AsyncSession, schedule_id: uuid.UUID) -> list[ScheduleTask]:
    """Tasks of a schedule in date order."""
    result = await db.execute(
        select(ScheduleTask)
        .where(ScheduleTask.schedule_id == schedule_id)
        .order_by(ScheduleTask.task_date, ScheduleTask.topic)
    )
    return list(result.scalars().all())
