"""Study schedule database models."""

import uuid
from datetime import date

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class StudySchedule(Base):
    """A user's study plan; only one is active at a time."""

    __tablename__ = "study_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="Study Schedule")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ScheduleTask(Base):
    """One study block on a given day."""

    __tablename__ = "schedule_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("study_schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    task_date: Mapped[date] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)  # study, revision, test
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
