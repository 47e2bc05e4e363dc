"""CRUD operations for the plan catalog."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.plan import Plan

# Prices in paise
DEFAULT_PLANS = [
    {
        "slug": "monthly",
        "name": "Monthly Pro",
        "price": 59900,
        "duration_days": 30,
        "features": {"answer_evaluation": "unlimited", "doubt_video": "unlimited"},
    },
    {
        "slug": "quarterly",
        "name": "Quarterly Pro",
        "price": 149900,
        "duration_days": 90,
        "features": {"answer_evaluation": "unlimited", "doubt_video": "unlimited"},
    },
    {
        "slug": "half-yearly",
        "name": "Half-Yearly Pro",
        "price": 269900,
        "duration_days": 180,
        "features": {"answer_evaluation": "unlimited", "doubt_video": "unlimited"},
    },
    {
        "slug": "annual",
        "name": "Annual Pro",
        "price": 499900,
        "duration_days": 365,
        "features": {"answer_evaluation": "unlimited", "doubt_video": "unlimited"},
    },
]


async def get_plan_by_slug(db: AsyncSession, slug: str) -> Plan | None:
    """
    Get an active plan by slug.

    Args:
        db: Database session
        slug: Plan slug ('monthly', 'quarterly', 'half-yearly', 'annual')

    Returns:
        Plan if found, None otherwise
    """
    result = await db.execute(
        select(Plan).where(Plan.slug == slug, Plan.is_active == True)  # noqa: E712
    )
    return result.scalar_one_or_none()


async def get_plan_by_id(db: AsyncSession, plan_id: uuid.UUID) -> Plan | None:
    result = await db.execute(select(Plan).where(Plan.id == plan_id))
    return result.scalar_one_or_none()


async def get_active_plans(db: AsyncSession) -> list[Plan]:
    """
    Get all active plans, cheapest first.

    Args:
        db: Database session

    Returns:
        List of active plans
    """
    result = await db.execute(
        select(Plan).where(Plan.is_active == True).order_by(Plan.price)  # noqa: E712
    )
    return list(result.scalars().all())


async def seed_default_plans(db: AsyncSession) -> list[Plan]:
    """Insert any catalog plan that is missing. Existing rows are left untouched."""
    existing = {
        slug for slug in (await db.execute(select(Plan.slug))).scalars().all()
    }
    created = []
    for data in DEFAULT_PLANS:
        if data["slug"] in existing:
            continue
        plan = Plan(**data)
        db.add(plan)
        created.append(plan)
    await db.commit()
    return created
