"""CRUD operations for UserProfile model."""

import secrets
import string
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import supports_row_locks
from app.models.user import UserProfile

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_LENGTH = 8


async def get_user_by_id(
    db: AsyncSession, user_id: uuid.UUID, for_update: bool = False
) -> UserProfile | None:
    """
    Get user profile by ID.

    Args:
        db: Database session
        user_id: User UUID (as issued by the auth provider)
        for_update: Lock the row until the transaction ends (PostgreSQL)

    Returns:
        UserProfile object or None if not found
    """
    query = select(UserProfile).where(UserProfile.id == user_id)
    if for_update and supports_row_locks(db):
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> UserProfile | None:
    """
    Get user profile by email address.

    Args:
        db: Database session
        email: User email

    Returns:
        UserProfile object or None if not found
    """
    result = await db.execute(select(UserProfile).where(UserProfile.email == email))
    return result.scalar_one_or_none()


async def get_user_by_referral_code(db: AsyncSession, code: str) -> UserProfile | None:
    """Referral codes are stored upper-case; lookup is case-insensitive."""
    result = await db.execute(
        select(UserProfile).where(UserProfile.referral_code == code.strip().upper())
    )
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: str,
    full_name: str | None = None,
    role: str = "student",
    user_id: uuid.UUID | None = None,
) -> UserProfile:
    """
    Create a user profile with a fresh referral code.

    Args:
        db: Database session
        email: User email
        full_name: Display name
        role: "student" or "admin"
        user_id: Identity from the auth provider (generated when omitted)

    Returns:
        Created user profile
    """
    db_user = UserProfile(
        id=user_id or uuid.uuid4(),
        email=email,
        full_name=full_name,
        role=role,
        referral_code=generate_referral_code(),
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


async def ensure_referral_code(db: AsyncSession, user: UserProfile) -> str:
    """Assign a referral code to users created before codes existed."""
    if not user.referral_code:
        user.referral_code = generate_referral_code()
        db.add(user)
        await db.commit()
        await db.refresh(user)
    return user.referral_code


async def count_users(db: AsyncSession) -> int:
    """
    Count total number of user profiles.

    Args:
        db: Database session

    Returns:
        Total number of users
    """
    result = await db.execute(select(func.count(UserProfile.id)))
    return result.scalar_one()


async def get_emails_by_ids(db: AsyncSession, user_ids: set[uuid.UUID]) -> dict[uuid.UUID, str]:
    """Map user ids to email addresses (used by exports)."""
    if not user_ids:
        return {}
    result = await db.execute(
        select(UserProfile.id, UserProfile.email).where(UserProfile.id.in_(user_ids))
    )
    return {row.id: row.email for row in result.all()}
