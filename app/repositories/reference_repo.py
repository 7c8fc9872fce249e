"""
Reference data: organizations and users (actors, borrowers).
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Organization, User


async def get_organization_by_id(db: AsyncSession, organization_id: int) -> Organization | None:
    """Organization by id."""
    result = await db.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    if not username or not username.strip():
        return None
    result = await db.execute(select(User).where(User.username == username.strip()))
    return result.scalar_one_or_none()
