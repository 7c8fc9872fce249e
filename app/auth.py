"""
Authentication collaborator and organization-scoped access rules.

The session cookie only carries a signed user id; role and organization are read
from the users table on every request, so a demoted or deactivated account loses
access on its next call. Lending and viewing rights always follow the resource's
owning organization, never the organization named by the caller.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from itsdangerous import BadSignature, URLSafeTimedSerializer

from app.config import SECRET_KEY, SESSION_COOKIE_NAME, SESSION_MAX_AGE_SECONDS, SECURE_COOKIES
from app.database import get_db
from app.exceptions import NotFound, Unauthorized
from app.models import Resource, User
from app.models.user import UserRole
from app.repositories import resource_repo

serializer = URLSafeTimedSerializer(SECRET_KEY, salt="custody-session")


def create_session_token(user_id: int) -> str:
    return serializer.dumps({"user_id": user_id})


def session_user_id(token: str) -> int | None:
    """User id from a cookie value; None for a forged, expired or malformed token."""
    try:
        data = serializer.loads(token, max_age=SESSION_MAX_AGE_SECONDS)
    except BadSignature:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("user_id"), int):
        return None
    return data["user_id"]


def is_lender(resource: Resource, user: User) -> bool:
    """Admin, or coordinator of the organization that owns the resource."""
    if user.is_admin:
        return True
    return (
        user.role == UserRole.coordinator
        and user.organization_id is not None
        and user.organization_id == resource.organization_id
    )


def can_view(resource: Resource, user: User) -> bool:
    """Admin, or any member of the organization that owns the resource."""
    if user.is_admin:
        return True
    return user.organization_id is not None and user.organization_id == resource.organization_id


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    user_id = session_user_id(token) if token else None
    if user_id is None:
        return None
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def require_user(
    current_user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Dependency: the signed-in User or HTTPException(401)."""
    if current_user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return current_user


def require_role(*allowed: UserRole):
    async def _check(
        current_user: Annotated[User, Depends(require_user)],
    ) -> User:
        if current_user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user
    return _check


require_coordinator = require_role(UserRole.admin, UserRole.coordinator)


async def viewable_resource(
    resource_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_user)],
) -> Resource:
    """Dependency for /resources/{resource_id}/... reads: NotFound, or Unauthorized outside the owning organization."""
    resource = await resource_repo.get_resource_by_id(db, resource_id)
    if not resource:
        raise NotFound("Resource not found", resource_id=resource_id)
    if not can_view(resource, current_user):
        raise Unauthorized(
            "Not a member of the resource's organization",
            resource_id=resource_id,
            actor_id=current_user.id,
        )
    return resource


def _cookie_kwargs() -> dict:
    return {"path": "/", "secure": SECURE_COOKIES, "samesite": "lax"}


async def login_user(response: Response, user_id: int) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        create_session_token(user_id),
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        **_cookie_kwargs(),
    )


def logout_user(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, **_cookie_kwargs())
