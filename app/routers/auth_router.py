import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash

from app.auth import login_user, logout_user, require_user
from app.database import get_db
from app.models import User
from app.repositories import reference_repo
from app.schemas.resources import LoginIn, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(
    payload: LoginIn,
    db: AsyncSession = Depends(get_db),
):
    user = await reference_repo.get_user_by_username(db, payload.username)
    if not user or not check_password_hash(user.password_hash, payload.password):
        logger.info("login_failed username=%s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    res = JSONResponse({"message": "Signed in", "data": UserOut.from_user(user).model_dump(by_alias=True)})
    await login_user(res, user.id)
    logger.info("login user_id=%s role=%s", user.id, user.role.value)
    return res


@router.post("/logout")
async def logout():
    res = JSONResponse({"message": "Signed out"})
    logout_user(res)
    return res


@router.get("/me")
async def me(current_user: User = Depends(require_user)):
    return {"data": UserOut.from_user(current_user).model_dump(by_alias=True)}
