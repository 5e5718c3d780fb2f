# routers/users.py - User administration and self-service profile
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    get_current_user, require_route, AuthService, CurrentUser, PublicUser, to_public_user,
)
from database import get_db_session
from models import User, UserRole

logger = logging.getLogger("buildefect.users")

router = APIRouter(prefix="/api", tags=["Users"])


# --- Schemas ---

class UserCreate(BaseModel):
    login: str
    password: str
    name: str = ""
    lastname: str = ""
    role: Optional[UserRole] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    lastname: Optional[str] = None


# --- Helpers ---

async def _get_user(user_id: int, db: AsyncSession) -> User:
    target = await db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="user not found")
    return target


async def _apply_update(target: User, update: UserUpdate, db: AsyncSession) -> User:
    # Empty strings leave the stored value alone
    if update.name:
        target.name = update.name
    if update.lastname:
        target.lastname = update.lastname

    db.add(target)
    await db.commit()
    await db.refresh(target)
    return target


# --- Endpoints ---

@router.post("/users", response_model=PublicUser, status_code=201)
async def create_user(
    data: UserCreate,
    current_user: CurrentUser = Depends(require_route("POST", "/api/users")),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a user with an explicit role"""
    user = await AuthService.create_user(
        db,
        login=data.login,
        password=data.password,
        name=data.name,
        lastname=data.lastname,
        role=data.role or UserRole.ENGINEER,
    )
    return to_public_user(user)


@router.get("/users", response_model=List[PublicUser])
async def list_users(
    db: AsyncSession = Depends(get_db_session),
    role: Optional[UserRole] = None,
    limit: int = Query(default=100, gt=0),
    offset: int = Query(default=0, ge=0),
):
    """List users"""
    stmt = select(User).order_by(User.id.asc()).offset(offset).limit(limit)
    if role:
        stmt = stmt.where(User.role == role)

    result = await db.execute(stmt)
    return [to_public_user(u) for u in result.scalars().all()]


@router.get("/users/{user_id}", response_model=PublicUser)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db_session),
):
    """Get a specific user"""
    return to_public_user(await _get_user(user_id, db))


@router.patch("/users/{user_id}", response_model=PublicUser)
async def update_user(
    user_id: int,
    update: UserUpdate,
    current_user: CurrentUser = Depends(require_route("PATCH", "/api/users/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a user's name and/or lastname"""
    target = await _get_user(user_id, db)
    return to_public_user(await _apply_update(target, update, db))


@router.delete("/users/{user_id}", response_class=PlainTextResponse)
async def delete_user(
    user_id: int,
    current_user: CurrentUser = Depends(require_route("DELETE", "/api/users/{id}")),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a user"""
    target = await _get_user(user_id, db)

    await db.delete(target)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="user is referenced by defects or comments")

    logger.info(f"User {user_id} deleted by {current_user.id}")
    return f"Successfully deleted user with id {user_id}"


@router.get("/me", response_model=PublicUser)
async def get_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get the authenticated user's profile"""
    return to_public_user(await _get_user(current_user.id, db))


@router.patch("/me", response_model=PublicUser)
async def update_me(
    update: UserUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update the authenticated user's own name and/or lastname"""
    target = await _get_user(current_user.id, db)
    return to_public_user(await _apply_update(target, update, db))
