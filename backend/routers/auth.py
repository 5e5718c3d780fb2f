# routers/auth.py - Registration and login
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, UserRegister, UserLogin, TokenResponse, PublicUser, to_public_user
from database import get_db_session

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/register", response_model=PublicUser, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new account with the default engineer role (no token is issued)"""
    user = await AuthService.register_user(user_data, db)
    return to_public_user(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.login, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="invalid credentials")
    return AuthService.build_token_response(user)
