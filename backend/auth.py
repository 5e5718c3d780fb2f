# auth.py - Authentication & authorization for buildefect
# Features:
# - bcrypt password hashing
# - HS256 JWT bearer tokens carrying subject id, login and role
# - 3-role RBAC (engineer, manager, observer)
# - Per-route allow-lists kept as data in ROUTE_ROLES

import os
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, FrozenSet, Tuple

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, UserRole

logger = logging.getLogger("buildefect.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "replace-this-secret":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key; "
        "tokens will not survive a restart."
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
ACCESS_TOKEN_TTL = timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

security = HTTPBearer(auto_error=False)


# ============================================================
# ROUTE ALLOW-LISTS
# ============================================================

OBSERVER_ONLY = frozenset({UserRole.OBSERVER})
OBSERVER_OR_MANAGER = frozenset({UserRole.OBSERVER, UserRole.MANAGER})
ENGINEER_OR_MANAGER = frozenset({UserRole.ENGINEER, UserRole.MANAGER})

# (method, path template) -> roles allowed past the gate.
# Routes absent from this table are either public or token-only.
ROUTE_ROLES: Dict[Tuple[str, str], FrozenSet[UserRole]] = {
    ("POST", "/api/users"): OBSERVER_ONLY,
    ("PATCH", "/api/users/{id}"): OBSERVER_ONLY,
    ("DELETE", "/api/users/{id}"): OBSERVER_ONLY,
    ("POST", "/api/buildings"): OBSERVER_OR_MANAGER,
    ("PATCH", "/api/buildings/{id}"): OBSERVER_OR_MANAGER,
    ("DELETE", "/api/buildings/{id}"): OBSERVER_OR_MANAGER,
    ("POST", "/api/defects"): OBSERVER_OR_MANAGER,
    ("PATCH", "/api/defects/{id}"): ENGINEER_OR_MANAGER,
    ("DELETE", "/api/defects/{id}"): OBSERVER_OR_MANAGER,
    ("DELETE", "/api/comments/{id}"): OBSERVER_ONLY,
    ("POST", "/api/defects/{id}/attachments"): OBSERVER_OR_MANAGER,
    ("DELETE", "/api/attachments/{id}"): OBSERVER_OR_MANAGER,
    ("POST", "/api/comments/{id}/attachments"): OBSERVER_OR_MANAGER,
    ("DELETE", "/api/comment-attachments/{id}"): OBSERVER_OR_MANAGER,
}


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    login: str
    password: str
    name: str = ""
    lastname: str = ""


class UserLogin(BaseModel):
    login: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class PublicUser(BaseModel):
    id: int
    login: str
    name: str
    lastname: str
    role: str


class CurrentUser(BaseModel):
    """Identity resolved from a verified bearer token"""
    id: int
    login: str = ""
    role: Optional[UserRole] = None


def to_public_user(u: User) -> PublicUser:
    return PublicUser(
        id=u.id,
        login=u.login,
        name=u.name or "",
        lastname=u.lastname or "",
        role=u.role.value if isinstance(u.role, UserRole) else u.role,
    )


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Credential store and token service"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        delta = expires_delta or ACCESS_TOKEN_TTL
        role = user.role.value if isinstance(user.role, UserRole) else user.role
        to_encode = {
            "sub": str(user.id),
            "login": user.login,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int((now + delta).timestamp()),
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="invalid token")

    @staticmethod
    def build_token_response(user: User) -> TokenResponse:
        return TokenResponse(
            access_token=AuthService.create_access_token(user),
            expires_in=int(ACCESS_TOKEN_TTL.total_seconds()),
        )

    @staticmethod
    async def login_exists(login: str, db: AsyncSession) -> bool:
        stmt = select(User.id).where(User.login == login)
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def create_user(
        db: AsyncSession,
        login: str,
        password: str,
        name: str = "",
        lastname: str = "",
        role: UserRole = UserRole.ENGINEER,
    ) -> User:
        """Insert a user after the uniqueness pre-check; password is stored hashed only"""
        if not login or not password:
            raise HTTPException(status_code=400, detail="login and password required")

        if await AuthService.login_exists(login, db):
            raise HTTPException(status_code=409, detail="user already exists")

        new_user = User(
            login=login,
            password_hash=AuthService.hash_password(password),
            name=name,
            lastname=lastname,
            role=role,
        )
        db.add(new_user)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same login
            await db.rollback()
            raise HTTPException(status_code=409, detail="user already exists")
        await db.refresh(new_user)

        logger.info(f"User created: id={new_user.id} login={new_user.login} role={role.value}")
        return new_user

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        return await AuthService.create_user(
            db,
            login=user_data.login,
            password=user_data.password,
            name=user_data.name,
            lastname=user_data.lastname,
        )

    @staticmethod
    async def authenticate_user(login: str, password: str, db: AsyncSession) -> Optional[User]:
        stmt = select(User).where(User.login == login)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            logger.info(f"Failed login attempt for {login!r}")
            return None
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="missing or invalid Authorization header")

    payload = AuthService.verify_token(credentials.credentials)

    sub = payload.get("sub")
    if not isinstance(sub, str):
        raise HTTPException(status_code=401, detail="invalid token subject")
    try:
        user_id = int(sub)
    except ValueError:
        raise HTTPException(status_code=401, detail="invalid token subject")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        role = None

    return CurrentUser(id=user_id, login=payload.get("login") or "", role=role)


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified roles"""
    allowed = frozenset(roles)

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role is None or user.role not in allowed:
            raise HTTPException(status_code=403, detail="insufficient permissions")
        return user
    return _check


def require_route(method: str, path: str):
    """Dependency factory: gate a route with its ROUTE_ROLES entry"""
    return require_role(*ROUTE_ROLES[(method, path)])
