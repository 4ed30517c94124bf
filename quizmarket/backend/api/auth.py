"""
QuizMarket Attempt Service
Authentication API routes
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

import jwt
from passlib.context import CryptContext
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..database.connection import get_db
from ..database.models import User, UserRole
from ..dependencies import require_authentication
from ..exceptions import (
    ConflictException,
    InvalidCredentialsException,
    AccountDisabledException,
)
from ..utils.helpers import isoformat
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

# Password hashing; bcrypt hashes from older installs still verify
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")


# Pydantic models for requests/responses
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    role: UserRole = UserRole.LEARNER

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Name is required')
        return v.strip()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        settings = get_settings()
        if len(v) < settings.PASSWORD_MIN_LENGTH:
            raise ValueError(f'Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v == UserRole.ADMIN:
            raise ValueError('Admin accounts cannot be self-registered')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


# Utility functions
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def token_for_user(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role.value})


def user_response_data(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "is_active": user.is_active,
        "last_login": isoformat(user.last_login),
        "created_at": isoformat(user.created_at),
    }


# Authentication routes
@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db)
):
    """Register a new user account"""

    existing_user = await db.execute(select(User).where(User.email == request.email.lower()))
    if existing_user.scalar_one_or_none():
        raise ConflictException("Email already registered", conflict_type="duplicate_email")

    user = User(
        name=request.name,
        email=request.email,
        hashed_password=hash_password(request.password),
        role=request.role,
        is_active=True
    )

    db.add(user)
    await db.commit()

    logger.info(f"New user registered: {user.id} ({user.email})")

    return {
        "message": "Registration successful",
        "user": user_response_data(user),
        "access_token": token_for_user(user),
        "token_type": "bearer"
    }


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """Authenticate user and return an access token"""

    result = await db.execute(select(User).where(User.email == request.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(request.password, user.hashed_password):
        raise InvalidCredentialsException()

    if not user.is_active:
        raise AccountDisabledException()

    user.last_login = datetime.utcnow()
    await db.commit()

    logger.info(f"User {user.id} logged in successfully")

    return LoginResponse(
        access_token=token_for_user(user),
        expires_in=get_settings().JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_response_data(user)
    )


@router.get("/me")
async def get_current_user_profile(current_user: User = Depends(require_authentication)):
    """Get current user's profile information"""
    return {"user": user_response_data(current_user)}


__all__ = [
    "router",
    "hash_password",
    "verify_password",
    "create_access_token",
    "token_for_user",
]
