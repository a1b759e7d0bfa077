# auth router — register, login, and current user
# issues a single 7-day access token per login

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from app.models.user import UserCreate, UserLogin, UserResponse, AuthResponse
from app.services.db import Database, get_db
from app.services.auth_service import hash_password, verify_password, create_access_token
from app.dependencies import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _user_response(user_id: str, doc: dict) -> UserResponse:
    return UserResponse(id=user_id, email=doc["email"], name=doc.get("name"))


@router.post("/register", response_model=AuthResponse)
async def register(
    body: UserCreate,
    db: Database = Depends(get_db),
):
    """create an account and return a token"""
    email = body.email.strip().lower()
    existing = await db.users.find_one({"email": email})
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already in use",
        )

    doc = {
        "email": email,
        "hashed_password": hash_password(body.password),
        "name": body.name,
        "created_at": datetime.now(timezone.utc),
    }
    result = await db.users.insert_one(doc)
    user_id = str(result.inserted_id)

    logger.info(f"User registered: {user_id}")
    return AuthResponse(
        user=_user_response(user_id, doc),
        token=create_access_token(user_id, email),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: UserLogin,
    db: Database = Depends(get_db),
):
    """verify credentials and return a token"""
    email = body.email.strip().lower()
    user = await db.users.find_one({"email": email})
    if not user or not verify_password(body.password, user.get("hashed_password", "")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid credentials",
        )

    user_id = str(user["_id"])
    logger.info(f"User logged in: {user_id}")
    return AuthResponse(
        user=_user_response(user_id, user),
        token=create_access_token(user_id, email),
    )


@router.get("/me", response_model=UserResponse)
async def me(current_user: dict = Depends(get_current_user)):
    return _user_response(current_user["id"], current_user)
