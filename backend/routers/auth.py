# routers/auth.py — Registration, login and token refresh
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest,
    get_current_user, CurrentUser, ACCESS_TOKEN_EXPIRE_MINUTES, user_to_current,
)
from database import get_db_session
from models import User

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _build_token_response(user_obj: User) -> TokenResponse:
    claims = AuthService.token_claims(user_obj)
    return TokenResponse(
        access_token=AuthService.create_access_token(claims),
        refresh_token=AuthService.create_refresh_token(claims),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_to_current(user_obj).model_dump(),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register an account, optionally through an invitation link"""
    user = await AuthService.register_user(user_data, db)
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Exchange a refresh token for a new token pair"""
    payload = AuthService.verify_token(refresh_req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type. Expected refresh token.")

    user = (await db.execute(select(User).where(User.id == payload.get("sub")))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return _build_token_response(user)


@router.get("/me", response_model=CurrentUser)
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    return user
