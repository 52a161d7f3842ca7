from datetime import timedelta
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import GetDb
from app.modules.auth.deps import NowUtc, RequireAuthenticated, UserContext, _require_env
from app.modules.auth.models import RefreshToken, User
from app.modules.auth.schemas import LoginRequest, LogoutResponse, RefreshRequest, TokenResponse
from app.modules.auth.service import (
    CreateAccessToken,
    CreateRefreshToken,
    HashRefreshToken,
    VerifyPassword,
    VerifyRefreshToken,
)
from app.modules.progress.services.card_lock_service import ReleaseUserLocks

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger("app.auth")


def _IssueTokens(db: Session, user: User) -> TokenResponse:
    access_token, expires_in = CreateAccessToken(user.Id, user.Username, user.Role, user.SchoolId)
    refresh_token = CreateRefreshToken()
    refresh_ttl_days = int(_require_env("JWT_REFRESH_TTL_DAYS"))
    db.add(
        RefreshToken(
            UserId=user.Id,
            TokenHash=HashRefreshToken(refresh_token),
            ExpiresAt=NowUtc() + timedelta(days=refresh_ttl_days),
        )
    )
    db.commit()

    return TokenResponse(
        AccessToken=access_token,
        RefreshToken=refresh_token,
        ExpiresIn=expires_in,
        Username=user.Username,
        Role=user.Role,
        SchoolId=user.SchoolId,
        FirstName=user.FirstName,
        LastName=user.LastName,
    )


@router.post("/login", response_model=TokenResponse)
def Login(payload: LoginRequest, db: Session = Depends(GetDb)) -> TokenResponse:
    user = db.query(User).filter(User.Username == payload.Username).first()
    now = NowUtc()
    if user and user.LockedUntil and user.LockedUntil > now:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account locked. Try again later.")

    if not user or not VerifyPassword(payload.Password, user.PasswordHash):
        if user:
            max_attempts = int(_require_env("AUTH_LOGIN_MAX_ATTEMPTS"))
            lockout_minutes = int(_require_env("AUTH_LOGIN_LOCKOUT_MINUTES"))
            user.FailedLoginCount += 1
            if user.FailedLoginCount >= max_attempts:
                user.LockedUntil = now + timedelta(minutes=lockout_minutes)
                user.FailedLoginCount = 0
                logger.warning("login lockout user_id=%s", user.Id)
            db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not user.IsActive:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    user.FailedLoginCount = 0
    user.LockedUntil = None
    return _IssueTokens(db, user)


@router.post("/refresh", response_model=TokenResponse)
def Refresh(payload: RefreshRequest, db: Session = Depends(GetDb)) -> TokenResponse:
    now = NowUtc()
    tokens = (
        db.query(RefreshToken)
        .filter(RefreshToken.RevokedAt.is_(None), RefreshToken.ExpiresAt > now)
        .all()
    )
    matched = None
    for token in tokens:
        if VerifyRefreshToken(payload.RefreshToken, token.TokenHash):
            matched = token
            break

    if not matched:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = db.query(User).filter(User.Id == matched.UserId).first()
    if not user or not user.IsActive:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    matched.RevokedAt = now
    return _IssueTokens(db, user)


@router.post("/logout", response_model=LogoutResponse)
def Logout(user: UserContext = Depends(RequireAuthenticated), db: Session = Depends(GetDb)) -> LogoutResponse:
    tokens = (
        db.query(RefreshToken)
        .filter(RefreshToken.UserId == user.Id, RefreshToken.RevokedAt.is_(None))
        .all()
    )
    now = NowUtc()
    for token in tokens:
        token.RevokedAt = now
        db.add(token)
    db.commit()

    released = ReleaseUserLocks(db, user.Id)
    logger.info("logout user_id=%s revoked=%s released_locks=%s", user.Id, len(tokens), released)
    return LogoutResponse(RevokedTokens=len(tokens), ReleasedLocks=released)
