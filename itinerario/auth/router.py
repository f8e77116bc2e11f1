import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..schemas.auth import LoginRequest, RefreshRequest, TokenResponse, MeResponse, MeProfile
from .security import (
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_session_context,
    get_user_role,
    SessionContext,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.strip().lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="E-mail ou senha inválidos")
    access = create_access_token(str(user.id), role=get_user_role(db, user.id))
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == _uuid_or_401(payload.get("sub"))).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(str(user.id), role=get_user_role(db, user.id))
    return TokenResponse(access_token=access, refresh_token=create_refresh_token(str(user.id)))


def _uuid_or_401(value):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")


@router.get("/me", response_model=MeResponse)
def me(ctx: SessionContext = Depends(get_session_context)):
    profile = None
    if ctx.profile is not None:
        profile = MeProfile(
            name=ctx.profile.name,
            avatar_url=ctx.profile.avatar_url,
            sector_id=str(ctx.profile.sector_id) if ctx.profile.sector_id else None,
        )
    return MeResponse(
        id=str(ctx.user.id),
        email=ctx.user.email,
        profile=profile,
        roles=sorted(ctx.roles),
        is_admin=ctx.is_admin,
        is_task_applier=ctx.is_task_applier,
        can_manage_tasks=ctx.can_manage_tasks,
    )
