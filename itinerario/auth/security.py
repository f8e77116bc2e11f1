import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, FrozenSet

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User, Profile, UserRole


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token


def create_access_token(user_id: str, role: Optional[str] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"role": role, "type": "access"})


def create_refresh_token(user_id: str) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"type": "refresh"})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def user_from_token(db: Session, token: str) -> User:
    payload = decode_token(token)
    if payload.get("type") == "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_from_token(db, creds.credentials)


def get_user_role(db: Session, user_id: uuid.UUID) -> Optional[str]:
    row = db.query(UserRole).filter(UserRole.user_id == user_id).first()
    return row.role if row else None


@dataclass(frozen=True)
class SessionContext:
    """Who is calling and what they may do, resolved once per request."""
    user: User
    profile: Optional[Profile]
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_task_applier(self) -> bool:
        return "task_applier" in self.roles

    @property
    def is_employee(self) -> bool:
        return "employee" in self.roles

    @property
    def can_manage_tasks(self) -> bool:
        return self.is_admin or self.is_task_applier

    @property
    def display_name(self) -> str:
        if self.profile and self.profile.name:
            return self.profile.name
        return self.user.email


def build_context(db: Session, user: User) -> SessionContext:
    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    roles = {r.role for r in db.query(UserRole).filter(UserRole.user_id == user.id).all()}
    return SessionContext(user=user, profile=profile, roles=frozenset(roles))


def get_session_context(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SessionContext:
    return build_context(db, user)


def require_roles(*allowed_roles: str):
    """Require at least one of the given roles (OR logic)."""
    def _dep(ctx: SessionContext = Depends(get_session_context)) -> SessionContext:
        if not ctx.roles.intersection(allowed_roles):
            raise HTTPException(status_code=403, detail="Forbidden")
        return ctx

    return _dep


require_admin = require_roles("admin")
require_task_manager = require_roles("admin", "task_applier")
