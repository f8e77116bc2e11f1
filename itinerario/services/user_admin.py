"""
Privileged user management: create and delete identities.

Both operations fail closed: every authorization check runs before the first write,
and the writes of one call share a single transaction.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, get_user_role
from ..errors import UserAdminError
from ..models.models import (
    Notification,
    NotificationMarker,
    Profile,
    Sector,
    Task,
    TaskAssignee,
    TaskComment,
    TaskHistory,
    User,
    UserRole,
    ROLES,
)


logger = structlog.get_logger(__name__)

NOT_AUTHORIZED = "Não autorizado"


def roles_exist(db: Session) -> bool:
    return db.query(UserRole.id).first() is not None


def require_admin(db: Session, caller: Optional[User]) -> None:
    if caller is None:
        raise UserAdminError(NOT_AUTHORIZED, 401)
    if get_user_role(db, caller.id) != "admin":
        raise UserAdminError(NOT_AUTHORIZED, 403)


def authorize_create(db: Session, caller: Optional[User]) -> bool:
    """Returns True for the bootstrap call (no role rows yet); otherwise the caller must be an admin."""
    if not roles_exist(db):
        return True
    require_admin(db, caller)
    return False


def create_user(
    db: Session,
    caller: Optional[User],
    *,
    email: Optional[str],
    password: Optional[str],
    name: Optional[str] = None,
    role: Optional[str] = None,
    sector_id: Optional[uuid.UUID] = None,
) -> User:
    """
    Create an identity with its role row and profile.

    While no role rows exist at all (first account) the call is allowed without
    an admin caller; afterwards only admins may create users.
    """
    bootstrap = authorize_create(db, caller)

    email = (email or "").strip().lower()
    if not email or not password:
        raise UserAdminError("Preencha e-mail e senha", 400)
    role = role or "employee"
    if role not in ROLES:
        raise UserAdminError(f"Papel inválido: {role}", 400)
    if db.query(User.id).filter(User.email == email).first():
        raise UserAdminError("E-mail já cadastrado", 400)
    if sector_id and not db.query(Sector.id).filter(Sector.id == sector_id).first():
        raise UserAdminError("Setor não encontrado", 400)

    now = datetime.utcnow()
    user = User(email=email, password_hash=get_password_hash(password), is_active=True, created_at=now)
    db.add(user)
    try:
        db.flush()
        db.add(UserRole(user_id=user.id, role=role))
        db.add(Profile(
            user_id=user.id,
            name=(name or "").strip() or email,
            sector_id=sector_id,
            created_at=now,
            updated_at=now,
        ))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("user_create_failed", email=email, exc_info=True)
        raise UserAdminError(str(exc.orig) if getattr(exc, "orig", None) else str(exc), 400) from exc
    db.refresh(user)
    logger.info(
        "user_created",
        user_id=str(user.id),
        role=role,
        bootstrap=bootstrap,
        created_by=str(caller.id) if caller else None,
    )
    return user


def delete_user(db: Session, caller: Optional[User], user_id: Optional[str]) -> None:
    """Delete an identity and everything that references it. Admins only, never oneself."""
    require_admin(db, caller)
    if not user_id:
        raise UserAdminError("user_id é obrigatório", 400)
    try:
        target_id = uuid.UUID(str(user_id))
    except ValueError:
        raise UserAdminError("user_id inválido", 400)
    if target_id == caller.id:
        raise UserAdminError("Você não pode excluir a si mesmo", 400)
    target = db.query(User).filter(User.id == target_id).first()
    if target is None:
        raise UserAdminError("Usuário não encontrado", 404)

    try:
        for model in (TaskAssignee, TaskComment, TaskHistory, UserRole, Profile, Notification, NotificationMarker):
            db.query(model).filter(model.user_id == target_id).delete(synchronize_session=False)
        db.query(Task).filter(Task.creator_id == target_id).update(
            {Task.creator_id: None}, synchronize_session=False
        )
        db.delete(target)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("user_delete_failed", user_id=str(target_id), exc_info=True)
        raise UserAdminError("Erro ao excluir usuário", 500) from exc
    logger.info("user_deleted", user_id=str(target_id), deleted_by=str(caller.id))


def list_users(db: Session) -> List[Dict[str, Any]]:
    """Profiles merged with their role row, ordered by name."""
    profiles = db.query(Profile).order_by(Profile.name.asc()).all()
    roles = {r.user_id: r for r in db.query(UserRole).all()}
    emails = dict(db.query(User.id, User.email).all())
    items = []
    for p in profiles:
        role_row = roles.get(p.user_id)
        items.append({
            "user_id": str(p.user_id),
            "email": emails.get(p.user_id),
            "name": p.name,
            "avatar_url": p.avatar_url,
            "sector_id": str(p.sector_id) if p.sector_id else None,
            "role": role_row.role if role_row else None,
            "role_id": str(role_row.id) if role_row else None,
        })
    return items


def update_user(
    db: Session,
    user_id: uuid.UUID,
    *,
    name: Optional[str] = None,
    role: Optional[str] = None,
    sector_id: Optional[uuid.UUID] = None,
    clear_sector: bool = False,
) -> Profile:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        raise UserAdminError("Usuário não encontrado", 404)
    if name is not None:
        if not name.strip():
            raise UserAdminError("Nome não pode ficar vazio", 400)
        profile.name = name.strip()
    if clear_sector:
        profile.sector_id = None
    elif sector_id is not None:
        if not db.query(Sector.id).filter(Sector.id == sector_id).first():
            raise UserAdminError("Setor não encontrado", 400)
        profile.sector_id = sector_id
    if role is not None:
        if role not in ROLES:
            raise UserAdminError(f"Papel inválido: {role}", 400)
        role_row = db.query(UserRole).filter(UserRole.user_id == user_id).first()
        if role_row is None:
            db.add(UserRole(user_id=user_id, role=role))
        else:
            role_row.role = role
    profile.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(profile)
    return profile
