import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import SessionContext, require_admin, require_task_manager
from ..db import get_db
from ..errors import UserAdminError
from ..models.models import Profile
from ..schemas.users import UserUpdate
from ..services import user_admin


router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(db: Session = Depends(get_db), _: SessionContext = Depends(require_admin)):
    items = user_admin.list_users(db)
    return {"count": len(items), "results": items}


@router.get("/options")
def users_options(db: Session = Depends(get_db), _: SessionContext = Depends(require_task_manager)):
    """Profiles available for task assignment"""
    rows = db.query(Profile).order_by(Profile.name.asc()).all()
    return [
        {"user_id": str(p.user_id), "name": p.name, "sector_id": str(p.sector_id) if p.sector_id else None}
        for p in rows
    ]


@router.patch("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    _: SessionContext = Depends(require_admin),
):
    try:
        profile = user_admin.update_user(
            db,
            user_id,
            name=payload.name,
            role=payload.role,
            sector_id=payload.sector_id,
            clear_sector=payload.clear_sector,
        )
    except UserAdminError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return next(u for u in user_admin.list_users(db) if u["user_id"] == str(profile.user_id))
