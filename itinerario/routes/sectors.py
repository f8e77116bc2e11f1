import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth.security import SessionContext, get_session_context, require_admin
from ..db import get_db
from ..models.models import Profile, Sector, Task
from ..schemas.users import SectorCreate


router = APIRouter(prefix="/sectors", tags=["sectors"])
logger = structlog.get_logger(__name__)


def _serialize_sector(s: Sector) -> dict:
    return {"id": str(s.id), "name": s.name, "created_at": s.created_at.isoformat() if s.created_at else None}


@router.get("")
def list_sectors(db: Session = Depends(get_db), _: SessionContext = Depends(get_session_context)):
    return [_serialize_sector(s) for s in db.query(Sector).order_by(Sector.name.asc()).all()]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_sector(payload: SectorCreate, db: Session = Depends(get_db), ctx: SessionContext = Depends(require_admin)):
    name = (payload.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail='Campo "name" é obrigatório')
    if db.query(Sector.id).filter(Sector.name == name).first():
        raise HTTPException(status_code=400, detail="Setor já existe")
    now = datetime.utcnow()
    sector = Sector(name=name, created_at=now, updated_at=now)
    db.add(sector)
    db.commit()
    db.refresh(sector)
    logger.info("sector_created", sector_id=str(sector.id), created_by=str(ctx.user_id))
    return _serialize_sector(sector)


@router.delete("/{sector_id}")
def delete_sector(sector_id: uuid.UUID, db: Session = Depends(get_db), ctx: SessionContext = Depends(require_admin)):
    sector = db.query(Sector).filter(Sector.id == sector_id).first()
    if not sector:
        raise HTTPException(status_code=404, detail="Setor não encontrado")
    db.query(Profile).filter(Profile.sector_id == sector_id).update({Profile.sector_id: None}, synchronize_session=False)
    db.query(Task).filter(Task.sector_id == sector_id).update({Task.sector_id: None}, synchronize_session=False)
    db.delete(sector)
    db.commit()
    logger.info("sector_deleted", sector_id=str(sector_id), deleted_by=str(ctx.user_id))
    return {"deleted": True}
