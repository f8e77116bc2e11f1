import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import SessionContext, get_session_context
from ..db import get_db
from ..services.notifications import (
    NotificationGate,
    list_notifications as _list_notifications,
    mark_read,
    serialize_notification,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_gate() -> NotificationGate:
    return NotificationGate()


@router.post("/check")
def check_pending(
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
    gate: NotificationGate = Depends(get_notification_gate),
):
    """
    Run the pending-task reminder for the caller.
    Returns the notification that fired, or null when gated (closed hours, already reminded this hour, nothing pending).
    """
    notification = gate.run(db, ctx.user_id)
    return {"notification": serialize_notification(notification) if notification else None}


@router.get("")
def list_notifications(
    limit: Optional[int] = 50,
    unread_only: Optional[bool] = False,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    rows = _list_notifications(db, ctx.user_id, limit=min(max(1, limit or 50), 200), unread_only=bool(unread_only))
    return [serialize_notification(n) for n in rows]


@router.post("/read-all")
def read_all(db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    return {"updated": mark_read(db, ctx.user_id)}


@router.post("/{notification_id}/read")
def read_one(notification_id: uuid.UUID, db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    updated = mark_read(db, ctx.user_id, notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notificação não encontrada")
    return {"updated": updated}
