"""
Task history service.
Append-only audit trail; rows are added in the caller's transaction and never updated.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from ..models.models import TaskHistory


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def append_history(
    db: Session,
    task_id: uuid.UUID,
    user_id: uuid.UUID,
    action: str,
    details: Optional[Dict[str, Any]] = None,
) -> TaskHistory:
    """
    Stage one history row for a task mutation.

    Does not commit: the row must land in the same transaction as the mutation it describes.
    """
    entry = TaskHistory(
        task_id=task_id,
        user_id=user_id,
        action=action,
        details=_jsonable(details) if details is not None else None,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry


def get_task_history(db: Session, task_id: uuid.UUID, limit: int = 100) -> List[TaskHistory]:
    return (
        db.query(TaskHistory)
        .filter(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.created_at.desc())
        .limit(limit)
        .all()
    )


def serialize_history(entry: TaskHistory) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "task_id": str(entry.task_id),
        "user_id": str(entry.user_id),
        "action": entry.action,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
