import uuid
from datetime import date, datetime
from typing import Optional, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import TaskTransitionError, TaskValidationError
from ..models.models import Task, TASK_STATUSES, TERMINAL_STATUSES
from .history import append_history


logger = structlog.get_logger(__name__)

# Targets reachable from the "more options" menu without a justification
QUICK_STATUSES = {"em_andamento", "pendente"}


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def _clean(text: Optional[str]) -> str:
    return (text or "").strip()


def _ensure_open(task: Task) -> None:
    if is_terminal(task.status):
        raise TaskTransitionError(f"Tarefa já está {task.status}")


def _apply_transition(db: Session, task: Task, actor_id: uuid.UUID, status: str, **fields: Any) -> Task:
    if status not in TASK_STATUSES:
        raise TaskValidationError(f"Status inválido: {status}")
    previous = task.status
    task.status = status
    for name, value in fields.items():
        setattr(task, name, value)
    task.updated_at = datetime.utcnow()
    append_history(
        db,
        task.id,
        actor_id,
        f"Status alterado para: {status}",
        {"status": status, **fields},
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("task_status_change_failed", task_id=str(task.id), status=status, exc_info=True)
        raise
    db.refresh(task)
    logger.info(
        "task_status_changed",
        task_id=str(task.id),
        actor_id=str(actor_id),
        previous=previous,
        status=status,
    )
    return task


def conclude_task(db: Session, task: Task, actor_id: uuid.UUID) -> Task:
    _ensure_open(task)
    return _apply_transition(db, task, actor_id, "concluida")


def postpone_task(
    db: Session,
    task: Task,
    actor_id: uuid.UUID,
    new_date: Optional[date],
    justification: Optional[str],
) -> Task:
    if not new_date:
        raise TaskValidationError("Selecione uma nova data")
    reason = _clean(justification)
    if not reason:
        raise TaskValidationError("Informe a justificativa para adiar")
    _ensure_open(task)
    return _apply_transition(
        db, task, actor_id, "adiada",
        scheduled_date=new_date,
        status_justification=reason,
    )


def cancel_task(db: Session, task: Task, actor_id: uuid.UUID, justification: Optional[str]) -> Task:
    reason = _clean(justification)
    if not reason:
        raise TaskValidationError("Informe a justificativa para cancelar")
    _ensure_open(task)
    return _apply_transition(db, task, actor_id, "cancelada", status_justification=reason)


def change_status(
    db: Session,
    task: Task,
    actor_id: uuid.UUID,
    status: str,
    justification: Optional[str] = None,
) -> Task:
    """Generic transition used by the "more options" menu."""
    if status == "concluida":
        return conclude_task(db, task, actor_id)
    if status == "cancelada":
        return cancel_task(db, task, actor_id, justification)
    if status not in QUICK_STATUSES:
        raise TaskValidationError(f"Status inválido: {status}")
    _ensure_open(task)
    if task.status == status:
        raise TaskTransitionError(f"Tarefa já está {status}")
    return _apply_transition(db, task, actor_id, status)
