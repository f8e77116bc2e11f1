import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from ..auth.security import SessionContext
from ..errors import TaskValidationError
from ..models.models import (
    Profile,
    Sector,
    Task,
    TaskAssignee,
    TaskComment,
    UserRole,
    OPEN_STATUSES,
    TASK_PRIORITIES,
    TASK_TYPES,
)
from ..schemas.tasks import TaskCreate
from .history import append_history
from .task_lifecycle import is_terminal


logger = structlog.get_logger(__name__)


def _resolve_names(db: Session, user_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    rows = db.query(Profile.user_id, Profile.name).filter(Profile.user_id.in_(ids)).all()
    return {uid: name for uid, name in rows}


def visible_tasks_query(db: Session, user_id: uuid.UUID, roles: Iterable[str]) -> Query:
    """
    Admins and task appliers see every task.
    Everyone else sees tasks they created or are assigned to.
    """
    query = db.query(Task)
    if set(roles) & {"admin", "task_applier"}:
        return query
    assigned = db.query(TaskAssignee.task_id).filter(TaskAssignee.user_id == user_id)
    return query.filter(or_(Task.creator_id == user_id, Task.id.in_(assigned)))


def roles_for(db: Session, user_id: uuid.UUID) -> Set[str]:
    return {r.role for r in db.query(UserRole).filter(UserRole.user_id == user_id).all()}


def pending_tasks_for_user(db: Session, user_id: uuid.UUID) -> List[Task]:
    return (
        visible_tasks_query(db, user_id, roles_for(db, user_id))
        .filter(Task.status.in_(OPEN_STATUSES))
        .order_by(Task.created_at.asc())
        .all()
    )


def is_assignee(task: Task, user_id: uuid.UUID) -> bool:
    return any(a.user_id == user_id for a in task.assignees)


def can_view_task(task: Task, ctx: SessionContext) -> bool:
    if ctx.can_manage_tasks or task.creator_id == ctx.user_id:
        return True
    return is_assignee(task, ctx.user_id)


def can_act_on_task(task: Task, ctx: SessionContext) -> bool:
    if ctx.is_admin or task.creator_id == ctx.user_id:
        return True
    return is_assignee(task, ctx.user_id)


def _validate_new_task(payload: TaskCreate) -> None:
    if not payload.type:
        raise TaskValidationError("Selecione o tipo da tarefa")
    if payload.type not in TASK_TYPES:
        raise TaskValidationError(f"Tipo inválido: {payload.type}")
    if payload.priority not in TASK_PRIORITIES:
        raise TaskValidationError(f"Prioridade inválida: {payload.priority}")
    if not (payload.client_name or "").strip():
        raise TaskValidationError("Informe o nome do cliente")


def _ensure_profiles_exist(db: Session, user_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        return []
    found = {uid for (uid,) in db.query(Profile.user_id).filter(Profile.user_id.in_(wanted)).all()}
    missing = [str(uid) for uid in wanted if uid not in found]
    if missing:
        raise TaskValidationError(f"Usuário(s) não encontrado(s): {', '.join(missing)}")
    return wanted


def create_task(db: Session, payload: TaskCreate, creator_id: uuid.UUID) -> Tuple[Task, List[uuid.UUID]]:
    """
    Create a task in status pendente together with its assignees and the creation history row.

    Returns the task and the ids of the users assigned to it.
    """
    _validate_new_task(payload)
    if payload.sector_id and not db.query(Sector.id).filter(Sector.id == payload.sector_id).first():
        raise TaskValidationError("Setor não encontrado")
    assignee_ids = _ensure_profiles_exist(db, payload.assignee_ids)

    now = datetime.utcnow()
    task = Task(
        type=payload.type,
        priority=payload.priority,
        status="pendente",
        sector_id=payload.sector_id,
        client_name=payload.client_name.strip(),
        client_phone=payload.client_phone,
        client_address=payload.client_address,
        client_cep=payload.client_cep,
        client_time_limit=payload.client_time_limit,
        machine=payload.machine,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        deadline=payload.deadline,
        value=payload.value,
        observations=payload.observations,
        creator_id=creator_id,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    db.flush()
    for uid in assignee_ids:
        db.add(TaskAssignee(task_id=task.id, user_id=uid))
    append_history(db, task.id, creator_id, "Tarefa criada", {"type": task.type, "priority": task.priority})
    db.commit()
    db.refresh(task)
    logger.info("task_created", task_id=str(task.id), creator_id=str(creator_id), assignees=len(assignee_ids))
    return task, assignee_ids


def replace_assignees(
    db: Session,
    task: Task,
    user_ids: Iterable[uuid.UUID],
    actor_id: uuid.UUID,
) -> List[uuid.UUID]:
    """Replace the assignee set of a task. Returns the ids that were newly added."""
    wanted = _ensure_profiles_exist(db, user_ids)
    current = {a.user_id: a for a in task.assignees}
    added = [uid for uid in wanted if uid not in current]
    removed = [uid for uid in current if uid not in wanted]
    for uid in removed:
        task.assignees.remove(current[uid])
    for uid in added:
        task.assignees.append(TaskAssignee(task_id=task.id, user_id=uid))
    if added or removed:
        task.updated_at = datetime.utcnow()
        append_history(
            db, task.id, actor_id, "Responsáveis alterados",
            {"added": added, "removed": removed},
        )
    db.commit()
    db.refresh(task)
    return added


def set_assignment_completed(db: Session, task: Task, user_id: uuid.UUID, completed: bool) -> TaskAssignee:
    """Per-assignee completion flag. Independent of the task status."""
    assignment = (
        db.query(TaskAssignee)
        .filter(TaskAssignee.task_id == task.id, TaskAssignee.user_id == user_id)
        .first()
    )
    if assignment is None:
        raise TaskValidationError("Você não é responsável por esta tarefa")
    now = datetime.utcnow()
    assignment.completed = completed
    assignment.completed_at = now if completed else None
    append_history(
        db,
        task.id,
        user_id,
        "Conclusão individual registrada" if completed else "Conclusão individual desfeita",
        {"completed": completed},
    )
    db.commit()
    db.refresh(assignment)
    return assignment


def add_comment(db: Session, task: Task, user_id: uuid.UUID, content: str) -> TaskComment:
    text = (content or "").strip()
    if not text:
        raise TaskValidationError("Comentário vazio")
    comment = TaskComment(task_id=task.id, user_id=user_id, content=text, created_at=datetime.utcnow())
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def list_comments(db: Session, task_id: uuid.UUID) -> List[Dict[str, Any]]:
    rows = (
        db.query(TaskComment)
        .filter(TaskComment.task_id == task_id)
        .order_by(TaskComment.created_at.asc())
        .all()
    )
    names = _resolve_names(db, [c.user_id for c in rows])
    return [
        {
            "id": str(c.id),
            "user": {"id": str(c.user_id), "name": names.get(c.user_id)},
            "content": c.content,
            "created_at": c.created_at.isoformat(),
        }
        for c in rows
    ]


def serialize_task(
    db: Session,
    task: Task,
    ctx: Optional[SessionContext] = None,
    names: Optional[Dict[uuid.UUID, str]] = None,
) -> Dict[str, Any]:
    if names is None:
        names = _resolve_names(db, [a.user_id for a in task.assignees] + [task.creator_id])
    data: Dict[str, Any] = {
        "id": str(task.id),
        "type": task.type,
        "priority": task.priority,
        "status": task.status,
        "status_justification": task.status_justification,
        "client": {
            "name": task.client_name,
            "phone": task.client_phone,
            "address": task.client_address,
            "cep": task.client_cep,
            "time_limit": task.client_time_limit,
        },
        "machine": task.machine,
        "scheduled_date": task.scheduled_date.isoformat() if task.scheduled_date else None,
        "scheduled_time": task.scheduled_time,
        "deadline": task.deadline.isoformat() if task.deadline else None,
        "value": float(task.value) if task.value is not None else None,
        "observations": task.observations,
        "sector": {"id": str(task.sector.id), "name": task.sector.name} if task.sector else None,
        "creator": {
            "id": str(task.creator_id) if task.creator_id else None,
            "name": names.get(task.creator_id),
        },
        "assignees": [
            {
                "user_id": str(a.user_id),
                "name": names.get(a.user_id),
                "completed": a.completed,
                "completed_at": a.completed_at.isoformat() if a.completed_at else None,
            }
            for a in task.assignees
        ],
        "created_at": task.created_at.isoformat(),
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }
    if ctx is not None:
        can_act = can_act_on_task(task, ctx)
        data["permissions"] = {
            "can_conclude": can_act and not is_terminal(task.status),
            "can_postpone": can_act and not is_terminal(task.status),
            "can_cancel": can_act and not is_terminal(task.status),
        }
    return data


def serialize_tasks(db: Session, tasks: List[Task], ctx: Optional[SessionContext] = None) -> List[Dict[str, Any]]:
    """Serialize a listing with one profile lookup for every creator and assignee in it."""
    names = _resolve_names(db, [uid for t in tasks for uid in [t.creator_id] + [a.user_id for a in t.assignees]])
    return [serialize_task(db, t, ctx, names=names) for t in tasks]
