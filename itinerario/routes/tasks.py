import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, selectinload

from ..auth.security import SessionContext, get_session_context, require_task_manager
from ..db import get_db
from ..errors import TaskTransitionError, TaskValidationError
from ..models.models import Task, TaskAssignee
from ..schemas.tasks import (
    AssigneeCompleteRequest,
    AssigneesUpdate,
    CancelRequest,
    CommentCreate,
    PostponeRequest,
    StatusChangeRequest,
    TaskCreate,
)
from ..services import task_lifecycle
from ..services.history import get_task_history, serialize_history
from ..services.notifications import notify_assignments
from ..services.task_service import (
    add_comment,
    can_act_on_task,
    can_view_task,
    create_task,
    list_comments,
    replace_assignees,
    serialize_task,
    serialize_tasks,
    set_assignment_completed,
    visible_tasks_query,
)


router = APIRouter(prefix="/tasks", tags=["tasks"])


def _domain_error(exc: Exception) -> HTTPException:
    return HTTPException(status_code=getattr(exc, "status_code", 400), detail=str(exc))


def _get_task(task_id: str, db: Session) -> Task:
    try:
        task_uuid = uuid.UUID(str(task_id))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid task id") from exc
    task = db.query(Task).filter(Task.id == task_uuid).first()
    if not task:
        raise HTTPException(status_code=404, detail="Tarefa não encontrada")
    return task


def _get_visible_task(task_id: str, db: Session, ctx: SessionContext) -> Task:
    task = _get_task(task_id, db)
    if not can_view_task(task, ctx):
        raise HTTPException(status_code=403, detail="Você não tem acesso a esta tarefa")
    return task


def _get_actionable_task(task_id: str, db: Session, ctx: SessionContext) -> Task:
    task = _get_visible_task(task_id, db, ctx)
    if not can_act_on_task(task, ctx):
        raise HTTPException(status_code=403, detail="Você não pode alterar esta tarefa")
    return task


@router.get("")
def list_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    type: Optional[str] = None,
    sector_id: Optional[uuid.UUID] = None,
    assigned_to_me: bool = False,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    query = visible_tasks_query(db, ctx.user_id, ctx.roles)
    if status_filter:
        query = query.filter(Task.status == status_filter)
    if type:
        query = query.filter(Task.type == type)
    if sector_id:
        query = query.filter(Task.sector_id == sector_id)
    if assigned_to_me:
        mine = db.query(TaskAssignee.task_id).filter(TaskAssignee.user_id == ctx.user_id)
        query = query.filter(Task.id.in_(mine))
    tasks = (
        query.options(selectinload(Task.assignees), selectinload(Task.sector))
        .order_by(Task.created_at.desc())
        .all()
    )
    return {
        "count": len(tasks),
        "results": serialize_tasks(db, tasks, ctx),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task_endpoint(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(require_task_manager),
):
    try:
        task, assignee_ids = create_task(db, payload, ctx.user_id)
    except TaskValidationError as exc:
        raise _domain_error(exc)
    notify_assignments(db, assignee_ids, task)
    return serialize_task(db, task, ctx)


@router.get("/{task_id}")
def get_task(task_id: str, db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    task = _get_visible_task(task_id, db, ctx)
    return serialize_task(db, task, ctx)


@router.get("/{task_id}/history")
def task_history(task_id: str, db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    task = _get_visible_task(task_id, db, ctx)
    return [serialize_history(h) for h in get_task_history(db, task.id)]


@router.post("/{task_id}/concluir")
def conclude(task_id: str, db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    task = _get_actionable_task(task_id, db, ctx)
    try:
        task = task_lifecycle.conclude_task(db, task, ctx.user_id)
    except (TaskValidationError, TaskTransitionError) as exc:
        raise _domain_error(exc)
    return serialize_task(db, task, ctx)


@router.post("/{task_id}/adiar")
def postpone(
    task_id: str,
    payload: PostponeRequest,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    task = _get_actionable_task(task_id, db, ctx)
    try:
        task = task_lifecycle.postpone_task(db, task, ctx.user_id, payload.new_date, payload.justification)
    except (TaskValidationError, TaskTransitionError) as exc:
        raise _domain_error(exc)
    return serialize_task(db, task, ctx)


@router.post("/{task_id}/cancelar")
def cancel(
    task_id: str,
    payload: CancelRequest,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    task = _get_actionable_task(task_id, db, ctx)
    try:
        task = task_lifecycle.cancel_task(db, task, ctx.user_id, payload.justification)
    except (TaskValidationError, TaskTransitionError) as exc:
        raise _domain_error(exc)
    return serialize_task(db, task, ctx)


@router.post("/{task_id}/status")
def change_status(
    task_id: str,
    payload: StatusChangeRequest,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    task = _get_actionable_task(task_id, db, ctx)
    try:
        task = task_lifecycle.change_status(db, task, ctx.user_id, payload.status, payload.justification)
    except (TaskValidationError, TaskTransitionError) as exc:
        raise _domain_error(exc)
    return serialize_task(db, task, ctx)


@router.put("/{task_id}/assignees")
def update_assignees(
    task_id: str,
    payload: AssigneesUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(require_task_manager),
):
    task = _get_task(task_id, db)
    try:
        added = replace_assignees(db, task, payload.user_ids, ctx.user_id)
    except TaskValidationError as exc:
        raise _domain_error(exc)
    notify_assignments(db, added, task)
    return serialize_task(db, task, ctx)


@router.post("/{task_id}/assignees/me/complete")
def complete_my_assignment(
    task_id: str,
    payload: AssigneeCompleteRequest,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    task = _get_visible_task(task_id, db, ctx)
    try:
        set_assignment_completed(db, task, ctx.user_id, payload.completed)
    except TaskValidationError as exc:
        raise _domain_error(exc)
    db.refresh(task)
    return serialize_task(db, task, ctx)


@router.get("/{task_id}/comments")
def get_comments(task_id: str, db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    task = _get_visible_task(task_id, db, ctx)
    return list_comments(db, task.id)


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
def post_comment(
    task_id: str,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
) -> Dict[str, Any]:
    task = _get_visible_task(task_id, db, ctx)
    try:
        comment = add_comment(db, task, ctx.user_id, payload.content)
    except TaskValidationError as exc:
        raise _domain_error(exc)
    return {"id": str(comment.id), "content": comment.content, "created_at": comment.created_at.isoformat()}
