import uuid
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from ..auth.security import SessionContext, get_session_context, require_task_manager
from ..db import get_db
from ..models.models import Profile, Task, TaskAssignee
from ..services import reports
from ..services.task_service import visible_tasks_query


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def _filter_period(query: Query, start: Optional[date], end: Optional[date]) -> Query:
    """A task belongs to the day it is scheduled for, or to the day it was created when unscheduled."""
    if start is None or end is None:
        return query
    after = datetime.combine(end + timedelta(days=1), time.min)
    return query.filter(
        or_(
            Task.scheduled_date.between(start, end),
            and_(
                Task.scheduled_date.is_(None),
                Task.created_at >= datetime.combine(start, time.min),
                Task.created_at < after,
            ),
        )
    )


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), ctx: SessionContext = Depends(get_session_context)):
    tasks = visible_tasks_query(db, ctx.user_id, ctx.roles).all()
    return {
        "greeting_name": ctx.display_name,
        "stats": reports.dashboard_stats(tasks),
    }


@router.get("/productivity")
def productivity(
    period: str = "week",
    reference: Optional[date] = None,
    sector_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _: SessionContext = Depends(require_task_manager),
):
    """Per-employee completion rate over the tasks of the selected period."""
    try:
        start, end = reports.period_range(period, reference)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Período inválido: {period}")

    tasks = _filter_period(db.query(Task), start, end).all()
    assignees = []
    if tasks:
        assignees = db.query(TaskAssignee).filter(TaskAssignee.task_id.in_([t.id for t in tasks])).all()

    profiles = db.query(Profile)
    if sector_id:
        profiles = profiles.filter(Profile.sector_id == sector_id)
    names = {p.user_id: p.name for p in profiles.all()}
    if sector_id:
        assignees = [a for a in assignees if a.user_id in names]

    return {
        "period": period,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
        "tasks": len(tasks),
        "summary": reports.dashboard_stats(tasks),
        "employees": reports.completion_rates(assignees, names),
    }
