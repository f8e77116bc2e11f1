from datetime import date, timedelta
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import SessionContext, get_session_context
from ..db import get_db
from ..models.models import Task
from ..services import reports
from ..services.business_hours import BusinessHours
from ..services.task_service import visible_tasks_query


router = APIRouter(prefix="/calendar", tags=["calendar"])


def maps_url(address: Optional[str], cep: Optional[str] = None) -> Optional[str]:
    query = ", ".join(part for part in (address, cep) if part)
    if not query:
        return None
    return f"https://www.google.com/maps/search/?api=1&query={quote(query)}"


def _calendar_item(task: Task) -> dict:
    return {
        "id": str(task.id),
        "type": task.type,
        "priority": task.priority,
        "status": task.status,
        "client_name": task.client_name,
        "client_address": task.client_address,
        "maps_url": maps_url(task.client_address, task.client_cep),
        "machine": task.machine,
        "scheduled_time": task.scheduled_time,
        "deadline": task.deadline.isoformat() if task.deadline else None,
        "overdue": reports.is_overdue(task),
    }


@router.get("/week")
def calendar_week(
    start: Optional[date] = None,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context),
):
    today = BusinessHours.from_settings().localize().date()
    week_start = reports.week_start_for(start or today)
    week_end = week_start + timedelta(days=reports.GRID_DAYS - 1)
    tasks = (
        visible_tasks_query(db, ctx.user_id, ctx.roles)
        .filter(Task.scheduled_date >= week_start, Task.scheduled_date <= week_end)
        .all()
    )
    grid = reports.week_grid(tasks, week_start)
    return {
        "week_start": week_start.isoformat(),
        "week_end": week_end.isoformat(),
        "total": len(tasks),
        "overdue": reports.overdue_count(tasks),
        "days": [
            {
                "date": day["date"].isoformat(),
                "is_today": day["date"] == today,
                "tasks": [_calendar_item(t) for t in day["tasks"]],
            }
            for day in grid
        ],
    }
