"""
Notification service for pending-task reminders and new assignments.
Respects business hours and fires at most one reminder per user per calendar hour.
"""
import uuid
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import Notification, NotificationMarker, Task
from .business_hours import BusinessHours
from .task_service import pending_tasks_for_user


logger = structlog.get_logger(__name__)

PendingFetcher = Callable[[Session, uuid.UUID], List[Task]]


def reminder_text(tasks: List[Task]) -> str:
    if len(tasks) == 1:
        return f"Você tem 1 tarefa pendente: {tasks[0].client_name}"
    return f"Você tem {len(tasks)} tarefas pendentes ou em andamento"


class NotificationGate:
    """
    Hourly pending-task reminder.

    Outside business hours the pending-task check is never run. Inside, the
    user's marker records the hour bucket of the last reminder so a second
    run in the same hour (client poll, reload, background job) does nothing.
    """

    def __init__(
        self,
        hours: Optional[BusinessHours] = None,
        pending_fetcher: Optional[PendingFetcher] = None,
    ):
        self.hours = hours or BusinessHours.from_settings()
        self.pending_fetcher = pending_fetcher or pending_tasks_for_user

    def run(self, db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> Optional[Notification]:
        try:
            return self._run(db, user_id, now)
        except Exception:
            db.rollback()
            logger.warning("reminder_check_failed", user_id=str(user_id), exc_info=True)
            return None

    def _run(self, db: Session, user_id: uuid.UUID, now: Optional[datetime]) -> Optional[Notification]:
        local = self.hours.localize(now)
        if not self.hours.is_open(local):
            return None
        bucket = self.hours.hour_bucket(local)
        marker = db.get(NotificationMarker, user_id)
        if marker is not None and marker.last_hour == bucket:
            return None

        tasks = self.pending_fetcher(db, user_id)
        if not tasks:
            return None
        if not self._claim_hour(db, user_id, bucket):
            logger.info("reminder_hour_already_claimed", user_id=str(user_id), hour=bucket)
            return None

        notification = Notification(
            user_id=user_id,
            kind="pending_reminder",
            title="🔔 Maqz Itinerário",
            body=reminder_text(tasks),
            payload={"count": len(tasks), "task_ids": [str(t.id) for t in tasks[:20]], "hour": bucket},
            created_at=datetime.utcnow(),
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        logger.info("reminder_fired", user_id=str(user_id), count=len(tasks), hour=bucket)
        return notification

    def _claim_hour(self, db: Session, user_id: uuid.UUID, bucket: str) -> bool:
        """
        Move the user's marker to `bucket` inside the current transaction.

        Returns False when another run already holds this hour: the conditional
        UPDATE matched no row, or the first insert hit the primary key.
        """
        result = db.execute(
            update(NotificationMarker)
            .where(NotificationMarker.user_id == user_id, NotificationMarker.last_hour != bucket)
            .values(last_hour=bucket, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True
        if db.query(NotificationMarker.user_id).filter(NotificationMarker.user_id == user_id).first():
            db.rollback()
            return False
        try:
            db.add(NotificationMarker(user_id=user_id, last_hour=bucket, updated_at=datetime.utcnow()))
            db.flush()
        except IntegrityError:
            db.rollback()
            return False
        return True


def notify_assignment(
    db: Session,
    user_id: uuid.UUID,
    task: Task,
    now: Optional[datetime] = None,
    hours: Optional[BusinessHours] = None,
) -> Optional[Notification]:
    """Tell a user they were assigned to a task. Skipped outside business hours."""
    try:
        hours = hours or BusinessHours.from_settings()
        if not hours.is_open(now):
            return None
        notification = Notification(
            user_id=user_id,
            kind="task_assigned",
            title="📋 Nova tarefa atribuída!",
            body=f"Você recebeu uma nova tarefa: {task.client_name}",
            payload={"task_id": str(task.id), "type": task.type},
            created_at=datetime.utcnow(),
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification
    except Exception:
        db.rollback()
        logger.warning("assignment_notification_failed", user_id=str(user_id), task_id=str(task.id), exc_info=True)
        return None


def notify_assignments(db: Session, user_ids: List[uuid.UUID], task: Task, now: Optional[datetime] = None) -> int:
    sent = 0
    for uid in user_ids:
        if notify_assignment(db, uid, task, now=now) is not None:
            sent += 1
    return sent


def list_notifications(db: Session, user_id: uuid.UUID, limit: int = 50, unread_only: bool = False) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, user_id: uuid.UUID, notification_id: Optional[uuid.UUID] = None) -> int:
    query = db.query(Notification).filter(Notification.user_id == user_id, Notification.read_at.is_(None))
    if notification_id is not None:
        query = query.filter(Notification.id == notification_id)
    count = query.update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    db.commit()
    return int(count)


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": str(n.id),
        "kind": n.kind,
        "title": n.title,
        "body": n.body,
        "payload": n.payload or {},
        "read": n.read_at is not None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }
