import threading
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import User
from .notifications import NotificationGate


logger = structlog.get_logger(__name__)


class ReminderScheduler:
    """
    Background thread that runs the pending-task reminder for every active user.

    First run after `initial_delay` seconds, then every `interval` seconds until stop().
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        gate: Optional[NotificationGate] = None,
        initial_delay: float = 5,
        interval: float = 3600,
    ):
        self.session_factory = session_factory
        self.gate = gate or NotificationGate()
        self.initial_delay = initial_delay
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("reminder_scheduler_already_running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reminder-scheduler", daemon=True)
        self._thread.start()
        logger.info("reminder_scheduler_started", initial_delay=self.initial_delay, interval=self.interval)

    def stop(self, timeout: float = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("reminder_scheduler_stopped")

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Run the gate for all active users. Returns how many reminders fired."""
        fired = 0
        db = self.session_factory()
        try:
            user_ids = [uid for (uid,) in db.query(User.id).filter(User.is_active.is_(True)).all()]
            for uid in user_ids:
                if self.gate.run(db, uid, now=now) is not None:
                    fired += 1
        finally:
            db.close()
        return fired

    def _loop(self) -> None:
        if self._stop.wait(self.initial_delay):
            return
        while not self._stop.is_set():
            try:
                fired = self.run_once()
                logger.info("reminder_sweep_done", fired=fired)
            except Exception:
                logger.warning("reminder_sweep_failed", exc_info=True)
            if self._stop.wait(self.interval):
                return
