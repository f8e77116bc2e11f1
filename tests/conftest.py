"""
Test configuration: repo root on sys.path, an isolated in-memory database per test,
and helpers to create users, tasks and bearer headers.

Environment overrides are applied before the app package is imported so the
module-level settings pick them up.
"""
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("REMINDER_ENABLED", "false")
os.environ.setdefault("ENABLE_METRICS", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("JWT_SECRET", "test-secret-with-at-least-thirty-two-bytes")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from itinerario.auth.security import create_access_token, get_password_hash  # noqa: E402
from itinerario.db import Base, get_db  # noqa: E402
from itinerario.main import app  # noqa: E402
from itinerario.models.models import Profile, Task, TaskAssignee, User, UserRole  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="employee", name=None, email=None, password="senha123", sector_id=None, with_role=True):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"user{n}@maqz.com.br",
            password_hash=get_password_hash(password),
            is_active=True,
            created_at=datetime.utcnow(),
        )
        db.add(user)
        db.flush()
        if with_role:
            db.add(UserRole(user_id=user.id, role=role))
        db.add(Profile(user_id=user.id, name=name or f"Usuário {n}", sector_id=sector_id))
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_task(db):
    def _make(creator=None, assignees=(), **fields):
        values = {
            "type": "entrega",
            "priority": "media",
            "status": "pendente",
            "client_name": "Cliente Teste",
            "created_at": datetime.utcnow(),
            "updated_at": datetime.utcnow(),
        }
        values.update(fields)
        task = Task(creator_id=creator.id if creator else None, **values)
        db.add(task)
        db.flush()
        for user in assignees:
            db.add(TaskAssignee(task_id=task.id, user_id=user.id))
        db.commit()
        db.refresh(task)
        return task

    return _make


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def headers():
    return auth_headers
