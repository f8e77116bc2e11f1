from datetime import date, datetime, time, timedelta

import pytest

from itinerario.main import app
from itinerario.routes.notifications import get_notification_gate
from itinerario.services.business_hours import BusinessHours
from itinerario.services.notifications import NotificationGate


@pytest.fixture
def always_open():
    hours = BusinessHours(tz_name="UTC", windows={d: (time(0, 0), time.max) for d in range(7)})
    app.dependency_overrides[get_notification_gate] = lambda: NotificationGate(hours=hours)
    yield
    app.dependency_overrides.pop(get_notification_gate, None)


class TestDashboard:
    def test_stats_cover_visible_tasks_only(self, client, headers, make_user, make_task):
        manager = make_user(role="task_applier")
        worker = make_user(role="employee", name="Joana")
        make_task(creator=manager, assignees=[worker])
        make_task(creator=manager, assignees=[worker], status="concluida")
        make_task(creator=manager, deadline=datetime.utcnow() - timedelta(days=1))

        body = client.get("/dashboard/stats", headers=headers(worker)).json()
        assert body["greeting_name"] == "Joana"
        assert body["stats"]["total"] == 2
        assert body["stats"]["concluida"] == 1
        assert body["stats"]["atrasadas"] == 0

        stats = client.get("/dashboard/stats", headers=headers(manager)).json()["stats"]
        assert stats["total"] == 3
        assert stats["atrasadas"] == 1

    def test_productivity_is_for_task_managers(self, client, headers, make_user):
        worker = make_user(role="employee")
        assert client.get("/dashboard/productivity", headers=headers(worker)).status_code == 403

    def test_invalid_period(self, client, headers, make_user):
        admin = make_user(role="admin")
        resp = client.get("/dashboard/productivity", params={"period": "decade"}, headers=headers(admin))
        assert resp.status_code == 400

    def test_completion_rate_per_employee(self, client, db, headers, make_user, make_task):
        admin = make_user(role="admin", name="Admin")
        ana = make_user(name="Ana")
        bia = make_user(name="Bia")
        day = date(2026, 10, 20)
        first = make_task(creator=admin, assignees=[ana, bia], scheduled_date=day)
        make_task(creator=admin, assignees=[bia], scheduled_date=day)
        make_task(creator=admin, assignees=[ana], scheduled_date=date(2026, 12, 1))
        for a in first.assignees:
            if a.user_id == ana.id:
                a.completed = True
        db.commit()

        resp = client.get(
            "/dashboard/productivity",
            params={"period": "week", "reference": "2026-10-22"},
            headers=headers(admin),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["start"] == "2026-10-19"
        assert body["end"] == "2026-10-25"
        assert body["tasks"] == 2
        rates = {e["name"]: (e["completed"], e["total"], e["rate"]) for e in body["employees"]}
        assert rates["Ana"] == (1, 1, 1.0)
        assert rates["Bia"] == (0, 2, 0.0)
        assert rates["Admin"] == (0, 0, 0.0)

    def test_unscheduled_tasks_fall_into_the_period_they_were_created_in(self, client, headers, make_user, make_task):
        admin = make_user(role="admin", name="Admin")
        ana = make_user(name="Ana")
        make_task(creator=admin, assignees=[ana], created_at=datetime(2026, 10, 20, 12, 0))
        make_task(creator=admin, assignees=[ana], created_at=datetime(2026, 10, 26, 0, 0))
        make_task(creator=admin, assignees=[ana], created_at=datetime(2026, 10, 18, 23, 59))

        body = client.get(
            "/dashboard/productivity",
            params={"period": "week", "reference": "2026-10-22"},
            headers=headers(admin),
        ).json()
        assert body["tasks"] == 1
        assert [(e["name"], e["total"]) for e in body["employees"] if e["name"] == "Ana"] == [("Ana", 1)]

        everything = client.get("/dashboard/productivity", params={"period": "all"}, headers=headers(admin)).json()
        assert everything["tasks"] == 3


class TestCalendar:
    def test_week_grid_starts_on_monday(self, client, headers, make_user, make_task):
        worker = make_user()
        make_task(creator=worker, scheduled_date=date(2026, 10, 19), scheduled_time="14:00", client_name="B")
        make_task(creator=worker, scheduled_date=date(2026, 10, 19), scheduled_time="08:00", client_name="A")
        make_task(creator=worker, scheduled_date=date(2026, 10, 24), client_name="Sábado")
        make_task(creator=worker, scheduled_date=date(2026, 10, 25), client_name="Domingo")

        body = client.get("/calendar/week", params={"start": "2026-10-21"}, headers=headers(worker)).json()
        assert body["week_start"] == "2026-10-19"
        assert body["week_end"] == "2026-10-24"
        assert len(body["days"]) == 6
        assert body["total"] == 3
        assert [t["client_name"] for t in body["days"][0]["tasks"]] == ["A", "B"]
        assert [t["client_name"] for t in body["days"][5]["tasks"]] == ["Sábado"]

    def test_maps_link(self, client, headers, make_user, make_task):
        worker = make_user()
        make_task(
            creator=worker,
            scheduled_date=date(2026, 10, 20),
            client_address="Rua das Flores 10",
            client_cep="38400-000",
        )
        body = client.get("/calendar/week", params={"start": "2026-10-20"}, headers=headers(worker)).json()
        (item,) = body["days"][1]["tasks"]
        assert item["maps_url"].startswith("https://www.google.com/maps/search/?api=1&query=")
        assert "38400-000" in item["maps_url"]


class TestNotificationsApi:
    def test_check_fires_once(self, client, headers, make_user, make_task, always_open):
        worker = make_user()
        make_task(creator=worker, client_name="Cliente Único")
        h = headers(worker)

        first = client.post("/notifications/check", headers=h).json()["notification"]
        assert first["kind"] == "pending_reminder"
        assert first["body"] == "Você tem 1 tarefa pendente: Cliente Único"
        assert client.post("/notifications/check", headers=h).json() == {"notification": None}

        listing = client.get("/notifications", params={"unread_only": True}, headers=h).json()
        assert [n["id"] for n in listing] == [first["id"]]

        assert client.post(f"/notifications/{first['id']}/read", headers=h).json() == {"updated": 1}
        assert client.get("/notifications", params={"unread_only": True}, headers=h).json() == []
        assert client.post("/notifications/read-all", headers=h).json() == {"updated": 0}

    def test_reading_unknown_notification(self, client, headers, make_user):
        worker = make_user()
        resp = client.post("/notifications/6c1c9a36-5f7e-4c1e-9a43-0f1d7b7f2d11/read", headers=headers(worker))
        assert resp.status_code == 404
