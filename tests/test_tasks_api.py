import pytest
from sqlalchemy import event

from itinerario.models.models import TaskHistory


@pytest.fixture
def team(make_user):
    return {
        "admin": make_user(role="admin", name="Admin"),
        "applier": make_user(role="task_applier", name="Aplicador"),
        "worker": make_user(role="employee", name="Wagner"),
        "outsider": make_user(role="employee", name="Otávio"),
    }


def _create(client, headers, creator, **overrides):
    payload = {
        "type": "entrega",
        "priority": "alta",
        "client_name": "Fazenda Santa Rita",
        "client_address": "Estrada Municipal, km 4",
        "scheduled_date": "2026-10-21",
        "scheduled_time": "09:30",
        "value": "1500.50",
    }
    payload.update(overrides)
    return client.post("/tasks", json=payload, headers=headers(creator))


class TestCreate:
    def test_task_manager_creates_pending_task(self, client, headers, team):
        resp = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)])
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pendente"
        assert body["client"]["name"] == "Fazenda Santa Rita"
        assert body["value"] == 1500.5
        assert body["creator"]["name"] == "Aplicador"
        assert [a["name"] for a in body["assignees"]] == ["Wagner"]
        assert body["assignees"][0]["completed"] is False

    def test_creation_is_recorded_in_history(self, client, db, headers, team):
        body = _create(client, headers, team["applier"]).json()
        history = client.get(f"/tasks/{body['id']}/history", headers=headers(team["applier"])).json()
        assert [h["action"] for h in history] == ["Tarefa criada"]
        assert history[0]["details"] == {"type": "entrega", "priority": "alta"}

    def test_employee_cannot_create(self, client, headers, team):
        assert _create(client, headers, team["worker"]).status_code == 403

    def test_type_is_required(self, client, headers, team):
        resp = _create(client, headers, team["applier"], type=None)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Selecione o tipo da tarefa"

    def test_client_name_is_required(self, client, headers, team):
        resp = _create(client, headers, team["applier"], client_name="  ")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Informe o nome do cliente"

    def test_unknown_assignee(self, client, headers, team):
        resp = _create(client, headers, team["applier"], assignee_ids=["7f0c6a9e-0000-4000-8000-000000000000"])
        assert resp.status_code == 400


class TestVisibility:
    def test_employee_sees_only_own_tasks(self, client, headers, team):
        mine = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        _create(client, headers, team["applier"], client_name="Outro Cliente")

        listing = client.get("/tasks", headers=headers(team["worker"])).json()
        assert listing["count"] == 1
        assert listing["results"][0]["id"] == mine["id"]

        everything = client.get("/tasks", headers=headers(team["applier"])).json()
        assert everything["count"] == 2

    def test_outsider_gets_403(self, client, headers, team):
        task = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        assert client.get(f"/tasks/{task['id']}", headers=headers(team["outsider"])).status_code == 403

    def test_filters(self, client, headers, team):
        _create(client, headers, team["applier"], type="venda")
        _create(client, headers, team["applier"], type="entrega")
        listing = client.get("/tasks", params={"type": "venda"}, headers=headers(team["admin"])).json()
        assert listing["count"] == 1
        listing = client.get("/tasks", params={"status": "concluida"}, headers=headers(team["admin"])).json()
        assert listing["count"] == 0

    def test_unknown_task(self, client, headers, team):
        resp = client.get("/tasks/6c1c9a36-5f7e-4c1e-9a43-0f1d7b7f2d11", headers=headers(team["admin"]))
        assert resp.status_code == 404

    def test_requires_token(self, client):
        assert client.get("/tasks").status_code == 401


class TestListing:
    def _count_statements(self, db, call):
        statements = []

        def _record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        engine = db.get_bind()
        event.listen(engine, "before_cursor_execute", _record)
        try:
            call()
        finally:
            event.remove(engine, "before_cursor_execute", _record)
        return len(statements)

    def test_statement_count_does_not_grow_with_the_listing(self, client, db, headers, team, make_task):
        applier = team["applier"]
        h = headers(applier)
        make_task(creator=applier, assignees=[team["worker"]])
        single = self._count_statements(db, lambda: client.get("/tasks", headers=h))

        for _ in range(4):
            make_task(creator=team["admin"], assignees=[team["worker"], team["outsider"]])
        listing = client.get("/tasks", headers=h).json()
        assert listing["count"] == 5
        assert all(len(t["assignees"]) >= 1 and t["assignees"][0]["name"] for t in listing["results"])
        assert self._count_statements(db, lambda: client.get("/tasks", headers=h)) == single

    def test_permissions_follow_assignment(self, client, headers, team, make_task):
        make_task(creator=team["applier"], assignees=[team["worker"]], client_name="Minha")
        make_task(creator=team["applier"], client_name="Alheia")
        results = client.get("/tasks", headers=headers(team["admin"])).json()["results"]
        assert all(t["permissions"]["can_conclude"] for t in results)

        mine = client.get("/tasks", headers=headers(team["worker"])).json()["results"]
        assert [(t["client"]["name"], t["permissions"]["can_conclude"]) for t in mine] == [("Minha", True)]


class TestTransitions:
    def test_assignee_concludes_then_further_changes_conflict(self, client, headers, team):
        task = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        h = headers(team["worker"])

        resp = client.post(f"/tasks/{task['id']}/concluir", headers=h)
        assert resp.status_code == 200
        assert resp.json()["status"] == "concluida"
        assert resp.json()["permissions"]["can_conclude"] is False

        resp = client.post(
            f"/tasks/{task['id']}/adiar",
            json={"new_date": "2026-10-30", "justification": "chuva"},
            headers=h,
        )
        assert resp.status_code == 409

    def test_postpone_validation_and_success(self, client, headers, team):
        task = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        h = headers(team["worker"])

        resp = client.post(f"/tasks/{task['id']}/adiar", json={"new_date": "2026-10-30"}, headers=h)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Informe a justificativa para adiar"

        resp = client.post(
            f"/tasks/{task['id']}/adiar",
            json={"new_date": "2026-10-30", "justification": "Estrada interditada"},
            headers=h,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "adiada"
        assert body["scheduled_date"] == "2026-10-30"
        assert body["status_justification"] == "Estrada interditada"

    def test_cancel_requires_justification(self, client, headers, team):
        task = _create(client, headers, team["applier"]).json()
        h = headers(team["applier"])
        assert client.post(f"/tasks/{task['id']}/cancelar", json={}, headers=h).status_code == 400
        resp = client.post(f"/tasks/{task['id']}/cancelar", json={"justification": "duplicada"}, headers=h)
        assert resp.json()["status"] == "cancelada"

    def test_more_options_menu(self, client, headers, team):
        task = _create(client, headers, team["applier"]).json()
        h = headers(team["applier"])
        resp = client.post(f"/tasks/{task['id']}/status", json={"status": "em_andamento"}, headers=h)
        assert resp.json()["status"] == "em_andamento"
        resp = client.post(f"/tasks/{task['id']}/status", json={"status": "adiada"}, headers=h)
        assert resp.status_code == 400

    def test_non_acting_viewer_cannot_change_status(self, client, headers, team):
        task = _create(client, headers, team["admin"]).json()
        resp = client.post(f"/tasks/{task['id']}/concluir", headers=headers(team["applier"]))
        assert resp.status_code == 403

    def test_status_change_and_history_are_written_together(self, client, db, headers, team):
        task = _create(client, headers, team["applier"]).json()
        client.post(f"/tasks/{task['id']}/concluir", headers=headers(team["applier"]))
        actions = [h.action for h in db.query(TaskHistory).order_by(TaskHistory.created_at.asc()).all()]
        assert actions == ["Tarefa criada", "Status alterado para: concluida"]


class TestAssignees:
    def test_individual_completion_does_not_change_task_status(self, client, headers, team):
        task = _create(
            client, headers, team["applier"],
            assignee_ids=[str(team["worker"].id), str(team["outsider"].id)],
        ).json()
        resp = client.post(f"/tasks/{task['id']}/assignees/me/complete", json={}, headers=headers(team["worker"]))
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "pendente"
        done = {a["name"]: a["completed"] for a in body["assignees"]}
        assert done == {"Wagner": True, "Otávio": False}

    def test_only_assignees_complete_individually(self, client, headers, team):
        task = _create(client, headers, team["applier"]).json()
        resp = client.post(f"/tasks/{task['id']}/assignees/me/complete", json={}, headers=headers(team["admin"]))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Você não é responsável por esta tarefa"

    def test_replace_assignees(self, client, headers, team):
        task = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        resp = client.put(
            f"/tasks/{task['id']}/assignees",
            json={"user_ids": [str(team["outsider"].id)]},
            headers=headers(team["applier"]),
        )
        assert resp.status_code == 200
        assert [a["name"] for a in resp.json()["assignees"]] == ["Otávio"]
        history = client.get(f"/tasks/{task['id']}/history", headers=headers(team["applier"])).json()
        assert history[0]["action"] == "Responsáveis alterados"

    def test_creator_assigning_themselves_is_notified(self, client, headers, team, monkeypatch):
        notified = []
        monkeypatch.setattr(
            "itinerario.routes.tasks.notify_assignments",
            lambda db, user_ids, task, now=None: notified.append(list(user_ids)),
        )
        applier, worker = team["applier"], team["worker"]
        task = _create(client, headers, applier, assignee_ids=[str(applier.id), str(worker.id)]).json()
        assert notified == [[applier.id, worker.id]]

        client.put(
            f"/tasks/{task['id']}/assignees",
            json={"user_ids": [str(worker.id), str(team["admin"].id)]},
            headers=headers(team["admin"]),
        )
        assert notified[-1] == [team["admin"].id]


class TestComments:
    def test_post_and_list(self, client, headers, team):
        task = _create(client, headers, team["applier"], assignee_ids=[str(team["worker"].id)]).json()
        h = headers(team["worker"])
        assert client.post(f"/tasks/{task['id']}/comments", json={"content": "  "}, headers=h).status_code == 400
        resp = client.post(f"/tasks/{task['id']}/comments", json={"content": "Chegando às 10h"}, headers=h)
        assert resp.status_code == 201
        comments = client.get(f"/tasks/{task['id']}/comments", headers=h).json()
        assert [(c["user"]["name"], c["content"]) for c in comments] == [("Wagner", "Chegando às 10h")]
