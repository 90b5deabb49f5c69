"""
Tests for the REST routes and the /ws endpoint, through the FastAPI TestClient.
"""

from datetime import datetime, timedelta, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from models import Notification, Task, TaskActivity

from conftest import make_activity, make_task, make_user


def as_user(user):
    return {"X-User-Id": str(user.id)}


@pytest.fixture
def admin(db):
    return make_user(db, "boss", role="admin")


@pytest.fixture
def ada(db):
    return make_user(db, "ada", full_name="Ada Lovelace")


class TestIdentity:
    def test_missing_header_is_rejected(self, app_client):
        response = app_client.get("/api/tasks")
        assert response.status_code == 401

    def test_unknown_user_is_rejected(self, app_client):
        response = app_client.get("/api/tasks", headers={"X-User-Id": "4242"})
        assert response.status_code == 401

    def test_inactive_user_is_rejected(self, app_client, db, ada):
        ada.active = False
        db.commit()
        response = app_client.get("/api/tasks", headers=as_user(ada))
        assert response.status_code == 401


class TestTaskRoutes:
    def test_admin_creates_task_and_assignee_is_notified(self, app_client, db, admin, ada):
        response = app_client.post(
            "/api/tasks",
            json={"title": "Draft budget", "priority": "high", "assignedTo": ada.id, "deadline": "2025-06-01T12:00:00Z"},
            headers=as_user(admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["assignedTo"] == ada.id
        assert body["assignedBy"] == admin.id
        assert body["completedAt"] is None

        db.expire_all()
        notifications = db.query(Notification).filter(Notification.user_id == ada.id).all()
        assert [n.type for n in notifications] == ["task_assigned"]

    def test_member_cannot_create_task(self, app_client, ada):
        response = app_client.post(
            "/api/tasks",
            json={"title": "Draft budget", "priority": "high", "assignedTo": ada.id},
            headers=as_user(ada),
        )
        assert response.status_code == 403

    def test_create_task_validates_input(self, app_client, admin, ada):
        response = app_client.post(
            "/api/tasks",
            json={"title": "", "priority": "urgent", "assignedTo": ada.id},
            headers=as_user(admin),
        )
        assert response.status_code == 422

    def test_create_task_for_unknown_assignee(self, app_client, admin):
        response = app_client.post(
            "/api/tasks",
            json={"title": "Draft budget", "priority": "low", "assignedTo": 999},
            headers=as_user(admin),
        )
        assert response.status_code == 404

    def test_list_only_my_tasks(self, app_client, db, ada):
        bob = make_user(db, "bob")
        make_task(db, ada, title="Mine")
        make_task(db, bob, title="Not mine")

        response = app_client.get("/api/tasks", headers=as_user(ada))

        assert response.status_code == 200
        assert [t["title"] for t in response.json()] == ["Mine"]
        assert response.json()[0]["priority"] == "medium"

    def test_illegal_status_change_is_rejected(self, app_client, db, ada):
        task = make_task(db, ada, status="completed")

        response = app_client.put(f"/api/tasks/{task.id}", json={"status": "cancelled"}, headers=as_user(ada))

        assert response.status_code == 400
        assert "Valid transitions are: pending" in response.json()["detail"]
        db.expire_all()
        assert db.get(Task, task.id).status == "completed"

    def test_status_change_records_activity(self, app_client, db, ada):
        task = make_task(db, ada)

        response = app_client.put(f"/api/tasks/{task.id}", json={"status": "completed"}, headers=as_user(ada))

        assert response.status_code == 200
        assert response.json()["completedAt"] is not None

        activities = app_client.get(f"/api/tasks/{task.id}/activities", headers=as_user(ada)).json()
        assert len(activities) == 1
        assert activities[0]["action"] == "Status changed from pending to completed"
        assert activities[0]["user"] == {"id": ada.id, "username": "ada"}

    def test_update_without_status_change_keeps_trail_clean(self, app_client, db, ada):
        task = make_task(db, ada)

        response = app_client.put(
            f"/api/tasks/{task.id}",
            json={"title": "Renamed", "status": "pending"},
            headers=as_user(ada),
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"
        db.expire_all()
        assert db.query(TaskActivity).count() == 0

    def test_update_missing_task(self, app_client, ada):
        response = app_client.put("/api/tasks/999", json={"status": "completed"}, headers=as_user(ada))
        assert response.status_code == 404

    def test_stats(self, app_client, db, ada):
        now = datetime.now(timezone.utc)
        make_task(db, ada, title="Overdue report", deadline=now - timedelta(days=2), priority="high")
        make_task(db, ada, title="Upcoming", deadline=now + timedelta(days=2), priority="low")
        make_task(db, ada, title="Working", status="in_progress", deadline=now + timedelta(days=1))
        make_task(db, ada, title="Done report", status="completed", completed_at=now)
        make_task(db, ada, title="Old", created_at=now - timedelta(days=40))

        body = app_client.get("/api/tasks/stats", headers=as_user(ada)).json()
        assert (body["pending"], body["completed"], body["overdue"]) == (3, 1, 1)
        assert [t["title"] for t in body["upcomingDeadlines"]][:3] == ["Overdue report", "Working", "Upcoming"]
        assert [t["title"] for t in body["recentlyCompleted"]] == ["Done report"]

        body = app_client.get("/api/tasks/stats", params={"search": "REPORT"}, headers=as_user(ada)).json()
        assert (body["pending"], body["completed"]) == (1, 1)

        body = app_client.get("/api/tasks/stats", params={"priority": "low"}, headers=as_user(ada)).json()
        assert body["pending"] == 1

        body = app_client.get("/api/tasks/stats", params={"dateRange": "week"}, headers=as_user(ada)).json()
        assert body["pending"] == 2

    def test_admin_deletes_task_and_trail(self, app_client, db, admin, ada):
        task = make_task(db, ada)
        make_activity(db, ada, task)
        task_id = task.id

        response = app_client.delete(f"/api/admin/tasks/{task_id}", headers=as_user(admin))

        assert response.status_code == 200
        db.expire_all()
        assert db.get(Task, task_id) is None
        assert db.query(TaskActivity).count() == 0

        response = app_client.delete(f"/api/admin/tasks/{task_id}", headers=as_user(admin))
        assert response.status_code == 404

    def test_admin_clears_task_activities(self, app_client, db, admin, ada):
        task = make_task(db, ada)
        make_activity(db, ada, task)
        make_activity(db, ada, task)

        response = app_client.delete(f"/api/admin/tasks/{task.id}/activities", headers=as_user(admin))

        assert response.status_code == 200
        db.expire_all()
        assert db.query(TaskActivity).count() == 0
        assert db.get(Task, task.id) is not None


class TestAdminUserRoutes:
    def test_paginated_user_list(self, app_client, db, admin):
        for name in ("cy", "ada", "bob"):
            make_user(db, name)

        body = app_client.get("/api/admin/users", params={"page": 2, "limit": 2}, headers=as_user(admin)).json()

        assert [u["username"] for u in body["users"]] == ["boss", "cy"]
        assert body["pagination"] == {"total": 4, "page": 2, "limit": 2, "pages": 2}

    def test_members_cannot_list_users(self, app_client, ada):
        assert app_client.get("/api/admin/users", headers=as_user(ada)).status_code == 403

    def test_user_tasks_and_counts(self, app_client, db, admin, ada):
        make_task(db, ada, deadline=datetime.now(timezone.utc) - timedelta(days=1))
        make_task(db, ada, status="completed")

        tasks = app_client.get(f"/api/admin/users/{ada.id}/tasks", headers=as_user(admin)).json()
        counts = app_client.get(f"/api/admin/users/{ada.id}/tasks/stats", headers=as_user(admin)).json()

        assert len(tasks) == 2
        assert counts == {"pending": 1, "completed": 1, "overdue": 1}

    def test_update_user_role(self, app_client, admin, ada):
        response = app_client.put(f"/api/admin/users/{ada.id}", json={"role": "admin"}, headers=as_user(admin))

        assert response.status_code == 200
        assert response.json()["role"] == "admin"

    def test_admin_cannot_modify_own_account(self, app_client, admin):
        response = app_client.put(f"/api/admin/users/{admin.id}", json={"active": False}, headers=as_user(admin))

        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot modify own account"


class TestNotificationRoutes:
    def _notify(self, db, user, title="Hello"):
        notification = Notification(user_id=user.id, type="info", title=title, message="...")
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    def test_mark_one_read(self, app_client, db, ada):
        notification = self._notify(db, ada)

        response = app_client.post(f"/api/notifications/{notification.id}/mark-read", headers=as_user(ada))

        assert response.status_code == 200
        assert response.json()["read"] is True

    def test_cannot_mark_someone_elses(self, app_client, db, ada):
        bob = make_user(db, "bob")
        notification = self._notify(db, bob)

        response = app_client.post(f"/api/notifications/{notification.id}/mark-read", headers=as_user(ada))

        assert response.status_code == 404

    def test_mark_all_read(self, app_client, db, ada):
        self._notify(db, ada, "one")
        self._notify(db, ada, "two")

        assert app_client.post("/api/notifications/mark-all-read", headers=as_user(ada)).status_code == 200

        listed = app_client.get("/api/notifications", headers=as_user(ada)).json()
        assert len(listed) == 2
        assert all(n["read"] for n in listed)

    def test_preferences_default_then_update(self, app_client, ada):
        defaults = app_client.get("/api/notification-preferences", headers=as_user(ada)).json()
        assert defaults["emailNotifications"] is True
        assert defaults["taskDeadlines"] is True

        updated = app_client.put(
            "/api/notification-preferences",
            json={"emailNotifications": False},
            headers=as_user(ada),
        ).json()
        assert updated["emailNotifications"] is False
        assert updated["taskUpdates"] is True
        assert updated["id"] == defaults["id"]


class TestWebSocketEndpoint:
    def test_task_update_round_trip(self, app_client, db, ada):
        task = make_task(db, ada)

        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"userId": ada.id, "username": "ada"})
            assert ws.receive_json()["type"] == "connected"

            ws.send_json({
                "type": "task_update",
                "taskId": task.id,
                "changes": {"status": "in_progress", "completedAt": None, "updatedAt": "2025-03-01T10:00:00Z"},
            })
            reply = ws.receive_json()

        assert reply["type"] == "task_update_success"
        assert reply["task"]["status"] == "in_progress"
        assert reply["activity"]["user"] == {"id": ada.id, "username": "ada"}

    def test_bad_handshake_closes(self, app_client):
        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"username": "ada"})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == 1008

    def test_health_reports_connections(self, app_client, ada):
        assert app_client.get("/").json()["active_connections"] == 0

        with app_client.websocket_connect("/ws") as ws:
            ws.send_json({"userId": ada.id, "username": "ada"})
            ws.receive_json()
            assert app_client.get("/").json()["active_connections"] == 1
