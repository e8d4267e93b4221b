import os
import unittest
from io import BytesIO
from unittest import mock

from sqlalchemy.exc import SQLAlchemyError

from app import app, db
from models.notification import Notification
from models.task import TaskVisibility
from tests.utils.base import ApiTestCase


class TaskApiTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice_id = self.create_user("alice")
        self.bob_id = self.create_user("bob")
        self.carol_id = self.create_user("carol")
        self.dave_id = self.create_user("dave", team_id=self.team_id)
        self.outsider_id = self.create_user("outsider", organization_id=self.other_org_id)

    def notifications_for(self, user_id, notification_type=None):
        with app.app_context():
            query = Notification.query.filter_by(user_id=user_id)
            if notification_type:
                query = query.filter_by(notification_type=notification_type)
            return [notification.to_dict() for notification in query.all()]

    def create_step_task(self):
        return self.create_task(
            self.alice_id,
            title="Publish release",
            steps=[
                {"title": "Draft", "owner_id": self.bob_id},
                {"title": "Review", "owner_id": self.carol_id},
            ],
        )

    def transition(self, task_id, action, user_id):
        self.login(user_id)
        return self.client.post(f"/api/tasks/{task_id}/transition", json={"action": action})

    # Creation
    # ------------------------------
    def test_create_requires_title(self):
        self.login(self.alice_id)
        response = self.client.post("/api/tasks", json={"description": "No title"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Title is required")

        response = self.client.post("/api/tasks", json={"title": "   "})
        self.assertEqual(response.status_code, 400)

    def test_create_defaults_owner_to_creator(self):
        task = self.create_task(self.alice_id, description="**bold**", tags=["urgent", "urgent"])

        self.assertEqual(task["owner_id"], self.alice_id)
        self.assertEqual(task["status"], "OPEN")
        self.assertEqual(task["priority"], "MEDIUM")
        self.assertEqual(task["visibility"], "PRIVATE")
        self.assertEqual(task["tags"], ["urgent"])
        self.assertIn("<strong>bold</strong>", task["description_html"])
        self.assertEqual(task["participant_ids"], [self.alice_id])

    def test_create_with_steps_starts_the_flow(self):
        task = self.create_step_task()

        self.assertEqual(task["status"], "FLOW_IN_PROGRESS")
        self.assertEqual(task["owner_id"], self.bob_id)
        self.assertEqual(task["current_step_index"], 0)
        self.assertEqual([step["title"] for step in task["steps"]], ["Draft", "Review"])
        self.assertCountEqual(task["participant_ids"], [self.alice_id, self.bob_id, self.carol_id])

        assigned = self.notifications_for(self.bob_id, "ASSIGNMENT")
        self.assertEqual(len(assigned), 1)
        self.assertEqual(assigned[0]["task_id"], task["id"])

        response = self.client.get(f"/api/tasks/{task['id']}/loop")
        self.assertEqual(response.status_code, 200)
        loop = response.get_json()
        self.assertEqual([step["status"] for step in loop["sequence"]], ["ACTIVE", "BLOCKED"])
        self.assertEqual(loop["current_step"], 0)

    def test_create_rejects_unordered_step_due_dates(self):
        self.login(self.alice_id)
        response = self.client.post(
            "/api/tasks",
            json={
                "title": "Launch",
                "steps": [
                    {"title": "Build", "owner_id": self.bob_id, "due_at": "2026-03-02"},
                    {"title": "Ship", "owner_id": self.carol_id, "due_at": "2026-03-01T09:00:00Z"},
                ],
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.get_json()["message"],
            'Step "Ship" due date must not be before step "Build" due date',
        )

    def test_create_rejects_blank_step_title(self):
        self.login(self.alice_id)
        response = self.client.post(
            "/api/tasks",
            json={"title": "Launch", "steps": [{"title": " ", "owner_id": self.bob_id}]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Step title is required")

    def test_create_rejects_owner_from_another_organization(self):
        self.login(self.alice_id)
        response = self.client.post(
            "/api/tasks", json={"title": "Cross tenant", "owner_id": self.outsider_id}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Owner must be in your organization")

    def test_create_requires_login(self):
        response = self.client.post("/api/tasks", json={"title": "Anonymous"})
        self.assertEqual(response.status_code, 401)

    # Access
    # ------------------------------
    def test_private_task_hidden_from_other_users(self):
        task = self.create_task(self.alice_id, helpers=[self.bob_id])

        self.login(self.bob_id)
        response = self.client.get(f"/api/tasks/{task['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.get_json()["can_edit"])

        self.login(self.carol_id)
        self.assertEqual(self.client.get(f"/api/tasks/{task['id']}").status_code, 404)

        self.login(self.outsider_id)
        self.assertEqual(self.client.get(f"/api/tasks/{task['id']}").status_code, 404)

    def test_team_visibility_grants_team_members(self):
        task = self.create_task(
            self.alice_id, visibility=TaskVisibility.TEAM.value, team_id=self.team_id
        )

        self.login(self.dave_id)
        self.assertEqual(self.client.get(f"/api/tasks/{task['id']}").status_code, 200)
        listed = self.client.get("/api/tasks").get_json()
        self.assertEqual([item["id"] for item in listed], [task["id"]])

        self.login(self.carol_id)
        self.assertEqual(self.client.get("/api/tasks").get_json(), [])

    # Listing
    # ------------------------------
    def test_list_filters(self):
        urgent = self.create_task(self.alice_id, title="Fix outage", tags=["urgent"])
        self.create_task(self.alice_id, title="Plan offsite", tags=["later"])
        self.transition(urgent["id"], "START", self.alice_id)

        response = self.client.get("/api/tasks?tag=urgent")
        self.assertEqual([task["id"] for task in response.get_json()], [urgent["id"]])

        response = self.client.get("/api/tasks?status=in_progress")
        self.assertEqual([task["id"] for task in response.get_json()], [urgent["id"]])

        response = self.client.get("/api/tasks?q=offsite")
        self.assertEqual([task["title"] for task in response.get_json()], ["Plan offsite"])

        response = self.client.get("/api/tasks?owner_id=abc")
        self.assertEqual(response.status_code, 400)

    # Updates
    # ------------------------------
    def test_partial_update_only_touches_sent_fields(self):
        task = self.create_task(self.alice_id, description="Keep me")

        response = self.client.patch(f"/api/tasks/{task['id']}", json={"title": "Renamed"})
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["title"], "Renamed")
        self.assertEqual(body["description"], "Keep me")

        history = self.client.get(f"/api/tasks/{task['id']}/history").get_json()
        self.assertEqual(history["total"], 2)
        latest = history["history"][0]
        self.assertEqual(latest["type"], "UPDATED")
        self.assertEqual(latest["payload"]["changes"], {"title": "Renamed"})

        page = self.client.get(f"/api/tasks/{task['id']}/history?limit=1&page=2").get_json()
        self.assertEqual(len(page["history"]), 1)
        self.assertEqual(page["history"][0]["type"], "CREATED")

    def test_update_requires_creator_or_owner(self):
        task = self.create_task(self.alice_id, helpers=[self.bob_id])

        self.login(self.bob_id)
        response = self.client.patch(f"/api/tasks/{task['id']}", json={"title": "Hijacked"})
        self.assertEqual(response.status_code, 403)

    def test_update_steps_moves_ownership_to_current_step(self):
        task = self.create_task(self.alice_id)

        response = self.client.patch(
            f"/api/tasks/{task['id']}",
            json={
                "steps": [
                    {"title": "Draft", "owner_id": self.bob_id, "status": "DONE"},
                    {"title": "Review", "owner_id": self.carol_id},
                ]
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["current_step_index"], 1)
        self.assertEqual(body["owner_id"], self.carol_id)
        self.assertEqual(body["status"], "FLOW_IN_PROGRESS")

        loop = self.client.get(f"/api/tasks/{task['id']}/loop").get_json()
        self.assertEqual([step["status"] for step in loop["sequence"]], ["COMPLETED", "ACTIVE"])

    # Transitions
    # ------------------------------
    def test_transitions_without_steps(self):
        task = self.create_task(self.alice_id, helpers=[self.bob_id])
        task_id = task["id"]

        response = self.transition(task_id, "start", self.alice_id)
        self.assertEqual(response.get_json()["status"], "IN_PROGRESS")

        response = self.transition(task_id, "START", self.alice_id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Task is not OPEN")

        response = self.transition(task_id, "DONE", self.bob_id)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["message"], "You cannot transition this task")

        self.transition(task_id, "SEND_FOR_REVIEW", self.alice_id)
        self.transition(task_id, "REQUEST_CHANGES", self.alice_id)
        response = self.transition(task_id, "DONE", self.alice_id)
        self.assertEqual(response.get_json()["status"], "DONE")

        self.assertEqual(len(self.notifications_for(self.bob_id, "TASK_CLOSED")), 1)

    def test_unknown_transition_action(self):
        task = self.create_task(self.alice_id)
        response = self.transition(task["id"], "ARCHIVE", self.alice_id)
        self.assertEqual(response.status_code, 400)

        self.login(self.alice_id)
        response = self.client.post(f"/api/tasks/{task['id']}/transition", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "action is required")

    def test_step_transitions_walk_the_flow(self):
        task = self.create_step_task()
        task_id = task["id"]

        response = self.transition(task_id, "DONE", self.alice_id)
        self.assertEqual(response.status_code, 403)

        response = self.transition(task_id, "START", self.bob_id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Only DONE is allowed for step tasks")

        response = self.transition(task_id, "DONE", self.bob_id)
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["current_step_index"], 1)
        self.assertEqual(body["owner_id"], self.carol_id)
        self.assertEqual(body["status"], "FLOW_IN_PROGRESS")
        self.assertEqual(body["steps"][0]["status"], "DONE")
        self.assertEqual(len(self.notifications_for(self.carol_id, "LOOP_STEP_READY")), 1)

        response = self.transition(task_id, "DONE", self.carol_id)
        self.assertEqual(response.get_json()["status"], "DONE")

        loop = self.client.get(f"/api/tasks/{task_id}/loop").get_json()
        self.assertFalse(loop["is_active"])
        self.assertEqual(loop["current_step"], -1)
        self.assertEqual(len(self.notifications_for(self.alice_id, "TASK_CLOSED")), 1)

    # Attachments
    # ------------------------------
    def test_attachment_lifecycle(self):
        task = self.create_task(self.alice_id)
        url = f"/api/tasks/{task['id']}/attachments"

        response = self.client.post(url, data={}, content_type="multipart/form-data")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "A file is required")

        response = self.client.post(
            url,
            data={"file": (BytesIO(b"meeting notes"), "../notes.txt")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 201)
        attachment = response.get_json()
        self.assertEqual(attachment["filename"], "notes.txt")
        self.assertTrue(attachment["url"].startswith("/uploads/"))

        stored = os.listdir(self.upload_dir)
        self.assertEqual(len(stored), 1)
        download = self.client.get(attachment["url"])
        self.assertEqual(download.data, b"meeting notes")
        download.close()

        self.assertEqual(len(self.client.get(url).get_json()), 1)

        response = self.client.delete(f"{url}/{attachment['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(os.listdir(self.upload_dir), [])
        self.assertEqual(self.client.get(url).get_json(), [])

    # Deletion and presence
    # ------------------------------
    def test_delete_task(self):
        task = self.create_task(self.alice_id, helpers=[self.bob_id])

        self.login(self.bob_id)
        self.assertEqual(self.client.delete(f"/api/tasks/{task['id']}").status_code, 403)

        self.login(self.alice_id)
        self.assertEqual(self.client.delete(f"/api/tasks/{task['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/tasks/{task['id']}").status_code, 404)

    def test_failed_delete_keeps_attachment_files(self):
        task = self.create_task(self.alice_id)
        self.client.post(
            f"/api/tasks/{task['id']}/attachments",
            data={"file": (BytesIO(b"budget"), "budget.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(len(os.listdir(self.upload_dir)), 1)

        with mock.patch.object(db.session, "commit", side_effect=SQLAlchemyError("disk full")):
            response = self.client.delete(f"/api/tasks/{task['id']}")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["message"], "Unable to delete the task. Please try again.")
        self.assertEqual(len(os.listdir(self.upload_dir)), 1)
        self.assertEqual(self.client.get(f"/api/tasks/{task['id']}").status_code, 200)

        self.assertEqual(self.client.delete(f"/api/tasks/{task['id']}").status_code, 200)
        self.assertEqual(os.listdir(self.upload_dir), [])

    def test_presence_is_empty_without_sockets(self):
        task = self.create_task(self.alice_id)
        response = self.client.get(f"/api/tasks/{task['id']}/presence")
        self.assertEqual(response.get_json(), {"task_id": task["id"], "viewers": []})


if __name__ == "__main__":
    unittest.main()
