import unittest

from app import app
from models.notification import Notification
from tests.utils.base import ApiTestCase


class LoopApiTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice_id = self.create_user("alice")
        self.bob_id = self.create_user("bob")
        self.carol_id = self.create_user("carol")
        self.dave_id = self.create_user("dave", team_id=self.team_id)
        self.outsider_id = self.create_user("outsider", organization_id=self.other_org_id)
        self.task = self.create_task(self.alice_id, title="Quarterly report")
        self.loop_url = f"/api/tasks/{self.task['id']}/loop"

    def notification_types(self, user_id):
        with app.app_context():
            return sorted(
                notification.notification_type
                for notification in Notification.query.filter_by(user_id=user_id).all()
            )

    def create_loop(self, **extra):
        self.login(self.alice_id)
        payload = {
            "sequence": [
                {"assigned_to": self.bob_id, "description": "Write draft"},
                {"assigned_to": self.carol_id, "description": "Review draft", "dependencies": [0]},
            ]
        }
        payload.update(extra)
        response = self.client.post(self.loop_url, json=payload)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    # Creation
    # ------------------------------
    def test_create_loop_activates_ready_steps(self):
        loop = self.create_loop()

        self.assertEqual([step["status"] for step in loop["sequence"]], ["ACTIVE", "BLOCKED"])
        self.assertEqual(loop["current_step"], 0)
        self.assertTrue(loop["is_active"])
        self.assertEqual(self.notification_types(self.bob_id), ["ASSIGNMENT", "LOOP_STEP_READY"])
        self.assertEqual(self.notification_types(self.carol_id), [])

        history = self.client.get(f"{self.loop_url}/history").get_json()
        self.assertEqual(history["total"], 2)
        self.assertEqual({entry["action"] for entry in history["history"]}, {"CREATE"})

    def test_parallel_loop_activates_every_independent_step(self):
        loop = self.create_loop(
            parallel=True,
            sequence=[
                {"assigned_to": self.bob_id, "description": "Collect numbers"},
                {"assigned_to": self.carol_id, "description": "Collect quotes"},
            ],
        )
        self.assertTrue(loop["parallel"])
        self.assertEqual([step["status"] for step in loop["sequence"]], ["ACTIVE", "ACTIVE"])

    def test_create_loop_reports_every_step_error(self):
        self.login(self.alice_id)
        response = self.client.post(
            self.loop_url,
            json={
                "sequence": [
                    {"assigned_to": "nobody", "description": ""},
                    {"assigned_to": self.outsider_id, "description": "Sign", "dependencies": [5]},
                ]
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.get_json()["message"],
            "Step 0: Description is required; Step 0: Invalid user ID; "
            "Step 1: Assignee outside organization; Step 1: Invalid dependencies",
        )

        response = self.client.post(self.loop_url, json={"sequence": []})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "sequence must be a non-empty list.")

    def test_team_task_requires_team_assignees(self):
        task = self.create_task(self.alice_id, title="Team chores", team_id=self.team_id)
        response = self.client.post(
            f"/api/tasks/{task['id']}/loop",
            json={"sequence": [{"assigned_to": self.bob_id, "description": "Sweep"}]},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Step 0: Assignee not in task team")

        response = self.client.post(
            f"/api/tasks/{task['id']}/loop",
            json={"sequence": [{"assigned_to": self.dave_id, "description": "Sweep"}]},
        )
        self.assertEqual(response.status_code, 201)

    def test_only_writers_create_loops(self):
        self.login(self.bob_id)
        response = self.client.post(
            self.loop_url,
            json={"sequence": [{"assigned_to": self.bob_id, "description": "Sneak in"}]},
        )
        self.assertEqual(response.status_code, 403)

        self.login(self.outsider_id)
        response = self.client.post(
            self.loop_url,
            json={"sequence": [{"assigned_to": self.outsider_id, "description": "Sneak in"}]},
        )
        self.assertEqual(response.status_code, 404)

    def test_get_loop_missing(self):
        self.login(self.alice_id)
        response = self.client.get(self.loop_url)
        self.assertEqual(response.status_code, 404)

    # Completion
    # ------------------------------
    def test_assignee_completes_step(self):
        self.create_loop()

        self.login(self.carol_id)
        response = self.client.post(f"{self.loop_url}/steps/0/complete")
        self.assertEqual(response.status_code, 403)

        self.login(self.bob_id)
        response = self.client.post(f"{self.loop_url}/steps/0/complete")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["newly_active"], [1])
        self.assertEqual(
            [step["status"] for step in body["loop"]["sequence"]], ["COMPLETED", "ACTIVE"]
        )
        self.assertIsNotNone(body["loop"]["sequence"][0]["completed_at"])
        self.assertEqual(self.notification_types(self.carol_id), ["ASSIGNMENT", "LOOP_STEP_READY"])

        response = self.client.post(f"{self.loop_url}/steps/0/complete")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Step cannot be completed.")

        history = self.client.get(f"{self.loop_url}/history?limit=1").get_json()
        self.assertEqual(history["total"], 3)
        self.assertEqual(history["history"][0]["action"], "COMPLETE")
        self.assertEqual(history["history"][0]["user_id"], self.bob_id)

    def test_writer_completes_any_step_and_finishes_loop(self):
        self.create_loop()

        self.assertEqual(self.client.post(f"{self.loop_url}/steps/0/complete").status_code, 200)
        response = self.client.post(f"{self.loop_url}/steps/1/complete")
        loop = response.get_json()["loop"]
        self.assertFalse(loop["is_active"])
        self.assertEqual(loop["current_step"], -1)

        response = self.client.post(f"{self.loop_url}/steps/9/complete")
        self.assertEqual(response.status_code, 400)

    def test_outsider_cannot_see_loop(self):
        self.create_loop()
        self.login(self.outsider_id)
        self.assertEqual(self.client.get(self.loop_url).status_code, 404)
        self.assertEqual(self.client.post(f"{self.loop_url}/steps/0/complete").status_code, 404)

    # Updates
    # ------------------------------
    def test_reassign_step_notifies_both_assignees(self):
        original_window = app.config["NOTIFICATION_THROTTLE_SECONDS"]
        app.config["NOTIFICATION_THROTTLE_SECONDS"] = 0
        self.addCleanup(app.config.__setitem__, "NOTIFICATION_THROTTLE_SECONDS", original_window)
        self.create_loop()

        response = self.client.patch(
            self.loop_url,
            json={"sequence": [{"index": 0, "assigned_to": self.dave_id}, {"index": 1}]},
        )
        self.assertEqual(response.status_code, 200, response.get_json())
        step = response.get_json()["sequence"][0]
        self.assertEqual(step["assigned_to"], self.dave_id)
        self.assertEqual(step["status"], "ACTIVE")

        self.assertEqual(self.notification_types(self.dave_id), ["ASSIGNMENT", "LOOP_STEP_READY"])
        self.assertEqual(
            self.notification_types(self.bob_id), ["ASSIGNMENT", "ASSIGNMENT", "LOOP_STEP_READY"]
        )

        history = self.client.get(f"{self.loop_url}/history?limit=1").get_json()
        self.assertEqual(history["history"][0]["action"], "REASSIGN")

    def test_update_can_complete_and_reorder(self):
        self.create_loop()

        response = self.client.patch(
            self.loop_url,
            json={"sequence": [{"index": 0, "status": "done"}, {"index": 1, "description": "Proofread"}]},
        )
        self.assertEqual(response.status_code, 200)
        sequence = response.get_json()["sequence"]
        self.assertEqual([step["status"] for step in sequence], ["COMPLETED", "ACTIVE"])
        self.assertEqual(sequence[1]["description"], "Proofread")

        response = self.client.patch(
            self.loop_url, json={"sequence": [{"index": 1}, {"index": 0}]}
        )
        sequence = response.get_json()["sequence"]
        self.assertEqual([step["description"] for step in sequence], ["Proofread", "Write draft"])
        self.assertEqual(sequence[0]["dependencies"], [1])

    def test_update_rejects_bad_indexes(self):
        self.create_loop()

        cases = [
            ([{"index": 0}], "Sequence length mismatch"),
            ([{"index": 0}, {"index": 0}], "Step 1: Duplicate index"),
            ([{"index": 0}, {"index": 5}], "Step 1: Invalid index"),
            ([{"index": 0}, {"index": 1, "status": "archived"}], "Step 1: Invalid status"),
        ]
        for sequence, message in cases:
            with self.subTest(message=message):
                response = self.client.patch(self.loop_url, json={"sequence": sequence})
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["message"], message)

    def test_update_requires_a_list_of_steps(self):
        self.create_loop()

        cases = [
            ({}, "sequence must be a non-empty list."),
            ({"sequence": []}, "sequence must be a non-empty list."),
            ({"sequence": "abc"}, "sequence must be a list of steps."),
            ({"sequence": [{"index": 0}, 1]}, "sequence must be a list of steps."),
        ]
        for payload, message in cases:
            with self.subTest(payload=payload):
                response = self.client.patch(self.loop_url, json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["message"], message)
        self.assertEqual(self.client.get(self.loop_url).get_json()["sequence"][0]["description"], "Write draft")

    def test_delete_loop(self):
        self.create_loop()

        self.login(self.bob_id)
        self.assertEqual(self.client.delete(self.loop_url).status_code, 403)

        self.login(self.alice_id)
        self.assertEqual(self.client.delete(self.loop_url).status_code, 200)
        self.assertEqual(self.client.get(self.loop_url).status_code, 404)

    # Templates
    # ------------------------------
    def test_template_lifecycle(self):
        self.login(self.alice_id)
        response = self.client.post(
            "/api/loop-templates",
            json={
                "name": "Review flow",
                "steps": [
                    {"assigned_to": self.bob_id, "description": "Draft"},
                    {"assigned_to": self.carol_id, "description": "Approve", "dependencies": [0]},
                ],
            },
        )
        self.assertEqual(response.status_code, 201)
        template_id = response.get_json()["id"]

        response = self.client.put(f"/api/loop-templates/{template_id}", json={"name": "Sign-off"})
        self.assertEqual(response.get_json()["name"], "Sign-off")
        self.assertEqual(len(response.get_json()["steps"]), 2)

        listed = self.client.get("/api/loop-templates").get_json()
        self.assertEqual([template["name"] for template in listed], ["Sign-off"])

        response = self.client.post(f"{self.loop_url}/from-template/{template_id}")
        self.assertEqual(response.status_code, 201)
        loop = response.get_json()
        self.assertEqual([step["description"] for step in loop["sequence"]], ["Draft", "Approve"])
        self.assertEqual([step["status"] for step in loop["sequence"]], ["ACTIVE", "BLOCKED"])

        self.assertEqual(self.client.delete(f"/api/loop-templates/{template_id}").status_code, 200)
        self.assertEqual(self.client.get("/api/loop-templates").get_json(), [])

    def test_template_validation_and_tenancy(self):
        self.login(self.alice_id)
        response = self.client.post("/api/loop-templates", json={"name": "Empty"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "steps must be a non-empty list.")

        self.login(self.outsider_id)
        response = self.client.post(
            "/api/loop-templates",
            json={"name": "Foreign", "steps": [{"assigned_to": self.outsider_id, "description": "Do"}]},
        )
        self.assertEqual(response.status_code, 201)
        foreign_id = response.get_json()["id"]

        self.login(self.alice_id)
        self.assertEqual(self.client.get("/api/loop-templates").get_json(), [])
        response = self.client.post(f"{self.loop_url}/from-template/{foreign_id}")
        self.assertEqual(response.status_code, 404)
        response = self.client.put(f"/api/loop-templates/{foreign_id}", json={"name": "Mine"})
        self.assertEqual(response.status_code, 404)

    def test_template_update_validates_fields(self):
        self.login(self.alice_id)
        template = self.client.post(
            "/api/loop-templates",
            json={"name": "Review flow", "steps": [{"assigned_to": self.bob_id, "description": "Draft"}]},
        ).get_json()
        url = f"/api/loop-templates/{template['id']}"

        response = self.client.put(url, json={"name": 5})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Name must be a string")

        response = self.client.put(url, json={"name": "x" * 201})
        self.assertEqual(response.status_code, 400)

        response = self.client.put(url, json={"steps": [{"assigned_to": self.carol_id, "description": "Approve"}]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["name"], "Review flow")
        self.assertEqual([step["description"] for step in response.get_json()["steps"]], ["Approve"])


if __name__ == "__main__":
    unittest.main()
