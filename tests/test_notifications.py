import unittest
from datetime import datetime, timedelta

from app import app, db
from models.notification import Notification
from models.task import Task
from models.user import User
from services import notification_service, reminder_service
from tests.utils.base import ApiTestCase


class NotificationServiceTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice_id = self.create_user("alice")
        self.bob_id = self.create_user("bob")
        self.task_id = self.create_task(self.alice_id, title="Budget review")["id"]

    def _messages(self, user_id):
        with app.app_context():
            return Notification.query.filter_by(user_id=user_id).count()

    def test_throttle_skips_repeats_within_window(self):
        with app.test_request_context():
            task = Task.query.get(self.task_id)
            first = notification_service.notify_assignment([self.bob_id, self.bob_id], task)
            again = notification_service.notify_assignment([self.bob_id], task)
            other_step = notification_service.notify_assignment([self.bob_id], task, "Sign-off")
            db.session.commit()

        self.assertEqual(len(first), 1)
        self.assertEqual(again, [])
        self.assertEqual(len(other_step), 1)
        self.assertEqual(self._messages(self.bob_id), 2)

    def test_immediate_email_delivery(self):
        with self.record_mail() as outbox, app.test_request_context():
            task = Task.query.get(self.task_id)
            notification_service.notify_assignment([self.bob_id], task, "Draft")
            db.session.commit()

        self.assertEqual(len(outbox), 1)
        message = outbox[0]
        self.assertEqual(message.recipients, ["bob@example.com"])
        self.assertEqual(message.subject, "Task assigned: Budget review")
        self.assertIn(f'step "Draft" of task "Budget review" (#{self.task_id})', message.body)
        self.assertIn(f"/tasks/{self.task_id}", message.html)

    def test_email_respects_user_preferences(self):
        with self.record_mail() as outbox, app.test_request_context():
            task = Task.query.get(self.task_id)
            bob = User.query.get(self.bob_id)
            bob.notification_types = {"ASSIGNMENT": False}
            notification_service.notify_assignment([self.bob_id], task)
            self.assertEqual(len(outbox), 0)

            bob.notification_types = None
            bob.digest_frequency = "daily"
            notification_service.notify_task_closed([self.bob_id], task)
            self.assertEqual(len(outbox), 0)
            db.session.commit()

        # in-app notifications are always stored
        self.assertEqual(self._messages(self.bob_id), 2)


class NotificationApiTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice_id = self.create_user("alice")
        self.bob_id = self.create_user("bob")
        task = self.create_task(self.alice_id, title="Close the books", helpers=[self.bob_id])
        self.task_id = task["id"]
        self.login(self.alice_id)
        self.client.post(f"/api/tasks/{self.task_id}/transition", json={"action": "START"})

    def test_inbox_and_read_state(self):
        self.login(self.bob_id)
        inbox = self.client.get("/api/notifications").get_json()
        self.assertEqual([item["type"] for item in inbox], ["STATUS_CHANGE", "ASSIGNMENT"])
        self.assertEqual(self.client.get("/api/notifications/unread-count").get_json(), {"count": 2})

        latest_id = inbox[0]["id"]
        response = self.client.post(f"/api/notifications/{latest_id}/read")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["read"])
        self.assertIsNotNone(response.get_json()["read_at"])
        self.assertEqual(self.client.get("/api/notifications/unread-count").get_json(), {"count": 1})

        response = self.client.post(f"/api/notifications/{latest_id}/read", json={"read": False})
        self.assertFalse(response.get_json()["read"])
        self.assertIsNone(response.get_json()["read_at"])

        response = self.client.post(f"/api/notifications/{latest_id}/read", json={"read": "nope"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "read must be a boolean")

        response = self.client.post("/api/notifications/read-all")
        self.assertEqual(response.get_json(), {"success": True, "updated": 2})
        self.assertEqual(self.client.get("/api/notifications/unread-count").get_json(), {"count": 0})

    def test_cannot_touch_other_users_notifications(self):
        self.login(self.bob_id)
        notification_id = self.client.get("/api/notifications").get_json()[0]["id"]

        self.login(self.alice_id)
        response = self.client.post(f"/api/notifications/{notification_id}/read")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.get("/api/notifications").get_json(), [])

    def test_requires_login(self):
        self.logout()
        self.assertEqual(self.client.get("/api/notifications").status_code, 401)


class ReminderTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice_id = self.create_user("alice")
        self.bob_id = self.create_user("bob")
        self.now = datetime.utcnow().replace(microsecond=0)

    def _due_task(self, title, due, **payload):
        return self.create_task(self.alice_id, title=title, due_date=due.isoformat(), **payload)

    def _sweep(self, now=None):
        with app.test_request_context():
            result = reminder_service.run_due_sweep(now=now or self.now, interval_minutes=15)
            db.session.commit()
        return result

    def _types_for(self, user_id):
        with app.app_context():
            return sorted(
                (notification.notification_type, notification.task_id)
                for notification in Notification.query.filter_by(user_id=user_id).all()
            )

    def test_due_sweep_classifies_tasks_and_steps(self):
        soon = self._due_task("Soon", self.now + timedelta(hours=23, minutes=55))
        due_now = self._due_task("Now", self.now - timedelta(minutes=5))
        overdue = self._due_task("Late", self.now - timedelta(days=2))
        self._due_task("Later", self.now + timedelta(days=3))
        finished = self._due_task("Finished", self.now - timedelta(days=2))
        self.client.patch(f"/api/tasks/{finished['id']}", json={"status": "DONE"})
        stepped = self.create_task(
            self.alice_id,
            title="Stepped",
            steps=[
                {"title": "Draft", "owner_id": self.bob_id, "due_at": (self.now - timedelta(days=3)).isoformat()}
            ],
        )

        result = self._sweep()
        self.assertEqual((result.due_soon, result.due_now, result.overdue), (1, 1, 2))
        self.assertEqual(
            self._types_for(self.alice_id),
            sorted([("DUE_SOON", soon["id"]), ("DUE_NOW", due_now["id"]), ("OVERDUE", overdue["id"])]),
        )
        self.assertIn(("OVERDUE", stepped["id"]), self._types_for(self.bob_id))

        repeat = self._sweep()
        self.assertEqual((repeat.due_soon, repeat.due_now, repeat.overdue), (0, 0, 0))

    def test_due_soon_fires_once_when_entering_the_window(self):
        inside = self._due_task("Inside", self.now + timedelta(hours=10))
        entering = self._due_task("Entering", self.now + timedelta(hours=24, minutes=10))

        self.assertEqual(self._sweep().due_soon, 0)
        self.assertEqual(self._sweep(self.now + timedelta(minutes=15)).due_soon, 1)
        self.assertEqual(self._sweep(self.now + timedelta(minutes=30)).due_soon, 0)

        soon_ids = [task_id for kind, task_id in self._types_for(self.alice_id) if kind == "DUE_SOON"]
        self.assertEqual(soon_ids, [entering["id"]])
        self.assertNotIn(inside["id"], soon_ids)

    def test_overdue_alert_emailed_once_per_day(self):
        self._due_task("Late", self.now - timedelta(days=1))

        with self.record_mail() as outbox:
            self._sweep()
            self._sweep(self.now + timedelta(hours=2))
        self.assertEqual([message.subject for message in outbox], ["Task overdue"])

    def test_digest_collects_unread_notifications(self):
        with app.app_context():
            user = User.query.get(self.bob_id)
            user.digest_frequency = "daily"
            db.session.commit()
        self.create_task(self.alice_id, title="Prepare slides", helpers=[self.bob_id])

        with self.record_mail() as outbox, app.test_request_context():
            self.assertEqual(reminder_service.send_digests(now=self.now + timedelta(minutes=1)), 1)
            db.session.commit()
            self.assertEqual(reminder_service.send_digests(now=self.now + timedelta(hours=2)), 0)

        self.assertEqual(len(outbox), 1)
        self.assertEqual(outbox[0].subject, "Notification Digest")
        self.assertIn('task "Prepare slides"', outbox[0].body)
        with app.app_context():
            self.assertIsNotNone(User.query.get(self.bob_id).last_digest_at)

    def test_digest_skipped_without_unread(self):
        with app.app_context():
            User.query.get(self.bob_id).digest_frequency = "weekly"
            db.session.commit()

        with self.record_mail() as outbox, app.test_request_context():
            self.assertEqual(reminder_service.send_digests(now=self.now), 0)
        self.assertEqual(outbox, [])


class CommandTestCase(ApiTestCase):
    def test_notify_due_command(self):
        result = app.test_cli_runner().invoke(args=["notify-due", "--interval", "30"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("due_soon=0 due_now=0 overdue=0", result.output)

    def test_create_admin_command(self):
        runner = app.test_cli_runner()
        args = ["create-admin", "root@umbrella.io", "--organization", "Umbrella", "--password", "secret123"]
        result = runner.invoke(args=args)
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Created admin root@umbrella.io", result.output)
        with app.app_context():
            admin = User.query.filter_by(email="root@umbrella.io").one()
            self.assertEqual(admin.role, "ADMIN")
            self.assertTrue(admin.check_password("secret123"))

        result = runner.invoke(args=args)
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("Organization already exists", result.output)


if __name__ == "__main__":
    unittest.main()
