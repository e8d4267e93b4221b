"""Shared setup for API tests: a fresh database, a client and seed helpers."""

from __future__ import annotations

import os
import shutil
import tempfile
import unittest

os.environ.setdefault("MAIL_SUPPRESS_SEND", "1")
os.environ.setdefault("WTF_CSRF_ENABLED", "0")

from app import app, db  # noqa: E402
from extensions import mail  # noqa: E402
from models.organization import Organization, Team  # noqa: E402
from models.user import User, UserRole  # noqa: E402
from services.realtime import registry  # noqa: E402
from tests.utils.db import (  # noqa: E402
    cleanup_test_database,
    provision_test_database,
    rebuild_database_engine,
)

PASSWORD = "password123"


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self._original_config = {
            key: app.config.get(key)
            for key in (
                "SQLALCHEMY_DATABASE_URI",
                "TESTING",
                "WTF_CSRF_ENABLED",
                "UPLOAD_FOLDER",
                "VAPID_PUBLIC_KEY",
                "VAPID_PRIVATE_KEY",
            )
        }
        self._test_db_path, test_database_uri = provision_test_database()
        self.upload_dir = tempfile.mkdtemp(prefix="looptask_uploads_")
        app.config.update(
            TESTING=True,
            SQLALCHEMY_DATABASE_URI=test_database_uri,
            WTF_CSRF_ENABLED=False,
            UPLOAD_FOLDER=self.upload_dir,
            VAPID_PUBLIC_KEY=None,
            VAPID_PRIVATE_KEY=None,
        )
        app.extensions["mail"].suppress = True

        with app.app_context():
            db.session.remove()
            rebuild_database_engine(db, test_database_uri)
            db.drop_all()
            db.create_all()

            organization = Organization(name="Acme", domain="acme")
            other = Organization(name="Globex", domain="globex")
            db.session.add_all([organization, other])
            db.session.flush()
            team = Team(name="Core", organization_id=organization.id)
            db.session.add(team)
            db.session.commit()
            self.org_id = organization.id
            self.other_org_id = other.id
            self.team_id = team.id

        registry.clear()
        self.client = app.test_client()

    def tearDown(self):
        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
        registry.clear()
        cleanup_test_database(self._test_db_path)
        shutil.rmtree(self.upload_dir, ignore_errors=True)
        app.config.update(self._original_config)

    # Seed helpers
    # ------------------------------
    def create_user(
        self,
        username: str,
        *,
        organization_id: int | None = None,
        role: str = UserRole.USER.value,
        team_id: int | None = None,
        **fields,
    ) -> int:
        with app.app_context():
            user = User(
                username=username,
                name=fields.pop("name", username.title()),
                email=fields.pop("email", f"{username}@example.com"),
                organization_id=organization_id or self.org_id,
                role=role,
                team_id=team_id,
                **fields,
            )
            user.set_password(PASSWORD)
            db.session.add(user)
            db.session.commit()
            return user.id

    def login(self, user_id: int, client=None) -> None:
        with (client or self.client).session_transaction() as client_session:
            client_session["user_id"] = user_id

    def logout(self) -> None:
        with self.client.session_transaction() as client_session:
            client_session.clear()

    def create_task(self, user_id: int, **payload) -> dict:
        self.login(user_id)
        payload.setdefault("title", "Write report")
        response = self.client.post("/api/tasks", json=payload)
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    def record_mail(self):
        return mail.record_messages()
