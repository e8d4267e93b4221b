import re
import unittest
from datetime import datetime, timedelta
from unittest import mock

from app import app, db
from models.organization import Organization
from models.user import User, UserRole
from services import account_service, otp_service
from tests.utils.base import PASSWORD, ApiTestCase

FIXED_CODE = "123456"


class RegistrationTestCase(ApiTestCase):
    def test_register_new_organization_and_login(self):
        response = self.client.post(
            "/api/register",
            json={
                "name": "Erin",
                "email": "Erin@NewCo.io",
                "password": "secret123",
                "organization_name": "New Co",
            },
        )
        self.assertEqual(response.status_code, 201)
        user_id = response.get_json()["id"]

        with app.app_context():
            user = User.query.get(user_id)
            self.assertEqual(user.email, "erin@newco.io")
            self.assertEqual(user.username, "erin")
            self.assertEqual(user.organization.domain, "new-co")

        response = self.client.post(
            "/api/auth/login", json={"email": "erin@newco.io", "password": "wrong-password"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["message"], "Invalid email or password")

        response = self.client.post(
            "/api/auth/login", json={"email": "erin@newco.io", "password": "secret123"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["user"]["id"], user_id)
        self.assertEqual(self.client.get("/api/users/me").status_code, 200)

        self.client.post("/api/auth/logout")
        self.assertEqual(self.client.get("/api/users/me").status_code, 401)

    def test_register_into_existing_organization(self):
        self.create_user("frank")
        response = self.client.post(
            "/api/register",
            json={
                "name": "Frank Again",
                "email": "frank@example.com",
                "password": "secret123",
                "organization_id": self.org_id,
            },
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["message"], "User already exists")

        response = self.client.post(
            "/api/register",
            json={
                "name": "Grace",
                "email": "grace@example.com",
                "password": "secret123",
                "organization_id": self.org_id,
            },
        )
        self.assertEqual(response.status_code, 201)

    def test_register_validation(self):
        response = self.client.post(
            "/api/register",
            json={"name": "Hal", "email": "hal@example.com", "password": "secret123"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Organization is required")

        response = self.client.post(
            "/api/register",
            json={"name": "Hal", "email": "hal@example.com", "password": "short", "organization_id": self.org_id},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Password must be at least 8 characters.")

        response = self.client.post(
            "/api/register",
            json={"name": "Hal", "email": "not-an-email", "password": "secret123", "organization_id": self.org_id},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Invalid email")

    def test_login_ignores_deactivated_users(self):
        user_id = self.create_user("ivy")
        with app.app_context():
            User.query.get(user_id).is_active = False
            db.session.commit()

        response = self.client.post(
            "/api/auth/login", json={"email": "ivy@example.com", "password": PASSWORD}
        )
        self.assertEqual(response.status_code, 401)

        self.login(user_id)
        self.assertEqual(self.client.get("/api/users/me").status_code, 401)


class AdminRegistrationTestCase(ApiTestCase):
    def register_admin(self, **overrides):
        payload = {
            "name": "Judy",
            "email": "Judy@Initech.com",
            "password": "secret123",
            "organization_name": "Initech",
            "organization_domain": "Initech.com",
        }
        payload.update(overrides)
        return self.client.post("/api/admin/register", json=payload)

    def test_creates_organization_and_admin(self):
        response = self.register_admin()
        self.assertEqual(response.status_code, 201)
        user_id = response.get_json()["id"]

        with app.app_context():
            user = User.query.get(user_id)
            self.assertEqual(user.role, UserRole.ADMIN.value)
            self.assertEqual(user.email, "judy@initech.com")
            self.assertEqual(user.username, "judy")
            self.assertEqual(user.organization.name, "Initech")
            self.assertEqual(user.organization.domain, "initech.com")

        response = self.client.post(
            "/api/auth/login", json={"email": "judy@initech.com", "password": "secret123"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["user"]["role"], UserRole.ADMIN.value)

    def test_taken_username_gets_a_suffix(self):
        self.create_user("judy", organization_id=self.other_org_id)

        response = self.register_admin()
        self.assertEqual(response.status_code, 201)
        with app.app_context():
            username = User.query.get(response.get_json()["id"]).username
        self.assertRegex(username, r"^judy-[0-9a-f]{4}$")

    def test_duplicate_organization_is_rejected(self):
        self.assertEqual(self.register_admin().status_code, 201)

        response = self.register_admin(email="kim@initech.com", organization_name="Initech Two")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["message"], "An organization with this domain already exists.")

        response = self.register_admin(email="kim@initech.com", organization_domain="initech.org")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["message"], "An organization with this name already exists.")

        with app.app_context():
            self.assertEqual(Organization.query.count(), 3)
            self.assertIsNone(User.query.filter_by(email="kim@initech.com").first())

    def test_validation(self):
        cases = [
            ({"organization_domain": "not a domain"}, "Domain must be a valid hostname"),
            ({"organization_domain": "-initech.com"}, "Domain must be a valid hostname"),
            ({"organization_domain": ""}, "Domain is required"),
            ({"organization_name": "  "}, "Organization name is required"),
            ({"password": "short"}, "Password must be at least 8 characters."),
            ({"email": "judy"}, "Invalid email"),
        ]
        for overrides, message in cases:
            with self.subTest(message=message):
                response = self.register_admin(**overrides)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["message"], message)

        with app.app_context():
            self.assertEqual(Organization.query.count(), 2)

    def test_failed_admin_creation_leaves_no_organization(self):
        with mock.patch.object(
            account_service, "create_user", side_effect=account_service.ConflictError("User already exists")
        ):
            response = self.register_admin()
        self.assertEqual(response.status_code, 409)

        with app.app_context():
            self.assertIsNone(Organization.query.filter_by(domain="initech.com").first())


class OtpTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.user_id = self.create_user("otto")
        self.email = "otto@example.com"

    def request_code(self, email=None):
        return self.client.post("/api/auth/otp/request", json={"email": email or self.email})

    def verify(self, code, email=None):
        return self.client.post(
            "/api/auth/otp/verify", json={"email": email or self.email, "code": code}
        )

    def test_code_is_emailed_and_signs_in(self):
        with self.record_mail() as outbox:
            response = self.request_code()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(outbox), 1)
        self.assertEqual(outbox[0].recipients, [self.email])
        code = re.search(r"\b(\d{6})\b", outbox[0].body).group(1)

        response = self.verify(code)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["user"]["id"], self.user_id)
        self.assertEqual(self.client.get("/api/users/me").get_json()["id"], self.user_id)

        # tokens are consumed on success
        response = self.verify(code)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "invalid")

    def test_resend_cooldown(self):
        self.assertEqual(self.request_code().status_code, 200)
        response = self.request_code()
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.get_json()["message"], "cooldown")

    def test_hourly_rate_limit(self):
        original_cooldown = app.config["OTP_RESEND_COOLDOWN_SECONDS"]
        app.config["OTP_RESEND_COOLDOWN_SECONDS"] = 0
        self.addCleanup(app.config.__setitem__, "OTP_RESEND_COOLDOWN_SECONDS", original_cooldown)

        for _ in range(5):
            self.assertEqual(self.request_code().status_code, 200)
        response = self.request_code()
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.get_json()["message"], "rate-limit")

    @mock.patch("services.otp_service.generate_otp", return_value=FIXED_CODE)
    def test_wrong_codes_exhaust_attempts(self, _generate):
        self.request_code()

        for _ in range(4):
            response = self.verify("000000")
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["message"], "invalid")

        response = self.verify("000000")
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.get_json()["message"], "attempts")

        response = self.verify(FIXED_CODE)
        self.assertEqual(response.status_code, 429)
        self.assertEqual(self.client.get("/api/users/me").status_code, 401)

    def test_expired_code(self):
        with app.app_context():
            otp_service.create_otp_token(
                self.email, "127.0.0.1", FIXED_CODE, now=datetime.utcnow() - timedelta(hours=1)
            )
            db.session.commit()

        response = self.verify(FIXED_CODE)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "expired")

    def test_malformed_code(self):
        response = self.verify("12ab")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Code must be 6 digits")

    @mock.patch("services.otp_service.generate_otp", return_value=FIXED_CODE)
    def test_unknown_email_is_not_provisioned(self, _generate):
        self.assertEqual(self.request_code("ghost@example.com").status_code, 200)
        response = self.verify(FIXED_CODE, "ghost@example.com")
        self.assertEqual(response.status_code, 404)
        with app.app_context():
            self.assertIsNone(User.query.filter_by(email="ghost@example.com").first())


class InvitationTestCase(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin_id = self.create_user("admin", role="ADMIN")
        self.member_id = self.create_user("member")

    def test_only_admins_invite(self):
        self.login(self.member_id)
        response = self.client.post("/api/invitations", json={"email": "new@example.com"})
        self.assertEqual(response.status_code, 403)

    def test_invitation_round_trip(self):
        self.login(self.admin_id)
        with self.record_mail() as outbox:
            response = self.client.post(
                "/api/invitations", json={"email": "New.Hire@Example.com", "role": "admin"}
            )
        self.assertEqual(response.status_code, 201)
        invitation = response.get_json()["invitation"]
        self.assertEqual(invitation["email"], "new.hire@example.com")
        self.assertEqual(invitation["role"], "ADMIN")
        self.assertEqual(len(outbox), 1)
        self.assertIn("Acme", outbox[0].subject)
        token = re.search(r"/invite/([0-9a-f]{40})", outbox[0].body).group(1)

        listed = self.client.get("/api/invitations").get_json()
        self.assertEqual([item["id"] for item in listed], [invitation["id"]])

        self.logout()
        payload = {"token": token, "name": "New Hire", "password": "welcome123"}
        response = self.client.post("/api/invitations/accept", json=payload)
        self.assertEqual(response.status_code, 201)
        with app.app_context():
            user = User.query.get(response.get_json()["id"])
            self.assertEqual(user.organization_id, self.org_id)
            self.assertEqual(user.role, "ADMIN")

        response = self.client.post("/api/invitations/accept", json=payload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Invalid or expired token")

        self.login(self.admin_id)
        self.assertEqual(self.client.get("/api/invitations").get_json(), [])

    def test_invalid_role(self):
        self.login(self.admin_id)
        response = self.client.post(
            "/api/invitations", json={"email": "x@example.com", "role": "PLATFORM"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Invalid role")


if __name__ == "__main__":
    unittest.main()
