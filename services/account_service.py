"""Organizations, users and invitations."""

from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_

from database import db
from models.invitation import Invitation
from models.organization import Organization, Team, slugify_domain
from models.user import CONFIGURABLE_NOTIFICATION_TYPES, User, UserRole
from services import mail_service

PROFILE_FIELDS = ("name", "email", "username", "avatar", "timezone")

_USERNAME_INVALID = re.compile(r"[^a-z0-9._-]")


class ConflictError(Exception):
    """Raised when a unique organization, user or name already exists."""


def username_from_email(email: str) -> str:
    return email.split("@", 1)[0].strip().lower()


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _ensure_unique_user(email: str, username: str, organization_id: int, *, exclude_id: int | None = None) -> None:
    query = User.query.filter(
        or_(
            func.lower(User.username) == username,
            (User.organization_id == organization_id) & (func.lower(User.email) == email),
        )
    )
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("User already exists")


def create_organization(name: str, domain: str | None = None) -> Organization:
    name = (name or "").strip()
    domain = domain.strip().lower() if domain else slugify_domain(name)
    if not domain:
        raise ValueError("Organization name is required")
    if Organization.query.filter_by(domain=domain).first() is not None:
        raise ConflictError("Organization already exists")
    organization = Organization(name=name, domain=domain)
    db.session.add(organization)
    db.session.flush()
    return organization


def create_user(
    organization: Organization,
    *,
    name: str,
    email: str,
    password: str | None,
    role: str = UserRole.USER.value,
    team_id: int | None = None,
    username: str | None = None,
) -> User:
    email = _normalize_email(email)
    username = (username or username_from_email(email)).strip().lower()
    _ensure_unique_user(email, username, organization.id)
    if team_id is not None:
        team = Team.query.get(team_id)
        if team is None or team.organization_id != organization.id:
            raise ValueError("Team must belong to your organization")
    user = User(
        name=name.strip(),
        email=email,
        username=username,
        organization_id=organization.id,
        role=role,
        team_id=team_id,
        timezone=current_app.config.get("DEFAULT_TIMEZONE", "Asia/Kolkata"),
    )
    if password:
        user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def register(
    *,
    name: str,
    email: str,
    password: str,
    organization_id: int | None = None,
    organization_name: str | None = None,
) -> User:
    """Register a user in an existing organization or a new one."""

    if organization_id:
        organization = Organization.query.get(organization_id)
        if organization is None:
            raise ValueError("Organization not found")
    elif organization_name and organization_name.strip():
        organization = create_organization(organization_name)
    else:
        raise ValueError("Organization is required")
    return create_user(organization, name=name, email=email, password=password)


def available_username(email: str) -> str:
    """Derive a free username from an email, adding a short random suffix on collisions."""

    base = _USERNAME_INVALID.sub("", username_from_email(email))[:24] or "admin"
    candidate = base
    for _ in range(5):
        if User.query.filter(func.lower(User.username) == candidate).first() is None:
            break
        candidate = f"{base}-{secrets.token_hex(2)}"
    return candidate


def register_admin(
    *,
    name: str,
    email: str,
    password: str,
    organization_name: str,
    organization_domain: str,
) -> User:
    """Create an organization together with its first ADMIN user.

    Both rows are only flushed; the caller commits them together or rolls
    both back.
    """

    organization_name = organization_name.strip()
    domain = organization_domain.strip().lower()
    if Organization.query.filter(func.lower(Organization.name) == organization_name.lower()).first():
        raise ConflictError("An organization with this name already exists.")
    if Organization.query.filter_by(domain=domain).first() is not None:
        raise ConflictError("An organization with this domain already exists.")
    organization = create_organization(organization_name, domain)
    return create_user(
        organization,
        name=name,
        email=email,
        password=password,
        role=UserRole.ADMIN.value,
        username=available_username(email),
    )


def authenticate(email: str, password: str) -> User | None:
    email = _normalize_email(email)
    users = User.query.filter(func.lower(User.email) == email, User.is_active.is_(True)).all()
    for user in users:
        if user.check_password(password):
            return user
    return None


def find_active_user_by_email(email: str) -> User | None:
    return (
        User.query.filter(func.lower(User.email) == _normalize_email(email), User.is_active.is_(True))
        .order_by(User.id)
        .first()
    )


def search_users(organization_id: int, q: str | None = None) -> list[User]:
    query = User.query.filter(User.organization_id == organization_id)
    if q:
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(User.name).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(User.username).like(pattern),
            )
        )
    return query.order_by(User.name, User.id).all()


def get_org_user(user_id: int, organization_id: int) -> User:
    user = User.query.get(user_id)
    if user is None or user.organization_id != organization_id:
        raise LookupError("User not found.")
    return user


def update_profile(user: User, changes: dict) -> User:
    """Apply profile changes; only known keys are considered."""

    email = _normalize_email(changes["email"]) if changes.get("email") else user.email
    username = changes["username"].strip().lower() if changes.get("username") else user.username
    _ensure_unique_user(email, username, user.organization_id, exclude_id=user.id)
    for key in PROFILE_FIELDS:
        if key in changes and changes[key] is not None:
            setattr(user, key, changes[key].strip() if isinstance(changes[key], str) else changes[key])
    user.email = email
    user.username = username
    db.session.flush()
    return user


def admin_update_user(user: User, changes: dict) -> User:
    update_profile(user, changes)
    if changes.get("role"):
        user.role = UserRole(changes["role"]).value
    if "team_id" in changes:
        team_id = changes["team_id"]
        if team_id is not None:
            team = Team.query.get(team_id)
            if team is None or team.organization_id != user.organization_id:
                raise ValueError("Team must belong to your organization")
        user.team_id = team_id
    if changes.get("is_active") is not None:
        user.is_active = bool(changes["is_active"])
    if changes.get("password"):
        user.set_password(changes["password"])
    db.session.flush()
    return user


def deactivate_user(user: User) -> None:
    user.is_active = False
    db.session.flush()


def update_notification_settings(user: User, changes: dict) -> User:
    if changes.get("email") is not None:
        user.notify_email = bool(changes["email"])
    if changes.get("push") is not None:
        user.notify_push = bool(changes["push"])
    if changes.get("digest_frequency"):
        user.digest_frequency = changes["digest_frequency"]
    types = changes.get("types")
    if types:
        toggles = dict(user.notification_types or {})
        for name, enabled in types.items():
            if name in CONFIGURABLE_NOTIFICATION_TYPES:
                toggles[name] = bool(enabled)
        user.notification_types = toggles
    db.session.flush()
    return user


def create_team(organization_id: int, name: str, timezone: str | None = None) -> Team:
    name = (name or "").strip()
    if not name:
        raise ValueError("Team name is required")
    if Team.query.filter_by(organization_id=organization_id, name=name).first() is not None:
        raise ConflictError("Team already exists")
    team = Team(organization_id=organization_id, name=name)
    if timezone:
        team.timezone = timezone
    db.session.add(team)
    db.session.flush()
    return team


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_invitation(inviter: User, email: str, role: str | None, origin: str) -> tuple[Invitation, str]:
    """Store a hashed invitation token.

    Returns the invitation and the join link, the only place the plain token
    appears.
    """

    token = secrets.token_hex(20)
    days = current_app.config.get("INVITATION_EXPIRY_DAYS", 7)
    invitation = Invitation(
        email=_normalize_email(email),
        organization_id=inviter.organization_id,
        invited_by=inviter.id,
        token_hash=hash_token(token),
        role=(role or UserRole.USER.value),
        expires_at=datetime.utcnow() + timedelta(days=days),
    )
    db.session.add(invitation)
    db.session.flush()
    return invitation, f"{origin.rstrip('/')}/invite/{token}"


def send_invitation(invitation: Invitation, link: str) -> bool:
    return mail_service.send_invitation_email(invitation.email, link, invitation.organization.name)


def list_invitations(organization_id: int) -> list[Invitation]:
    now = datetime.utcnow()
    return (
        Invitation.query.filter(
            Invitation.organization_id == organization_id,
            Invitation.used.is_(False),
            Invitation.expires_at > now,
        )
        .order_by(Invitation.created_at.desc())
        .all()
    )


def accept_invitation(token: str, name: str, password: str) -> User:
    invitation = Invitation.query.filter_by(token_hash=hash_token(token or "")).one_or_none()
    if invitation is None or invitation.used or invitation.is_expired:
        raise ValueError("Invalid or expired token")
    user = create_user(
        invitation.organization,
        name=name,
        email=invitation.email,
        password=password,
        role=invitation.role,
    )
    invitation.used = True
    db.session.flush()
    return user
