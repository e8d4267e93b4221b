"""Tenancy boundaries.

An Organization owns every user, task and project created inside it.
A Team groups users of one organization and carries the timezone used for
daily objectives and dashboards.
"""
from __future__ import annotations

import re
from datetime import datetime

from database import db

DEFAULT_TEAM_TIMEZONE = "Asia/Kolkata"

_DOMAIN_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify_domain(name: str | None) -> str:
    """Return the lowercase slug used as an organization domain."""

    slug = _DOMAIN_PATTERN.sub("-", (name or "").strip().lower())
    return slug.strip("-")


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    domain = db.Column(db.String(120), nullable=False, unique=True)
    settings = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    teams = db.relationship(
        "Team",
        back_populates="organization",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    users = db.relationship("User", back_populates="organization", lazy="dynamic")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "settings": self.settings or {},
        }

    def __repr__(self):
        return f"<Organization {self.domain}>"


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True
    )
    timezone = db.Column(db.String(64), nullable=False, default=DEFAULT_TEAM_TIMEZONE)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    organization = db.relationship("Organization", back_populates="teams")
    members = db.relationship("User", back_populates="team", lazy="dynamic")

    __table_args__ = (
        db.UniqueConstraint("organization_id", "name", name="uq_team_org_name"),
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "organization_id": self.organization_id,
            "timezone": self.timezone,
        }

    def __repr__(self):
        return f"<Team {self.name}>"
