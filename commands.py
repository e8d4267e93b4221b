"""Flask CLI commands for scheduled jobs and provisioning.

Usage:
> flask notify-due
> flask send-digests
> flask create-admin admin@example.com --organization "Acme" --password secret123
"""
from __future__ import annotations

import click
from flask import current_app

from database import db
from models.user import UserRole
from services import account_service, reminder_service
from services.account_service import ConflictError


def register_commands(app) -> None:
    @app.cli.command("notify-due")
    @click.option("--interval", type=int, default=None, help="Sweep interval in minutes.")
    def notify_due(interval):
        """Send due soon, due now and overdue reminders."""

        result = reminder_service.run_due_sweep(interval_minutes=interval)
        db.session.commit()
        current_app.logger.info(
            "Due sweep: %s due soon, %s due now, %s overdue",
            result.due_soon,
            result.due_now,
            result.overdue,
        )
        click.echo(f"due_soon={result.due_soon} due_now={result.due_now} overdue={result.overdue}")

    @app.cli.command("send-digests")
    def send_digests():
        """Email digests of unread notifications."""

        sent = reminder_service.send_digests()
        db.session.commit()
        click.echo(f"Sent {sent} digest(s).")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.option("--organization", required=True, help="Organization name.")
    @click.option("--name", default=None, help="Display name of the admin.")
    @click.password_option()
    def create_admin(email, organization, name, password):
        """Provision an organization and its first ADMIN user."""

        try:
            org = account_service.create_organization(organization)
            user = account_service.create_user(
                org,
                name=name or account_service.username_from_email(email),
                email=email,
                password=password,
                role=UserRole.ADMIN.value,
            )
        except (ValueError, ConflictError) as exc:
            db.session.rollback()
            raise click.ClickException(str(exc)) from exc
        db.session.commit()
        click.echo(f"Created admin {user.email} (id {user.id}) in {org.name}.")
