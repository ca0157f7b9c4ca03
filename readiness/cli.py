"""
Custom Flask CLI commands.

These commands are registered with the app via ``register_commands()``
in the application factory. Run them with ``flask <command_name>``.

Usage::

    flask db-check                                  # Connectivity + tables
    flask create-admin --email admin@example.com    # Provision a system admin
    flask seed-templates                            # Default AI template
"""

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import inspect
from sqlalchemy.engine import make_url

from readiness import rbac
from readiness.errors import ServiceError
from readiness.extensions import db
from readiness.services import auth_service, user_service


@click.command("db-check")
@with_appcontext
def db_check_command():
    """
    Verify database connectivity and confirm the application tables exist.

    Prints the (password-masked) connection string, runs a trivial query,
    and compares the tables in the database with the ORM metadata.
    """
    click.echo("=" * 60)
    click.echo("  AI Readiness Platform — Database Connectivity Check")
    click.echo("=" * 60)

    db_uri = make_url(current_app.config["SQLALCHEMY_DATABASE_URI"])
    masked = db_uri.render_as_string(hide_password=True)
    click.echo(f"\n  Connection string: {masked}\n")

    # -- Step 1: Basic connectivity ----------------------------------------
    click.echo("[1/2] Testing connection...")
    try:
        db.session.execute(db.text("SELECT 1"))
        click.secho("      ✓ Connected successfully.", fg="green")
    except Exception as exc:  # pylint: disable=broad-exception-caught
        click.secho(f"      ✗ Connection failed: {exc}", fg="red")
        click.echo("\n  Troubleshooting tips:")
        click.echo("    - Is PostgreSQL running and reachable?")
        click.echo("    - Does DATABASE_URL use the postgresql+psycopg:// dialect?")
        raise SystemExit(1)

    # -- Step 2: Compare tables with the models ----------------------------
    click.echo("[2/2] Checking tables...\n")
    expected = set(db.metadata.tables)
    present = set(inspect(db.engine).get_table_names())
    missing = sorted(expected - present)
    for name in sorted(expected & present):
        click.echo(f"      ✓ {name}")
    for name in missing:
        click.secho(f"      ✗ {name} (missing)", fg="red")

    click.echo("\n" + "=" * 60)
    if missing:
        click.secho("  Tables are missing. Run: flask db upgrade", fg="yellow")
        raise SystemExit(1)
    click.secho("  All checks passed. Database is ready.", fg="green", bold=True)


@click.command("create-admin")
@click.option("--email", required=True, help="Email address of the admin.")
@click.option("--first", "first_name", default="System", show_default=True)
@click.option("--last", "last_name", default="Admin", show_default=True)
@click.password_option(help="Password for the new admin.")
@with_appcontext
def create_admin_command(email: str, first_name: str, last_name: str, password: str):
    """
    Create a ``system_admin`` account, or promote an existing one.
    """
    existing = user_service.get_user_by_email(email)
    if existing is not None:
        existing.role = rbac.SYSTEM_ADMIN
        existing.is_active = True
        db.session.commit()
        click.secho(
            f"  ✓ Existing user {existing.email} is now a system admin.", fg="green"
        )
        return

    try:
        email = auth_service.validate_email(email)
        auth_service.validate_password(password)
        user = user_service.create_user(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=rbac.SYSTEM_ADMIN,
            confirmed=True,
        )
    except ServiceError as exc:
        db.session.rollback()
        click.secho(f"  ✗ {exc.message}", fg="red")
        raise SystemExit(1) from exc

    db.session.commit()
    click.secho(f"  ✓ Created system admin {user.email} (id={user.id}).", fg="green")


def register_commands(app):
    """Register all custom CLI commands with the Flask application."""
    # pylint: disable=import-outside-toplevel
    from readiness.seed_templates import register_seed_commands

    app.cli.add_command(db_check_command)
    app.cli.add_command(create_admin_command)
    register_seed_commands(app)
