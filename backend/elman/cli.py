# Overview: Flask CLI command groups for database bootstrap and staff accounts.

# backend/elman/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init
#   Create any missing tables (idempotent). Use `flask db upgrade` for managed schemas.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username amina --password "Password123!" --role cashier
#   Create a user (prompts if options are omitted).
# - python -m flask users reset-password --username amina
#   Set a new password and revoke every session of that user.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models.auth import USER_ROLES
from .services.auth_service import create_user, list_users, reset_password


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    click.echo("START Creating tables...")
    db.create_all()
    click.echo("PASS Schema ready. Create the first owner with 'flask users create' or POST /api/auth/bootstrap.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """Staff account inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users."""
    users = list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Username':<25} {'Role':<10} {'Active':<8} {'Last login'}")
    click.echo("=" * 70)
    for user in users:
        active_str = "Yes" if user["is_active"] else "No"
        click.echo(
            f"{user['id']:<5} {user['username']:<25} {user['role']:<10} {active_str:<8} "
            f"{user['last_login_at'] or '-'}"
        )
    click.echo("=" * 70 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(USER_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username, password, role=role)
    except DomainError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")


@users_group.command('reset-password')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def reset_password_cli(username, password):
    """Set a new password; all of the user's sessions are revoked."""
    try:
        user = reset_password(username, password)
    except DomainError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Password reset for '{user.username}'. Existing sessions revoked.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
