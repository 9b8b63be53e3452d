# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/prodflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-password "..."]
#   Idempotent bootstrap: permission catalog, default roles and the admin superuser.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--all]
#   List users with roles and active status.
# - python -m flask users create --login jan --email jan@prodflow.local --password "Password123!" --role Worker
#   Create a user (prompts if options are omitted).
#
# Permission inspection:
# - python -m flask perms list [--module inventory] [--role Manager]
#   List the permission catalog, or a role's levels.
# - python -m flask perms check jan inventory.manage --level 2
#   Check whether a user holds a permission at a level.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --days 30
#   Delete expired or revoked tokens older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Role, Permission
from .permissions import ADMIN_ROLE, PermissionLevel, split_permission_key, validate_level, validate_permission_key
from .services import permission_service, role_service, session_service, user_service
from .services.auth_service import PasswordValidationError
from .validation import ValidationError, ConflictError


DEFAULT_ADMIN_LOGIN = "admin"
DEFAULT_ADMIN_EMAIL = "admin@prodflow.local"
DEFAULT_ADMIN_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-login', default=DEFAULT_ADMIN_LOGIN, show_default=True)
@click.option('--admin-email', default=DEFAULT_ADMIN_EMAIL, show_default=True)
@click.option('--admin-password', default=DEFAULT_ADMIN_PASSWORD, help='Admin password')
@with_appcontext
def init_system(admin_login, admin_email, admin_password):
    """
    Initialize the system: permission catalog, default roles and an admin superuser.

    Safe to run repeatedly.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing prodflow...")

    perm_count = permission_service.initialize_permissions()
    role_service.invalidate_catalog_cache()
    click.echo(f"PASS Permission catalog ready ({perm_count} created)")

    role_count = role_service.create_default_roles()
    roles = db.session.query(Role).order_by(Role.name).all()
    click.echo(f"PASS Roles ({role_count} created): {', '.join(r.name for r in roles)}")

    existing = db.session.query(User).filter_by(login=admin_login).first()
    if existing:
        click.echo(f"WARN  User '{admin_login}' already exists, skipping...")
    else:
        admin_role = db.session.query(Role).filter_by(name=ADMIN_ROLE).first()
        try:
            user_service.create_user(
                login=admin_login,
                email=admin_email,
                password=admin_password,
                first_name="System",
                last_name="Administrator",
                role_ids=[admin_role.id] if admin_role else [],
                is_superuser=True,
            )
            click.echo(f"PASS Created superuser: {admin_login} ({admin_email})")
        except (PasswordValidationError, ValidationError, ConflictError) as e:
            click.echo(f"FAIL Failed to create '{admin_login}': {str(e)}")
            return

    click.echo("\n" + "="*60)
    click.echo("DONE prodflow initialized")
    click.echo("="*60)
    if admin_password == DEFAULT_ADMIN_PASSWORD and not existing:
        click.echo(f"\nDefault credentials: {admin_login} / {DEFAULT_ADMIN_PASSWORD} (CHANGE IN PRODUCTION!)")


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
    role_service.invalidate_catalog_cache()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--login', prompt=True, help='Login')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', 'role_names', multiple=True, help='Role name (repeatable)')
@click.option('--first-name', default='')
@click.option('--last-name', default='')
@click.option('--superuser', is_flag=True, help='Grant the superuser flag')
@with_appcontext
def create_user_cli(login, email, password, role_names, first_name, last_name, superuser):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    role_ids = []
    for name in role_names:
        role = db.session.query(Role).filter(db.func.lower(Role.name) == name.lower()).first()
        if not role:
            click.echo(f"FAIL Role '{name}' not found")
            return
        role_ids.append(role.id)

    try:
        user = user_service.create_user(
            login=login,
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role_ids=role_ids,
            is_superuser=superuser,
        )
    except (PasswordValidationError, ValidationError, ConflictError) as e:
        click.echo(f"FAIL {str(e)}")
        return

    click.echo(f"PASS Created user: {user.login} (ID: {user.id})")


@users_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated users')
@with_appcontext
def list_users(include_inactive):
    """List users with their roles."""
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    users = query.order_by(User.login).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Login':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*90)

    for user in users:
        roles = [r["name"] for r in user_service.user_roles(user.id)]
        if user.is_superuser:
            roles.append("*superuser*")
        click.echo(
            f"{user.id:<5} {user.login:<20} {user.email:<30} {str(user.is_active):<8} {', '.join(roles) or '-'}"
        )


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--module', help='Filter by module')
@click.option('--role', help='Show the levels held by a role')
@with_appcontext
def list_permissions_cli(module, role):
    """List the permission catalog, or the levels of one role."""
    if role:
        role_obj = db.session.query(Role).filter(db.func.lower(Role.name) == role.lower()).first()
        if not role_obj:
            click.echo(f"FAIL Role '{role}' not found")
            return

        click.echo(f"\nPermissions for role: {role_obj.name}{' (superuser)' if role_obj.is_superuser else ''}")
        click.echo("-"*60)
        for key, level in sorted(role_service.flatten_role_permissions(role_obj.id).items()):
            if module and not key.startswith(f"{module}."):
                continue
            click.echo(f"{key:<40} {level}")
        return

    query = db.session.query(Permission)
    if module:
        query = query.filter(Permission.module == module)
    permissions = query.order_by(Permission.module, Permission.id).all()

    click.echo(f"\n{'Key':<35} {'Description'}")
    click.echo("-"*80)
    for perm in permissions:
        click.echo(f"{perm.key:<35} {perm.description or ''}")
    click.echo(f"\nTotal: {len(permissions)}")


@perms_group.command('check')
@click.argument('login')
@click.argument('permission_key')
@click.option('--level', type=int, default=1, show_default=True)
@with_appcontext
def check_permission_cli(login, permission_key, level):
    """Check if a user holds module.action at a level."""
    parts = split_permission_key(permission_key)
    if parts is None:
        click.echo(f"FAIL Permission key must look like module.action, got '{permission_key}'")
        return
    if not validate_level(level):
        click.echo("FAIL Level must be 0, 1, 2 or 3")
        return
    module, action = parts
    if not validate_permission_key(permission_key):
        click.echo(f"WARN '{permission_key}' is not in the permission catalog")

    user = db.session.query(User).filter_by(login=login).first()
    if not user:
        click.echo(f"FAIL User '{login}' not found")
        return

    snapshot = permission_service.snapshot_for_user(user)
    if permission_service.has_permission(snapshot, module, action, level):
        click.echo(f"PASS User '{login}' HAS '{permission_key}' at level {level}")
    else:
        click.echo(f"FAIL User '{login}' DOES NOT HAVE '{permission_key}' at level {level}")

    roles = [r["name"] for r in user_service.user_roles(user.id)]
    click.echo(f"\nUser roles: {', '.join(roles) or '-'}")
    click.echo(f"Superuser: {snapshot.is_superuser}")
    effective = PermissionLevel.FULL if snapshot.is_superuser else snapshot.permissions.get(permission_key, 0)
    click.echo(f"Effective level: {effective}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(days):
    """Delete expired or revoked access/refresh tokens older than --days."""
    deleted = session_service.cleanup_expired_sessions(days=days)
    click.echo(f"Deleted {deleted} tokens older than {days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(maintenance_group)
