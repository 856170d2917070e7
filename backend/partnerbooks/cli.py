# Overview: Flask CLI command groups for bootstrap, inspection, reconciliation and maintenance.

# backend/partnerbooks/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app wsgi <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app wsgi system init [--org "Org Name"] [--owner-email owner@example.com]
#   Create tables, a default organization, its roles and an owner user.
# - flask --app wsgi system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management:
# - flask --app wsgi orgs list
# - flask --app wsgi orgs create --name "Acme Corp" --code "ACME"
#
# Users:
# - flask --app wsgi users list [--org-id 1]
# - flask --app wsgi users create --org-id 1 --name "Jane Doe" --email jane@example.com --password "Password123!" --role bookkeeper
#
# Ledger reconciliation:
# - flask --app wsgi ledger verify [--org-id 1] [--fix]
#   Compare running totals with the ledger rows; --fix corrects drift.
#
# Maintenance:
# - flask --app wsgi maintenance cleanup-sessions
# - flask --app wsgi maintenance cleanup-security-events --retention-days 90

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import Organization, User
from .permissions import ROLE_NAMES
from .services import maintenance_service, permission_service, reconciliation_service, session_service
from .services.auth_service import create_user


DEFAULT_OWNER_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--owner-email', default='owner@partnerbooks.local', help='Email of the default owner')
@click.option('--owner-password', default=DEFAULT_OWNER_PASSWORD, help='Password of the default owner')
@with_appcontext
def init_system(org_name, org_code, owner_email, owner_password):
    """
    Idempotent bootstrap: schema, default organization, roles and owner.

    SECURITY: Change the owner password immediately in production!
    """
    click.echo("START Initializing PartnerBooks...")

    db.create_all()
    click.echo("PASS Schema ready")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    permission_service.ensure_org_roles(org.id)
    db.session.commit()
    click.echo(f"PASS Roles ready: {', '.join(ROLE_NAMES)}")

    if db.session.query(User).filter_by(email=owner_email.lower()).first():
        click.echo(f"PASS Owner already exists: {owner_email}")
    else:
        try:
            owner = create_user(
                org_id=org.id,
                name="Owner",
                email=owner_email,
                password=owner_password,
                role="owner",
            )
        except LedgerError as e:
            click.echo(f"FAIL Could not create owner: {e.message}")
            return
        click.echo(f"PASS Created owner: {owner.email}")

    click.echo("\nDONE System initialized.")


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

    click.echo("PASS Database reset complete. Run 'flask system init' to initialize.")


# =============================================================================
# ORGANIZATION COMMANDS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("=" * 70)

    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")

    click.echo("=" * 70 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant) with its default roles."""
    if db.session.query(Organization).filter_by(code=code).first():
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.flush()
    permission_service.ensure_org_roles(org.id)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLE_NAMES), default='bookkeeper', show_default=True)
@with_appcontext
def create_user_cli(org_id, name, email, password, role):
    """Create a user in an organization."""
    try:
        user = create_user(org_id=org_id, name=name, email=email, password=password, role=role)
    except LedgerError as e:
        details = "; ".join(err["message"] for err in getattr(e, "errors", [])) or e.message
        click.echo(f"FAIL {details}")
        return
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, Org: {user.org_id}, Role: {role})")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)
    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Org':<5} {'Name':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("=" * 90)

    for user in users:
        roles_str = ", ".join(permission_service.get_user_role_names(user.id)) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.org_id:<5} {user.name:<20} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("=" * 90 + "\n")


# =============================================================================
# LEDGER COMMANDS
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger reconciliation commands."""


@ledger_group.command('verify')
@click.option('--org-id', type=int, help='Only check this organization')
@click.option('--fix', is_flag=True, help='Correct drifted totals')
@with_appcontext
def verify_ledger(org_id, fix):
    """Compare running totals against ledger rows."""
    if org_id:
        drift = reconciliation_service.verify_org(org_id)
        report = {org_id: drift} if drift else {}
    else:
        report = reconciliation_service.verify_all()

    if not report:
        click.echo("PASS All running totals match the ledger.")
        return

    for report_org_id, drift in report.items():
        for d in drift:
            click.echo(
                f"DRIFT org={report_org_id} {d.entity}={d.entity_id} "
                f"recorded={d.recorded_cents} expected={d.expected_cents} delta={d.delta_cents}"
            )
        if fix:
            try:
                repaired = reconciliation_service.repair_org(report_org_id)
            except LedgerError as e:
                click.echo(f"FAIL org={report_org_id}: {e.message}")
                continue
            click.echo(f"PASS org={report_org_id}: repaired {len(repaired)} totals")

    if not fix:
        raise click.exceptions.Exit(1)


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired or revoked sessions older than the retention window."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """Cleanup old security events. Default retention: 90 days."""
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
