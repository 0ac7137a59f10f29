# Overview: Flask CLI command groups for bootstrap, drawer sessions and inventory inspection.

# backend/hwpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent: creates tables plus default admin and cashier users.
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jo --name "Jo Cashier" --password "secret123" --capability ACCESS_POS
#
# Cash register sessions:
# - python -m flask sessions open --username cashier --opening 10000
# - python -m flask sessions close 3 --username cashier --actual 15250
# - python -m flask sessions list --status open
# - python -m flask sessions summary 3
#
# Inventory:
# - python -m flask inventory items --search drill
# - python -m flask inventory history 12 --limit 20

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import User
from .models.registers import SESSION_CLOSED, SESSION_OPEN
from .permissions import get_all_capability_codes
from .services import audit_service, inventory_service, register_service
from .services.user_service import create_user, resolve_actor

DEFAULT_PASSWORD = "Password123!"


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"${cents / 100:,.2f}"


def _actor_for(username: str):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.BadParameter(f"Unknown user '{username}'", param_hint="--username")
    try:
        return resolve_actor(user.id)
    except LedgerError as exc:
        _fail(exc)


def _fail(exc: LedgerError) -> None:
    click.echo(f"FAIL {exc.message}")
    raise click.exceptions.Exit(1)


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--password', default=DEFAULT_PASSWORD, help='Password for the default users')
@with_appcontext
def init_system(password):
    """
    Create tables and default users.

    Creates:
    - admin (administrator)
    - cashier (POS, drawer and customers)

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing hwpos...")
    db.create_all()
    click.echo("PASS Tables ready")

    default_users = [
        ("admin", "Administrator", True, []),
        ("cashier", "Cashier", False, ["ACCESS_POS", "ACCESS_DRAWER", "ACCESS_CUSTOMERS"]),
    ]
    for username, name, is_admin, capabilities in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username, name, password, is_admin=is_admin, capabilities=capabilities)
        except LedgerError as exc:
            click.echo(f"FAIL Failed to create user '{username}': {exc.message}")
            continue
        click.echo(f"PASS Created user: {username}")

    click.echo("DONE hwpos initialized")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their capabilities."""
    users = db.session.query(User).order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        role = "admin" if user.is_admin else ", ".join(sorted(user.capability_codes)) or "-"
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:<5} {user.username:<20} {status:<9} {role}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--admin', 'is_admin', is_flag=True, default=False, help='Grant administrator rights')
@click.option(
    '--capability', 'capabilities', multiple=True,
    type=click.Choice(get_all_capability_codes()),
    help='Capability to grant (repeatable)',
)
@with_appcontext
def create_user_cli(username, name, password, is_admin, capabilities):
    """Create a user."""
    try:
        user = create_user(username, name, password, is_admin=is_admin, capabilities=list(capabilities))
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"PASS Created user {user.username} (ID: {user.id})")


# =============================================================================
# SESSIONS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Cash register session commands."""


@sessions_group.command('open')
@click.option('--username', required=True)
@click.option('--opening', 'opening_cents', type=int, default=0, help='Opening float in cents')
@with_appcontext
def open_session_cli(username, opening_cents):
    """Open the cash drawer."""
    actor = _actor_for(username)
    try:
        session = register_service.open_session(actor, opening_cents)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"PASS Opened session {session.id} with {_money(session.opening_balance_cents)}")


@sessions_group.command('close')
@click.argument('session_id', type=int)
@click.option('--username', required=True)
@click.option('--actual', 'actual_cents', type=int, required=True, help='Counted cash in cents')
@with_appcontext
def close_session_cli(session_id, username, actual_cents):
    """Close a session with the counted cash."""
    actor = _actor_for(username)
    try:
        session = register_service.close_session(actor, session_id, actual_cents)
    except LedgerError as exc:
        _fail(exc)
    click.echo(
        f"PASS Closed session {session.id}: expected {_money(session.expected_cash_cents)}, "
        f"counted {_money(session.actual_cash_cents)}, variance {_money(session.variance_cents)}"
    )


@sessions_group.command('list')
@click.option('--status', type=click.Choice([SESSION_OPEN, SESSION_CLOSED]), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(status, limit):
    """List recent sessions."""
    sessions = register_service.list_sessions(status=status, limit=limit)
    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo(f"{'ID':<5} {'Status':<8} {'Opened by':<10} {'Opening':>12} {'Cash sales':>12} {'Expected':>12} {'Actual':>12}")
    for session in sessions:
        click.echo(
            f"{session.id:<5} {session.status:<8} {session.opened_by_user_id:<10} "
            f"{_money(session.opening_balance_cents):>12} {_money(session.cash_sales_cents):>12} "
            f"{_money(session.expected_cash_cents):>12} {_money(session.actual_cash_cents):>12}"
        )


@sessions_group.command('summary')
@click.argument('session_id', type=int)
@with_appcontext
def session_summary_cli(session_id):
    """Show the shift summary for a session."""
    try:
        summary = register_service.get_shift_summary(session_id)
    except LedgerError as exc:
        _fail(exc)
    session = summary["session"]
    click.echo(f"Session {session['id']} ({session['status']})")
    click.echo(f"  Sales:             {summary['sales_count']}")
    click.echo(f"  Cash sales:        {_money(session['cash_sales_cents'])}")
    click.echo(f"  Bank sales:        {_money(summary['bank_sales_cents'])}")
    click.echo(f"  Credit sales:      {_money(summary['credit_sales_cents'])}")
    click.echo(f"  Cash debt repaid:  {_money(summary['cash_debt_repaid_cents'])}")
    click.echo(f"  Bank debt repaid:  {_money(summary['bank_debt_repaid_cents'])}")
    click.echo(f"  Expected cash:     {_money(session['expected_cash_cents'])}")
    for row in summary["item_sales"]:
        click.echo(f"    {row['name']:<30} x{row['quantity']:<5} {_money(row['total_cents'])}")


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('items')
@click.option('--search', default=None, help='Filter by name')
@with_appcontext
def list_items_cli(search):
    """List items with stock and cost."""
    items = inventory_service.list_items(search)
    if not items:
        click.echo("No items found.")
        return
    for item in items:
        click.echo(f"{item.id:<5} {item.name:<30} stock={item.stock:<6} cost={_money(item.cost_cents)} price={_money(item.price_cents)}")


@inventory_group.command('history')
@click.argument('item_id', type=int)
@click.option('--limit', type=int, default=20)
@with_appcontext
def item_history_cli(item_id, limit):
    """Show stock movements for an item, newest first."""
    logs = audit_service.item_history(item_id, limit=limit)
    if not logs:
        click.echo("No stock movements found.")
        return
    for log in logs:
        click.echo(
            f"{log.id:<6} {log.type:<11} {log.quantity_change:+6} {log.old_stock:>6} -> {log.new_stock:<6} "
            f"{log.description or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(inventory_group)
