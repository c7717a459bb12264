# Overview: Flask CLI command groups for bootstrap, users and ledger checks.

# Commands Legend (run from the backend directory):
# - Set FLASK_APP to wsgi.py (bash: export FLASK_APP=wsgi.py).
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-demo
#   Create a demo branch, products and one user per role.
#
# Users:
# - python -m flask users create --username jane --email jane@example.com --password "Password123!" --role SALES
#   Create a user (prompts if options are omitted).
#
# Stock ledger:
# - python -m flask stock verify
#   Check every (product, branch) chain against replay and the cache.
#   Exits with status 1 when any discrepancy is found.

import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ValidationError
from .models import Branch, Product, User
from .permissions import Role
from .services.auth_service import create_user, PasswordValidationError
from .services import stock_ledger_service


DEMO_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db_cli():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo_cli():
    """Create a demo branch, two products and a manager/sales/finance user (idempotent)."""
    db.create_all()

    branch = db.session.query(Branch).filter_by(name="Main Branch").first()
    if not branch:
        branch = Branch(name="Main Branch", code="MAIN")
        db.session.add(branch)

    for code, name in (("P-0001", "Interior Paint 4L"), ("P-0002", "Roller Set")):
        if not db.session.query(Product).filter_by(item_code=code).first():
            db.session.add(Product(item_code=code, name=name))
    db.session.commit()
    click.echo(f"PASS Branch: {branch.name} (ID: {branch.id})")

    for username, role in (("manager", Role.MANAGER), ("sales", Role.SALES), ("finance", Role.FINANCE)):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User exists: {username}")
            continue
        create_user(
            username=username,
            email=f"{username}@stockflow.local",
            password=DEMO_PASSWORD,
            role=role,
            branch_id=branch.id,
        )
        click.echo(f"PASS Created user: {username} ({role})")

    click.echo(f"Demo password for all users: {DEMO_PASSWORD}")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(Role.ALL)), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Primary branch')
@with_appcontext
def create_user_cli(username, email, password, role, branch_id):
    """
    Create a new user.

    Password must be 8+ characters with uppercase, lowercase, digit and
    special character.
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            branch_id=branch_id,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        sys.exit(1)
    except ValidationError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        sys.exit(1)

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")


@click.group('stock')
def stock_group():
    """Stock ledger commands."""


@stock_group.command('verify')
@with_appcontext
def verify_stock_cli():
    """Verify every snapshot chain and cached quantity."""
    reports = stock_ledger_service.verify_all_chains()
    failed = [r for r in reports if not r.ok]

    for report in failed:
        click.echo(f"FAIL product {report.product_id} @ branch {report.branch_id}")
        for problem in report.problems:
            click.echo(f"     {problem}")

    click.echo(f"Checked {len(reports)} pair(s), {len(failed)} with discrepancies")
    if failed:
        sys.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
