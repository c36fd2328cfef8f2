# Overview: Flask CLI command groups for bootstrap, inspection, and seeding.

# Commands Legend (run from the backend directory):
# - flask --app retailpos system init [--admin-password "Password123!"]
#   Create all tables and a default admin user (idempotent).
# - flask --app retailpos system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - flask --app retailpos users create --username alice --email alice@example.com --password "Password123" [--admin]
# - flask --app retailpos products create --name "Widget" --code W-1 --buying 600 --selling 1000 --quantity 5
# - flask --app retailpos products list [--low-stock]

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import User
from .services import inventory_service
from .services.auth_service import create_user


DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_EMAIL = "admin@retailpos.local"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-password', default='Password123!', help='Password for the default admin user')
@with_appcontext
def init_system(admin_password):
    """
    Create tables and the default admin user.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing retailpos...")
    db.create_all()
    click.echo("PASS Tables created")

    admin = db.session.query(User).filter_by(username=DEFAULT_ADMIN_USERNAME).first()
    if admin:
        click.echo(f"PASS Using existing admin user (ID: {admin.id})")
        return

    try:
        admin = create_user(DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_EMAIL, admin_password, is_admin=True)
    except ServiceError as e:
        raise click.ClickException(f"Failed to create admin user: {e.message}")
    click.echo(f"PASS Created admin user: {admin.username} ({admin.email})")


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

    click.echo("PASS Database reset complete. Run 'flask --app retailpos system init' to initialize.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant admin access')
@with_appcontext
def create_user_cli(username, email, password, is_admin):
    """
    Create a new user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(username, email, password, is_admin=is_admin)
    except ServiceError as e:
        raise click.ClickException(e.message)

    role = "admin" if user.is_admin else "user"
    click.echo(f"PASS Created {role}: {user.username} ({user.email}) ID {user.id}")


@click.group('products')
def products_group():
    """Inventory seeding and inspection."""


@products_group.command('create')
@click.option('--name', required=True)
@click.option('--code', 'product_code', required=True, help='Unique product code')
@click.option('--category', default='Uncategorized')
@click.option('--unit', default='pcs')
@click.option('--buying', 'buying_price_cents', type=int, default=0, help='Buying price in cents')
@click.option('--selling', 'selling_price_cents', type=int, default=0, help='Selling price in cents')
@click.option('--quantity', type=int, default=0)
@click.option('--reorder-level', type=int, default=5)
@with_appcontext
def create_product_cli(**fields):
    try:
        product = inventory_service.create_product(fields)
    except ServiceError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created product {product.product_code} (ID: {product.id}) qty={product.quantity}")


@products_group.command('list')
@click.option('--low-stock', is_flag=True, help='Only products at or below their reorder level')
@with_appcontext
def list_products_cli(low_stock):
    products = inventory_service.list_products(low_stock=low_stock)
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Code':<15} {'Name':<30} {'Qty':>6} {'Buy':>10} {'Sell':>10}")
    click.echo("=" * 80)
    for p in products:
        flag = " LOW" if p.is_low_stock else ""
        click.echo(
            f"{p.id:<5} {p.product_code:<15} {p.name[:30]:<30} {p.quantity:>6} "
            f"{p.buying_price_cents:>10} {p.selling_price_cents:>10}{flag}"
        )
    click.echo("=" * 80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
