# Overview: Flask CLI command groups for bootstrap, users and demo data.

# backend/retail_pos/cli.py
# Commands Legend (run from the backend directory):
# - Set FLASK_APP to wsgi.py.
# - python -m flask system init
#   Idempotent bootstrap: roles, a default store and default users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask users create --username alice --email alice@pos.local --password "Password123" --role Cashier --store-id 1
#   Create a user (prompts if options are omitted).
# - python -m flask users list
# - python -m flask demo seed
#   Sample categories, products, stock and one assembly offer in the default store.

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Product, Store, User
from .services.assembly_service import create_offer, list_offers_for_store
from .services.auth_service import (
    DEFAULT_ROLES,
    PasswordValidationError,
    create_default_roles,
    create_user,
)
from .services.inventory_service import receive_stock, transfer_to_pos

DEFAULT_PASSWORD = "Password123"
ROLE_NAMES = [name for name, _ in DEFAULT_ROLES]


def _default_store() -> Store | None:
    return db.session.query(Store).order_by(Store.id.asc()).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--store-name', default='Main Store', help='Name of the default store')
@click.option('--password', default=DEFAULT_PASSWORD, help='Password for the default users')
@with_appcontext
def init_system(store_name, password):
    """
    Create roles, a default store and one user per role.

    Users: admin (SuperAdmin), manager (StoreManager), cashier (Cashier).
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing retail POS...")

    create_default_roles()
    click.echo(f"PASS Roles ready: {', '.join(ROLE_NAMES)}")

    store = _default_store()
    if not store:
        store = Store(name=store_name, code="MAIN", is_active=True)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    defaults = [
        ("admin", "admin@pos.local", "Administrator", "SuperAdmin"),
        ("manager", "manager@pos.local", "Store Manager", "StoreManager"),
        ("cashier", "cashier@pos.local", "Cashier", "Cashier"),
    ]
    for username, email, full_name, role in defaults:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User {username} already exists")
            continue
        try:
            create_user(username, email, password, store_id=store.id, full_name=full_name, roles=(role,))
        except PasswordValidationError as e:
            raise click.ClickException(f"Password validation failed: {e}")
        click.echo(f"PASS Created user: {username} ({role})")

    click.echo("DONE System initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_NAMES), prompt=True, help='Role')
@click.option('--store-id', type=int, default=None, help='Assigned store (defaults to the first store)')
@click.option('--full-name', default=None, help='Display name on receipts')
@with_appcontext
def create_user_cli(username, email, password, role, store_id, full_name):
    """Create a new user with one role."""
    create_default_roles()

    if store_id is None and role != "SuperAdmin":
        store = _default_store()
        if not store:
            raise click.ClickException("No store found. Run 'python -m flask system init' first.")
        store_id = store.id

    try:
        user = create_user(
            username,
            email,
            password,
            store_id=store_id,
            full_name=full_name,
            roles=(role,),
        )
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except ValueError as e:
        raise click.ClickException(f"Failed to create user: {e}")

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{role}'")
    click.echo(f"     Store ID: {user.store_id}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and store."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        roles = ", ".join(sorted(ur.role.name for ur in user.user_roles)) or "-"
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<16} {roles:<24} store={user.store_id}  {status}")


@click.group('demo')
def demo_group():
    """Sample data for local development."""


@demo_group.command('seed')
@with_appcontext
def seed_demo():
    """Categories, products, stock and a combo offer in the default store."""
    store = _default_store()
    if not store:
        raise click.ClickException("No store found. Run 'python -m flask system init' first.")

    category = db.session.query(Category).filter_by(name="Beverages").first()
    if not category:
        category = Category(name="Beverages")
        db.session.add(category)
        db.session.commit()

    catalogue = [
        ("BEV-COLA", "Cola 330ml", Decimal("1.50"), Decimal("48"), Decimal("24")),
        ("BEV-WATER", "Still Water 500ml", Decimal("1.00"), Decimal("60"), Decimal("30")),
        ("SNK-CHIPS", "Potato Chips", Decimal("2.25"), Decimal("40"), Decimal("20")),
    ]
    products = {}
    for sku, name, price, storeroom, floor in catalogue:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if not product:
            product = Product(sku=sku, name=name, unit_price=price, category_id=category.id)
            db.session.add(product)
            db.session.commit()
            receive_stock(
                store_id=store.id,
                product_id=product.id,
                quantity=storeroom + floor,
                minimum_stock_level=Decimal("10"),
            )
            transfer_to_pos(store_id=store.id, product_id=product.id, quantity=floor)
            click.echo(f"PASS Product {sku} stocked: storeroom={storeroom} pos={floor}")
        products[sku] = product

    if not any(o.name == "Snack Combo" for o in list_offers_for_store(store.id)):
        offer = create_offer(
            name="Snack Combo",
            batch_quantity=Decimal("1"),
            sale_price=Decimal("3.25"),
            store_id=store.id,
            materials=[
                {"raw_product_id": products["BEV-COLA"].id, "required_quantity": Decimal("1")},
                {"raw_product_id": products["SNK-CHIPS"].id, "required_quantity": Decimal("1")},
            ],
        )
        click.echo(f"PASS Assembly offer '{offer.name}' created (ID: {offer.id})")

    click.echo("DONE Demo data ready")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(demo_group)
