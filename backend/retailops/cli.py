# Overview: Flask CLI command groups for bootstrap, catalog setup and ledger verification.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   One store, one user per role, three products with opening stock.
#
# Stores and users:
# - python -m flask stores create --name "Main Store" --code MAIN
# - python -m flask stores list
# - python -m flask users create --username mgr --email mgr@retailops.local --role manager --store-id 1
# - python -m flask users list
#
# Catalog:
# - python -m flask catalog add-product --sku SKU-1 --name "Widget" --price-cents 1999 --supplier-id 4 --store-id 1
# - python -m flask catalog authorize-store --product-id 1 --store-id 2
#
# Ledger:
# - python -m flask ledger verify [--store-id 1]
#   Replay every ledger's movements and report entries whose quantity disagrees.
# - python -m flask ledger alerts --store-id 1
#   List out-of-stock, low-stock and overstock entries.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User
from .models.auth import ROLES, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_MANAGER, ROLE_STAFF, ROLE_SUPPLIER
from .services import catalog_service, ledger_service
from .services.auth_service import create_user
from .services.stock_rules import MovementType
from .validation import EngineError


DEMO_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


def _ensure_store(name: str, code: str) -> Store:
    store = db.session.query(Store).filter_by(code=code).first()
    if store is None:
        store = Store(name=name, code=code, is_active=True)
        db.session.add(store)
        db.session.commit()
    return store


def _ensure_user(username: str, role: str, **kwargs) -> User:
    user = db.session.query(User).filter_by(username=username).first()
    if user is None:
        user = create_user(
            username=username,
            email=f"{username}@retailops.local",
            password=DEMO_PASSWORD,
            role=role,
            **kwargs,
        )
    return user


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Idempotent demo data: one store, one user per role (password "Password123!"),
    three products authorized for the store, and opening stock for each.
    """
    db.create_all()
    store = _ensure_store("Main Store", "MAIN")
    click.echo(f"PASS Store: {store.name} (ID: {store.id})")

    users = {
        ROLE_ADMIN: _ensure_user("admin", ROLE_ADMIN),
        ROLE_MANAGER: _ensure_user("manager", ROLE_MANAGER, store_id=store.id),
        ROLE_STAFF: _ensure_user("staff", ROLE_STAFF, store_id=store.id),
        ROLE_SUPPLIER: _ensure_user("supplier", ROLE_SUPPLIER, company_name="Acme Wholesale"),
        ROLE_CUSTOMER: _ensure_user("customer", ROLE_CUSTOMER),
    }
    for role, user in users.items():
        click.echo(f"PASS User: {user.username} ({role}, ID: {user.id})")

    catalog = [
        ("DEMO-001", "Espresso Beans 1kg", "grocery", 1899, 1100, 40),
        ("DEMO-002", "Ceramic Mug", "kitchen", 1250, 400, 8),
        ("DEMO-003", "Milk Frother", "kitchen", 3499, 2100, 0),
    ]
    for sku, name, category, price, cost, opening in catalog:
        existing = [p for p in catalog_service.list_products(active_only=False) if p.sku == sku]
        if existing:
            click.echo(f"SKIP Product {sku} already exists")
            continue

        product = catalog_service.create_product(
            {
                "sku": sku,
                "name": name,
                "category": category,
                "price_cents": price,
                "cost_cents": cost,
                "supplier_id": users[ROLE_SUPPLIER].id,
            },
            store_ids=[store.id],
        )
        if opening:
            ledger_service.apply_movement(
                store.id,
                product.id,
                movement_type=MovementType.IN,
                quantity=opening,
                reason="Opening stock",
                performed_by=users[ROLE_MANAGER].id,
            )
        click.echo(f"PASS Product {sku}: {name} (opening stock {opening})")

    click.echo(f"\nAll demo users share the password: {DEMO_PASSWORD}")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', required=True, help='Unique store code')
@with_appcontext
def create_store_cli(name, code):
    if db.session.query(Store).filter((Store.name == name) | (Store.code == code)).first():
        click.echo(f"FAIL A store named '{name}' or coded '{code}' already exists")
        return
    store = Store(name=name, code=code, is_active=True)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@stores_group.command('list')
@with_appcontext
def list_stores_cli():
    stores = db.session.query(Store).order_by(Store.id).all()
    if not stores:
        click.echo("No stores found.")
        return
    for store in stores:
        active_str = "Yes" if store.is_active else "No"
        click.echo(f"{store.id:<5} {store.code or '-':<10} {store.name:<30} {active_str}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), prompt=True, help='Role')
@click.option('--store-id', type=int, help='Store (required for managers and staff)')
@click.option('--company-name', help='Company name (required for suppliers)')
@with_appcontext
def create_user_cli(username, email, password, role, store_id, company_name):
    """
    Create a new user.

    Password must have 8+ chars, uppercase, lowercase, digit and special char.
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            store_id=store_id,
            company_name=company_name,
        )
    except EngineError as e:
        click.echo(f"FAIL Failed to create user: {e}")
        return

    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<10} {'Store':<6} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        store_str = str(user.store_id) if user.store_id else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<10} {store_str:<6} {active_str}")
    click.echo("="*90 + "\n")


@click.group('catalog')
def catalog_group():
    """Catalog setup commands."""


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--cost-cents', type=int)
@click.option('--category')
@click.option('--supplier-id', type=int)
@click.option('--store-id', 'store_ids', type=int, multiple=True, help='Authorize for a store (repeatable)')
@with_appcontext
def add_product_cli(sku, name, price_cents, cost_cents, category, supplier_id, store_ids):
    payload = {"sku": sku, "name": name, "price_cents": price_cents}
    if cost_cents is not None:
        payload["cost_cents"] = cost_cents
    if category:
        payload["category"] = category
    if supplier_id is not None:
        payload["supplier_id"] = supplier_id

    try:
        product = catalog_service.create_product(payload, store_ids=list(store_ids))
    except EngineError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created product {product.sku} (ID: {product.id}) for stores {sorted(s.id for s in product.stores)}")


@catalog_group.command('authorize-store')
@click.option('--product-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def authorize_store_cli(product_id, store_id):
    try:
        product = catalog_service.authorize_store(product_id, store_id)
    except EngineError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Product {product.sku} is now sold in stores {sorted(s.id for s in product.stores)}")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--store-id', type=int, help='Only verify one store')
@with_appcontext
def verify_ledgers_cli(store_id):
    """Replay movements for every ledger entry and compare with stored quantities."""
    result = ledger_service.verify_ledgers(store_id)
    for mismatch in result["mismatches"]:
        click.echo(
            f"FAIL entry {mismatch['entry_id']} (store {mismatch['store_id']}, product {mismatch['product_id']}): "
            f"stored {mismatch['quantity']} != replayed {mismatch['replayed_quantity']}"
        )
    click.echo(f"Checked {result['checked']} entries, {len(result['mismatches'])} mismatches")
    if result["mismatches"]:
        raise SystemExit(1)


@ledger_group.command('alerts')
@click.option('--store-id', type=int, required=True)
@with_appcontext
def stock_alerts_cli(store_id):
    try:
        groups = [
            ("OUT", ledger_service.find_out_of_stock(store_id)),
            ("LOW", ledger_service.find_low_stock(store_id)),
            ("OVER", ledger_service.find_overstock(store_id)),
        ]
    except EngineError as e:
        click.echo(f"FAIL {e}")
        return

    for label, entries in groups:
        for entry in entries:
            click.echo(
                f"{label:<5} product {entry.product_id:<6} qty {entry.quantity:<6} "
                f"reorder {entry.reorder_level:<5} max {entry.max_stock}"
            )
    if not any(entries for _, entries in groups):
        click.echo("No stock alerts.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(ledger_group)
