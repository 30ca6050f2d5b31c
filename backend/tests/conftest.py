"""
Pytest fixtures for branch POS backend tests.

Provides a head-office database, a registered SQLite branch with its schema,
and factories for seeding branch products, customers and settings.
"""

import pytest

from branch_pos import create_app
from branch_pos.extensions import db, branch_router
from branch_pos.models import Customer, Product, BranchSetting
from branch_pos.services import branch_service


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing (file-backed so threads share it)."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'headoffice.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BRANCH_DATA_DIR': str(tmp_path / 'branches'),
        'BRANCH_CONNECT_TIMEOUT': 10,
    })

    with app.app_context():
        db.create_all()
        yield app
        branch_router.clear()
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def branch(app):
    """Branch B001 on SQLite, 15% tax, schema created."""
    branch = branch_service.create_branch(code="B001", name="Downtown", tax_rate_bps=1500)
    branch_router.ensure_schema(branch.id)
    return branch


@pytest.fixture(scope='function')
def other_branch(app):
    """Second, fully independent branch."""
    branch = branch_service.create_branch(code="B002", name="Uptown", tax_rate_bps=0)
    branch_router.ensure_schema(branch.id)
    return branch


@pytest.fixture(scope='function')
def branch_session(branch):
    """Open a write transaction on the default branch: `with branch_session() as s:`."""
    def _open(branch_id=None):
        return branch_router.resolve(branch_id or branch.id).begin()
    return _open


@pytest.fixture(scope='function')
def make_product(branch):
    """Factory: insert a product into a branch database and return its id."""
    counter = {"n": 0}

    def _make(stock=10, price_cents=1000, name=None, branch_id=None):
        counter["n"] += 1
        n = counter["n"]
        with branch_router.resolve(branch_id or branch.id).begin() as session:
            product = Product(
                sku=f"SKU-{n:03d}",
                name=name or f"Product {n}",
                selling_price_cents=price_cents,
                stock_level=stock,
                has_inventory_discrepancy=stock < 0,
            )
            session.add(product)
            session.flush()
            return product.id

    return _make


@pytest.fixture(scope='function')
def make_customer(branch):
    """Factory: insert a customer into a branch database and return its id."""
    counter = {"n": 0}

    def _make(name=None, total_purchases_cents=0, visit_count=0, branch_id=None):
        counter["n"] += 1
        n = counter["n"]
        with branch_router.resolve(branch_id or branch.id).begin() as session:
            customer = Customer(
                code=f"C{n:04d}",
                name=name or f"Customer {n}",
                total_purchases_cents=total_purchases_cents,
                visit_count=visit_count,
            )
            session.add(customer)
            session.flush()
            return customer.id

    return _make


@pytest.fixture(scope='function')
def set_branch_setting(branch):
    """Write a key/value row into the branch settings table."""
    def _set(key, value, branch_id=None):
        with branch_router.resolve(branch_id or branch.id).begin() as session:
            row = session.query(BranchSetting).filter_by(key=key).first()
            if row is None:
                session.add(BranchSetting(key=key, value=value))
            else:
                row.value = value
    return _set


@pytest.fixture(scope='function')
def fetch(branch):
    """Fresh read of one branch row (detached, all columns loaded)."""
    def _fetch(model, row_id, branch_id=None):
        with branch_router.resolve(branch_id or branch.id).session() as session:
            return session.get(model, row_id)
    return _fetch
