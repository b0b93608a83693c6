import pytest
from decimal import Decimal
import os
import tempfile
import uuid

# Test configuration must be in the environment before config.Config is imported
_db_dir = tempfile.mkdtemp(prefix='tokoku-test-')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ['AUTO_CREATE_SCHEMA'] = 'true'
os.environ['CACHE_ENABLED'] = 'false'
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from app import create_app
from app.database import get_session
from app.models import (
    Tenant, AppUser, UserTenant, Category, Product, ProductUnit, PaymentMethod, UserRole
)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.Config')
    app.config['TESTING'] = True
    return app


@pytest.fixture(autouse=True)
def app_context(app):
    """Keep one app context per test so requests share the test's session."""
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


def _make_tenant(session, label):
    suffix = str(uuid.uuid4())[:8]
    tenant = Tenant(slug=f'{label}-{suffix}', name=f'Toko {label} {suffix}', active=True)
    session.add(tenant)
    session.commit()
    return tenant


def _make_user(session, tenant, role, label):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(email=f'{label}-{suffix}@test.com', full_name=label.title(), active=True)
    user.set_password('password123')
    session.add(user)
    session.flush()
    session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=role, active=True))
    session.commit()
    return user


@pytest.fixture(scope='function')
def tenant1(session):
    """Create first test storefront."""
    return _make_tenant(session, 'toko-1')


@pytest.fixture(scope='function')
def tenant2(session):
    """Create second test storefront for isolation tests."""
    return _make_tenant(session, 'toko-2')


@pytest.fixture(scope='function')
def owner1(session, tenant1):
    """OWNER of tenant1."""
    return _make_user(session, tenant1, UserRole.OWNER.value, 'owner1')


@pytest.fixture(scope='function')
def customer1(session, tenant1):
    """CUSTOMER of tenant1."""
    return _make_user(session, tenant1, UserRole.CUSTOMER.value, 'customer1')


@pytest.fixture(scope='function')
def customer1b(session, tenant1):
    """Second CUSTOMER of tenant1."""
    return _make_user(session, tenant1, UserRole.CUSTOMER.value, 'customer1b')


@pytest.fixture(scope='function')
def customer2(session, tenant2):
    """CUSTOMER of tenant2."""
    return _make_user(session, tenant2, UserRole.CUSTOMER.value, 'customer2')


@pytest.fixture(scope='function')
def category1(session, tenant1):
    category = Category(tenant_id=tenant1.id, name='Minuman')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def product1(session, tenant1, category1):
    """Product of tenant1 with two units: Botol (10.000, stock 50) and Dus (100.000, stock 10)."""
    product = Product(tenant_id=tenant1.id, name='Teh Botol', category_id=category1.id, active=True)
    product.units = [
        ProductUnit(unit_name='Botol', qty_per_unit=Decimal('1'), price=Decimal('10000'), stock=50),
        ProductUnit(unit_name='Dus', qty_per_unit=Decimal('12'), price=Decimal('100000'), stock=10),
    ]
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product1b(session, tenant1, category1):
    """Second product of tenant1 with a single unit (Pcs, 20.000, stock 30)."""
    product = Product(tenant_id=tenant1.id, name='Kopi Sachet', category_id=category1.id, active=True)
    product.units = [ProductUnit(unit_name='Pcs', qty_per_unit=Decimal('1'), price=Decimal('20000'), stock=30)]
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product2(session, tenant2):
    """Product of tenant2."""
    product = Product(tenant_id=tenant2.id, name='Produk Toko 2', active=True)
    product.units = [ProductUnit(unit_name='Pcs', qty_per_unit=Decimal('1'), price=Decimal('5000'), stock=5)]
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def bank_transfer(session, tenant1):
    method = PaymentMethod(tenant_id=tenant1.id, name='Transfer BCA', account_number='1234567890')
    session.add(method)
    session.commit()
    return method


@pytest.fixture(scope='function')
def cash_method(session, tenant1):
    method = PaymentMethod(tenant_id=tenant1.id, name='Cash on Delivery')
    session.add(method)
    session.commit()
    return method


@pytest.fixture(scope='function')
def no_storage(monkeypatch):
    """Replace proof storage with an in-memory recorder."""
    saved = []

    def fake_save(data_url, order_number, tenant_id):
        key = f'proof/{tenant_id}/order_{order_number}.webp'
        saved.append(key)
        return key

    monkeypatch.setattr('app.services.order_service.save_proof_base64', fake_save)
    return saved


def _login(client, user, tenant):
    with client.session_transaction() as sess:
        sess['user_id'] = user.id
        sess['tenant_id'] = tenant.id
    return client


@pytest.fixture(scope='function')
def owner_client(client, owner1, tenant1):
    """Client logged in as tenant1 OWNER."""
    return _login(client, owner1, tenant1)


@pytest.fixture(scope='function')
def customer_client(client, customer1, tenant1):
    """Client logged in as tenant1 CUSTOMER."""
    return _login(client, customer1, tenant1)
