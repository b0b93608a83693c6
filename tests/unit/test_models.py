"""
Unit tests for SQLAlchemy models.
"""

import pytest
import uuid
from decimal import Decimal
from sqlalchemy.exc import IntegrityError
from app.models import (
    Tenant, AppUser, UserTenant, UserRole, CartItem, Discount, DiscountTier,
    Order, OrderItem
)


class TestTenantModel:
    """Tests for Tenant model."""

    def test_create_tenant(self, session):
        """Test creating a tenant."""
        suffix = str(uuid.uuid4())[:8]
        tenant = Tenant(slug=f'toko-{suffix}', name=f'Toko {suffix}', active=True)
        session.add(tenant)
        session.commit()

        assert tenant.id is not None
        assert tenant.active is True

    def test_tenant_slug_unique(self, session, tenant1):
        """Test that tenant slug must be unique."""
        session.add(Tenant(slug=tenant1.slug, name='Duplicate'))
        with pytest.raises(IntegrityError):
            session.commit()


class TestAppUserModel:
    """Tests for AppUser model."""

    def test_password_hashing(self, session):
        user = AppUser(email=f'{uuid.uuid4().hex[:8]}@example.com', full_name='Test User')
        user.set_password('securepassword')
        session.add(user)
        session.commit()

        assert user.password_hash != 'securepassword'
        assert user.check_password('securepassword') is True
        assert user.check_password('wrong') is False

    def test_user_without_password_cannot_log_in(self):
        assert AppUser(email='x@example.com').check_password('anything') is False

    def test_to_dict_hides_password(self, customer1):
        data = customer1.to_dict()
        assert data['email'] == customer1.email
        assert 'password_hash' not in data


class TestUserTenantModel:
    """Tests for storefront roles."""

    def test_roles(self, session, owner1, customer1, tenant1):
        owner_link = session.query(UserTenant).filter_by(user_id=owner1.id, tenant_id=tenant1.id).one()
        customer_link = session.query(UserTenant).filter_by(user_id=customer1.id, tenant_id=tenant1.id).one()

        assert owner_link.is_owner() and owner_link.is_admin()
        assert not customer_link.is_admin()
        assert customer_link.role == UserRole.CUSTOMER.value

    def test_membership_unique(self, session, customer1, tenant1):
        session.add(UserTenant(user_id=customer1.id, tenant_id=tenant1.id, role='ADMIN'))
        with pytest.raises(IntegrityError):
            session.commit()


class TestProductUnitModel:
    """Stock and display helpers."""

    def test_display_name(self, product1):
        assert product1.units[0].display_name == 'Teh Botol - Botol'

    def test_stock_cannot_be_negative(self, session, product1):
        unit = product1.units[0]
        unit.stock = -1
        with pytest.raises(IntegrityError):
            session.commit()


class TestCartItemModel:
    """One row per user and unit."""

    def test_unique_line(self, session, tenant1, customer1, product1):
        unit_id = product1.units[0].id
        session.add(CartItem(tenant_id=tenant1.id, user_id=customer1.id, unit_id=unit_id, quantity=1))
        session.commit()
        session.add(CartItem(tenant_id=tenant1.id, user_id=customer1.id, unit_id=unit_id, quantity=2))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_quantity_positive(self, session, tenant1, customer1, product1):
        session.add(CartItem(tenant_id=tenant1.id, user_id=customer1.id, unit_id=product1.units[0].id, quantity=0))
        with pytest.raises(IntegrityError):
            session.commit()


class TestDiscountModel:
    """Scope associations and tier ordering."""

    def test_tiers_ordered_by_priority_then_id(self, session, tenant1, product1):
        discount = Discount(tenant_id=tenant1.id, name='Grosir', scope_type='product', value_type='tiered')
        discount.products = [product1]
        discount.tiers = [
            DiscountTier(min_quantity=10, value_type='percentage', value=Decimal('15'), priority=1),
            DiscountTier(min_quantity=1, value_type='percentage', value=Decimal('5'), priority=0),
        ]
        session.add(discount)
        session.commit()
        session.expire_all()

        reloaded = session.get(Discount, discount.id)
        assert [t.priority for t in reloaded.tiers] == [0, 1]
        assert reloaded.product_ids == [product1.id]
        assert reloaded.unit_ids == []

    def test_name_unique_per_tenant(self, session, tenant1, tenant2):
        session.add(Discount(tenant_id=tenant1.id, name='Promo', scope_type='unit', value_type='nominal'))
        session.add(Discount(tenant_id=tenant2.id, name='Promo', scope_type='unit', value_type='nominal'))
        session.commit()

        session.add(Discount(tenant_id=tenant1.id, name='Promo', scope_type='unit', value_type='nominal'))
        with pytest.raises(IntegrityError):
            session.commit()


class TestOrderModel:
    """Serialization of orders and their snapshots."""

    def test_to_dict(self, session, tenant1, customer1, bank_transfer):
        order = Order(
            tenant_id=tenant1.id, user_id=customer1.id, order_number=f'ORD-{uuid.uuid4().hex[:8]}',
            total_amount=Decimal('24000'), payment_method_id=bank_transfer.id
        )
        order.items = [OrderItem(
            unit_id=None, product_name='Teh Botol', unit_name='Botol', quantity=3,
            unit_price=Decimal('10000'), discount_amount=Decimal('2000'), total_price=Decimal('24000')
        )]
        session.add(order)
        session.commit()

        data = order.to_dict()
        assert data['status'] == 'menunggu'
        assert data['payment_status'] == 'belum_bayar'
        assert data['shipping_type'] == 'delivery'
        assert data['payment'] == 'Transfer BCA'
        assert data['no_payment'] == '1234567890'
        assert data['total_amount'] == 24000.0
        assert data['items'][0]['discount_amount'] == 2000.0
        assert 'items' not in order.to_dict(include_items=False)
