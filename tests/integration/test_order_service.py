"""
Integration tests for transactional order placement and the order state machine.
"""

import os
import re
import threading
import uuid
import pytest
from decimal import Decimal
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.exceptions import (
    ValidationError, NotFoundError, ConflictError, InsufficientStockError, TransactionError
)
from app.models import (
    Tenant, AppUser, UserTenant, UserRole, Product, ProductUnit, PaymentMethod, Order, OrderItem, CartItem
)
from app.services import order_service, discount_service
from app.services.order_service import (
    place_order, update_order_status, attach_payment_proof, list_orders, order_stats,
    generate_order_number, is_cash_method
)

PROOF = 'data:image/png;base64,iVBORw0KGgo='


def order_payload(user, method, items, **extra):
    payload = {
        'user_id': user.id,
        'payment_id': method.id,
        'items': [{'unit_id': unit.id, 'quantity': qty} for unit, qty in items],
        'shipping_type': 'delivery',
        'shipping_address': 'Jl. Merdeka 1',
        'source': 'direct',
    }
    payload.update(extra)
    return payload


def stock_of(session, unit_id):
    return session.query(ProductUnit.stock).filter(ProductUnit.id == unit_id).scalar()


def order_count(session, tenant_id):
    return session.query(Order).filter(Order.tenant_id == tenant_id).count()


class TestHelpers:
    """Order number and cash detection."""

    def test_order_number_format(self):
        assert re.match(r'^ORD-\d{8}-[0-9A-Z]{4}$', generate_order_number())
        assert generate_order_number('TKU').startswith('TKU-')

    def test_cash_detection(self, cash_method, bank_transfer):
        assert is_cash_method(cash_method) is True
        assert is_cash_method(bank_transfer) is False
        assert is_cash_method('CASH') is True
        assert is_cash_method(None) is False


class TestPlaceOrder:
    """Happy paths and server-side pricing."""

    def test_nominal_discount_snapshot(self, session, tenant1, customer1, product1, bank_transfer):
        botol = product1.units[0]
        discount_service.create_discount(session, tenant1.id, {
            'name': 'Potongan Botol', 'type': 'unit', 'value_type': 'nominal', 'value': 2000,
            'unit_ids': [botol.id],
        })

        order = place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(botol, 3)]))

        assert order.total_amount == Decimal('24000.00')
        assert order.status == 'menunggu'
        assert order.payment_status == 'belum_bayar'
        item = order.items[0]
        assert item.unit_price == Decimal('10000.00')
        assert item.discount_amount == Decimal('2000.00')
        assert item.total_price == Decimal('24000.00')
        assert item.product_name == 'Teh Botol'
        assert item.unit_name == 'Botol'
        assert stock_of(session, botol.id) == 47

    def test_tiered_discount_uses_whole_order(self, session, tenant1, customer1, product1, bank_transfer):
        botol, dus = product1.units
        discount_service.create_discount(session, tenant1.id, {
            'name': 'Grosir', 'type': 'product', 'value_type': 'tiered', 'product_ids': [product1.id],
            'tiers': [
                {'min_quantity': 5, 'value_type': 'percentage', 'value': 10, 'priority': 0},
                {'min_amount': 100000, 'value_type': 'nominal', 'value': 5000, 'priority': 1},
            ],
        })

        order = place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(botol, 4), (dus, 2)]))

        prices = [item.total_price for item in order.items]
        assert prices == [Decimal('20000.00'), Decimal('190000.00')]
        assert order.total_amount == Decimal('210000.00')

    def test_client_prices_are_ignored(self, session, tenant1, customer1, product1, bank_transfer):
        botol = product1.units[0]
        payload = order_payload(customer1, bank_transfer, [(botol, 1)])
        payload['items'][0]['price'] = 1
        payload['total_amount'] = 1

        order = place_order(session, tenant1.id, payload)
        assert order.total_amount == Decimal('10000.00')

    def test_price_change_does_not_touch_past_orders(self, session, tenant1, customer1, product1, bank_transfer):
        botol = product1.units[0]
        order = place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(botol, 1)]))
        botol.price = Decimal('99999')
        session.commit()

        item = session.query(OrderItem).filter_by(order_id=order.id).one()
        assert item.unit_price == Decimal('10000.00')

    def test_proof_saved_for_non_cash(self, session, tenant1, customer1, product1, bank_transfer, no_storage):
        order = place_order(session, tenant1.id, order_payload(
            customer1, bank_transfer, [(product1.units[0], 1)], proof_base64=PROOF
        ))
        assert order.proof_payment_path == no_storage[0]
        assert order.proof_payment_path.endswith(f'order_{order.order_number}.webp')

    def test_cash_orders_never_attach_proof(self, session, tenant1, customer1, product1, cash_method, no_storage):
        order = place_order(session, tenant1.id, order_payload(
            customer1, cash_method, [(product1.units[0], 1)], proof_base64=PROOF
        ))
        assert order.proof_payment_path is None
        assert no_storage == []


class TestValidation:
    """Bad requests fail before anything is written."""

    @pytest.mark.parametrize('mutate', [
        lambda p: p.update(items=[]),
        lambda p: p.update(user_id='1'),
        lambda p: p.update(payment_id=None),
        lambda p: p['items'][0].update(quantity=0),
        lambda p: p['items'][0].update(quantity=1.5),
        lambda p: p['items'][0].update(unit_id=-3),
        lambda p: p.update(shipping_type='drone'),
        lambda p: p.update(source='wishlist'),
    ])
    def test_invalid_shape(self, session, tenant1, customer1, product1, bank_transfer, mutate):
        payload = order_payload(customer1, bank_transfer, [(product1.units[0], 1)])
        mutate(payload)
        with pytest.raises(ValidationError):
            place_order(session, tenant1.id, payload)
        assert order_count(session, tenant1.id) == 0

    def test_errors_are_collected(self, session, tenant1):
        with pytest.raises(ValidationError) as exc:
            place_order(session, tenant1.id, {'items': []})
        assert len(exc.value.payload['details']) == 3

    def test_user_from_other_tenant(self, session, tenant1, customer2, product1, bank_transfer):
        with pytest.raises(NotFoundError):
            place_order(session, tenant1.id, order_payload(customer2, bank_transfer, [(product1.units[0], 1)]))

    def test_payment_method_from_other_tenant(self, session, tenant1, tenant2, customer1, product1):
        foreign = PaymentMethod(tenant_id=tenant2.id, name='QRIS')
        session.add(foreign)
        session.commit()
        with pytest.raises(NotFoundError) as exc:
            place_order(session, tenant1.id, order_payload(customer1, foreign, [(product1.units[0], 1)]))
        assert exc.value.message == 'Payment method not found'

    def test_unknown_unit(self, session, tenant1, customer1, product2, bank_transfer):
        with pytest.raises(NotFoundError) as exc:
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(product2.units[0], 1)]))
        assert str(product2.units[0].id) in exc.value.message

    def test_insufficient_stock_names_unit(self, session, tenant1, customer1, product1, bank_transfer):
        dus = product1.units[1]
        with pytest.raises(InsufficientStockError) as exc:
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(dus, 11)]))

        assert exc.value.status_code == 400
        assert 'Teh Botol - Dus' in exc.value.message
        assert exc.value.available == 10
        assert exc.value.requested == 11
        assert stock_of(session, dus.id) == 10
        assert order_count(session, tenant1.id) == 0

    def test_repeated_unit_checked_in_total(self, session, tenant1, customer1, product1, bank_transfer):
        dus = product1.units[1]
        with pytest.raises(InsufficientStockError):
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(dus, 6), (dus, 6)]))


class TestStockRace:
    """The conditional decrement is the real guard, not the pre-check."""

    def test_last_unit_sold_once(self, session, monkeypatch, tenant1, customer1, customer1b, product1, bank_transfer):
        dus = product1.units[1]
        dus.stock = 1
        session.commit()
        # Both requests passed the pre-check before either one wrote
        monkeypatch.setattr(order_service, '_precheck_stock', lambda units, items: None)

        first = place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(dus, 1)]))
        with pytest.raises(InsufficientStockError) as exc:
            place_order(session, tenant1.id, order_payload(customer1b, bank_transfer, [(dus, 1)]))

        assert first.id is not None
        assert exc.value.available == 0
        assert stock_of(session, dus.id) == 0
        assert order_count(session, tenant1.id) == 1

    def test_failed_decrement_rolls_back_earlier_lines(self, session, monkeypatch, tenant1, customer1,
                                                       product1, product1b, bank_transfer):
        botol, dus = product1.units
        pcs = product1b.units[0]
        monkeypatch.setattr(order_service, '_precheck_stock', lambda units, items: None)
        dus.stock = 0
        session.commit()

        with pytest.raises(InsufficientStockError):
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(botol, 2), (pcs, 1), (dus, 1)]))

        assert stock_of(session, botol.id) == 50
        assert stock_of(session, pcs.id) == 30
        assert order_count(session, tenant1.id) == 0


POSTGRES_URL = os.environ.get('TEST_POSTGRES_URL', '')


@pytest.mark.skipif(not POSTGRES_URL.startswith('postgresql'), reason='needs TEST_POSTGRES_URL (PostgreSQL)')
class TestConcurrentCheckout:
    """Two connections race for the last unit; row locks decide the winner."""

    @pytest.fixture
    def pg_sessions(self):
        engine = create_engine(POSTGRES_URL)
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
        yield factory
        engine.dispose()

    def _seed(self, factory):
        suffix = uuid.uuid4().hex[:8]
        db = factory()
        try:
            tenant = Tenant(slug=f'race-{suffix}', name=f'Toko Race {suffix}', active=True)
            db.add(tenant)
            db.flush()
            buyers = []
            for label in ('a', 'b'):
                user = AppUser(email=f'race-{label}-{suffix}@test.com', active=True)
                db.add(user)
                db.flush()
                db.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=UserRole.CUSTOMER.value))
                buyers.append(user.id)
            product = Product(tenant_id=tenant.id, name='Teh Botol', active=True)
            product.units = [ProductUnit(unit_name='Dus', qty_per_unit=Decimal('12'), price=Decimal('100000'), stock=1)]
            method = PaymentMethod(tenant_id=tenant.id, name='Transfer BCA')
            db.add_all([product, method])
            db.commit()
            return tenant.id, buyers, product.units[0].id, method.id
        finally:
            db.close()

    def test_last_unit_sold_once_across_threads(self, pg_sessions):
        tenant_id, buyers, unit_id, method_id = self._seed(pg_sessions)
        barrier = threading.Barrier(len(buyers))
        outcomes = []

        def buy(user_id):
            db = pg_sessions()
            try:
                barrier.wait(timeout=10)
                place_order(db, tenant_id, {
                    'user_id': user_id, 'payment_id': method_id, 'source': 'direct',
                    'items': [{'unit_id': unit_id, 'quantity': 1}],
                })
                outcomes.append('placed')
            except InsufficientStockError:
                outcomes.append('out_of_stock')
            finally:
                db.close()

        threads = [threading.Thread(target=buy, args=(user_id,)) for user_id in buyers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes) == ['out_of_stock', 'placed']
        db = pg_sessions()
        try:
            assert stock_of(db, unit_id) == 0
            assert order_count(db, tenant_id) == 1
        finally:
            db.close()


class TestAtomicity:
    """Any failure in the write block leaves nothing behind."""

    def test_storage_failure_on_third_item(self, session, monkeypatch, tenant1, customer1,
                                           product1, product1b, bank_transfer):
        botol, dus = product1.units
        pcs = product1b.units[0]
        before = {u.id: stock_of(session, u.id) for u in (botol, dus, pcs)}

        real_decrement = order_service._decrement_stock
        calls = []

        def flaky_decrement(db_session, unit_id, quantity):
            calls.append(unit_id)
            if len(calls) == 3:
                raise OperationalError('UPDATE product_unit', {}, Exception('disk I/O error'))
            return real_decrement(db_session, unit_id, quantity)

        monkeypatch.setattr(order_service, '_decrement_stock', flaky_decrement)

        items = [(botol, 1), (dus, 1), (pcs, 1), (botol, 1), (dus, 1)]
        with pytest.raises(TransactionError):
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, items))

        assert len(calls) == 3
        assert order_count(session, tenant1.id) == 0
        assert session.query(OrderItem).join(Order).filter(Order.tenant_id == tenant1.id).count() == 0
        assert {u.id: stock_of(session, u.id) for u in (botol, dus, pcs)} == before

    def test_rollback_failure_does_not_mask_error(self, session, monkeypatch, tenant1, customer1,
                                                  product1, bank_transfer):
        monkeypatch.setattr(order_service, '_decrement_stock', lambda *args: False)
        db = session()
        real_rollback = db.rollback
        calls = []

        def broken_rollback():
            calls.append(True)
            real_rollback()
            raise RuntimeError('connection lost')

        monkeypatch.setattr(db, 'rollback', broken_rollback)
        with pytest.raises(InsufficientStockError):
            place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(product1.units[0], 1)]))
        assert calls


class TestCartClearing:
    """Only cart checkouts clear the cart, and only the buyer's."""

    def _fill_carts(self, session, tenant1, product1, *users):
        for user in users:
            session.add(CartItem(tenant_id=tenant1.id, user_id=user.id, unit_id=product1.units[0].id, quantity=1))
        session.commit()

    def _cart_size(self, session, user):
        return session.query(CartItem).filter_by(user_id=user.id).count()

    def test_cart_source_clears_only_buyer(self, session, tenant1, customer1, customer1b, product1, bank_transfer):
        self._fill_carts(session, tenant1, product1, customer1, customer1b)
        place_order(session, tenant1.id, order_payload(
            customer1, bank_transfer, [(product1.units[0], 1)], source='cart'
        ))
        assert self._cart_size(session, customer1) == 0
        assert self._cart_size(session, customer1b) == 1

    def test_direct_source_keeps_cart(self, session, tenant1, customer1, product1, bank_transfer):
        self._fill_carts(session, tenant1, product1, customer1)
        place_order(session, tenant1.id, order_payload(
            customer1, bank_transfer, [(product1.units[1], 1)], source='direct'
        ))
        assert self._cart_size(session, customer1) == 1

    def test_source_defaults_to_cart(self, session, tenant1, customer1, product1, bank_transfer):
        self._fill_carts(session, tenant1, product1, customer1)
        payload = order_payload(customer1, bank_transfer, [(product1.units[0], 1)])
        del payload['source']
        place_order(session, tenant1.id, payload)
        assert self._cart_size(session, customer1) == 0


class TestWriteOrder:
    """Statements inside the write block reach the database in a fixed order."""

    def test_order_items_decrement_then_cart_clear(self, session, tenant1, customer1, product1, bank_transfer):
        botol, dus = product1.units
        session.add(CartItem(tenant_id=tenant1.id, user_id=customer1.id, unit_id=botol.id, quantity=1))
        session.commit()

        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            head = ' '.join(statement.split()[:3]).upper()
            for prefix in ('INSERT INTO ORDERS', 'INSERT INTO ORDER_ITEM', 'UPDATE PRODUCT_UNIT',
                           'DELETE FROM CART_ITEM'):
                if head.startswith(prefix):
                    statements.append(prefix)

        engine = session.get_bind()
        event.listen(engine, 'before_cursor_execute', record)
        try:
            place_order(session, tenant1.id, order_payload(
                customer1, bank_transfer, [(botol, 1), (dus, 1)], source='cart'
            ))
        finally:
            event.remove(engine, 'before_cursor_execute', record)

        assert statements[0] == 'INSERT INTO ORDERS'
        first_update = statements.index('UPDATE PRODUCT_UNIT')
        assert set(statements[1:first_update]) == {'INSERT INTO ORDER_ITEM'}
        assert statements[first_update:first_update + 2] == ['UPDATE PRODUCT_UNIT', 'UPDATE PRODUCT_UNIT']
        assert statements[-1] == 'DELETE FROM CART_ITEM'


class TestStateMachine:
    """Order and payment status transitions."""

    @pytest.fixture
    def order(self, session, tenant1, customer1, product1, bank_transfer):
        return place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(product1.units[0], 1)]))

    @pytest.fixture
    def pickup_order(self, session, tenant1, customer1, product1, bank_transfer):
        return place_order(session, tenant1.id, order_payload(
            customer1, bank_transfer, [(product1.units[0], 1)], shipping_type='pickup'
        ))

    def test_delivery_flow_with_aliases(self, session, tenant1, order):
        for status in ('processing', 'shipped', 'delivered'):
            update_order_status(session, tenant1.id, order.id, status=status)
        assert order.status == 'diterima'

    def test_pickup_skips_shipping(self, session, tenant1, pickup_order):
        update_order_status(session, tenant1.id, pickup_order.id, status='diproses')
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, pickup_order.id, status='dikirim')
        update_order_status(session, tenant1.id, pickup_order.id, status='diterima')
        assert pickup_order.status == 'diterima'

    def test_delivery_cannot_skip_shipping(self, session, tenant1, order):
        update_order_status(session, tenant1.id, order.id, status='processing')
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, order.id, status='delivered')

    def test_pending_cannot_jump_ahead(self, session, tenant1, order):
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, order.id, status='shipped')

    def test_cancelled_is_terminal(self, session, tenant1, order):
        update_order_status(session, tenant1.id, order.id, status='cancelled')
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, order.id, status='processing')

    def test_refund_only_after_delivery(self, session, tenant1, order):
        update_order_status(session, tenant1.id, order.id, payment_status='paid')
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, order.id, payment_status='refunded')

        for status in ('processing', 'shipped', 'delivered'):
            update_order_status(session, tenant1.id, order.id, status=status)
        with pytest.raises(ConflictError):
            update_order_status(session, tenant1.id, order.id, status='cancelled')

        update_order_status(session, tenant1.id, order.id, status='cancelled', payment_status='refunded')
        assert (order.status, order.payment_status) == ('dibatalkan', 'dikembalikan')

    def test_unknown_status_rejected(self, session, tenant1, order):
        with pytest.raises(ValidationError):
            update_order_status(session, tenant1.id, order.id, status='lost')

    def test_other_tenant_cannot_update(self, session, tenant2, order):
        with pytest.raises(NotFoundError):
            update_order_status(session, tenant2.id, order.id, status='processing')

    def test_proof_moves_to_awaiting_confirmation(self, session, tenant1, customer1, order, no_storage):
        attach_payment_proof(session, tenant1.id, order.id, PROOF, user_id=customer1.id)
        assert order.payment_status == 'menunggu_konfirmasi'
        assert order.proof_payment_path == no_storage[0]

        update_order_status(session, tenant1.id, order.id, payment_status='lunas')
        with pytest.raises(ConflictError):
            attach_payment_proof(session, tenant1.id, order.id, PROOF, user_id=customer1.id)

    def test_proof_rejected_for_cash(self, session, tenant1, customer1, product1, cash_method, no_storage):
        order = place_order(session, tenant1.id, order_payload(customer1, cash_method, [(product1.units[0], 1)]))
        with pytest.raises(ConflictError):
            attach_payment_proof(session, tenant1.id, order.id, PROOF, user_id=customer1.id)

    def test_proof_only_by_buyer(self, session, tenant1, customer1b, order, no_storage):
        with pytest.raises(NotFoundError):
            attach_payment_proof(session, tenant1.id, order.id, PROOF, user_id=customer1b.id)


class TestReads:
    """Listing filters and statistics."""

    def test_filters_and_stats(self, session, tenant1, customer1, customer1b, product1, bank_transfer):
        botol = product1.units[0]
        first = place_order(session, tenant1.id, order_payload(customer1, bank_transfer, [(botol, 1)]))
        second = place_order(session, tenant1.id, order_payload(customer1b, bank_transfer, [(botol, 2)]))
        update_order_status(session, tenant1.id, second.id, status='processing', payment_status='paid')

        assert [o.id for o in list_orders(session, tenant1.id)] == [second.id, first.id]
        assert [o.id for o in list_orders(session, tenant1.id, {'status': 'pending'})] == [first.id]
        assert [o.id for o in list_orders(session, tenant1.id, {'payment_status': 'lunas'})] == [second.id]
        assert [o.id for o in list_orders(session, tenant1.id, {'user_id': customer1.id})] == [first.id]
        assert [o.id for o in list_orders(session, tenant1.id, {'search': first.order_number})] == [first.id]

        stats = order_stats(session, tenant1.id)
        assert stats['total_orders'] == 2
        assert stats['pending'] == 1
        assert stats['processing'] == 1
        assert stats['total_revenue'] == Decimal('20000.00')

    def test_invalid_date_filter(self, session, tenant1):
        with pytest.raises(ValidationError):
            list_orders(session, tenant1.id, {'start_date': 'kemarin'})
