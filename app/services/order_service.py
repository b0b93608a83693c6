"""
Order service with transactional logic - Multi-Tenant.

Places storefront orders: validates the request, re-prices every item
server-side with the active discounts, and writes order + items + stock
decrement + cart clear as one transaction. Also hosts the order/payment
status state machine and the admin read paths.
"""
import logging
import secrets
import string
import time
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from app.exceptions import (
    StorefrontError, ValidationError, NotFoundError, ConflictError,
    InsufficientStockError, TransactionError
)
from app.models import (
    AppUser, UserTenant, PaymentMethod, Product, ProductUnit, CartItem,
    Order, OrderItem, OrderStatus, PaymentStatus, ShippingType, OrderSource
)
from app.services import pricing_service
from app.services.discount_service import load_active_discounts
from app.services.storage_service import save_proof_base64, get_storage_service
from app.utils.formatters import parse_iso8601, money_idr

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_uppercase

STATUS_ALIASES = {
    'pending': OrderStatus.PENDING.value,
    'processing': OrderStatus.PROCESSING.value,
    'shipped': OrderStatus.SHIPPED.value,
    'delivered': OrderStatus.DELIVERED.value,
    'cancelled': OrderStatus.CANCELLED.value,
    'canceled': OrderStatus.CANCELLED.value,
}

PAYMENT_STATUS_ALIASES = {
    'unpaid': PaymentStatus.UNPAID.value,
    'awaiting_confirmation': PaymentStatus.AWAITING_CONFIRMATION.value,
    'paid': PaymentStatus.PAID.value,
    'refunded': PaymentStatus.REFUNDED.value,
}

# Allowed order status moves; shipping-type constraints are checked separately
ORDER_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {
        OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value
    },
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value},
    OrderStatus.DELIVERED.value: {OrderStatus.CANCELLED.value},
    OrderStatus.CANCELLED.value: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.UNPAID.value: {PaymentStatus.AWAITING_CONFIRMATION.value, PaymentStatus.PAID.value},
    PaymentStatus.AWAITING_CONFIRMATION.value: {PaymentStatus.PAID.value, PaymentStatus.UNPAID.value},
    PaymentStatus.PAID.value: {PaymentStatus.REFUNDED.value},
    PaymentStatus.REFUNDED.value: set(),
}


# =====================================================
# HELPERS
# =====================================================

def generate_order_number(prefix: str = 'ORD') -> str:
    """`ORD-<last 8 digits of ms timestamp>-<4 random base36 chars>`."""
    millis = str(int(time.time() * 1000))[-8:]
    token = ''.join(secrets.choice(BASE36) for _ in range(4))
    return f"{prefix}-{millis}-{token}"


def is_cash_method(payment_method: Any, keyword: str = 'cash') -> bool:
    """Cash methods are recognized by name: case-insensitive substring match."""
    name = payment_method.name if isinstance(payment_method, PaymentMethod) else payment_method
    if not name or not keyword:
        return False
    return keyword.lower() in str(name).lower()


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_order_payload(payload: Any) -> Dict[str, Any]:
    """
    Check request shape and return normalized fields.

    Every problem is collected; the first one is the error message and
    the full list travels in the payload under `details`.
    """
    if not isinstance(payload, dict):
        raise ValidationError('Invalid order data')

    errors = []
    if not _is_positive_int(payload.get('user_id')):
        errors.append('User ID is required and must be a number')
    if not _is_positive_int(payload.get('payment_id')):
        errors.append('Payment method ID is required and must be a number')

    items = payload.get('items')
    if not isinstance(items, list) or not items:
        errors.append('Order items are required and must be a non-empty array')
        items = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            errors.append(f'Item {index}: Invalid item')
            continue
        if not _is_positive_int(item.get('unit_id')):
            errors.append(f'Item {index}: Unit ID is required and must be a number')
        if not _is_positive_int(item.get('quantity')):
            errors.append(f'Item {index}: Quantity is required and must be a positive number')

    shipping_type = payload.get('shipping_type')
    if shipping_type is None:
        shipping_type = ShippingType.DELIVERY.value
    shipping_type = str(shipping_type).lower()
    if shipping_type not in {s.value for s in ShippingType}:
        errors.append('shipping_type must be one of: delivery, pickup')

    source = str(payload.get('source') or OrderSource.CART.value).lower()
    if source not in {s.value for s in OrderSource}:
        errors.append('source must be one of: cart, direct')

    if errors:
        raise ValidationError(errors[0], payload={'details': errors})

    return {
        'user_id': payload['user_id'],
        'payment_id': payload['payment_id'],
        'items': [{'unit_id': i['unit_id'], 'quantity': i['quantity']} for i in items],
        'shipping_type': shipping_type,
        'shipping_address': (payload.get('shipping_address') or None),
        'notes': (payload.get('notes') or None),
        'source': source,
        'proof_base64': payload.get('proof_base64') or None,
    }


def _load_units(session, tenant_id: int, unit_ids: List[int]) -> Dict[int, ProductUnit]:
    units = (
        session.query(ProductUnit)
        .join(Product, ProductUnit.product_id == Product.id)
        .options(joinedload(ProductUnit.product))
        .filter(ProductUnit.id.in_(unit_ids), Product.tenant_id == tenant_id)
        .all()
    )
    return {u.id: u for u in units}


def _precheck_stock(units: Dict[int, ProductUnit], items: List[Dict[str, Any]]) -> None:
    """Fail fast on visible shortfalls. The decrement re-checks atomically."""
    requested: Dict[int, int] = OrderedDict()
    for item in items:
        requested[item['unit_id']] = requested.get(item['unit_id'], 0) + item['quantity']
    for unit_id, quantity in requested.items():
        unit = units[unit_id]
        if unit.stock < quantity:
            raise InsufficientStockError(unit.product.name, unit.unit_name, quantity, unit.stock)


def _decrement_stock(session, unit_id: int, quantity: int) -> bool:
    """Conditional decrement; False when the row no longer has enough stock."""
    result = session.execute(
        update(ProductUnit)
        .where(ProductUnit.id == unit_id, ProductUnit.stock >= quantity)
        .values(stock=ProductUnit.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _current_stock(session, unit_id: int) -> int:
    return session.query(ProductUnit.stock).filter(ProductUnit.id == unit_id).scalar() or 0


def _rollback(session) -> None:
    """Roll back; a failing rollback is logged and never replaces the original error."""
    try:
        session.rollback()
    except Exception:
        logger.exception("[ORDER] ✗ Rollback failed")


def _discard_proof(object_name: Optional[str]) -> None:
    if not object_name:
        return
    try:
        get_storage_service().delete_file(object_name)
    except Exception:
        logger.exception(f"[ORDER] ✗ Could not remove orphan proof {object_name}")


# =====================================================
# PLACE ORDER
# =====================================================

def place_order(
    session,
    tenant_id: int,
    payload: Dict[str, Any],
    order_number_prefix: str = 'ORD',
    cash_keyword: str = 'cash'
) -> Order:
    """
    Create an order atomically.

    Validation and not-found errors are raised before anything is written.
    Inside the write block stock is decremented with a conditional UPDATE
    whose row count is checked, so two requests racing for the last unit
    cannot both succeed. Any failure rolls back the whole order.

    Raises:
        ValidationError, NotFoundError, InsufficientStockError, TransactionError
    """
    data = validate_order_payload(payload)

    # 1. User and payment method
    user = (
        session.query(AppUser)
        .join(UserTenant, UserTenant.user_id == AppUser.id)
        .filter(AppUser.id == data['user_id'], UserTenant.tenant_id == tenant_id)
        .first()
    )
    if not user:
        raise NotFoundError('User not found')

    payment_method = session.query(PaymentMethod).filter(
        PaymentMethod.id == data['payment_id'],
        PaymentMethod.tenant_id == tenant_id
    ).first()
    if not payment_method:
        raise NotFoundError('Payment method not found')

    # 2. Active discounts, read once
    discounts = load_active_discounts(session, tenant_id)

    # 3. Units with live price and stock
    units = _load_units(session, tenant_id, [i['unit_id'] for i in data['items']])
    for item in data['items']:
        if item['unit_id'] not in units:
            raise NotFoundError(f"Unit with ID {item['unit_id']} not found")

    # 4. Visible stock check
    _precheck_stock(units, data['items'])

    # 5. Authoritative pricing over the full candidate list
    candidates = []
    for item in data['items']:
        unit = units[item['unit_id']]
        candidates.append({
            'product_id': unit.product_id,
            'unit_id': unit.id,
            'product_name': unit.product.name,
            'unit_name': unit.unit_name,
            'quantity': item['quantity'],
            'price': unit.price,
        })
    lines = pricing_service.price_items(candidates, discounts)
    total = pricing_service.total_of(lines)

    # 6. Proof for non-cash methods
    order_number = generate_order_number(order_number_prefix)
    proof_path = None
    if data['proof_base64'] and not is_cash_method(payment_method, cash_keyword):
        proof_path = save_proof_base64(data['proof_base64'], order_number, tenant_id)

    # 7. Write block
    try:
        order = Order(
            tenant_id=tenant_id,
            user_id=user.id,
            order_number=order_number,
            total_amount=total,
            status=OrderStatus.PENDING.value,
            payment_method_id=payment_method.id,
            payment_status=PaymentStatus.UNPAID.value,
            shipping_type=data['shipping_type'],
            shipping_address=data['shipping_address'],
            notes=data['notes'],
            proof_payment_path=proof_path,
        )
        session.add(order)
        session.flush()

        for line in lines:
            session.add(OrderItem(
                order_id=order.id,
                unit_id=line['unit_id'],
                product_name=line['product_name'],
                unit_name=line['unit_name'],
                quantity=line['quantity'],
                unit_price=line['unit_price'],
                discount_amount=line['discount_amount'],
                total_price=line['line_total'],
            ))
        session.flush()

        for line in lines:
            if not _decrement_stock(session, line['unit_id'], line['quantity']):
                raise InsufficientStockError(
                    line['product_name'], line['unit_name'], line['quantity'],
                    _current_stock(session, line['unit_id'])
                )

        if data['source'] == OrderSource.CART.value:
            session.query(CartItem).filter(
                CartItem.tenant_id == tenant_id,
                CartItem.user_id == user.id
            ).delete(synchronize_session=False)

        session.commit()

    except StorefrontError:
        _rollback(session)
        _discard_proof(proof_path)
        raise
    except SQLAlchemyError as e:
        logger.exception(f"[ORDER] ✗ Write failed for {order_number}: {e}")
        _rollback(session)
        _discard_proof(proof_path)
        raise TransactionError() from e

    logger.info(
        f"[ORDER] ✓ {order_number} placed by user {user.id} "
        f"(tenant {tenant_id}, {len(lines)} items, {money_idr(total)})"
    )
    return get_order(session, tenant_id, order.id)


# =====================================================
# READS
# =====================================================

def _order_query(session, tenant_id: int):
    return session.query(Order).options(
        selectinload(Order.items),
        joinedload(Order.payment_method),
        joinedload(Order.user),
    ).filter(Order.tenant_id == tenant_id)


def get_order(session, tenant_id: int, order_id: int, user_id: Optional[int] = None) -> Order:
    """Order with items; `user_id` restricts to that customer's orders."""
    query = _order_query(session, tenant_id).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    order = query.first()
    if not order:
        raise NotFoundError('Order not found')
    return order


def _normalize_status(value: Optional[str], aliases: Dict[str, str], allowed: set, field: str) -> Optional[str]:
    if value is None or value == '':
        return None
    key = str(value).strip().lower()
    key = aliases.get(key, key)
    if key not in allowed:
        raise ValidationError(f'Invalid {field}: {value}')
    return key


def normalize_order_status(value: Optional[str]) -> Optional[str]:
    return _normalize_status(value, STATUS_ALIASES, {s.value for s in OrderStatus}, 'status')


def normalize_payment_status(value: Optional[str]) -> Optional[str]:
    return _normalize_status(
        value, PAYMENT_STATUS_ALIASES, {s.value for s in PaymentStatus}, 'payment_status'
    )


def _parse_date_filter(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_iso8601(value)
    if parsed is None:
        raise ValidationError(f'Invalid {field}')
    return parsed


def list_orders(session, tenant_id: int, filters: Optional[Dict[str, Any]] = None) -> List[Order]:
    """
    Orders newest first.

    Filters: status, payment_status, start_date, end_date (a bare date
    includes the whole day), search (order number), user_id.
    """
    filters = filters or {}
    query = _order_query(session, tenant_id)

    status = normalize_order_status(filters.get('status'))
    if status:
        query = query.filter(Order.status == status)

    payment_status = normalize_payment_status(filters.get('payment_status'))
    if payment_status:
        query = query.filter(Order.payment_status == payment_status)

    start = _parse_date_filter(filters.get('start_date'), 'start_date')
    if start:
        query = query.filter(Order.created_at >= start)

    end_raw = filters.get('end_date')
    end = _parse_date_filter(end_raw, 'end_date')
    if end:
        if isinstance(end_raw, str) and len(end_raw.strip()) == 10:
            query = query.filter(Order.created_at < end + timedelta(days=1))
        else:
            query = query.filter(Order.created_at <= end)

    search = (filters.get('search') or '').strip()
    if search:
        query = query.filter(Order.order_number.ilike(f'%{search}%'))

    if filters.get('user_id'):
        query = query.filter(Order.user_id == filters['user_id'])

    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def order_stats(session, tenant_id: int) -> Dict[str, Any]:
    """Order counts per status and revenue from paid orders."""
    counts = dict(
        session.query(Order.status, func.count(Order.id))
        .filter(Order.tenant_id == tenant_id)
        .group_by(Order.status)
        .all()
    )
    revenue = session.query(func.coalesce(func.sum(Order.total_amount), 0)).filter(
        Order.tenant_id == tenant_id,
        Order.payment_status == PaymentStatus.PAID.value
    ).scalar()

    return {
        'total_orders': sum(counts.values()),
        'pending': counts.get(OrderStatus.PENDING.value, 0),
        'processing': counts.get(OrderStatus.PROCESSING.value, 0),
        'shipped': counts.get(OrderStatus.SHIPPED.value, 0),
        'delivered': counts.get(OrderStatus.DELIVERED.value, 0),
        'cancelled': counts.get(OrderStatus.CANCELLED.value, 0),
        'total_revenue': Decimal(str(revenue or 0)).quantize(Decimal('0.01')),
    }


# =====================================================
# STATE MACHINE
# =====================================================

def _check_order_transition(order: Order, target: str, target_payment: str) -> None:
    current = order.status
    if target == current:
        return
    if target not in ORDER_TRANSITIONS[current]:
        raise ConflictError(f'Tidak dapat mengubah status dari {current} ke {target}')

    if target == OrderStatus.SHIPPED.value and order.shipping_type != ShippingType.DELIVERY.value:
        raise ConflictError('Pesanan ambil sendiri tidak dapat dikirim')
    if (current == OrderStatus.PROCESSING.value and target == OrderStatus.DELIVERED.value
            and order.shipping_type != ShippingType.PICKUP.value):
        raise ConflictError('Pesanan pengiriman harus dikirim sebelum diterima')
    if (current == OrderStatus.DELIVERED.value and target == OrderStatus.CANCELLED.value
            and target_payment != PaymentStatus.REFUNDED.value):
        raise ConflictError('Pesanan yang sudah diterima hanya dapat dibatalkan dengan pengembalian dana')


def _check_payment_transition(current: str, target: str, order_status: str) -> None:
    if target == current:
        return
    if target not in PAYMENT_TRANSITIONS[current]:
        raise ConflictError(f'Tidak dapat mengubah status pembayaran dari {current} ke {target}')
    if target == PaymentStatus.REFUNDED.value and order_status != OrderStatus.DELIVERED.value:
        raise ConflictError('Pengembalian dana hanya untuk pesanan yang sudah diterima')


def update_order_status(
    session,
    tenant_id: int,
    order_id: int,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    notes: Optional[str] = None
) -> Order:
    """
    Move an order through its status machines.

    Accepts stored (Indonesian) values or English aliases. When both
    statuses change together, the refund is checked against the status
    the order had before the update (paid + delivered -> refunded + cancelled).
    """
    target = normalize_order_status(status)
    target_payment = normalize_payment_status(payment_status)
    if target is None and target_payment is None and notes is None:
        raise ValidationError('Tidak ada perubahan yang dikirim')

    order = get_order(session, tenant_id, order_id)
    new_status = target or order.status
    new_payment = target_payment or order.payment_status

    _check_order_transition(order, new_status, new_payment)
    _check_payment_transition(order.payment_status, new_payment, order.status)

    previous = (order.status, order.payment_status)
    try:
        order.status = new_status
        order.payment_status = new_payment
        if notes is not None:
            order.notes = notes or None
        session.commit()
    except SQLAlchemyError as e:
        _rollback(session)
        raise TransactionError('Gagal memperbarui pesanan') from e

    logger.info(
        f"[ORDER] {order.order_number}: {previous[0]}/{previous[1]} -> {new_status}/{new_payment}"
    )
    return order


def attach_payment_proof(session, tenant_id: int, order_id: int, proof_base64: str,
                         user_id: Optional[int] = None, cash_keyword: str = 'cash') -> Order:
    """
    Store a payment proof and mark the order awaiting confirmation.

    Only unpaid or awaiting orders accept a proof; cash orders never do.
    """
    if not proof_base64:
        raise ValidationError('Bukti pembayaran wajib diisi')

    order = get_order(session, tenant_id, order_id, user_id=user_id)
    if is_cash_method(order.payment_method, cash_keyword):
        raise ConflictError('Pesanan tunai tidak memerlukan bukti pembayaran')
    if order.status == OrderStatus.CANCELLED.value:
        raise ConflictError('Pesanan sudah dibatalkan')
    if order.payment_status not in (PaymentStatus.UNPAID.value, PaymentStatus.AWAITING_CONFIRMATION.value):
        raise ConflictError('Pembayaran pesanan sudah diproses')

    path = save_proof_base64(proof_base64, order.order_number, tenant_id)
    try:
        order.proof_payment_path = path
        order.payment_status = PaymentStatus.AWAITING_CONFIRMATION.value
        session.commit()
    except SQLAlchemyError as e:
        _rollback(session)
        raise TransactionError('Gagal menyimpan bukti pembayaran') from e

    logger.info(f"[ORDER] Proof attached to {order.order_number}")
    return order
