"""Orders blueprint - placement, tracking and admin status management."""
from flask import Blueprint, request, g, current_app

from app.blueprints.metrics import orders_placed_total, order_failures_total
from app.database import get_session
from app.exceptions import StorefrontError
from app.middleware import require_login, require_role, is_staff
from app.services import order_service
from app.utils.responses import success, get_json_body

orders_bp = Blueprint('orders', __name__, url_prefix='/api/orders')


def _owner_filter():
    """Customers only ever see their own orders."""
    return None if is_staff() else g.user.id


@orders_bp.route('', methods=['GET'])
@require_login
def list_orders():
    args = request.args
    filters = {
        'status': args.get('status'),
        'payment_status': args.get('payment_status') or args.get('paymentStatus'),
        'start_date': args.get('start_date') or args.get('startDate'),
        'end_date': args.get('end_date') or args.get('endDate'),
        'search': args.get('search'),
        'user_id': args.get('user_id', type=int),
    }
    owner = _owner_filter()
    if owner is not None:
        filters['user_id'] = owner

    orders = order_service.list_orders(get_session(), g.tenant_id, filters)
    return success([o.to_dict() for o in orders])


@orders_bp.route('/stats', methods=['GET'])
@require_login
@require_role()
def stats():
    return success(order_service.order_stats(get_session(), g.tenant_id))


@orders_bp.route('', methods=['POST'])
@require_login
def place_order():
    """
    Place an order from the cart or a direct checkout.

    Customers always order for themselves; staff may pass `user_id`.
    """
    data = get_json_body()
    if not is_staff() or not data.get('user_id'):
        data['user_id'] = g.user.id

    source = str(data.get('source') or 'cart').lower()
    try:
        order = order_service.place_order(
            get_session(), g.tenant_id, data,
            order_number_prefix=current_app.config.get('ORDER_NUMBER_PREFIX', 'ORD'),
            cash_keyword=current_app.config.get('CASH_PAYMENT_KEYWORD', 'cash')
        )
    except StorefrontError as e:
        order_failures_total.labels(reason=type(e).__name__).inc()
        raise

    orders_placed_total.labels(source=source).inc()
    return success(order.to_dict(), 'Pesanan berhasil dibuat', 201)


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_login
def get_order(order_id):
    order = order_service.get_order(get_session(), g.tenant_id, order_id, user_id=_owner_filter())
    return success(order.to_dict())


@orders_bp.route('/<int:order_id>', methods=['PATCH'])
@require_login
@require_role()
def update_order(order_id):
    data = get_json_body()
    order = order_service.update_order_status(
        get_session(), g.tenant_id, order_id,
        status=data.get('status'),
        payment_status=data.get('payment_status'),
        notes=data.get('notes')
    )
    return success(order.to_dict(), 'Pesanan diperbarui')


@orders_bp.route('/<int:order_id>/proof', methods=['POST'])
@require_login
def upload_proof(order_id):
    data = get_json_body()
    order = order_service.attach_payment_proof(
        get_session(), g.tenant_id, order_id, data.get('proof_base64'),
        user_id=_owner_filter(),
        cash_keyword=current_app.config.get('CASH_PAYMENT_KEYWORD', 'cash')
    )
    return success(order.to_dict(), 'Bukti pembayaran diunggah')
