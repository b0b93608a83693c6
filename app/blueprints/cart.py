"""Cart blueprint - persistent cart of the logged-in customer."""
from flask import Blueprint, request, g

from app.database import get_session
from app.middleware import require_login
from app.services import cart_service
from app.services.discount_service import get_active_discounts_cached
from app.utils.responses import success, get_json_body

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('', methods=['GET'])
@require_login
def view_cart():
    db_session = get_session()
    discounts = get_active_discounts_cached(db_session, g.tenant_id)
    return success(cart_service.get_cart(db_session, g.tenant_id, g.user.id, discounts))


@cart_bp.route('', methods=['POST'])
@require_login
def add_item():
    data = get_json_body()
    line = cart_service.add_to_cart(
        get_session(), g.tenant_id, g.user.id, data.get('unit_id'), data.get('quantity', 1)
    )
    return success({'cart_id': line.id, 'quantity': line.quantity}, 'Produk ditambahkan ke keranjang', 201)


@cart_bp.route('', methods=['PUT'])
@require_login
def update_item():
    data = get_json_body()
    line = cart_service.update_cart_item(
        get_session(), g.tenant_id, g.user.id, data.get('cart_id'), data.get('quantity')
    )
    if line is None:
        return success(message='Item dihapus dari keranjang')
    return success({'cart_id': line.id, 'quantity': line.quantity}, 'Keranjang diperbarui')


@cart_bp.route('', methods=['DELETE'])
@require_login
def delete_item():
    """`?cart_id=` removes one line; without it the whole cart is cleared."""
    db_session = get_session()
    cart_id = request.args.get('cart_id')
    if cart_id:
        cart_service.remove_cart_item(db_session, g.tenant_id, g.user.id, cart_id)
        return success(message='Item dihapus dari keranjang')

    deleted = cart_service.clear_cart(db_session, g.tenant_id, g.user.id)
    return success({'deleted': deleted}, 'Keranjang dikosongkan')
