"""Discounts blueprint - admin management of product/unit discounts."""
from flask import Blueprint, request, g

from app.database import get_session
from app.middleware import require_login, require_role
from app.services import discount_service
from app.utils.responses import success, get_json_body

discounts_bp = Blueprint('discounts', __name__, url_prefix='/api/discounts')


@discounts_bp.route('', methods=['GET'])
@require_login
@require_role()
def list_discounts():
    return success(discount_service.list_discounts(get_session(), g.tenant_id))


@discounts_bp.route('', methods=['POST'])
@require_login
@require_role()
def create_discount():
    db_session = get_session()
    discount = discount_service.create_discount(db_session, g.tenant_id, get_json_body())
    return success(discount_service.discount_to_record(discount), 'Diskon berhasil dibuat', 201)


@discounts_bp.route('', methods=['PATCH'])
@require_login
@require_role()
def update_discount():
    """Body carries `id` plus the fields to change."""
    data = get_json_body()
    discount = discount_service.update_discount(get_session(), g.tenant_id, data.get('id'), data)
    return success(discount_service.discount_to_record(discount), 'Diskon berhasil diperbarui')


@discounts_bp.route('', methods=['DELETE'])
@require_login
@require_role()
def delete_discount():
    discount_id = request.args.get('id') or get_json_body(required=False).get('id')
    discount_service.delete_discount(get_session(), g.tenant_id, discount_id)
    return success(message='Diskon berhasil dihapus')
