"""Products blueprint - catalog management for store staff."""
from flask import Blueprint, request, g

from app.database import get_session
from app.exceptions import ValidationError
from app.middleware import require_login, require_role
from app.services import product_service
from app.utils.responses import success, get_json_body

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


def _product_id(data=None):
    product_id = request.args.get('id') or (data or {}).get('id')
    if not product_id:
        raise ValidationError('ID produk diperlukan')
    return product_id


@products_bp.route('/manage', methods=['GET'])
@require_login
@require_role()
def manage_list():
    """All products, inactive included, with raw unit prices and stock."""
    products = product_service.list_products_admin(get_session(), g.tenant_id)
    return success([product_service.product_to_record(p) for p in products])


@products_bp.route('/<int:product_id>', methods=['GET'])
@require_login
@require_role()
def product_detail(product_id):
    product = product_service.get_product(get_session(), g.tenant_id, product_id)
    return success(product_service.product_to_record(product))


@products_bp.route('', methods=['POST'])
@require_login
@require_role()
def create_product():
    product = product_service.create_product(get_session(), g.tenant_id, get_json_body())
    return success(product_service.product_to_record(product), 'Produk ditambahkan', 201)


@products_bp.route('', methods=['PUT', 'PATCH'])
@require_login
@require_role()
def update_product():
    data = get_json_body()
    product = product_service.update_product(get_session(), g.tenant_id, _product_id(data), data)
    return success(product_service.product_to_record(product), 'Produk diperbarui')


@products_bp.route('', methods=['DELETE'])
@require_login
@require_role()
def delete_product():
    product_service.delete_product(get_session(), g.tenant_id, _product_id(get_json_body(required=False)))
    return success(message='Produk dihapus')
