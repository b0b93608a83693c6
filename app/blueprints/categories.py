"""Categories blueprint."""
from flask import Blueprint, request, g

from app.blueprints.catalog import resolve_storefront_id
from app.database import get_session
from app.exceptions import ValidationError
from app.middleware import require_login, require_role
from app.services import category_service
from app.utils.responses import success, get_json_body

categories_bp = Blueprint('categories', __name__, url_prefix='/api/categories')


def _category_id(data=None):
    category_id = request.args.get('id') or (data or {}).get('id')
    if not category_id:
        raise ValidationError('ID kategori diperlukan')
    return category_id


@categories_bp.route('', methods=['GET'])
def list_categories():
    """Categories of the current storefront (`?tenant=` for visitors)."""
    db_session = get_session()
    categories = category_service.list_categories(db_session, resolve_storefront_id(db_session))
    return success([c.to_dict() for c in categories])


@categories_bp.route('', methods=['POST'])
@require_login
@require_role()
def create_category():
    category = category_service.create_category(get_session(), g.tenant_id, get_json_body())
    return success(category.to_dict(), 'Kategori ditambahkan', 201)


@categories_bp.route('', methods=['PUT', 'PATCH'])
@require_login
@require_role()
def update_category():
    data = get_json_body()
    category = category_service.update_category(get_session(), g.tenant_id, _category_id(data), data)
    return success(category.to_dict(), 'Kategori diperbarui')


@categories_bp.route('', methods=['DELETE'])
@require_login
@require_role()
def delete_category():
    category_service.delete_category(get_session(), g.tenant_id, _category_id(get_json_body(required=False)))
    return success(message='Kategori dihapus')
