"""Catalog blueprint - public product listing with display prices."""
from flask import Blueprint, request, g

from app.database import get_session
from app.exceptions import ValidationError
from app.services.catalog_service import list_products, get_tenant_by_slug
from app.services.discount_service import get_active_discounts_cached
from app.utils.responses import success

catalog_bp = Blueprint('catalog', __name__, url_prefix='/api')


def resolve_storefront_id(db_session):
    """
    Storefront of the request.

    Anonymous visitors pass the storefront slug as `?tenant=`; signed-in
    users default to their session storefront.
    """
    tenant_id = g.get('tenant_id')
    slug = request.args.get('tenant')
    if slug:
        tenant_id = get_tenant_by_slug(db_session, slug).id
    if not tenant_id:
        raise ValidationError('Toko wajib dipilih')
    return tenant_id


@catalog_bp.route('/products', methods=['GET'])
def products_list():
    """Active products of the current storefront."""
    db_session = get_session()
    tenant_id = resolve_storefront_id(db_session)

    category_id = request.args.get('category_id', type=int)
    search = request.args.get('q') or None

    discounts = get_active_discounts_cached(db_session, tenant_id)
    products = list_products(db_session, tenant_id, discounts, category_id=category_id, search=search)
    return success(products)
