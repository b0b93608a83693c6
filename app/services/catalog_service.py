"""Catalog read service: products with units and display prices (multi-tenant)."""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from app.exceptions import NotFoundError
from app.models import Product, Tenant
from app.services import pricing_service


def get_tenant_by_slug(session: Session, slug: str) -> Tenant:
    tenant = session.query(Tenant).filter_by(slug=slug, active=True).first()
    if not tenant:
        raise NotFoundError('Toko tidak ditemukan')
    return tenant


def _unit_record(unit, discounts) -> Dict[str, Any]:
    resolution = pricing_service.resolve_item_price(
        unit.price, unit.product_id, unit.id, discounts,
        items=[{'product_id': unit.product_id, 'unit_id': unit.id, 'quantity': 1, 'price': unit.price}]
    )
    return {
        'id': unit.id,
        'unit_name': unit.unit_name,
        'qty_per_unit': unit.qty_per_unit,
        'price': unit.price,
        'final_price': resolution['price'],
        'discount_applied': resolution['applied'],
        'stock': unit.stock,
    }


def list_products(
    session: Session,
    tenant_id: int,
    discounts: Optional[List[Dict]] = None,
    category_id: Optional[int] = None,
    search: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Active products with their units priced against `discounts`.

    Tiered discounts are evaluated as if the unit were bought alone; the
    cart and the order transaction price with the full item list.
    """
    query = (
        session.query(Product)
        .options(selectinload(Product.units), selectinload(Product.category))
        .filter(Product.tenant_id == tenant_id, Product.active.is_(True))
    )
    if category_id:
        query = query.filter(Product.category_id == category_id)
    if search:
        query = query.filter(Product.name.ilike(f'%{search.strip()}%'))

    products = []
    for product in query.order_by(Product.name.asc(), Product.id.asc()).all():
        products.append({
            'id': product.id,
            'name': product.name,
            'description': product.description,
            'category_id': product.category_id,
            'category': product.category.name if product.category else None,
            'image_path': product.image_path,
            'units': [_unit_record(u, discounts) for u in product.units],
        })
    return products
