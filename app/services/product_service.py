"""
Product management - Multi-Tenant.

Create, edit and delete products together with their units. On update the
unit list is authoritative: units sent with an `id` are edited in place,
units without one are added, and units left out are removed. A unit or
product that already appears in an order cannot be removed.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.exceptions import ValidationError, NotFoundError, ConflictError
from app.models import (
    Product, ProductUnit, Category, CartItem, OrderItem, discount_product, discount_unit
)
from app.services.discount_service import invalidate_discount_cache

logger = logging.getLogger(__name__)


# =====================================================
# RECORDS
# =====================================================

def unit_to_record(unit: ProductUnit) -> Dict[str, Any]:
    return {
        'id': unit.id,
        'unit_name': unit.unit_name,
        'qty_per_unit': unit.qty_per_unit,
        'price': unit.price,
        'stock': unit.stock,
    }


def product_to_record(product: Product) -> Dict[str, Any]:
    return {
        'id': product.id,
        'name': product.name,
        'description': product.description,
        'category_id': product.category_id,
        'category': product.category.name if product.category else None,
        'image_path': product.image_path,
        'active': product.active,
        'created_at': product.created_at,
        'updated_at': product.updated_at,
        'units': [unit_to_record(u) for u in product.units],
    }


# =====================================================
# READS
# =====================================================

def _product_query(session, tenant_id: int):
    return (
        session.query(Product)
        .options(selectinload(Product.units), selectinload(Product.category))
        .filter(Product.tenant_id == tenant_id)
    )


def list_products_admin(session, tenant_id: int) -> List[Product]:
    """Every product of the storefront, inactive ones included, newest first."""
    return _product_query(session, tenant_id).order_by(Product.created_at.desc(), Product.id.desc()).all()


def get_product(session, tenant_id: int, product_id: Any) -> Product:
    product = _product_query(session, tenant_id).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError('Produk tidak ditemukan')
    return product


# =====================================================
# VALIDATION
# =====================================================

def _parse_decimal(value: Any, message: str) -> Decimal:
    if value is None or value == '' or isinstance(value, bool):
        raise ValidationError(message)
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError(message)
    if not result.is_finite():
        raise ValidationError(message)
    return result


def _parse_int(value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(message)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def validate_units(raw_units: Any) -> List[Dict[str, Any]]:
    """
    Validate a unit list.

    Each entry needs `unit_name` and a non-negative `price`; `stock`
    defaults to 0 and `qty_per_unit` to 1. Unit names must be unique
    within the product (case-insensitive).
    """
    if not isinstance(raw_units, list):
        raise ValidationError('Daftar unit tidak valid')

    units = []
    seen_names = set()
    seen_ids = set()
    for raw in raw_units:
        if not isinstance(raw, dict):
            raise ValidationError('Data unit tidak valid')

        unit_name = raw.get('unit_name')
        unit_name = unit_name.strip() if isinstance(unit_name, str) else ''
        if not unit_name:
            raise ValidationError('Nama unit diperlukan')
        if len(unit_name) > 100:
            raise ValidationError('Nama unit maksimal 100 karakter')
        if unit_name.lower() in seen_names:
            raise ValidationError(f'Nama unit duplikat: {unit_name}')
        seen_names.add(unit_name.lower())

        price = _parse_decimal(raw.get('price'), 'Harga unit tidak valid')
        if price < 0:
            raise ValidationError('Harga unit tidak boleh negatif')

        stock = raw.get('stock')
        stock = 0 if stock is None or stock == '' else _parse_int(stock, 'Stok unit tidak valid')
        if stock < 0:
            raise ValidationError('Stok unit tidak boleh negatif')

        qty = raw.get('qty_per_unit')
        qty = Decimal('1') if qty is None or qty == '' else _parse_decimal(qty, 'Isi per unit tidak valid')
        if qty <= 0:
            raise ValidationError('Isi per unit harus lebih dari 0')

        unit_id = raw.get('id')
        if unit_id is not None and unit_id != '':
            unit_id = _parse_int(unit_id, 'ID unit tidak valid')
            if unit_id in seen_ids:
                raise ValidationError('ID unit duplikat')
            seen_ids.add(unit_id)
        else:
            unit_id = None

        units.append({
            'id': unit_id,
            'unit_name': unit_name,
            'qty_per_unit': qty,
            'price': price,
            'stock': stock,
        })
    return units


def validate_product_payload(session, tenant_id: int, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    """Clean product fields; `category` is accepted as an alias of `category_id`."""
    values = {}
    if 'name' in data or not partial:
        name = data.get('name')
        name = name.strip() if isinstance(name, str) else ''
        if not name:
            raise ValidationError('Nama produk diperlukan')
        if len(name) > 200:
            raise ValidationError('Nama produk maksimal 200 karakter')
        values['name'] = name

    if 'description' in data:
        description = data.get('description')
        description = description.strip() if isinstance(description, str) else ''
        values['description'] = description or None

    if 'category_id' in data or 'category' in data:
        raw = data.get('category_id', data.get('category'))
        if raw is None or raw == '':
            values['category_id'] = None
        else:
            category_id = _parse_int(raw, 'Kategori tidak valid')
            exists = session.query(Category.id).filter(
                Category.id == category_id,
                Category.tenant_id == tenant_id
            ).first()
            if not exists:
                raise ValidationError('Kategori tidak ditemukan')
            values['category_id'] = category_id

    if 'image_path' in data:
        image_path = data.get('image_path')
        image_path = image_path.strip() if isinstance(image_path, str) else ''
        values['image_path'] = image_path or None

    if 'active' in data:
        values['active'] = _parse_bool(data.get('active'))

    if 'units' in data:
        values['units'] = validate_units(data.get('units'))
    elif not partial:
        values['units'] = []
    return values


# =====================================================
# WRITES
# =====================================================

def _units_in_orders(session, unit_ids: List[int]) -> bool:
    if not unit_ids:
        return False
    return session.query(OrderItem.id).filter(OrderItem.unit_id.in_(unit_ids)).first() is not None


def _detach_units(session, unit_ids: List[int]) -> None:
    """Drop cart lines and discount scope rows pointing at units about to be deleted."""
    if not unit_ids:
        return
    session.query(CartItem).filter(CartItem.unit_id.in_(unit_ids)).delete(synchronize_session=False)
    session.execute(discount_unit.delete().where(discount_unit.c.unit_id.in_(unit_ids)))


def create_product(session, tenant_id: int, data: Dict[str, Any]) -> Product:
    """Create a product with its units."""
    values = validate_product_payload(session, tenant_id, data or {}, partial=False)
    units = values.pop('units')

    try:
        product = Product(tenant_id=tenant_id, **values)
        for unit in units:
            unit.pop('id')
            product.units.append(ProductUnit(**unit))
        session.add(product)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError('Data produk tidak valid')

    logger.info(
        f"[CATALOG] Created product {product.id} '{product.name}' "
        f"with {len(units)} units for tenant {tenant_id}"
    )
    return get_product(session, tenant_id, product.id)


def _sync_units(session, product: Product, units: List[Dict[str, Any]]) -> List[int]:
    """Apply an authoritative unit list; returns the ids of removed units."""
    existing = {u.id: u for u in product.units}
    for unit in units:
        if unit['id'] is not None and unit['id'] not in existing:
            raise ValidationError(f"Unit dengan ID {unit['id']} tidak ditemukan pada produk ini")

    kept_ids = {u['id'] for u in units if u['id'] is not None}
    removed_ids = [unit_id for unit_id in existing if unit_id not in kept_ids]
    if _units_in_orders(session, removed_ids):
        raise ConflictError('Unit masih digunakan oleh pesanan')

    _detach_units(session, removed_ids)
    for unit_id in removed_ids:
        product.units.remove(existing[unit_id])

    for unit in units:
        fields = {k: v for k, v in unit.items() if k != 'id'}
        if unit['id'] is None:
            product.units.append(ProductUnit(**fields))
        else:
            for key, value in fields.items():
                setattr(existing[unit['id']], key, value)
    return removed_ids


def update_product(session, tenant_id: int, product_id: Any, data: Dict[str, Any]) -> Product:
    """Partial update; the unit list is synced only when `units` is sent."""
    if not product_id:
        raise ValidationError('ID produk diperlukan')
    product = get_product(session, tenant_id, product_id)
    values = validate_product_payload(session, tenant_id, data or {}, partial=True)
    units = values.pop('units', None)

    removed_ids = []
    try:
        for key, value in values.items():
            setattr(product, key, value)
        if units is not None:
            removed_ids = _sync_units(session, product, units)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError('Data produk tidak valid')
    except Exception:
        session.rollback()
        raise

    if removed_ids:
        invalidate_discount_cache(tenant_id)
    logger.info(f"[CATALOG] Updated product {product.id} for tenant {tenant_id} (removed units: {removed_ids})")
    return get_product(session, tenant_id, product.id)


def delete_product(session, tenant_id: int, product_id: Any) -> None:
    """Delete a product and its units unless any of them was ever ordered."""
    if not product_id:
        raise ValidationError('ID produk diperlukan')
    product = get_product(session, tenant_id, product_id)
    unit_ids = [u.id for u in product.units]
    if _units_in_orders(session, unit_ids):
        raise ConflictError('Produk masih digunakan oleh pesanan')

    try:
        _detach_units(session, unit_ids)
        session.execute(discount_product.delete().where(discount_product.c.product_id == product.id))
        session.delete(product)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_discount_cache(tenant_id)
    logger.info(f"[CATALOG] Deleted product {product_id} for tenant {tenant_id}")
