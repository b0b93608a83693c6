"""Cart Service - Persistent cart operations (multi-tenant)."""

from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session, joinedload
from app.models import CartItem, Product, ProductUnit
from app.exceptions import ValidationError, NotFoundError, InsufficientStockError
from app.services import pricing_service


def _parse_quantity(value: Any, allow_zero: bool = False) -> int:
    if isinstance(value, bool):
        raise ValidationError('Jumlah tidak valid')
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError('Jumlah tidak valid')
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError('Jumlah tidak valid')
    return quantity


def _get_unit(session: Session, tenant_id: int, unit_id: Any) -> ProductUnit:
    try:
        unit_id = int(unit_id)
    except (TypeError, ValueError):
        raise ValidationError('Unit tidak valid')

    unit = (
        session.query(ProductUnit)
        .join(Product, ProductUnit.product_id == Product.id)
        .options(joinedload(ProductUnit.product))
        .filter(ProductUnit.id == unit_id, Product.tenant_id == tenant_id)
        .first()
    )
    if not unit:
        raise NotFoundError('Unit tidak ditemukan')
    return unit


def _get_line(session: Session, tenant_id: int, user_id: int, cart_id: Any) -> CartItem:
    line = session.query(CartItem).filter(
        CartItem.id == cart_id,
        CartItem.tenant_id == tenant_id,
        CartItem.user_id == user_id
    ).first()
    if not line:
        raise NotFoundError('Item keranjang tidak ditemukan')
    return line


def add_to_cart(session: Session, tenant_id: int, user_id: int, unit_id: Any, quantity: Any = 1) -> CartItem:
    """Add a unit to the cart; re-adding increments the existing line."""
    quantity = _parse_quantity(quantity)
    unit = _get_unit(session, tenant_id, unit_id)
    if not unit.product.active:
        raise ValidationError(f'Produk "{unit.product.name}" tidak aktif')

    line = session.query(CartItem).filter(
        CartItem.tenant_id == tenant_id,
        CartItem.user_id == user_id,
        CartItem.unit_id == unit.id
    ).first()

    new_quantity = (line.quantity if line else 0) + quantity
    if new_quantity > unit.stock:
        raise InsufficientStockError(unit.product.name, unit.unit_name, new_quantity, unit.stock)

    if line:
        line.quantity = new_quantity
    else:
        line = CartItem(tenant_id=tenant_id, user_id=user_id, unit_id=unit.id, quantity=quantity)
        session.add(line)

    session.commit()
    return line


def update_cart_item(session: Session, tenant_id: int, user_id: int, cart_id: Any, quantity: Any) -> Optional[CartItem]:
    """Set a line's quantity; 0 removes the line and returns None."""
    quantity = _parse_quantity(quantity, allow_zero=True)
    line = _get_line(session, tenant_id, user_id, cart_id)

    if quantity == 0:
        session.delete(line)
        session.commit()
        return None

    unit = line.unit
    if quantity > unit.stock:
        raise InsufficientStockError(unit.product.name, unit.unit_name, quantity, unit.stock)

    line.quantity = quantity
    session.commit()
    return line


def remove_cart_item(session: Session, tenant_id: int, user_id: int, cart_id: Any) -> None:
    line = _get_line(session, tenant_id, user_id, cart_id)
    session.delete(line)
    session.commit()


def clear_cart(session: Session, tenant_id: int, user_id: int) -> int:
    """Delete every line of one user's cart in one storefront."""
    deleted = session.query(CartItem).filter(
        CartItem.tenant_id == tenant_id,
        CartItem.user_id == user_id
    ).delete(synchronize_session=False)
    session.commit()
    return deleted


def get_cart(session: Session, tenant_id: int, user_id: int, discounts: Optional[List[Dict]] = None) -> Dict[str, Any]:
    """
    Cart lines with live unit price, stock and discounted price.

    Display only: the order transaction re-prices everything.
    """
    lines = (
        session.query(CartItem)
        .options(joinedload(CartItem.unit).joinedload(ProductUnit.product))
        .filter(CartItem.tenant_id == tenant_id, CartItem.user_id == user_id)
        .order_by(CartItem.created_at.asc(), CartItem.id.asc())
        .all()
    )

    items = [{
        'cart_id': line.id,
        'unit_id': line.unit_id,
        'product_id': line.unit.product_id,
        'product_name': line.unit.product.name,
        'unit_name': line.unit.unit_name,
        'image_path': line.unit.product.image_path,
        'stock': line.unit.stock,
        'quantity': line.quantity,
        'price': line.unit.price,
    } for line in lines]

    priced = pricing_service.price_items(items, discounts)
    total = pricing_service.total_of(priced)
    original_total = pricing_service.calculate_original_total(items)

    return {
        'items': priced,
        'item_count': sum(line['quantity'] for line in priced),
        'original_total': original_total,
        'discount_total': original_total - total,
        'total': total,
        'subtotals': [
            {'label': label, 'amount': amount}
            for label, amount in pricing_service.subtotals_by_unit(items, discounts)
        ],
    }
