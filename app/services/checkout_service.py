"""
Direct checkout ("buy now") tokens.

A short-lived HS256 JWT carries the chosen items from the product page to
the checkout page without touching the cart.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import jwt
from sqlalchemy.orm import joinedload

from app.exceptions import ValidationError, UnauthorizedError, ForbiddenError
from app.models import Product, ProductUnit

logger = logging.getLogger(__name__)

ALGORITHM = 'HS256'


def _clean_items(items: Any) -> List[Dict[str, int]]:
    if not isinstance(items, list):
        return []
    cleaned = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            unit_id = int(item.get('unit_id') or 0)
            quantity = max(1, int(item.get('quantity') or 0))
        except (TypeError, ValueError):
            continue
        if unit_id > 0:
            cleaned.append({'unit_id': unit_id, 'quantity': quantity})
    return cleaned


def issue_direct_checkout_token(user_id: int, tenant_id: int, items: Any, secret_key: str,
                                ttl_seconds: int = 600) -> Dict[str, Any]:
    """Sign the items for `user_id`; returns {token, expires_in}."""
    cleaned = _clean_items(items)
    if not cleaned:
        raise ValidationError('Items tidak valid')

    payload = {
        'sub': str(user_id),
        'tid': tenant_id,
        'items': cleaned,
        'exp': datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
    }
    token = jwt.encode(payload, secret_key, algorithm=ALGORITHM)
    return {'token': token, 'expires_in': ttl_seconds}


def decode_direct_checkout_token(token: str, user_id: int, tenant_id: int, secret_key: str) -> List[Dict[str, int]]:
    """Verify signature, expiry and ownership; returns the signed items."""
    if not token:
        raise ValidationError('Token diperlukan')
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError('Token tidak valid atau kadaluarsa')
    except jwt.InvalidTokenError:
        raise UnauthorizedError('Token tidak valid atau kadaluarsa')

    if payload.get('sub') != str(user_id) or payload.get('tid') != tenant_id:
        logger.warning(f"[CHECKOUT] Token owner mismatch for user {user_id}")
        raise ForbiddenError('Token tidak cocok dengan pengguna')
    return _clean_items(payload.get('items'))


def resolve_direct_checkout_token(session, token: str, user_id: int, tenant_id: int,
                                  secret_key: str) -> List[Dict[str, Any]]:
    """Item details (live price, names, image) for a direct checkout token."""
    items = decode_direct_checkout_token(token, user_id, tenant_id, secret_key)
    if not items:
        return []

    units = (
        session.query(ProductUnit)
        .join(Product, ProductUnit.product_id == Product.id)
        .options(joinedload(ProductUnit.product))
        .filter(ProductUnit.id.in_([i['unit_id'] for i in items]), Product.tenant_id == tenant_id)
        .all()
    )
    by_id = {u.id: u for u in units}

    resolved = []
    for item in items:
        unit = by_id.get(item['unit_id'])
        if unit is None:
            continue
        resolved.append({
            'unit_id': unit.id,
            'product_id': unit.product_id,
            'product_name': unit.product.name,
            'unit_name': unit.unit_name,
            'quantity': item['quantity'],
            'price': unit.price,
            'stock': unit.stock,
            'image_path': unit.product.image_path,
        })
    return resolved
