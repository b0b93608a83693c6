"""
Discount repository - Multi-Tenant.

Loads, validates and persists discounts and their tiers. Read paths return
plain records (`discount_to_record`) consumed by the pricing engine and the
API; `is_active_now` is recomputed from the schedule on every read.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from app.exceptions import ValidationError, NotFoundError, ConflictError
from app.models import (
    Discount, DiscountTier, DiscountScope, DiscountValueType, Product, ProductUnit
)
from app.services.cache_service import get_cache
from app.utils.formatters import utc_now, to_naive_utc, parse_iso8601, isoformat_or_none

logger = logging.getLogger(__name__)

CACHE_MODULE = 'discounts'

SCOPE_TYPES = {s.value for s in DiscountScope}
VALUE_TYPES = {v.value for v in DiscountValueType}
TIER_VALUE_TYPES = {DiscountValueType.PERCENTAGE.value, DiscountValueType.NOMINAL.value}


# =====================================================
# RECORDS
# =====================================================

def compute_is_active_now(active: bool, start_at: Optional[datetime], end_at: Optional[datetime],
                          now: Optional[datetime] = None) -> bool:
    """active AND (no start or now >= start) AND (no end or now <= end)."""
    if not active:
        return False
    now = to_naive_utc(now) or utc_now()
    start_at = to_naive_utc(start_at)
    end_at = to_naive_utc(end_at)
    if start_at is not None and now < start_at:
        return False
    if end_at is not None and now > end_at:
        return False
    return True


def tier_to_record(tier: DiscountTier) -> Dict[str, Any]:
    return {
        'id': tier.id,
        'label': tier.label,
        'min_quantity': tier.min_quantity,
        'max_quantity': tier.max_quantity,
        'min_amount': tier.min_amount,
        'max_amount': tier.max_amount,
        'value_type': tier.value_type,
        'value': tier.value,
        'priority': tier.priority,
    }


def discount_to_record(discount: Discount, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Plain record of a discount.

    Amounts stay Decimal; the API layer converts them for JSON.
    """
    active_now = compute_is_active_now(discount.active, discount.start_at, discount.end_at, now)
    return {
        'id': discount.id,
        'name': discount.name,
        'type': discount.scope_type,
        'value_type': discount.value_type,
        'value': discount.value,
        'active': 1 if discount.active else 0,
        'start_at': isoformat_or_none(to_naive_utc(discount.start_at)),
        'end_at': isoformat_or_none(to_naive_utc(discount.end_at)),
        'apply_order': discount.apply_order,
        'product_ids': discount.product_ids,
        'unit_ids': discount.unit_ids,
        'tiers': [tier_to_record(t) for t in discount.tiers],
        'is_active_now': 1 if active_now else 0,
        'created_at': isoformat_or_none(discount.created_at),
    }


def _discount_query(session, tenant_id: int):
    return session.query(Discount).options(
        selectinload(Discount.products),
        selectinload(Discount.units),
        selectinload(Discount.tiers),
    ).filter(Discount.tenant_id == tenant_id)


# =====================================================
# READS
# =====================================================

def load_active_discounts(session, tenant_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Discounts active at `now`, in stacking order (apply_order, id).

    Always reads the database; used by order placement.
    """
    now = to_naive_utc(now) or utc_now()
    discounts = (
        _discount_query(session, tenant_id)
        .filter(Discount.active.is_(True))
        .order_by(Discount.apply_order.asc(), Discount.id.asc())
        .all()
    )
    records = []
    for discount in discounts:
        if compute_is_active_now(discount.active, discount.start_at, discount.end_at, now):
            records.append(discount_to_record(discount, now))
    return records


def get_active_discounts_cached(session, tenant_id: int) -> List[Dict[str, Any]]:
    """Active discount set for display pricing (catalog, cart), cached per tenant."""
    ttl = current_app.config.get('CACHE_DISCOUNTS_TTL', 60)
    return get_cache().memoize(
        tenant_id, CACHE_MODULE, 'active',
        lambda: load_active_discounts(session, tenant_id),
        ttl=ttl
    )


def _sync_active_flags(discounts, now: datetime) -> int:
    changed = 0
    for discount in discounts:
        flag = compute_is_active_now(discount.active, discount.start_at, discount.end_at, now)
        if discount.is_active_now != flag:
            discount.is_active_now = flag
            changed += 1
    return changed


def list_discounts(session, tenant_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    All discounts of a tenant, newest first.

    Recomputes `is_active_now` and persists flags that drifted.
    """
    now = to_naive_utc(now) or utc_now()
    discounts = (
        _discount_query(session, tenant_id)
        .order_by(Discount.created_at.desc(), Discount.id.desc())
        .all()
    )

    if _sync_active_flags(discounts, now):
        session.commit()
        invalidate_discount_cache(tenant_id)

    return [discount_to_record(d, now) for d in discounts]


def get_discount(session, tenant_id: int, discount_id: int) -> Discount:
    discount = _discount_query(session, tenant_id).filter(Discount.id == discount_id).first()
    if not discount:
        raise NotFoundError('Diskon tidak ditemukan')
    return discount


def refresh_active_flags(session, tenant_id: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """Persist `is_active_now` for every discount (optionally one tenant). Returns rows changed."""
    now = to_naive_utc(now) or utc_now()
    query = session.query(Discount)
    if tenant_id is not None:
        query = query.filter(Discount.tenant_id == tenant_id)
    discounts = query.all()

    changed = _sync_active_flags(discounts, now)
    if changed:
        session.commit()
        for tid in {d.tenant_id for d in discounts}:
            invalidate_discount_cache(tid)
    logger.info(f"[DISCOUNT] Refreshed active flags: {changed} changed")
    return changed


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


def _parse_optional_decimal(value: Any, message: str) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    return _parse_decimal(value, message)


def _parse_optional_int(value: Any, message: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(message)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _parse_id_list(values: Any) -> List[int]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValidationError('Daftar ID tidak valid')
    ids = []
    for raw in values:
        parsed = _parse_optional_int(raw, 'Daftar ID tidak valid')
        if parsed is None or parsed <= 0:
            raise ValidationError('Daftar ID tidak valid')
        if parsed not in ids:
            ids.append(parsed)
    return ids


def _check_value(value_type: str, value: Decimal) -> None:
    if value_type == DiscountValueType.PERCENTAGE.value and (value < 0 or value > 100):
        raise ValidationError('Persentase diskon harus antara 0-100')
    if value_type == DiscountValueType.NOMINAL.value and value < 0:
        raise ValidationError('Nominal diskon tidak boleh negatif')


def _validate_tiers(raw_tiers: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_tiers, list) or not raw_tiers:
        raise ValidationError('Minimal satu tingkat diskon')

    tiers = []
    for index, raw in enumerate(raw_tiers):
        if not isinstance(raw, dict):
            raise ValidationError('Data tingkat diskon tidak valid')

        value_type = str(raw.get('value_type') or '').lower()
        if value_type not in TIER_VALUE_TYPES:
            raise ValidationError('Tipe nilai tingkat harus percentage atau nominal')
        value = _parse_decimal(raw.get('value', 0), 'Nilai tingkat diskon tidak valid')
        _check_value(value_type, value)

        min_qty = _parse_optional_int(raw.get('min_quantity'), 'Jumlah minimal tidak valid')
        max_qty = _parse_optional_int(raw.get('max_quantity'), 'Jumlah maksimal tidak valid')
        min_amount = _parse_optional_decimal(raw.get('min_amount'), 'Nominal minimal tidak valid')
        max_amount = _parse_optional_decimal(raw.get('max_amount'), 'Nominal maksimal tidak valid')

        if min_qty is None and max_qty is None and min_amount is None and max_amount is None:
            raise ValidationError('Tingkat diskon harus memiliki batas jumlah atau nominal')
        if min_qty is not None and max_qty is not None and min_qty > max_qty:
            raise ValidationError('Jumlah minimal tidak boleh melebihi jumlah maksimal')
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ValidationError('Nominal minimal tidak boleh melebihi nominal maksimal')

        priority = _parse_optional_int(raw.get('priority'), 'Prioritas tingkat tidak valid')
        label = raw.get('label')
        tiers.append({
            'label': str(label).strip()[:100] if label else None,
            'min_quantity': min_qty,
            'max_quantity': max_qty,
            'min_amount': min_amount,
            'max_amount': max_amount,
            'value_type': value_type,
            'value': value,
            'priority': priority if priority is not None else index,
        })
    return tiers


def _parse_date_field(data: Dict[str, Any], key: str, message: str) -> Optional[datetime]:
    raw = data.get(key)
    if raw is None or raw == '':
        return None
    parsed = parse_iso8601(raw)
    if parsed is None:
        raise ValidationError(message)
    return parsed


def validate_discount_payload(data: Dict[str, Any], existing: Optional[Discount] = None) -> Dict[str, Any]:
    """
    Validate a create (existing=None) or partial update payload.

    Returns normalized values merged over the existing discount so rules
    that span fields (start <= end, scope ids) are checked on the result.
    """
    if not isinstance(data, dict):
        raise ValidationError('Data diskon tidak valid')
    partial = existing is not None

    def pick(key, current):
        return data[key] if key in data else current

    name = pick('name', existing.name if partial else None)
    if name is None or not str(name).strip():
        raise ValidationError('Nama diskon wajib diisi')
    name = str(name).strip()
    if len(name) > 200:
        raise ValidationError('Nama diskon maksimal 200 karakter')

    scope_type = pick('type', existing.scope_type if partial else None)
    if not scope_type:
        raise ValidationError('Tipe diskon wajib diisi')
    scope_type = str(scope_type).lower()
    if scope_type not in SCOPE_TYPES:
        raise ValidationError('Tipe diskon tidak valid')

    value_type = pick('value_type', existing.value_type if partial else None)
    if not value_type:
        raise ValidationError('Tipe nilai diskon wajib diisi')
    value_type = str(value_type).lower()
    if value_type not in VALUE_TYPES:
        raise ValidationError('Tipe nilai diskon tidak valid')

    if value_type == DiscountValueType.TIERED.value:
        value = Decimal('0')
    else:
        value = _parse_decimal(pick('value', existing.value if partial else 0), 'Nilai diskon tidak valid')
        _check_value(value_type, value)

    if 'start_at' in data or not partial:
        start_at = _parse_date_field(data, 'start_at', 'Tanggal mulai diskon tidak valid')
    else:
        start_at = to_naive_utc(existing.start_at)
    if 'end_at' in data or not partial:
        end_at = _parse_date_field(data, 'end_at', 'Tanggal berakhir diskon tidak valid')
    else:
        end_at = to_naive_utc(existing.end_at)
    if start_at and end_at and start_at > end_at:
        raise ValidationError('Tanggal mulai harus sebelum atau sama dengan tanggal berakhir')

    scope_changed = not partial or 'product_ids' in data or 'unit_ids' in data or 'type' in data
    product_ids = _parse_id_list(data.get('product_ids')) if 'product_ids' in data else (
        existing.product_ids if partial else [])
    unit_ids = _parse_id_list(data.get('unit_ids')) if 'unit_ids' in data else (
        existing.unit_ids if partial else [])
    if scope_type == DiscountScope.PRODUCT.value:
        unit_ids = []
        if not product_ids:
            raise ValidationError('Minimal satu produk harus dipilih untuk diskon produk')
    else:
        product_ids = []
        if not unit_ids:
            raise ValidationError('Minimal satu unit harus dipilih untuk diskon unit')

    tiers = None
    if value_type == DiscountValueType.TIERED.value:
        if 'tiers' in data or not partial or existing.value_type != DiscountValueType.TIERED.value:
            tiers = _validate_tiers(data.get('tiers'))
    elif partial and existing.tiers:
        tiers = []

    apply_order = _parse_optional_int(
        pick('apply_order', existing.apply_order if partial else 0), 'Urutan penerapan tidak valid'
    ) or 0

    active = pick('active', existing.active if partial else True)

    return {
        'name': name,
        'scope_type': scope_type,
        'value_type': value_type,
        'value': value,
        'active': _parse_bool(active),
        'start_at': start_at,
        'end_at': end_at,
        'apply_order': apply_order,
        'product_ids': product_ids,
        'unit_ids': unit_ids,
        'scope_changed': scope_changed,
        'tiers': tiers,
    }


# =====================================================
# WRITES
# =====================================================

def _ensure_unique_name(session, tenant_id: int, name: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(Discount.id).filter(
        Discount.tenant_id == tenant_id,
        func.lower(Discount.name) == name.lower()
    )
    if exclude_id is not None:
        query = query.filter(Discount.id != exclude_id)
    if query.first():
        raise ConflictError('Nama diskon sudah digunakan')


def _load_scope(session, tenant_id: int, values: Dict[str, Any]):
    products, units = [], []
    if values['product_ids']:
        products = session.query(Product).filter(
            Product.id.in_(values['product_ids']),
            Product.tenant_id == tenant_id
        ).all()
        if len(products) != len(values['product_ids']):
            raise ValidationError('Beberapa produk yang dipilih tidak ditemukan')
    if values['unit_ids']:
        units = session.query(ProductUnit).join(Product).filter(
            ProductUnit.id.in_(values['unit_ids']),
            Product.tenant_id == tenant_id
        ).all()
        if len(units) != len(values['unit_ids']):
            raise ValidationError('Beberapa unit yang dipilih tidak ditemukan')
    return products, units


def _apply_values(discount: Discount, values: Dict[str, Any], now: datetime) -> None:
    discount.name = values['name']
    discount.scope_type = values['scope_type']
    discount.value_type = values['value_type']
    discount.value = values['value']
    discount.active = values['active']
    discount.start_at = values['start_at']
    discount.end_at = values['end_at']
    discount.apply_order = values['apply_order']
    discount.is_active_now = compute_is_active_now(values['active'], values['start_at'], values['end_at'], now)


def _replace_tiers(discount: Discount, tiers: List[Dict[str, Any]]) -> None:
    discount.tiers.clear()
    for tier in tiers:
        discount.tiers.append(DiscountTier(**tier))


def create_discount(session, tenant_id: int, data: Dict[str, Any]) -> Discount:
    """Create a discount with its scope and tiers."""
    values = validate_discount_payload(data)
    _ensure_unique_name(session, tenant_id, values['name'])
    products, units = _load_scope(session, tenant_id, values)

    try:
        discount = Discount(tenant_id=tenant_id)
        _apply_values(discount, values, utc_now())
        discount.products = products
        discount.units = units
        if values['tiers']:
            _replace_tiers(discount, values['tiers'])
        session.add(discount)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError('Nama diskon sudah digunakan')
    except Exception:
        session.rollback()
        raise

    invalidate_discount_cache(tenant_id)
    logger.info(f"[DISCOUNT] Created discount {discount.id} '{discount.name}' for tenant {tenant_id}")
    return discount


def update_discount(session, tenant_id: int, discount_id: Any, data: Dict[str, Any]) -> Discount:
    """
    Partial update.

    Scope associations are replaced when any scope field is sent; tiers are
    deleted and re-inserted whenever they are sent (never patched).
    """
    if not discount_id:
        raise ValidationError('ID diskon wajib diisi')
    discount = get_discount(session, tenant_id, discount_id)

    values = validate_discount_payload(data, existing=discount)
    if 'name' in data:
        _ensure_unique_name(session, tenant_id, values['name'], exclude_id=discount.id)

    try:
        if values['scope_changed']:
            products, units = _load_scope(session, tenant_id, values)
            discount.products = products
            discount.units = units
        _apply_values(discount, values, utc_now())
        if values['tiers'] is not None:
            _replace_tiers(discount, values['tiers'])
            session.flush()
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError('Nama diskon sudah digunakan')
    except Exception:
        session.rollback()
        raise

    invalidate_discount_cache(tenant_id)
    logger.info(f"[DISCOUNT] Updated discount {discount.id} for tenant {tenant_id}")
    return discount


def delete_discount(session, tenant_id: int, discount_id: Any) -> None:
    """Delete a discount; its tiers and scope rows go with it."""
    if not discount_id:
        raise ValidationError('ID diskon wajib diisi')
    discount = get_discount(session, tenant_id, discount_id)

    try:
        discount.products = []
        discount.units = []
        session.delete(discount)
        session.commit()
    except Exception:
        session.rollback()
        raise

    invalidate_discount_cache(tenant_id)
    logger.info(f"[DISCOUNT] Deleted discount {discount_id} for tenant {tenant_id}")


def invalidate_discount_cache(tenant_id: int) -> None:
    try:
        get_cache().invalidate_module(tenant_id, CACHE_MODULE)
    except RuntimeError:
        # Cache not initialized (CLI, scripts)
        pass
