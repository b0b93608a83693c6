"""Payment method management (multi-tenant)."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from app.exceptions import ValidationError, NotFoundError, ConflictError
from app.models import PaymentMethod, Order

logger = logging.getLogger(__name__)


def list_payment_methods(session, tenant_id: int) -> List[PaymentMethod]:
    return (
        session.query(PaymentMethod)
        .filter(PaymentMethod.tenant_id == tenant_id)
        .order_by(PaymentMethod.id.asc())
        .all()
    )


def get_payment_method(session, tenant_id: int, method_id: Any) -> PaymentMethod:
    method = session.query(PaymentMethod).filter(
        PaymentMethod.id == method_id,
        PaymentMethod.tenant_id == tenant_id
    ).first()
    if not method:
        raise NotFoundError('Metode pembayaran tidak ditemukan')
    return method


def _clean(data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    values = {}
    if 'name' in data or not partial:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('Nama metode pembayaran wajib diisi')
        if len(name) > 100:
            raise ValidationError('Nama metode pembayaran maksimal 100 karakter')
        values['name'] = name
    if 'account_number' in data or 'no_payment' in data:
        number = data.get('account_number', data.get('no_payment'))
        number = str(number).strip() if number is not None else ''
        if len(number) > 50:
            raise ValidationError('Nomor pembayaran maksimal 50 karakter')
        values['account_number'] = number or None
    if 'image_path' in data:
        values['image_path'] = data.get('image_path') or None
    return values


def _ensure_unique_name(session, tenant_id: int, name: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(PaymentMethod.id).filter(
        PaymentMethod.tenant_id == tenant_id,
        func.lower(PaymentMethod.name) == name.lower()
    )
    if exclude_id is not None:
        query = query.filter(PaymentMethod.id != exclude_id)
    if query.first():
        raise ConflictError('Metode pembayaran dengan nama tersebut sudah ada')


def create_payment_method(session, tenant_id: int, data: Dict[str, Any]) -> PaymentMethod:
    values = _clean(data or {}, partial=False)
    _ensure_unique_name(session, tenant_id, values['name'])

    method = PaymentMethod(tenant_id=tenant_id, **values)
    session.add(method)
    session.commit()
    logger.info(f"[PAYMENT] Created payment method {method.id} '{method.name}' for tenant {tenant_id}")
    return method


def update_payment_method(session, tenant_id: int, method_id: Any, data: Dict[str, Any]) -> PaymentMethod:
    method = get_payment_method(session, tenant_id, method_id)
    values = _clean(data or {}, partial=True)
    if 'name' in values:
        _ensure_unique_name(session, tenant_id, values['name'], exclude_id=method.id)

    for key, value in values.items():
        setattr(method, key, value)
    session.commit()
    return method


def delete_payment_method(session, tenant_id: int, method_id: Any) -> None:
    """Delete a method that no order references."""
    method = get_payment_method(session, tenant_id, method_id)
    in_use = session.query(Order.id).filter(
        Order.tenant_id == tenant_id,
        Order.payment_method_id == method.id
    ).first()
    if in_use:
        raise ConflictError('Metode pembayaran masih digunakan oleh pesanan')

    session.delete(method)
    session.commit()
    logger.info(f"[PAYMENT] Deleted payment method {method_id} for tenant {tenant_id}")
