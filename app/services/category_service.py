"""Category management (multi-tenant)."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from app.exceptions import ValidationError, NotFoundError, ConflictError
from app.models import Category, Product

logger = logging.getLogger(__name__)


def list_categories(session, tenant_id: int) -> List[Category]:
    return (
        session.query(Category)
        .filter(Category.tenant_id == tenant_id)
        .order_by(Category.name.asc(), Category.id.asc())
        .all()
    )


def get_category(session, tenant_id: int, category_id: Any) -> Category:
    category = session.query(Category).filter(
        Category.id == category_id,
        Category.tenant_id == tenant_id
    ).first()
    if not category:
        raise NotFoundError('Kategori tidak ditemukan')
    return category


def _clean_name(data: Dict[str, Any]) -> str:
    name = data.get('name')
    name = name.strip() if isinstance(name, str) else ''
    if not name:
        raise ValidationError('Nama kategori diperlukan')
    if len(name) > 100:
        raise ValidationError('Nama kategori maksimal 100 karakter')
    return name


def _ensure_unique_name(session, tenant_id: int, name: str, exclude_id: Optional[int] = None) -> None:
    query = session.query(Category.id).filter(
        Category.tenant_id == tenant_id,
        func.lower(Category.name) == name.lower()
    )
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise ConflictError('Kategori dengan nama tersebut sudah ada')


def create_category(session, tenant_id: int, data: Dict[str, Any]) -> Category:
    name = _clean_name(data or {})
    _ensure_unique_name(session, tenant_id, name)

    category = Category(tenant_id=tenant_id, name=name)
    session.add(category)
    session.commit()
    logger.info(f"[CATALOG] Created category {category.id} '{category.name}' for tenant {tenant_id}")
    return category


def update_category(session, tenant_id: int, category_id: Any, data: Dict[str, Any]) -> Category:
    category = get_category(session, tenant_id, category_id)
    name = _clean_name(data or {})
    _ensure_unique_name(session, tenant_id, name, exclude_id=category.id)

    category.name = name
    session.commit()
    return category


def delete_category(session, tenant_id: int, category_id: Any) -> None:
    """Delete a category that no product uses."""
    category = get_category(session, tenant_id, category_id)
    in_use = session.query(Product.id).filter(
        Product.tenant_id == tenant_id,
        Product.category_id == category.id
    ).first()
    if in_use:
        raise ConflictError('Kategori masih digunakan oleh produk')

    session.delete(category)
    session.commit()
    logger.info(f"[CATALOG] Deleted category {category_id} for tenant {tenant_id}")
