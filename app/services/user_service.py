"""Storefront members and the current user's profile (multi-tenant)."""
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from app.exceptions import ValidationError, NotFoundError, ConflictError, ForbiddenError
from app.models import AppUser, UserTenant, UserRole

logger = logging.getLogger(__name__)

ROLES = {r.value for r in UserRole}
ASSIGNABLE_ROLES = {UserRole.ADMIN.value, UserRole.CUSTOMER.value}


def is_valid_email(email: str) -> bool:
    """Validate email format."""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def member_to_record(user: AppUser, membership: UserTenant) -> Dict[str, Any]:
    data = user.to_dict()
    data['role'] = membership.role
    data['active'] = bool(user.active and membership.active)
    data['joined_at'] = membership.created_at
    return data


def _membership(session, tenant_id: int, user_id: Any) -> UserTenant:
    membership = session.query(UserTenant).filter(
        UserTenant.user_id == user_id,
        UserTenant.tenant_id == tenant_id
    ).first()
    if not membership:
        raise NotFoundError('User tidak ditemukan')
    return membership


def list_members(session, tenant_id: int, role: Optional[str] = None) -> List[Dict[str, Any]]:
    """Users of a storefront with their role, newest first; `role` filters."""
    query = (
        session.query(AppUser, UserTenant)
        .join(UserTenant, UserTenant.user_id == AppUser.id)
        .filter(UserTenant.tenant_id == tenant_id)
    )
    if role:
        role = role.strip().upper()
        if role not in ROLES:
            raise ValidationError(f'Role tidak valid: {role}')
        query = query.filter(UserTenant.role == role)
    return [member_to_record(user, membership) for user, membership in query.order_by(AppUser.id.desc()).all()]


def get_member(session, tenant_id: int, user_id: Any) -> Dict[str, Any]:
    membership = _membership(session, tenant_id, user_id)
    return member_to_record(membership.user, membership)


def update_member(session, tenant_id: int, user_id: Any, data: Dict[str, Any], acting_user_id: int) -> Dict[str, Any]:
    """
    Change a member's role or access to the storefront.

    OWNER is never assigned or revoked here, and nobody edits their own
    membership.
    """
    membership = _membership(session, tenant_id, user_id)
    if membership.user_id == acting_user_id:
        raise ForbiddenError('Tidak dapat mengubah akses akun sendiri')
    if membership.is_owner():
        raise ForbiddenError('Akses pemilik toko tidak dapat diubah')

    values = {}
    if 'role' in data:
        role = str(data.get('role') or '').strip().upper()
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError('Role harus ADMIN atau CUSTOMER')
        values['role'] = role
    if 'active' in data:
        if not isinstance(data.get('active'), bool):
            raise ValidationError('Status aktif harus boolean')
        values['active'] = data['active']
    if not values:
        raise ValidationError('Tidak ada data yang diubah')

    for key, value in values.items():
        setattr(membership, key, value)
    session.commit()
    logger.info(
        f"[AUTH] Member {membership.user_id} of tenant {tenant_id} set to "
        f"{membership.role} (active={membership.active}) by user {acting_user_id}"
    )
    return member_to_record(membership.user, membership)


def _clean_profile(session, user: AppUser, data: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    if 'full_name' in data or 'name' in data:
        full_name = data.get('full_name', data.get('name'))
        full_name = full_name.strip() if isinstance(full_name, str) else ''
        if len(full_name) > 200:
            raise ValidationError('Nama maksimal 200 karakter')
        values['full_name'] = full_name or None

    if 'phone' in data or 'no_hp' in data:
        phone = data.get('phone', data.get('no_hp'))
        phone = str(phone).strip() if phone is not None else ''
        if len(phone) > 30:
            raise ValidationError('Nomor HP maksimal 30 karakter')
        values['phone'] = phone or None

    if 'email' in data:
        email = str(data.get('email') or '').strip().lower()
        if not email or not is_valid_email(email):
            raise ValidationError('Email tidak valid')
        taken = session.query(AppUser.id).filter(
            func.lower(AppUser.email) == email,
            AppUser.id != user.id
        ).first()
        if taken:
            raise ConflictError('Email sudah digunakan')
        values['email'] = email

    if data.get('password'):
        if not user.check_password(data.get('current_password') or ''):
            raise ValidationError('Password lama salah')
        if len(data['password']) < 6:
            raise ValidationError('Password minimal 6 karakter')
        values['password'] = data['password']
    return values


def update_profile(session, user: AppUser, data: Dict[str, Any]) -> AppUser:
    """
    Update the signed-in user's own profile.

    `name`/`no_hp` are accepted as aliases of `full_name`/`phone`. A new
    password needs `current_password`.
    """
    values = _clean_profile(session, user, data)
    if not values:
        raise ValidationError('Tidak ada data yang diubah')

    password = values.pop('password', None)
    for key, value in values.items():
        setattr(user, key, value)
    if password:
        user.set_password(password)
    session.commit()
    logger.info(f"[AUTH] User {user.id} updated profile")
    return user
