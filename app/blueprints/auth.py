"""
Authentication blueprint for the multi-tenant storefront.
Handles customer registration, login, logout and the current user.
"""
import logging

from flask import Blueprint, session, g
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.database import get_session
from app.exceptions import ValidationError, UnauthorizedError, NotFoundError, ConflictError
from app.middleware import require_login
from app.models import AppUser, Tenant, UserTenant, UserRole
from app.services.user_service import is_valid_email
from app.utils.responses import success, get_json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


def _active_tenant_by_slug(db_session, slug):
    tenant = db_session.query(Tenant).filter_by(slug=slug, active=True).first()
    if not tenant:
        raise NotFoundError('Toko tidak ditemukan')
    return tenant


def _me_payload(user, tenant_id, role):
    data = user.to_dict()
    data['tenant_id'] = tenant_id
    data['role'] = role
    return data


@auth_bp.route('/register', methods=['POST'])
def register():
    """Register a customer account in one storefront."""
    data = get_json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    full_name = (data.get('full_name') or '').strip()
    slug = (data.get('tenant') or '').strip()

    if not email or not is_valid_email(email):
        raise ValidationError('Email tidak valid')
    if len(password) < 6:
        raise ValidationError('Password minimal 6 karakter')
    if not slug:
        raise ValidationError('Toko wajib dipilih')

    db_session = get_session()
    tenant = _active_tenant_by_slug(db_session, slug)
    if db_session.query(AppUser).filter(func.lower(AppUser.email) == email).first():
        raise ConflictError('Email sudah terdaftar')

    try:
        user = AppUser(email=email, full_name=full_name or None, phone=data.get('phone') or None)
        user.set_password(password)
        db_session.add(user)
        db_session.flush()
        db_session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=UserRole.CUSTOMER.value))
        db_session.commit()
    except IntegrityError:
        db_session.rollback()
        raise ConflictError('Email sudah terdaftar')

    session.clear()
    session['user_id'] = user.id
    session['tenant_id'] = tenant.id
    session.permanent = True
    logger.info(f"[AUTH] Registered user {user.id} in tenant {tenant.id}")
    return success(_me_payload(user, tenant.id, UserRole.CUSTOMER.value), 'Registrasi berhasil', 201)


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Log in with email + password.

    `tenant` (slug) selects the storefront; it may be omitted when the
    user belongs to exactly one.
    """
    data = get_json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    slug = (data.get('tenant') or '').strip()

    if not email or not password:
        raise ValidationError('Email dan password wajib diisi')

    db_session = get_session()
    user = db_session.query(AppUser).filter(
        func.lower(AppUser.email) == email,
        AppUser.active.is_(True)
    ).first()
    if not user or not user.check_password(password):
        logger.warning(f"[AUTH] Failed login for {email}")
        raise UnauthorizedError('Email atau password salah')

    query = (
        db_session.query(UserTenant)
        .join(Tenant, UserTenant.tenant_id == Tenant.id)
        .filter(UserTenant.user_id == user.id, UserTenant.active.is_(True), Tenant.active.is_(True))
    )
    if slug:
        query = query.filter(Tenant.slug == slug)
    memberships = query.order_by(UserTenant.tenant_id.asc()).all()

    if not memberships:
        raise UnauthorizedError('Akun tidak terdaftar di toko ini')
    if len(memberships) > 1:
        raise ValidationError(
            'Toko wajib dipilih',
            payload={'tenants': [{'slug': m.tenant.slug, 'name': m.tenant.name} for m in memberships]}
        )

    membership = memberships[0]
    session.clear()
    session['user_id'] = user.id
    session['tenant_id'] = membership.tenant_id
    session.permanent = True
    logger.info(f"[AUTH] User {user.id} logged in to tenant {membership.tenant_id}")
    return success(_me_payload(user, membership.tenant_id, membership.role), 'Login berhasil')


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return success(message='Logout berhasil')


@auth_bp.route('/me', methods=['GET'])
@require_login
def me():
    return success(_me_payload(g.user, g.tenant_id, g.user_role))
