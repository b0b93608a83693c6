"""Middleware for authentication and tenant context."""
from functools import wraps
from flask import session, g, current_app
from app.database import get_session
from app.exceptions import UnauthorizedError, ForbiddenError
from app.models import AppUser, UserTenant, Tenant, UserRole


def load_user_and_tenant():
    """
    Load current user and tenant into g (Flask's per-request global).

    Called before each request to establish user and tenant context.
    Sets g.user, g.tenant_id and g.user_role if authenticated.
    """
    g.user = None
    g.tenant_id = None
    g.user_role = None

    user_id = session.get('user_id')
    if not user_id:
        return

    db_session = get_session()
    user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
    if not user:
        session.clear()
        return

    g.user = user
    g.user_id = user.id

    tenant_id = session.get('tenant_id')
    if not tenant_id:
        return

    # Verify user still has access to this storefront
    user_tenant = (
        db_session.query(UserTenant)
        .join(Tenant, UserTenant.tenant_id == Tenant.id)
        .filter(
            UserTenant.user_id == user.id,
            UserTenant.tenant_id == tenant_id,
            UserTenant.active.is_(True),
            Tenant.active.is_(True)
        )
        .first()
    )
    if user_tenant:
        g.tenant_id = tenant_id
        g.user_role = user_tenant.role
    else:
        current_app.logger.warning(f"[AUTH] User {user.id} lost access to tenant {tenant_id}")
        session.pop('tenant_id', None)


def require_login(f):
    """Decorator: Require an authenticated user with a selected storefront."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None or g.get('tenant_id') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def is_staff():
    return g.get('user_role') in (UserRole.OWNER.value, UserRole.ADMIN.value)


def require_role(*roles):
    """
    Decorator: Require one of the given storefront roles.

    Must be used AFTER require_login.
    """
    allowed = set(roles) or {UserRole.OWNER.value, UserRole.ADMIN.value}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if g.get('user_role') not in allowed:
                raise ForbiddenError()
            return f(*args, **kwargs)
        return decorated_function
    return decorator
