"""Users blueprint - storefront members and the signed-in user's profile."""
from flask import Blueprint, request, g

from app.database import get_session
from app.exceptions import ValidationError
from app.middleware import require_login, require_role
from app.models import UserRole
from app.services import user_service
from app.utils.responses import success, get_json_body

users_bp = Blueprint('users', __name__, url_prefix='/api/users')


@users_bp.route('', methods=['GET'])
@require_login
@require_role()
def list_users():
    """Members of the storefront; `?id=` for one, `?role=` to filter."""
    db_session = get_session()
    user_id = request.args.get('id', type=int)
    if user_id:
        return success(user_service.get_member(db_session, g.tenant_id, user_id))
    return success(user_service.list_members(db_session, g.tenant_id, role=request.args.get('role')))


@users_bp.route('', methods=['PATCH'])
@require_login
@require_role(UserRole.OWNER.value)
def update_user():
    data = get_json_body()
    user_id = data.get('id')
    if not user_id:
        raise ValidationError('ID user diperlukan')
    member = user_service.update_member(get_session(), g.tenant_id, user_id, data, g.user.id)
    return success(member, 'User diperbarui')


@users_bp.route('/profile', methods=['GET'])
@require_login
def get_profile():
    return success(user_service.get_member(get_session(), g.tenant_id, g.user.id))


@users_bp.route('/profile', methods=['PUT', 'PATCH'])
@require_login
def update_profile():
    db_session = get_session()
    user_service.update_profile(db_session, g.user, get_json_body())
    return success(user_service.get_member(db_session, g.tenant_id, g.user.id), 'Profil diperbarui')
