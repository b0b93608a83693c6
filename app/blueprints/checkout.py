"""Direct checkout blueprint - signed "buy now" item lists."""
from flask import Blueprint, request, g, current_app

from app.database import get_session
from app.middleware import require_login
from app.services.checkout_service import issue_direct_checkout_token, resolve_direct_checkout_token
from app.utils.responses import success, get_json_body

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api/checkout')


@checkout_bp.route('/direct', methods=['POST'])
@require_login
def issue_token():
    data = get_json_body()
    result = issue_direct_checkout_token(
        g.user.id, g.tenant_id, data.get('items'),
        current_app.config['SECRET_KEY'],
        ttl_seconds=current_app.config.get('DIRECT_CHECKOUT_TTL', 600)
    )
    return success(result)


@checkout_bp.route('/direct', methods=['GET'])
@require_login
def resolve_token():
    items = resolve_direct_checkout_token(
        get_session(), request.args.get('token'), g.user.id, g.tenant_id,
        current_app.config['SECRET_KEY']
    )
    return success({'items': items})
