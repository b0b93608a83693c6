"""Payment methods blueprint."""
from flask import Blueprint, request, g

from app.database import get_session
from app.exceptions import ValidationError
from app.middleware import require_login, require_role
from app.services import payment_method_service
from app.utils.responses import success, get_json_body

payment_methods_bp = Blueprint('payment_methods', __name__, url_prefix='/api/payment-methods')


def _method_id(data=None):
    method_id = request.args.get('id') or (data or {}).get('id')
    if not method_id:
        raise ValidationError('ID metode pembayaran wajib diisi')
    return method_id


@payment_methods_bp.route('', methods=['GET'])
@require_login
def list_methods():
    methods = payment_method_service.list_payment_methods(get_session(), g.tenant_id)
    return success([m.to_dict() for m in methods])


@payment_methods_bp.route('', methods=['POST'])
@require_login
@require_role()
def create_method():
    method = payment_method_service.create_payment_method(get_session(), g.tenant_id, get_json_body())
    return success(method.to_dict(), 'Metode pembayaran ditambahkan', 201)


@payment_methods_bp.route('', methods=['PATCH'])
@require_login
@require_role()
def update_method():
    data = get_json_body()
    method = payment_method_service.update_payment_method(get_session(), g.tenant_id, _method_id(data), data)
    return success(method.to_dict(), 'Metode pembayaran diperbarui')


@payment_methods_bp.route('', methods=['DELETE'])
@require_login
@require_role()
def delete_method():
    payment_method_service.delete_payment_method(
        get_session(), g.tenant_id, _method_id(get_json_body(required=False))
    )
    return success(message='Metode pembayaran dihapus')
