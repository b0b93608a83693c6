"""Custom exceptions for the storefront application."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Terjadi kesalahan internal", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['error'] = self.message
        return rv


class ValidationError(StorefrontError):
    """Malformed or missing input."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Data tidak ditemukan", payload=None):
        super().__init__(message, 404, payload)


class ConflictError(StorefrontError):
    """Duplicate names, entities still referenced, illegal state transitions."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class InsufficientStockError(StorefrontError):
    """Raised when an order asks for more units than are in stock."""
    def __init__(self, product_name, unit_name, requested, available):
        message = (
            f"Stok tidak mencukupi untuk {product_name} - {unit_name}. "
            f"Tersedia: {available}, Diminta: {requested}"
        )
        super().__init__(message, 400, {'available': available, 'requested': requested})
        self.product_name = product_name
        self.unit_name = unit_name
        self.requested = requested
        self.available = available


class TransactionError(StorefrontError):
    """Storage failure inside a write transaction (already rolled back)."""
    def __init__(self, message="Gagal menyimpan pesanan"):
        super().__init__(message, 500)


class UnauthorizedError(StorefrontError):
    """Raised when the request carries no authenticated user."""
    def __init__(self, message="Unauthorized"):
        super().__init__(message, 401)


class ForbiddenError(StorefrontError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Akses ditolak"):
        super().__init__(message, 403)
