"""
Error taxonomy shared by the services and the HTTP layer.

Services raise these; main.py turns them into `{"error": message}` JSON
responses with the matching status code.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ShopError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(ShopError):
    status_code = 403
    default_message = "Admin role required"


class NotFoundError(ShopError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ShopError):
    status_code = 409
    default_message = "Conflict"


class InsufficientStockError(ConflictError):
    def __init__(self, product_name: str, available: int, requested: int):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f'Insufficient stock for "{product_name}". Available: {available}, requested: {requested}'
        )


class InternalError(ShopError):
    status_code = 500
    default_message = "Server error"
