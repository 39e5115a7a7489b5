"""
Error taxonomy

Services raise these; main.py turns them into JSON responses at the request
boundary. Each class carries the HTTP status it maps to.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ShopError):
    status_code = 401
    default_message = "Not authenticated"


class Forbidden(ShopError):
    status_code = 403
    default_message = "Admins only"


class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid input"


class MissingRequiredField(ValidationError):
    default_message = "Name and price are required"


class InvalidQuantity(ValidationError):
    default_message = "Quantity must be an integer"


class NotFound(ShopError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFound):
    default_message = "Product not found"


class Conflict(ShopError):
    # The HTTP interface reports duplicates and in-use deletes as 400
    status_code = 400
    default_message = "Conflict"


class UpstreamFailure(ShopError):
    status_code = 502
    default_message = "Upstream service unavailable"
