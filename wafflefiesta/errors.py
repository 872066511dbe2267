"""
Error taxonomy shared by the HTTP handlers and the model layer.

Each error carries the HTTP status it maps to and a message that is safe to
show to the user. The server installs a single exception handler that renders
any of them as ``{"error": message}``.
"""


class CouponError(Exception):
    status_code = 500
    message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(CouponError):
    status_code = 400
    message = "Invalid input"


class SignatureError(CouponError):
    status_code = 400
    message = "Payment verification failed"


class AuthError(CouponError):
    status_code = 401
    message = "Not authorized"


class NotFoundError(CouponError):
    status_code = 404
    message = "Coupon not found"


class DuplicateError(CouponError):
    status_code = 409
    message = "Duplicate entry"


class StateError(CouponError):
    # coupon exists but the requested transition is not allowed
    status_code = 409
    message = "Coupon cannot be redeemed"


class UpstreamError(CouponError):
    status_code = 502
    message = "Upstream service failed"


class ConfigError(CouponError):
    status_code = 500
    message = "Service not configured"
