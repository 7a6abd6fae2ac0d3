"""
Error taxonomy for the storefront.

Every error carries a stable `code` so the HTTP layer and the voice status line can
report it without string matching.
"""


class ShopError(Exception):
    """Base class for recoverable storefront errors."""

    code = "shop_error"
    status_code = 400


class EmptyCartError(ShopError):
    code = "empty_cart"


class InvalidPhoneError(ShopError):
    code = "invalid_phone"


class InvalidQuantityError(ShopError):
    code = "invalid_quantity"


class PinRequiredError(ShopError):
    code = "pin_required"
    status_code = 401


class IncorrectAdminPinError(ShopError):
    code = "incorrect_admin_pin"
    status_code = 401


class InvalidSessionError(ShopError):
    code = "invalid_session"
    status_code = 401


class PermissionDeniedError(ShopError):
    code = "permission_denied"
    status_code = 403


class OrderNotFoundError(ShopError):
    code = "order_not_found"
    status_code = 404


class ProductNotFoundError(ShopError):
    code = "product_not_found"
    status_code = 404


class IllegalStatusTransitionError(ShopError):
    code = "illegal_status_transition"
    status_code = 409


class PersistenceError(ShopError):
    """The hosted backend failed or is unreachable."""

    code = "persistence_unavailable"
    status_code = 503


class VoiceSessionError(ShopError):
    code = "voice_session_failed"


class MicrophonePermissionError(VoiceSessionError):
    code = "microphone_unavailable"


class HandshakeError(VoiceSessionError):
    code = "voice_handshake_failed"
