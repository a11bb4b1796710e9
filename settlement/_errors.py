"""
Error taxonomy.

Every failure the settlement core can surface is a `SettlementError` subclass.
Inside a database unit they are raised (so the unit rolls back); at the service
boundary they travel as `Error(...)` in a kungfu `Result`.

    match await service.verify(request):
        case Ok(order):
            ...
        case Error(ConflictError() as e):
            print(e.code, e.message)
"""

from __future__ import annotations

from enum import Enum, auto
from typing import ClassVar


# ═══════════════════════════════════════════════════════════════════════════════
# Kinds
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(Enum):
    VALIDATION = auto()
    NOT_FOUND = auto()
    CONFLICT = auto()
    INSUFFICIENT_STOCK = auto()
    GATEWAY_NOT_CONFIGURED = auto()
    GATEWAY_AUTH = auto()
    GATEWAY_REQUEST = auto()
    INVALID_SIGNATURE = auto()
    INTERNAL = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════════


class SettlementError(Exception):
    """Base error. `kind` and `status_code` are fixed per subclass."""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL
    status_code: ClassVar[int] = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def code(self) -> str:
        return self.kind.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(SettlementError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(SettlementError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(SettlementError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class InsufficientStockError(SettlementError):
    kind = ErrorKind.INSUFFICIENT_STOCK
    status_code = 400

    def __init__(self, product_name: str) -> None:
        super().__init__(f"Not enough stock for {product_name}")
        self.product_name = product_name


class InvalidSignatureError(SettlementError):
    kind = ErrorKind.INVALID_SIGNATURE
    status_code = 400


class InternalError(SettlementError):
    kind = ErrorKind.INTERNAL
    status_code = 500


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════════


class GatewayError(SettlementError):
    """Anything that went wrong talking to (or configuring) a payment gateway."""

    kind = ErrorKind.GATEWAY_REQUEST
    status_code = 502


class GatewayNotConfigured(GatewayError):
    kind = ErrorKind.GATEWAY_NOT_CONFIGURED
    status_code = 400


class GatewayAuthError(GatewayError):
    kind = ErrorKind.GATEWAY_AUTH
    status_code = 400


class GatewayRequestError(GatewayError):
    kind = ErrorKind.GATEWAY_REQUEST
    status_code = 502


# ═══════════════════════════════════════════════════════════════════════════════
# Factory: user-facing messages in one place
# ═══════════════════════════════════════════════════════════════════════════════


class Errors:
    @staticmethod
    def duplicate_payment() -> ConflictError:
        return ConflictError("Payment already processed")

    @staticmethod
    def cancelled_intent() -> ConflictError:
        return ConflictError(
            "This order was previously cancelled. Please start a new checkout process."
        )

    @staticmethod
    def coupon_consumed() -> ConflictError:
        return ConflictError("Coupon has already been used")

    @staticmethod
    def coupon_invalid(code: str) -> ConflictError:
        return ConflictError(f"Coupon {code} is no longer valid")

    @staticmethod
    def not_cancellable() -> ConflictError:
        return ConflictError("This order cannot be cancelled")

    @staticmethod
    def illegal_transition(current: str, target: str) -> ConflictError:
        return ConflictError(f"Order cannot move from {current} to {target}")

    @staticmethod
    def empty_cart() -> ValidationError:
        return ValidationError("No items in cart")

    @staticmethod
    def missing(field: str) -> ValidationError:
        return ValidationError(f"{field} is required")

    @staticmethod
    def cash_disabled() -> ValidationError:
        return ValidationError("Cash on Delivery is not enabled")

    @staticmethod
    def address_not_found() -> NotFoundError:
        return NotFoundError("Shipping address not found")

    @staticmethod
    def order_not_found() -> NotFoundError:
        return NotFoundError("Order not found")

    @staticmethod
    def intent_not_found() -> NotFoundError:
        return NotFoundError("Checkout intent not found")

    @staticmethod
    def gateway_not_configured(gateway: str) -> GatewayNotConfigured:
        return GatewayNotConfigured(
            f"Payment gateway {gateway} is not configured or not active"
        )

    @staticmethod
    def credentials_unreadable(gateway: str) -> GatewayAuthError:
        return GatewayAuthError(
            f"Failed to decrypt {gateway} credentials. Please reconfigure the payment gateway."
        )

    @staticmethod
    def gateway_timeout(gateway: str) -> GatewayRequestError:
        return GatewayRequestError(f"Payment gateway {gateway} did not respond in time")

    @staticmethod
    def invalid_signature() -> InvalidSignatureError:
        return InvalidSignatureError("Invalid payment signature")


def as_gateway_error(err: Exception) -> GatewayError:
    """`on_error` for gateway calls: keep typed errors, wrap everything else."""
    if isinstance(err, GatewayError):
        return err
    return GatewayRequestError(str(err) or type(err).__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ErrorKind",
    "SettlementError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InsufficientStockError",
    "InvalidSignatureError",
    "InternalError",
    "GatewayError",
    "GatewayNotConfigured",
    "GatewayAuthError",
    "GatewayRequestError",
    "Errors",
    "as_gateway_error",
)
