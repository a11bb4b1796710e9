"""
Payment gateway adapter — two processors behind one interface.

    from settlement import gateway as GW

    match await registry.for_owner(owner_id, GW.GatewayName.RAZORPAY):
        case Ok(gw):
            intent = await gw.create_intent(Decimal("850.00"), "INR", {"userId": uid})
"""

from settlement.gateway._types import (
    GatewayName,
    NormalizedMethod,
    Credentials,
    Intent,
    PaymentGateway,
)
from settlement.gateway._crypto import DecryptionError, derive_key, encrypt, decrypt
from settlement.gateway._base import (
    RECEIPT_MAX,
    to_minor_units,
    make_receipt,
    sign_payment,
    HttpGateway,
)
from settlement.gateway._razorpay import RazorpayGateway, map_razorpay_method
from settlement.gateway._phonepe import PAY_PATH, PhonePeGateway, map_phonepe_instrument, x_verify
from settlement.gateway._credentials import CredentialSummary, CredentialStore
from settlement.gateway._registry import parse_gateway, GatewayRegistry

__all__ = (
    "GatewayName",
    "NormalizedMethod",
    "Credentials",
    "Intent",
    "PaymentGateway",
    "DecryptionError",
    "derive_key",
    "encrypt",
    "decrypt",
    "RECEIPT_MAX",
    "to_minor_units",
    "make_receipt",
    "sign_payment",
    "HttpGateway",
    "RazorpayGateway",
    "map_razorpay_method",
    "PAY_PATH",
    "PhonePeGateway",
    "map_phonepe_instrument",
    "x_verify",
    "CredentialSummary",
    "CredentialStore",
    "parse_gateway",
    "GatewayRegistry",
)
