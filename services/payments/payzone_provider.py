# services/payments/payzone_provider.py
"""
Payzone hosted paywall (redirect flow).

initiate(...) builds the provider payload, serializes it exactly once,
signs those bytes with sha256(secret + payload) and hands back the
paywall URL plus the two form fields the browser must POST there.
"""

from __future__ import annotations
import json
import logging
import uuid
from time import time
from urllib.parse import urlsplit, urlunsplit, urlencode

from services.payments.base import (
    PaymentInitiationRequest, SignedPayload, RedirectInstruction,
)
from services.payments.config import PayzoneConfig
from services.payments.signing import sign_outbound

log = logging.getLogger(__name__)

SKIN = "vps-1-vue"
MODE = "DEEP_LINK"
PAYMENT_METHOD = "CREDIT_CARD"
CUSTOMER_COUNTRY = "MA"
CUSTOMER_LOCALE = "fr_FR"


def derive_return_url(redirect_url: str, status: str) -> str:
    """Same scheme/host/path as redirect_url, query replaced by status=<status>."""
    parts = urlsplit(redirect_url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path,
                       urlencode({"status": status}), ""))


def attempt_id(timestamp: int) -> str:
    # timestamp alone collides when two checkouts start in the same second
    return f"{timestamp}-{uuid.uuid4().hex[:12]}"


def serialize_payload(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class PayzonePaywall:
    name = "payzone"

    def __init__(self, config: PayzoneConfig, clock=time):
        self.config = config
        self._clock = clock

    def build_payload(self, req: PaymentInitiationRequest, timestamp: int) -> dict:
        description = (req.custom_data or {}).get("description") \
            or f"Kaari booking {req.order_id}"
        return {
            "merchantAccount": self.config.merchant_account,
            "timestamp": timestamp,
            "skin": SKIN,
            "customerId": attempt_id(timestamp),
            "customerCountry": CUSTOMER_COUNTRY,
            "customerLocale": CUSTOMER_LOCALE,
            "customerName": req.customer_name or "",
            "customerEmail": req.customer_email,
            "chargeId": attempt_id(timestamp),
            "orderId": str(req.order_id),
            "price": req.price_string(),
            "currency": (req.currency or self.config.default_currency).strip().upper(),
            "description": str(description),
            "mode": MODE,
            "paymentMethod": PAYMENT_METHOD,
            "showPaymentProfiles": "false",
            "callbackUrl": req.callback_url,
            "successUrl": req.redirect_url,
            "failureUrl": derive_return_url(req.redirect_url, "failed"),
            "cancelUrl": derive_return_url(req.redirect_url, "cancelled"),
        }

    def sign(self, payload: dict) -> SignedPayload:
        body = serialize_payload(payload)
        return SignedPayload(payload=payload, body=body,
                             signature=sign_outbound(self.config.paywall_secret_key, body))

    def initiate(self, req: PaymentInitiationRequest) -> RedirectInstruction:
        # Raises MissingFieldsError / InvalidAmountError before anything is signed
        req.validate()
        timestamp = int(self._clock())
        signed = self.sign(self.build_payload(req, timestamp))
        log.info("Payzone checkout prepared order=%s charge=%s",
                 req.order_id, signed.payload["chargeId"])
        return RedirectInstruction(
            action_url=self.config.paywall_url,
            payload=signed.body,
            signature=signed.signature,
            order_id=str(req.order_id),
        )
