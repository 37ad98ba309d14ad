# services/payments/base.py
"""
Request-scoped data model for the Payzone integration, plus the
interface the callback handler uses to reach the order store.
Nothing here is persisted by the gateway itself.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Protocol


class PaymentError(Exception):
    """Base class for errors raised by the payment services."""
    status_code = 500


class MissingFieldsError(PaymentError):
    status_code = 400

    def __init__(self, fields: List[str]):
        self.fields = fields
        super().__init__("Missing required fields: " + ", ".join(fields))


class InvalidAmountError(PaymentError):
    status_code = 400


class InvalidCurrencyError(PaymentError):
    status_code = 400


class ProviderError(PaymentError):
    """Payzone back-office API call failed (network, HTTP status, bad JSON)."""

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.detail = detail


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


@dataclass
class PaymentInitiationRequest:
    amount: Any
    order_id: str
    customer_email: str
    redirect_url: str
    callback_url: str
    currency: str = "MAD"
    customer_name: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict)

    REQUIRED = (("amount", "amount"), ("order_id", "orderID"),
                ("customer_email", "customerEmail"),
                ("redirect_url", "redirectURL"), ("callback_url", "callbackURL"))

    @classmethod
    def from_json(cls, body: Dict[str, Any], default_currency: str = "MAD") -> "PaymentInitiationRequest":
        """Map the web app's camelCase body onto the request."""
        custom = body.get("customData")
        return cls(
            amount=body.get("amount"),
            order_id=body.get("orderID"),
            customer_email=body.get("customerEmail"),
            redirect_url=body.get("redirectURL"),
            callback_url=body.get("callbackURL"),
            currency=(body.get("currency") or default_currency),
            customer_name=body.get("customerName"),
            custom_data=custom if isinstance(custom, dict) else {},
        )

    def validate(self) -> None:
        missing = [wire for attr, wire in self.REQUIRED
                   if _blank(getattr(self, attr))]
        if missing:
            raise MissingFieldsError(missing)
        self.price_string()
        code = self.currency.strip() if isinstance(self.currency, str) else ""
        if len(code) != 3 or not (code.isascii() and code.isalpha()):
            raise InvalidCurrencyError("currency must be a 3-letter code such as MAD")

    def price_string(self) -> str:
        return stringify_amount(self.amount)


def stringify_amount(amount: Any) -> str:
    """
    Amount as the string Payzone expects. No rounding: the caller
    already supplies the provider's unit and precision.
    """
    if isinstance(amount, bool):
        raise InvalidAmountError("amount must be a number")
    try:
        d = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("amount must be a number")
    if not d.is_finite() or d <= 0:
        raise InvalidAmountError("amount must be positive")
    return format(d, "f")


@dataclass
class SignedPayload:
    payload: Dict[str, Any]
    body: str          # the one serialization that was signed and is sent
    signature: str


@dataclass
class RedirectInstruction:
    action_url: str
    payload: str
    signature: str
    order_id: str

    def form_fields(self) -> Dict[str, str]:
        return {"payload": self.payload, "signature": self.signature}


@dataclass
class Transaction:
    state: Optional[str]
    result_code: Any
    order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Any = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Transaction":
        return cls(
            state=d.get("state"),
            result_code=d.get("resultCode"),
            order_id=d.get("orderID") or d.get("orderId"),
            transaction_id=d.get("transactionID") or d.get("id"),
            amount=d.get("amount"),
            raw=d,
        )

    @property
    def approved_ok(self) -> bool:
        # resultCode may arrive as 0, "0" or 0.0
        if isinstance(self.result_code, bool) or self.result_code is None:
            return False
        try:
            return Decimal(str(self.result_code).strip()) == 0
        except (InvalidOperation, ValueError):
            return False


@dataclass
class CallbackNotification:
    status: Optional[str]
    transactions: List[Transaction]
    order_id: Optional[str]
    raw: Dict[str, Any]

    @classmethod
    def from_json(cls, d: Any) -> "CallbackNotification":
        if not isinstance(d, dict):
            raise ValueError("callback body must be a JSON object")
        txs = d.get("transactions") or []
        if not isinstance(txs, list):
            raise ValueError("transactions must be a list")
        return cls(
            status=d.get("status"),
            transactions=[Transaction.from_json(t)
                          for t in txs if isinstance(t, dict)],
            order_id=d.get("orderID") or d.get("orderId"),
            raw=d,
        )

    def first_with_state(self, state: str) -> Optional[Transaction]:
        """First match wins, even if a later entry looks 'better'."""
        for t in self.transactions:
            if t.state == state:
                return t
        return None


class CallbackOutcome(str, enum.Enum):
    CHARGED_APPROVED = "charged_approved"
    CHARGED_UNAPPROVED = "charged_unapproved"
    DECLINED = "declined"
    OTHER = "other"
    SIGNATURE_REJECTED = "signature_rejected"
    ERROR = "error"


@dataclass
class CallbackAcknowledgement:
    status: str                    # 'OK' | 'KO'
    message: str
    outcome: CallbackOutcome
    order_id: Optional[str] = None

    def to_json(self) -> Dict[str, str]:
        return {"status": self.status, "message": self.message}


class OrderStore(Protocol):
    def mark_order_paid(self, order_id: str, *, transaction_id: Optional[str] = None,
                        amount: Any = None, currency: Optional[str] = None) -> bool:
        """
        Idempotent: a second call for an already-paid order is a no-op
        and returns False.
        """

    def record_callback_event(self, *, order_id: Optional[str], status: Optional[str],
                              outcome: str, signature_ok: bool, raw: str) -> int:
        """Append one received notification to the event log."""
