# models/orders_store.py (SQLAlchemy)
"""
Order payment state, written from Payzone callbacks.

mark_order_paid is the idempotent effect the callback handler relies on:
Payzone may deliver the same notification several times and in any order,
so "paid" is only ever set once and later deliveries are no-ops.
"""
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from models.base import session_scope
from models.schema import Order, PaymentCallbackEvent


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_decimal(v: Any) -> Optional[Decimal]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None


def _order_dict(o: Order) -> dict:
    return {c: getattr(o, c) for c in ("order_id", "status", "amount", "currency",
                                       "transaction_id", "paid_at", "created_at", "updated_at")}


def get_order(order_id: str) -> Optional[dict]:
    with session_scope() as s:
        o = s.get(Order, order_id)
        return _order_dict(o) if o else None


def mark_order_paid(order_id: str, transaction_id: Optional[str] = None,
                    amount: Any = None, currency: Optional[str] = None) -> bool:
    """Return True if this call moved the order to 'paid', False if it already was."""
    now = _now()
    values = {"status": "paid", "paid_at": now, "updated_at": now}
    if transaction_id:
        values["transaction_id"] = str(transaction_id)
    if _to_decimal(amount) is not None:
        values["amount"] = _to_decimal(amount)
    if currency:
        values["currency"] = str(currency).upper()[:3]

    try:
        with session_scope() as s:
            res = s.execute(
                update(Order)
                .where(Order.order_id == order_id, Order.status != "paid")
                .values(**values)
            )
            if res.rowcount:
                return True
            if s.get(Order, order_id) is not None:
                return False
            # The booking lives elsewhere; first word we hear about it is the payment.
            s.add(Order(order_id=order_id, created_at=now, **values))
        return True
    except IntegrityError:
        # lost an insert race with a duplicate delivery; that one marked it paid
        return False


def record_callback_event(order_id: Optional[str], status: Optional[str], outcome: str,
                          signature_ok: bool, raw: str, provider: str = "payzone") -> int:
    with session_scope() as s:
        e = PaymentCallbackEvent(
            provider=provider, order_id=order_id, status=status, outcome=outcome,
            signature_ok=bool(signature_ok), raw=raw, received_at=_now(),
        )
        s.add(e)
        s.flush()
        return e.id


def list_callback_events(order_id: Optional[str] = None) -> list[dict]:
    with session_scope() as s:
        q = select(PaymentCallbackEvent).order_by(PaymentCallbackEvent.id)
        if order_id is not None:
            q = q.where(PaymentCallbackEvent.order_id == order_id)
        return [
            {c: getattr(e, c) for c in ("id", "provider", "order_id", "status", "outcome",
                                        "signature_ok", "raw", "received_at")}
            for e in s.execute(q).scalars()
        ]


class SqlOrderStore:
    """OrderStore backed by the module functions above."""

    def mark_order_paid(self, order_id, *, transaction_id=None, amount=None, currency=None):
        return mark_order_paid(order_id, transaction_id=transaction_id,
                               amount=amount, currency=currency)

    def record_callback_event(self, *, order_id, status, outcome, signature_ok, raw):
        return record_callback_event(order_id, status, outcome, signature_ok, raw)
