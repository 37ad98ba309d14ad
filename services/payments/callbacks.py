# services/payments/callbacks.py
"""
Inbound Payzone notifications.

RECEIVED -> SIGNATURE_VERIFIED | SIGNATURE_REJECTED -> outcome -> ACKNOWLEDGED

Payzone retries anything that is not a 200, so handle() never raises:
a bad signature, a broken body or a failing order store all end as a
{"status": "KO"} acknowledgement that the route sends back with 200.
"""

from __future__ import annotations
import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional

from services.payments.base import (
    CallbackAcknowledgement, CallbackNotification, CallbackOutcome, OrderStore,
)
from services.payments.config import PayzoneConfig
from services.payments.signing import verify_inbound

log = logging.getLogger(__name__)

# Shared by all handlers; a slow store must not hold the provider's request open.
_DISPATCH_POOL = ThreadPoolExecutor(
    max_workers=4, thread_name_prefix="payzone-callback")

# Upper bound for the event log write, separate from the order store budget.
EVENT_LOG_TIMEOUT = 1.0


def _ack(status: str, message: str, outcome: CallbackOutcome,
         order_id: Optional[str] = None) -> CallbackAcknowledgement:
    return CallbackAcknowledgement(status=status, message=message,
                                   outcome=outcome, order_id=order_id)


class CallbackHandler:
    def __init__(self, config: PayzoneConfig, order_store: OrderStore):
        self.config = config
        self.store = order_store

    def _dispatch(self, fn, *args, timeout: Optional[float] = None, **kwargs):
        fut = _DISPATCH_POOL.submit(fn, *args, **kwargs)
        try:
            return fut.result(timeout=self.config.store_timeout if timeout is None else timeout)
        except FutureTimeout:
            # still queued: drop it so abandoned work does not pile up on the pool
            fut.cancel()
            raise

    def handle(self, raw_body: bytes, provided_signature: Optional[str]) -> CallbackAcknowledgement:
        raw_body = raw_body or b""
        if not verify_inbound(self.config.notification_key, raw_body, provided_signature):
            log.warning("Payzone callback rejected: invalid signature (len=%d, sig=%r)",
                        len(raw_body), (provided_signature or "")[:16])
            ack = _ack("KO", "Error signature",
                       CallbackOutcome.SIGNATURE_REJECTED)
            self._record(ack, None, raw_body, signature_ok=False)
            return ack

        note = None
        try:
            note = CallbackNotification.from_json(json.loads(raw_body))
            ack = self._reconcile(note)
        except FutureTimeout:
            log.error("Order store timed out after %.1fs; acknowledging KO",
                      self.config.store_timeout)
            ack = _ack("KO", "Error processing callback", CallbackOutcome.ERROR,
                       note.order_id if note else None)
        except Exception:
            log.exception("Error processing Payzone callback")
            ack = _ack("KO", "Error processing callback", CallbackOutcome.ERROR,
                       note.order_id if note else None)

        self._record(ack, note, raw_body, signature_ok=True)
        return ack

    def _reconcile(self, note: CallbackNotification) -> CallbackAcknowledgement:
        log.info("Payzone callback status=%s transactions=%s", note.status,
                 [(t.state, t.result_code, t.transaction_id) for t in note.transactions])

        if note.status == "CHARGED":
            tx = note.first_with_state("APPROVED")
            if tx is None or not tx.approved_ok:
                log.info("Payment not approved: order=%s tx=%s", note.order_id,
                         tx.raw if tx else None)
                return _ack("KO", "Payment not approved",
                            CallbackOutcome.CHARGED_UNAPPROVED, note.order_id)

            order_id = tx.order_id or note.order_id
            if not order_id:
                raise ValueError("CHARGED callback carries no orderID")
            changed = self._dispatch(
                self.store.mark_order_paid, str(order_id),
                transaction_id=tx.transaction_id, amount=tx.amount,
                currency=tx.raw.get("currency") or note.raw.get("currency"))
            log.info("Payment successful for order %s (%s)", order_id,
                     "marked paid" if changed else "already paid")
            return _ack("OK", "Status recorded successfully",
                        CallbackOutcome.CHARGED_APPROVED, str(order_id))

        if note.status == "DECLINED":
            tx = note.first_with_state("DECLINED")
            log.info("Payment declined: order=%s resultCode=%s", note.order_id,
                     tx.result_code if tx else None)
            return _ack("KO", "Payment declined", CallbackOutcome.DECLINED,
                        (tx.order_id if tx else None) or note.order_id)

        return _ack("OK", "Callback received", CallbackOutcome.OTHER, note.order_id)

    def _record(self, ack: CallbackAcknowledgement, note: Optional[CallbackNotification],
                raw_body: bytes, signature_ok: bool) -> None:
        # The event log is diagnostics only; it never changes the acknowledgement.
        try:
            self._dispatch(
                self.store.record_callback_event,
                timeout=min(self.config.store_timeout, EVENT_LOG_TIMEOUT),
                order_id=ack.order_id,
                status=note.status if note else None,
                outcome=ack.outcome.value,
                signature_ok=signature_ok,
                raw=raw_body.decode("utf-8", errors="replace"),
            )
        except FutureTimeout:
            log.warning("Payzone callback event not recorded: event log timed out")
        except Exception:
            log.exception("Failed to record Payzone callback event")
