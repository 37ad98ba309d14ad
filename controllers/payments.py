# controllers/payments.py
from __future__ import annotations
import json
import logging
from flask import Blueprint, render_template, request, jsonify, current_app, abort, url_for

from services.metrics import PAYMENT_INITIATIONS, CALLBACK_EVENTS, REFUNDS
from services.payments.base import (
    PaymentError, PaymentInitiationRequest, ProviderError,
    MissingFieldsError, InvalidAmountError, InvalidCurrencyError,
    CallbackAcknowledgement, CallbackOutcome,
)
from services.payments.registry import (
    get_config, get_initiator, get_callback_handler, get_api_client,
)
from services.payments.signing import hmac_signature

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")
log = logging.getLogger(__name__)

CALLBACK_SIGNATURE_HEADER = "X-Callback-Signature"


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# ----- web app starts a checkout: returns the auto-submitting paywall form -----

@payments_bp.post("/initiate")
def initiate():
    body = _json_body()
    try:
        req = PaymentInitiationRequest.from_json(
            body, get_config().default_currency)
        instruction = get_initiator().initiate(req)
        html = render_template(
            "payments/paywall_redirect.html", instruction=instruction)
    except MissingFieldsError as e:
        PAYMENT_INITIATIONS.labels(outcome="client_error").inc()
        log.info("Payment initiation rejected: %s", e)
        return jsonify(success=False, message="Missing required fields", fields=e.fields), 400
    except (InvalidAmountError, InvalidCurrencyError) as e:
        PAYMENT_INITIATIONS.labels(outcome="client_error").inc()
        return jsonify(success=False, message=str(e)), 400
    except Exception as e:
        PAYMENT_INITIATIONS.labels(outcome="error").inc()
        log.exception("Payment initiation error")
        return jsonify(success=False, message="Failed to initiate payment", error=str(e)), 500

    PAYMENT_INITIATIONS.labels(outcome="ok").inc()
    return current_app.response_class(html, status=200, mimetype="text/html")


# ----- Payzone notification (no auth, signature-verified, always 200) -----

@payments_bp.post("/callback")
def callback():
    """
    The HMAC covers the bytes exactly as received, so read the raw body
    before anything parses it.
    """
    raw = request.get_data(cache=True)
    signature = request.headers.get(CALLBACK_SIGNATURE_HEADER)
    try:
        ack = get_callback_handler().handle(raw, signature)
    except Exception:
        log.exception("Payment callback error")
        ack = CallbackAcknowledgement(
            "KO", "Error processing callback", CallbackOutcome.ERROR)

    CALLBACK_EVENTS.labels(outcome=ack.outcome.value, status=ack.status).inc()
    return jsonify(ack.to_json()), 200


@payments_bp.get("/status/<orderID>")
def status(orderID: str):
    # Payzone has no polling API for this integration
    return jsonify(
        success=True,
        message="Payment status is tracked via Payzone callbacks; "
                "check the booking record for the latest state.",
        orderID=orderID,
    ), 200


@payments_bp.post("/refund")
def refund():
    body = _json_body()
    transaction_id = body.get("transactionID")
    amount = body.get("amount")
    if not transaction_id or amount in (None, ""):
        return jsonify(success=False, message="Transaction ID and amount are required"), 400

    try:
        result = get_api_client().refund(
            str(transaction_id), amount, body.get("reason"))
    except PaymentError as e:
        if e.status_code == 400:
            REFUNDS.labels(outcome="client_error").inc()
            return jsonify(success=False, message=str(e)), 400
        REFUNDS.labels(outcome="error").inc()
        detail = e.detail if isinstance(e, ProviderError) else None
        log.error("Refund error: %s %s", e, detail)
        return jsonify(success=False, message="Failed to process refund",
                       error=detail if detail is not None else str(e)), 500

    REFUNDS.labels(outcome="ok").inc()
    return jsonify(success=True, refund=result), 200


# ----- DEV ONLY: sign a notification and feed it to /callback -----

@payments_bp.post("/simulate-callback")
def simulate_callback():
    """
    Dev helper: posts a correctly signed notification into the app, the way
    Payzone would. Body defaults to a CHARGED/APPROVED event for ?orderID=.
    """
    if current_app.config.get("APP_ENV") == "production":
        abort(404)

    payload = _json_body() or {
        "status": "CHARGED",
        "orderID": request.args.get("orderID") or "dev-order",
        "transactions": [{"state": "APPROVED", "resultCode": 0,
                          "transactionID": "dev-tx"}],
    }
    body = json.dumps(payload).encode("utf-8")

    from werkzeug.test import EnvironBuilder, run_wsgi_app

    builder = EnvironBuilder(method="POST", path=url_for("payments.callback"),
                             data=body, content_type="application/json")
    env = builder.get_environ()
    env["HTTP_X_CALLBACK_SIGNATURE"] = hmac_signature(
        get_config().notification_key, body)

    status_line, headers, app_iter = run_wsgi_app(current_app.wsgi_app, env)
    try:
        data = b"".join(app_iter)
    finally:
        if hasattr(app_iter, "close"):
            app_iter.close()

    return current_app.response_class(data, status=int(status_line.split()[0]),
                                      mimetype="application/json")
