# tests/utils.py
import html
import json
import re

from services.payments.signing import hmac_signature

NOTIFICATION_KEY = "test-notification-key"

FAKE_PAYZONE = {
    "PAYZONE_MERCHANT_ACCOUNT": "kaari-test",
    "PAYZONE_PAYWALL_SECRET_KEY": "test-paywall-secret",
    "PAYZONE_PAYWALL_URL": "https://paywall.test/pwthree/launch",
    "PAYZONE_NOTIFICATION_KEY": NOTIFICATION_KEY,
    "PAYZONE_API_URL": "https://api.payzone.test",
    "PAYZONE_ORIGINATOR_ID": "orig",
    "PAYZONE_PASSWORD": "pw",
    "PAYZONE_CALLBACK_STORE_TIMEOUT": "0.5",
}


def signed_headers(body: bytes, key: str = NOTIFICATION_KEY) -> dict:
    return {"X-Callback-Signature": hmac_signature(key, body),
            "Content-Type": "application/json"}


def post_callback(client, payload, key: str = NOTIFICATION_KEY):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return client.post("/api/payments/callback", data=body, headers=signed_headers(body, key))


def form_fields(page: str) -> dict:
    """Hidden inputs of the paywall form, HTML-unescaped the way a browser would."""
    return {m.group(1): html.unescape(m.group(2))
            for m in re.finditer(r'<input type="hidden" name="([^"]+)" value="([^"]*)">', page)}


def form_action(page: str) -> str:
    m = re.search(r'<form[^>]*action="([^"]*)"', page)
    return html.unescape(m.group(1)) if m else ""
