# services/payments/config.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping

# Sandbox values for local development only; create_app refuses them in production.
DEV_DEFAULTS = {
    "PAYZONE_MERCHANT_ACCOUNT": "kaari-dev",
    "PAYZONE_PAYWALL_SECRET_KEY": "dev-paywall-secret",
    "PAYZONE_PAYWALL_URL": "https://payment-sandbox.payzone.ma/pwthree/launch",
    "PAYZONE_NOTIFICATION_KEY": "dev-notification-key",
}

REQUIRED_IN_PRODUCTION = tuple(DEV_DEFAULTS)


@dataclass(frozen=True)
class PayzoneConfig:
    merchant_account: str
    paywall_secret_key: str
    paywall_url: str
    notification_key: str
    # Optional back-office API (refunds)
    api_url: str | None = None
    originator_id: str | None = None
    password: str | None = None
    api_timeout: float = 15.0
    # Upper bound for the downstream order-store call made from the callback
    store_timeout: float = 5.0
    default_currency: str = "MAD"

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "PayzoneConfig":
        def _get(key: str) -> Any:
            v = cfg.get(key)
            return v if v not in (None, "") else DEV_DEFAULTS.get(key)

        return cls(
            merchant_account=_get("PAYZONE_MERCHANT_ACCOUNT"),
            paywall_secret_key=_get("PAYZONE_PAYWALL_SECRET_KEY"),
            paywall_url=_get("PAYZONE_PAYWALL_URL"),
            notification_key=_get("PAYZONE_NOTIFICATION_KEY"),
            api_url=(cfg.get("PAYZONE_API_URL") or "").rstrip("/") or None,
            originator_id=cfg.get("PAYZONE_ORIGINATOR_ID") or None,
            password=cfg.get("PAYZONE_PASSWORD") or None,
            api_timeout=float(cfg.get("PAYZONE_API_TIMEOUT") or 15),
            store_timeout=float(cfg.get("PAYZONE_CALLBACK_STORE_TIMEOUT") or 5),
            default_currency=(cfg.get("PAYZONE_CURRENCY") or "MAD").upper(),
        )


def check_production_config(cfg: Mapping[str, Any]) -> None:
    """Raise if a Payzone secret is unset or still at its sandbox default."""
    bad = [k for k in REQUIRED_IN_PRODUCTION
           if not cfg.get(k) or cfg.get(k) == DEV_DEFAULTS[k]]
    if bad:
        raise RuntimeError(
            f"{', '.join(bad)} must be set in production (.env)")
