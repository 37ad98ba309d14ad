# services/payments/payzone_api.py
"""
Thin client for the Payzone back-office API (refunds).

Configuration (env first, Flask config second, see create_app):
  PAYZONE_API_URL         e.g. https://api.payzone.ma
  PAYZONE_ORIGINATOR_ID   HTTP basic username
  PAYZONE_PASSWORD        HTTP basic password
  PAYZONE_API_TIMEOUT     seconds (default 15)
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import requests

from services.payments.base import ProviderError, stringify_amount
from services.payments.config import PayzoneConfig

log = logging.getLogger(__name__)


class PayzoneAPI:
    def __init__(self, config: PayzoneConfig, session: requests.Session | None = None):
        if not config.api_url:
            raise ProviderError("PAYZONE_API_URL not set")
        self.config = config
        self.session = session or requests.Session()
        if config.originator_id:
            self.session.auth = (config.originator_id, config.password or "")

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        url = f"{self.config.api_url}{path}"
        try:
            r = self.session.post(url, json=body, timeout=self.config.api_timeout)
        except requests.RequestException as e:
            raise ProviderError("Payzone API unreachable", str(e)) from e
        if not r.ok:
            try:
                detail = r.json()
            except ValueError:
                detail = r.text
            raise ProviderError(f"Payzone API returned {r.status_code}", detail)
        try:
            return r.json()
        except ValueError as e:
            raise ProviderError("Invalid response from Payzone", r.text) from e

    def refund(self, transaction_id: str, amount: Any, reason: Optional[str] = None) -> Any:
        price = stringify_amount(amount)
        body = {
            "transactionID": transaction_id,
            "amount": price,
            "reason": reason or "Customer request",
        }
        log.info("Payzone refund tx=%s amount=%s", transaction_id, price)
        return self._post("/transaction/refund", body)
