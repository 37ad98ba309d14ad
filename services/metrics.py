# services/metrics.py
from __future__ import annotations
import os

os.environ.setdefault("PROMETHEUS_DISABLE_CREATED_SERIES", "1")

from prometheus_client import (  # noqa: E402
    Counter, Histogram, CollectorRegistry,
    generate_latest, CONTENT_TYPE_LATEST,
)

# Use a DEDICATED registry so only our app metrics show up
APP_REGISTRY = CollectorRegistry(auto_describe=True)

# --- Generic HTTP metrics (bind to our registry) ---
REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests total",
    ["method", "endpoint", "status"], registry=APP_REGISTRY
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Request latency (seconds)",
    ["endpoint", "method"], registry=APP_REGISTRY,
)

# --- Payments ---
PAYMENT_INITIATIONS = Counter(
    "payments_initiations_total", "Paywall redirects built", ["outcome"], registry=APP_REGISTRY
)
CALLBACK_EVENTS = Counter(
    "payments_callback_events_total", "Payzone callbacks received", ["outcome", "status"],
    registry=APP_REGISTRY
)
REFUNDS = Counter(
    "payments_refunds_total", "Refund requests sent to Payzone", ["outcome"], registry=APP_REGISTRY
)


def init_app(app):
    @app.get("/metrics")
    def metrics():
        data = generate_latest(APP_REGISTRY)
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    # --- pre-warm labeled series so dashboards don't say "No data" ---
    for o in ("ok", "client_error", "error"):
        PAYMENT_INITIATIONS.labels(outcome=o).inc(0)
        REFUNDS.labels(outcome=o).inc(0)
    for o in ("charged_approved", "charged_unapproved", "declined",
              "other", "signature_rejected", "error"):
        CALLBACK_EVENTS.labels(outcome=o, status="OK").inc(0)
        CALLBACK_EVENTS.labels(outcome=o, status="KO").inc(0)
