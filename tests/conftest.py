# tests/conftest.py
import os
import pytest
from sqlalchemy import text
from tests.utils import FAKE_PAYZONE


@pytest.fixture(scope="session", autouse=True)
def _set_env(tmp_path_factory):
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("METRICS_ENABLED", "1")
    os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
    db = tmp_path_factory.mktemp("db") / "orders.sqlite3"
    os.environ.setdefault("DATABASE_URL", f"sqlite:///{db}")
    yield


@pytest.fixture(scope="session")
def app(_set_env):
    from app import create_app
    return create_app({"TESTING": True, **FAKE_PAYZONE})


@pytest.fixture(autouse=True)
def _db_clean(app):
    from models.base import init_engine_and_session
    engine, _ = init_engine_and_session()
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM payment_callback_events"))
        conn.execute(text("DELETE FROM orders"))
    app.extensions.pop("order_store", None)
    yield


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def payzone_config():
    from services.payments.config import PayzoneConfig
    return PayzoneConfig.from_mapping(FAKE_PAYZONE)


class FakeOrderStore:
    def __init__(self):
        self.paid = []
        self.events = []
        self.fail_with = None
        self.delay = 0.0
        self.gate = None      # threading.Event: mark_order_paid blocks until set

    def mark_order_paid(self, order_id, *, transaction_id=None, amount=None, currency=None):
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            import time
            time.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        first = order_id not in [p[0] for p in self.paid]
        self.paid.append((order_id, transaction_id))
        return first

    def record_callback_event(self, *, order_id, status, outcome, signature_ok, raw):
        self.events.append({"order_id": order_id, "status": status, "outcome": outcome,
                            "signature_ok": signature_ok, "raw": raw})
        return len(self.events)


@pytest.fixture()
def fake_store():
    return FakeOrderStore()
