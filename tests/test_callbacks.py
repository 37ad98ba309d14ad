import json
import threading
import time
from dataclasses import replace

import pytest

from services.payments.base import CallbackOutcome, CallbackNotification
from services.payments.callbacks import CallbackHandler, _DISPATCH_POOL
from services.payments.signing import hmac_signature


def _handle(cfg, store, payload, key=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return CallbackHandler(cfg, store).handle(body, hmac_signature(key or cfg.notification_key, body))


def test_charged_approved_marks_order_paid(payzone_config, fake_store):
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [{"state": "APPROVED", "resultCode": 0, "transactionID": "t1"}],
    })
    assert ack.to_json() == {"status": "OK", "message": "Status recorded successfully"}
    assert ack.outcome is CallbackOutcome.CHARGED_APPROVED
    assert fake_store.paid == [("ORD1", "t1")]
    assert fake_store.events[-1]["outcome"] == "charged_approved"
    assert fake_store.events[-1]["signature_ok"] is True


def test_first_approved_transaction_wins(payzone_config, fake_store):
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [
            {"state": "DECLINED", "resultCode": 5, "transactionID": "t0"},
            {"state": "APPROVED", "resultCode": 0, "transactionID": "t1"},
            {"state": "APPROVED", "resultCode": 0, "transactionID": "t2"},
        ],
    })
    assert ack.status == "OK"
    assert fake_store.paid == [("ORD1", "t1")]


def test_first_match_not_best_match(payzone_config, fake_store):
    # the first APPROVED entry has a non-zero result code; a later clean one is ignored
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [
            {"state": "APPROVED", "resultCode": 12},
            {"state": "APPROVED", "resultCode": 0},
        ],
    })
    assert ack.status == "KO"
    assert ack.outcome is CallbackOutcome.CHARGED_UNAPPROVED
    assert fake_store.paid == []


def test_transaction_order_id_preferred(payzone_config, fake_store):
    _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "outer",
        "transactions": [{"state": "APPROVED", "resultCode": "0", "orderID": "inner"}],
    })
    assert fake_store.paid[0][0] == "inner"


def test_charged_without_approved_is_ko(payzone_config, fake_store):
    ack = _handle(payzone_config, fake_store, {"status": "CHARGED", "transactions": []})
    assert ack.to_json()["status"] == "KO"
    assert ack.outcome is CallbackOutcome.CHARGED_UNAPPROVED


def test_declined_is_ko_without_store_effect(payzone_config, fake_store):
    ack = _handle(payzone_config, fake_store, {
        "status": "DECLINED", "orderID": "ORD2",
        "transactions": [{"state": "DECLINED", "resultCode": 51}],
    })
    assert ack.status == "KO"
    assert ack.outcome is CallbackOutcome.DECLINED
    assert fake_store.paid == []


def test_other_status_is_acknowledged_ok(payzone_config, fake_store):
    ack = _handle(payzone_config, fake_store, {"status": "PENDING", "transactions": []})
    assert ack.to_json() == {"status": "OK", "message": "Callback received"}
    assert ack.outcome is CallbackOutcome.OTHER


def test_bad_signature_is_ko_and_logged(payzone_config, fake_store, caplog):
    ack = _handle(payzone_config, fake_store, {"status": "CHARGED"}, key="wrong")
    assert ack.to_json() == {"status": "KO", "message": "Error signature"}
    assert ack.outcome is CallbackOutcome.SIGNATURE_REJECTED
    assert fake_store.events[-1]["signature_ok"] is False
    assert "invalid signature" in caplog.text


def test_signature_covers_raw_bytes_not_reserialized(payzone_config, fake_store):
    # spacing a JSON re-dump would drop; still valid because the raw bytes were signed
    body = b'{ "status" : "PENDING",  "transactions": [] }'
    ack = _handle(payzone_config, fake_store, body)
    assert ack.outcome is CallbackOutcome.OTHER


def test_malformed_body_is_ko(payzone_config, fake_store):
    for body in (b"{not json", b"[1,2]", b'{"status":"CHARGED","transactions":{}}'):
        ack = _handle(payzone_config, fake_store, body)
        assert ack.status == "KO"
        assert ack.outcome is CallbackOutcome.ERROR


def test_store_failure_is_ko(payzone_config, fake_store):
    fake_store.fail_with = RuntimeError("firestore down")
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [{"state": "APPROVED", "resultCode": 0}],
    })
    assert ack.to_json() == {"status": "KO", "message": "Error processing callback"}


def test_slow_store_times_out_to_ko(payzone_config, fake_store):
    cfg = replace(payzone_config, store_timeout=0.05)
    fake_store.delay = 0.5
    ack = _handle(cfg, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [{"state": "APPROVED", "resultCode": 0}],
    })
    assert ack.status == "KO"
    assert ack.outcome is CallbackOutcome.ERROR


def test_event_log_failure_does_not_change_ack(payzone_config, fake_store):
    def boom(**kw):
        raise RuntimeError("log table missing")
    fake_store.record_callback_event = boom
    ack = _handle(payzone_config, fake_store, {"status": "PENDING"})
    assert ack.status == "OK"


def test_notification_first_with_state():
    note = CallbackNotification.from_json({"status": "DECLINED", "transactions": [
        {"state": "APPROVED", "resultCode": 0}, {"state": "DECLINED", "resultCode": 1},
        {"state": "DECLINED", "resultCode": 2}]})
    assert note.first_with_state("DECLINED").result_code == 1
    assert note.first_with_state("REFUNDED") is None


def test_non_ascii_signature_is_rejected_not_raised(payzone_config, fake_store, caplog):
    body = json.dumps({"status": "CHARGED", "orderID": "ORD1"}).encode("utf-8")
    for sig in ("café", "é" * 64):
        ack = CallbackHandler(payzone_config, fake_store).handle(body, sig)
        assert ack.to_json() == {"status": "KO", "message": "Error signature"}
        assert ack.outcome is CallbackOutcome.SIGNATURE_REJECTED
    assert [e["signature_ok"] for e in fake_store.events] == [False, False]
    assert fake_store.paid == []
    assert "invalid signature" in caplog.text


@pytest.mark.parametrize("code", [0, "0", 0.0, "0.0", " 0 "])
def test_zero_result_code_in_any_numeric_form_is_approved(payzone_config, fake_store, code):
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [{"state": "APPROVED", "resultCode": code}],
    })
    assert ack.outcome is CallbackOutcome.CHARGED_APPROVED
    assert fake_store.paid == [("ORD1", None)]


@pytest.mark.parametrize("code", [False, True, None, "", "00x", 0.5, "NaN"])
def test_non_zero_or_non_numeric_result_code_is_not_approved(payzone_config, fake_store, code):
    ack = _handle(payzone_config, fake_store, {
        "status": "CHARGED", "orderID": "ORD1",
        "transactions": [{"state": "APPROVED", "resultCode": code}],
    })
    assert ack.outcome is CallbackOutcome.CHARGED_UNAPPROVED
    assert fake_store.paid == []


def test_timed_out_store_calls_are_cancelled_not_queued(payzone_config, fake_store):
    # every worker is held by a blocked write; later writes must be dropped on timeout
    cfg = replace(payzone_config, store_timeout=0.05)
    fake_store.gate = threading.Event()
    try:
        acks = [_handle(cfg, fake_store, {
            "status": "CHARGED", "orderID": f"ORD{i}",
            "transactions": [{"state": "APPROVED", "resultCode": 0}],
        }) for i in range(10)]
    finally:
        fake_store.gate.set()
    assert all(a.outcome is CallbackOutcome.ERROR for a in acks)

    # FIFO queue: once this runs, nothing submitted earlier is still waiting
    _DISPATCH_POOL.submit(lambda: None).result(timeout=5)
    assert _DISPATCH_POOL._work_queue.qsize() == 0
    time.sleep(0.1)
    assert len(fake_store.paid) <= _DISPATCH_POOL._max_workers
    assert len(fake_store.paid) < 10


def test_rejected_signature_ack_not_held_by_slow_event_log(payzone_config, fake_store):
    cfg = replace(payzone_config, store_timeout=0.05)
    release = threading.Event()

    def slow_record(**kw):
        release.wait(5)
        return 1
    fake_store.record_callback_event = slow_record
    started = time.monotonic()
    try:
        ack = _handle(cfg, fake_store, {"status": "CHARGED"}, key="wrong")
    finally:
        release.set()
    assert ack.outcome is CallbackOutcome.SIGNATURE_REJECTED
    assert time.monotonic() - started < 1.0
