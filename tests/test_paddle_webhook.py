from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

import pytest

from core.billing.paddle import (
    UnknownPriceError,
    decide,
    parse_event,
    verify_signature,
)
from core.utils.errors import WebhookSignatureError

_SECRET = "whsec_test"
_NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _sign(body: bytes, *, ts: str = "1700000000", secret: str = _SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), ts.encode("utf-8") + b":" + body, hashlib.sha256)
    return f"ts={ts};h1={digest.hexdigest()}"


def _transaction(price_id: str, **extra: object) -> bytes:
    data: dict[str, object] = {
        "custom_data": {"userId": "u1"},
        "customer_id": "ctm_1",
        "items": [{"price_id": price_id}],
        **extra,
    }
    return json.dumps({"event_type": "transaction.completed", "data": data}).encode("utf-8")


def test_verify_signature_accepts_valid_signature() -> None:
    body = b'{"event_type":"noop"}'

    verify_signature(body, _sign(body), _SECRET)


@pytest.mark.parametrize(
    ("header", "reason"),
    [
        (None, "missing"),
        ("", "missing"),
        ("ts=1", "malformed"),
        ("garbage", "malformed"),
        ("ts=1;h1=deadbeef", "mismatch"),
    ],
)
def test_verify_signature_rejects_bad_headers(header: str | None, reason: str) -> None:
    with pytest.raises(WebhookSignatureError) as exc_info:
        verify_signature(b"{}", header, _SECRET)

    assert exc_info.value.reason == reason


def test_verify_signature_rejects_tampered_body() -> None:
    header = _sign(b'{"a":1}')

    with pytest.raises(WebhookSignatureError):
        verify_signature(b'{"a":2}', header, _SECRET)


def test_parse_event_rejects_non_json() -> None:
    with pytest.raises(ValueError, match="not valid JSON"):
        parse_event(b"not json")


def test_subscription_purchase_grants_plan_until_period_end() -> None:
    body = _transaction(
        "pri_01jyysjdx412vm0c6jce679x4g",
        subscription_id="sub_1",
        billing_period={"ends_at": "2026-04-01T00:00:00Z"},
    )

    decision = decide(parse_event(body), now=_NOW)

    assert decision.action == "grant"
    assert decision.user_id == "u1"
    assert decision.change is not None
    assert decision.change.plan_name == "Creator"
    assert decision.change.paddle_subscription_id == "sub_1"
    assert decision.change.subscription_ends_at == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert decision.change.plan_expiry_date is None


def test_one_time_purchase_grants_thirty_day_pass() -> None:
    decision = decide(parse_event(_transaction("pri_01jyywpn0qdhpfet6mne5x59my")), now=_NOW)

    assert decision.change is not None
    assert decision.change.plan_name == "Starter"
    assert decision.change.plan_expiry_date == _NOW + timedelta(days=30)


def test_transaction_without_user_is_ignored() -> None:
    body = json.dumps(
        {"event_type": "transaction.completed", "data": {"items": [{"price_id": "x"}]}}
    ).encode("utf-8")

    decision = decide(parse_event(body))

    assert decision.action == "ignore"
    assert decision.message == "No userId provided."


def test_unknown_price_raises() -> None:
    with pytest.raises(UnknownPriceError) as exc_info:
        decide(parse_event(_transaction("pri_unknown")))

    assert exc_info.value.price_id == "pri_unknown"


def test_subscription_events_carry_customer_and_end_date() -> None:
    body = json.dumps(
        {
            "event_type": "subscription.canceled",
            "data": {
                "customer_id": "ctm_9",
                "status": "canceled",
                "ends_at": "2026-05-01T00:00:00Z",
            },
        }
    ).encode("utf-8")

    decision = decide(parse_event(body))

    assert decision.action == "subscription_status"
    assert decision.customer_id == "ctm_9"
    assert decision.subscription_ends_at == datetime(2026, 5, 1, tzinfo=timezone.utc)


def test_other_events_are_ignored() -> None:
    body = json.dumps({"event_type": "customer.created", "data": {}}).encode("utf-8")

    assert decide(parse_event(body)).action == "ignore"
