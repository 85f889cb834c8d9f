"""Paddle webhook verification and event translation.

Events are translated into decisions; persisting them is left to the caller.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.accounts.entitlements import pass_change, subscription_change
from core.accounts.models import EntitlementChange
from core.accounts.plans import find_plan_by_price_id
from core.utils.errors import WebhookSignatureError

logger = logging.getLogger("dataweaver.billing")

SIGNATURE_HEADER = "paddle-signature"
TEST_HEADER = "x-webhook-test"

_SUBSCRIPTION_EVENTS = frozenset(
    {"subscription.created", "subscription.updated", "subscription.canceled"}
)


class PaddleEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class WebhookDecision:
    """What a webhook event asks the account store to do."""

    action: Literal["grant", "subscription_status", "ignore"]
    message: str = ""
    user_id: str | None = None
    customer_id: str | None = None
    change: EntitlementChange | None = None
    subscription_ends_at: datetime | None = None


class UnknownPriceError(ValueError):
    """Raised when a transaction references a price id with no plan."""

    def __init__(self, price_id: str | None) -> None:
        super().__init__(f"Plan for price ID {price_id} not found")
        self.price_id = price_id


def verify_signature(raw_body: bytes, signature_header: str | None, secret: str) -> None:
    """Check ``ts=<ts>;h1=<hex>`` against HMAC-SHA256 of ``<ts>:<body>``."""

    if not signature_header:
        raise WebhookSignatureError("Signature missing.", reason="missing")

    parts: dict[str, str] = {}
    for item in signature_header.split(";"):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value

    timestamp = parts.get("ts")
    expected = parts.get("h1")
    if not timestamp or not expected:
        raise WebhookSignatureError("Invalid signature format.", reason="malformed")

    signed_payload = timestamp.encode("utf-8") + b":" + raw_body
    computed = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(computed, expected):
        raise WebhookSignatureError("Invalid signature.", reason="mismatch")


def parse_event(raw_body: bytes) -> PaddleEvent:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"webhook body is not valid JSON: {exc}") from exc
    try:
        return PaddleEvent.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"webhook body has unexpected shape: {exc}") from exc


def decide(event: PaddleEvent, *, now: datetime | None = None) -> WebhookDecision:
    """Translate one event into an account update decision."""

    logger.info("Processing event_type: %s", event.event_type)

    if event.event_type == "transaction.completed":
        return _decide_transaction(event.data, now=now)
    if event.event_type in _SUBSCRIPTION_EVENTS:
        return WebhookDecision(
            action="subscription_status",
            customer_id=event.data.get("customer_id"),
            subscription_ends_at=_parse_datetime(event.data.get("ends_at")),
            message=str(event.data.get("status") or ""),
        )
    return WebhookDecision(action="ignore", message=f"Unhandled event type: {event.event_type}")


def _decide_transaction(data: dict[str, Any], *, now: datetime | None) -> WebhookDecision:
    custom_data = data.get("custom_data") or {}
    user_id = custom_data.get("userId") if isinstance(custom_data, dict) else None
    if not user_id:
        logger.warning("Webhook received for transaction without a userId.")
        return WebhookDecision(action="ignore", message="No userId provided.")

    items = data.get("items") or []
    price_id = items[0].get("price_id") if items and isinstance(items[0], dict) else None
    resolved = find_plan_by_price_id(price_id or "")
    if resolved is None:
        logger.error("Could not find a plan for Price ID: %s", price_id)
        raise UnknownPriceError(price_id)

    plan, kind = resolved
    customer_id = data.get("customer_id")
    if kind == "one_time":
        change = pass_change(plan, customer_id=customer_id, now=now)
    else:
        billing_period = data.get("billing_period") or {}
        change = subscription_change(
            plan,
            customer_id=customer_id,
            subscription_id=data.get("subscription_id"),
            subscription_ends_at=_parse_datetime(billing_period.get("ends_at")),
        )
    return WebhookDecision(action="grant", user_id=str(user_id), change=change)


def _parse_datetime(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable timestamp: %s", raw)
        return None
