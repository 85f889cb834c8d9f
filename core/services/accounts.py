"""Account lookups, first-login setup and billing-driven plan changes."""

from __future__ import annotations

import logging

from core.accounts.entitlements import apply_entitlement_change, new_user_record
from core.accounts.models import UserRecord
from core.billing.paddle import WebhookDecision
from core.services.records import load_record, save_record
from core.store import paths
from core.store.document_store import DocumentStore

logger = logging.getLogger("dataweaver.billing")


def load_user(store: DocumentStore, uid: str) -> UserRecord:
    return load_record(store, paths.user_path(uid), UserRecord)


def save_user(store: DocumentStore, user: UserRecord) -> None:
    save_record(store, paths.user_path(user.uid), user)


def ensure_user(
    store: DocumentStore,
    uid: str,
    *,
    display_name: str | None = None,
    email: str | None = None,
    avatar_url: str | None = None,
) -> UserRecord:
    """Return the user's record, creating it with Free-plan defaults if absent."""

    existing = store.get(paths.user_path(uid))
    if existing is not None:
        return UserRecord.model_validate(existing)

    user = new_user_record(uid, display_name=display_name, email=email, avatar_url=avatar_url)
    save_user(store, user)
    logger.info("Created user record for %s", uid)
    return user


def apply_webhook_decision(store: DocumentStore, decision: WebhookDecision) -> str:
    """Persist one webhook decision and return a short acknowledgement message."""

    if decision.action == "grant" and decision.user_id and decision.change is not None:
        user = load_user(store, decision.user_id)
        save_user(store, apply_entitlement_change(user, decision.change))
        logger.info("Updated user %s to plan %s", user.uid, decision.change.plan_name)
        return f"plan updated to {decision.change.plan_name}"

    if decision.action == "subscription_status":
        if not decision.customer_id:
            return "no customer id"
        matches = store.find(paths.USERS, "paddle_customer_id", decision.customer_id)
        if not matches:
            logger.warning(
                "Could not find user with paddle_customer_id: %s", decision.customer_id
            )
            return "customer not found"
        uid, record = matches[0]
        user = UserRecord.model_validate(record)
        updated = user.model_copy(update={"subscription_ends_at": decision.subscription_ends_at})
        save_user(store, updated)
        logger.info("Updated subscription status (%s) for user %s", decision.message, uid)
        return "subscription updated"

    return decision.message or "ignored"
