"""New-account defaults and entitlement updates."""

from __future__ import annotations

import random
import re
from datetime import datetime, timedelta, timezone

from core.accounts.models import EntitlementChange, PlanDetails, UserRecord
from core.accounts.plans import FREE_PLAN_NAME, PASS_DURATION_DAYS, Plan, get_plan

_WHITESPACE_RE = re.compile(r"\s+")


def new_user_record(
    uid: str,
    *,
    display_name: str | None = None,
    email: str | None = None,
    avatar_url: str | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> UserRecord:
    """Build the record written the first time a user signs in."""

    if not uid:
        raise ValueError("Cannot create user record without a uid")

    plan = get_plan(FREE_PLAN_NAME)
    chooser = rng or random.Random()
    base_username = _WHITESPACE_RE.sub("", (display_name or "user").lower())
    return UserRecord(
        uid=uid,
        name=display_name or "New User",
        username=f"{base_username}{chooser.randrange(1000)}",
        email=email,
        avatar_url=avatar_url,
        bio="Welcome to my Data Weaver profile!",
        subscription_plan=plan.name,
        plan_details=PlanDetails(
            credit_limit=plan.credit_limit, storage_limit=plan.storage_limit
        ),
        created_at=now or datetime.now(timezone.utc),
    )


def subscription_change(
    plan: Plan,
    *,
    customer_id: str | None,
    subscription_id: str | None,
    subscription_ends_at: datetime | None,
) -> EntitlementChange:
    return EntitlementChange(
        plan_name=plan.name,
        credit_limit=plan.credit_limit,
        storage_limit=plan.storage_limit,
        plan_expiry_date=None,
        subscription_ends_at=subscription_ends_at,
        paddle_customer_id=customer_id,
        paddle_subscription_id=subscription_id,
    )


def pass_change(
    plan: Plan,
    *,
    customer_id: str | None,
    now: datetime | None = None,
) -> EntitlementChange:
    """One-time passes grant the plan for a fixed number of days."""

    started = now or datetime.now(timezone.utc)
    return EntitlementChange(
        plan_name=plan.name,
        credit_limit=plan.credit_limit,
        storage_limit=plan.storage_limit,
        plan_expiry_date=started + timedelta(days=PASS_DURATION_DAYS),
        paddle_customer_id=customer_id,
    )


def apply_entitlement_change(user: UserRecord, change: EntitlementChange) -> UserRecord:
    """Return a copy of ``user`` with the new plan, limits and dates applied."""

    update: dict[str, object] = {
        "subscription_plan": change.plan_name,
        "plan_details": PlanDetails(
            credit_limit=change.credit_limit, storage_limit=change.storage_limit
        ),
        "plan_expiry_date": change.plan_expiry_date,
    }
    if change.plan_expiry_date is None:
        update["subscription_ends_at"] = change.subscription_ends_at
    if change.reset_credits:
        update["credits_used"] = 0
    if change.paddle_customer_id is not None:
        update["paddle_customer_id"] = change.paddle_customer_id
    if change.paddle_subscription_id is not None:
        update["paddle_subscription_id"] = change.paddle_subscription_id
    return user.model_copy(update=update)
