from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from core.accounts.entitlements import (
    apply_entitlement_change,
    new_user_record,
    pass_change,
    subscription_change,
)
from core.accounts.models import PlanDetails
from core.accounts.plans import PRICING_PLANS, find_plan_by_price_id, get_plan

_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def test_free_plan_is_first_and_limited() -> None:
    free = get_plan("Free")

    assert PRICING_PLANS[0] is free
    assert free.credit_limit == 100
    assert free.storage_limit == 10 * 1024 * 1024


def test_get_plan_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="Unknown plan"):
        get_plan("Enterprise")


@pytest.mark.parametrize(
    ("price_id", "plan_name", "kind"),
    [
        ("pri_01jyyscrfhvx1g3mzz29ntk3pv", "Starter", "monthly"),
        ("pri_01jyyt1xk15fcj0dksey488tqw", "Creator", "annual"),
        ("pri_01jyytmmab4pxpsjv302pvvpnf", "Power", "one_time"),
    ],
)
def test_find_plan_by_price_id(price_id: str, plan_name: str, kind: str) -> None:
    resolved = find_plan_by_price_id(price_id)

    assert resolved is not None
    assert resolved[0].name == plan_name
    assert resolved[1] == kind


def test_find_plan_by_price_id_ignores_blank_and_unknown() -> None:
    assert find_plan_by_price_id("") is None
    assert find_plan_by_price_id("pri_missing") is None


def test_new_user_record_starts_on_free_plan() -> None:
    user = new_user_record(
        "u1", display_name="Ada  Lovelace", rng=random.Random(0), now=_NOW
    )

    assert user.subscription_plan == "Free"
    assert user.credits_used == 0
    assert user.storage_used == 0
    assert user.plan_details.credit_limit == 100
    assert user.username.startswith("adalovelace")
    assert 0 <= int(user.username.removeprefix("adalovelace")) < 1000
    assert user.created_at == _NOW
    assert not user.is_paid


def test_new_user_record_requires_uid() -> None:
    with pytest.raises(ValueError):
        new_user_record("")


def test_subscription_change_resets_credits_and_clears_expiry() -> None:
    user = new_user_record("u1", now=_NOW).model_copy(
        update={"credits_used": 80, "plan_expiry_date": _NOW}
    )
    ends_at = _NOW + timedelta(days=31)

    updated = apply_entitlement_change(
        user,
        subscription_change(
            get_plan("Creator"),
            customer_id="ctm_1",
            subscription_id="sub_1",
            subscription_ends_at=ends_at,
        ),
    )

    assert updated.subscription_plan == "Creator"
    assert updated.is_paid
    assert updated.credits_used == 0
    assert updated.plan_details.credit_limit == 15000
    assert updated.plan_expiry_date is None
    assert updated.subscription_ends_at == ends_at
    assert updated.paddle_customer_id == "ctm_1"
    assert updated.paddle_subscription_id == "sub_1"
    assert user.subscription_plan == "Free"


def test_pass_change_expires_after_thirty_days() -> None:
    user = new_user_record("u1", now=_NOW)

    updated = apply_entitlement_change(
        user, pass_change(get_plan("Starter"), customer_id=None, now=_NOW)
    )

    assert updated.subscription_plan == "Starter"
    assert updated.plan_expiry_date == _NOW + timedelta(days=30)
    assert updated.paddle_customer_id is None


def test_unlimited_limits_report_no_remaining_bound() -> None:
    user = new_user_record("u1", now=_NOW).model_copy(
        update={"plan_details": PlanDetails(credit_limit=-1, storage_limit=-1)}
    )

    assert user.credits_remaining() is None
    assert user.storage_remaining() is None
