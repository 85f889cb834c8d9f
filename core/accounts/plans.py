"""Pricing plans and their checkout price ids."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal

BillingKind = Literal["monthly", "annual", "one_time"]

UNLIMITED = -1
PASS_DURATION_DAYS = 30
FREE_PLAN_NAME = "Free"

_MB = 1024 * 1024
_GB = 1024 * _MB


@dataclass(frozen=True)
class PlanPrice:
    price: str
    paddle_price_id: str


@dataclass(frozen=True)
class OneTimePass:
    name: str
    price: str
    paddle_price_id: str
    credits: int


@dataclass(frozen=True)
class Plan:
    """Limits and price ids for one subscription tier."""

    name: str
    description: str
    credit_limit: int
    storage_limit: int
    monthly: PlanPrice
    annual: PlanPrice
    one_time: OneTimePass | None = None
    is_popular: bool = False


PRICING_PLANS: tuple[Plan, ...] = (
    Plan(
        name="Free",
        description="Perfect for personal projects and getting started.",
        credit_limit=100,
        storage_limit=10 * _MB,
        monthly=PlanPrice(price="$0", paddle_price_id=""),
        annual=PlanPrice(price="$0", paddle_price_id=""),
    ),
    Plan(
        name="Starter",
        description="For hobbyists and power users who need more resources and AI.",
        credit_limit=2000,
        storage_limit=250 * _MB,
        monthly=PlanPrice(price="$5.99", paddle_price_id="pri_01jyyscrfhvx1g3mzz29ntk3pv"),
        annual=PlanPrice(price="$59.90", paddle_price_id="pri_01jyysx39vsq50qgpezfmh4jv8"),
        one_time=OneTimePass(
            name="Starter Pass",
            price="$5.99",
            paddle_price_id="pri_01jyywpn0qdhpfet6mne5x59my",
            credits=2000,
        ),
    ),
    Plan(
        name="Creator",
        description="For creators and professionals who need advanced collaboration.",
        credit_limit=15000,
        storage_limit=2 * _GB,
        monthly=PlanPrice(price="$12.99", paddle_price_id="pri_01jyysjdx412vm0c6jce679x4g"),
        annual=PlanPrice(price="$129.90", paddle_price_id="pri_01jyyt1xk15fcj0dksey488tqw"),
        one_time=OneTimePass(
            name="Creator Pass",
            price="$15.99",
            paddle_price_id="pri_01jyytj6s0kd02n4r5w2wjztnj",
            credits=15000,
        ),
        is_popular=True,
    ),
    Plan(
        name="Power",
        description="For power users and teams that require maximum performance.",
        credit_limit=100000,
        storage_limit=15 * _GB,
        monthly=PlanPrice(price="$34.99", paddle_price_id="pri_01jyysmqfentz1jb6f6jv8mgsr"),
        annual=PlanPrice(price="$349.90", paddle_price_id="pri_01jyyt62a3skbqd8rd56p99c5t"),
        one_time=OneTimePass(
            name="Power Pass",
            price="$40.99",
            paddle_price_id="pri_01jyytmmab4pxpsjv302pvvpnf",
            credits=100000,
        ),
    ),
)

PLANS_BY_NAME: Mapping[str, Plan] = MappingProxyType({plan.name: plan for plan in PRICING_PLANS})


def get_plan(name: str) -> Plan:
    try:
        return PLANS_BY_NAME[name]
    except KeyError as exc:
        raise ValueError(f"Unknown plan: {name}") from exc


def find_plan_by_price_id(price_id: str) -> tuple[Plan, BillingKind] | None:
    """Resolve a checkout price id to its plan and billing kind."""

    if not price_id:
        return None
    for plan in PRICING_PLANS:
        if plan.monthly.paddle_price_id == price_id:
            return plan, "monthly"
        if plan.annual.paddle_price_id == price_id:
            return plan, "annual"
        if plan.one_time is not None and plan.one_time.paddle_price_id == price_id:
            return plan, "one_time"
    return None
