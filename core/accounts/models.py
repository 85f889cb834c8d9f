"""User account records as stored under ``users/{uid}``."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from core.accounts.plans import FREE_PLAN_NAME, UNLIMITED


class PlanDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    credit_limit: int
    storage_limit: int


class UserRecord(BaseModel):
    """Account, plan and usage counters for one user."""

    model_config = ConfigDict(extra="ignore")

    uid: str
    name: str = "New User"
    username: str = ""
    email: str | None = None
    avatar_url: str | None = None
    is_verified: bool = False
    bio: str = ""
    subscription_plan: str = FREE_PLAN_NAME
    credits_used: int = 0
    storage_used: int = 0
    plan_details: PlanDetails
    paddle_customer_id: str | None = None
    paddle_subscription_id: str | None = None
    plan_expiry_date: datetime | None = None
    subscription_ends_at: datetime | None = None
    total_downloads: int = 0
    created_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.subscription_plan != FREE_PLAN_NAME

    def credits_remaining(self) -> int | None:
        """Remaining credits, or None when the plan is unlimited."""

        if self.plan_details.credit_limit == UNLIMITED:
            return None
        return self.plan_details.credit_limit - self.credits_used

    def storage_remaining(self) -> int | None:
        if self.plan_details.storage_limit == UNLIMITED:
            return None
        return self.plan_details.storage_limit - self.storage_used


class EntitlementChange(BaseModel):
    """Plan/limit/expiry update derived from a billing event."""

    model_config = ConfigDict(extra="forbid")

    plan_name: str
    credit_limit: int
    storage_limit: int
    plan_expiry_date: datetime | None = None
    subscription_ends_at: datetime | None = None
    paddle_customer_id: str | None = None
    paddle_subscription_id: str | None = None
    reset_credits: bool = True
