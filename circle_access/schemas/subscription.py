from typing import Literal

from pydantic import BaseModel, Field


class SupporterSummary(BaseModel):
    id: str
    supporter_id: str
    creator_id: str
    was_active: bool
    tier_level: int


class SubscriptionCancellation(BaseModel):
    cancelled: bool
    subscription_id: str | None = None
    status: str | None = None


class ChannelRemoval(BaseModel):
    removed_from: int = 0
    channel_ids: list[str] = Field(default_factory=list)
    failed_channel_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class EmailNotificationSuppression(BaseModel):
    disabled: bool
    affected_transactions: int = 0


class UnsubscribeResult(BaseModel):
    success: bool
    was_active: bool = False
    supporter: SupporterSummary | None = None
    subscription: SubscriptionCancellation | None = None
    channels: ChannelRemoval | None = None
    email_notifications: EmailNotificationSuppression | None = None
    supporters_count: int | None = None
    errors: list[str] = Field(default_factory=list)
    error: str | None = None


class UnsubscribeRequest(BaseModel):
    creator_id: str | None = None
    subscription_id: str | None = None
    # Logged only; the cancel reason for this route is always user_requested.
    feedback: str | None = None


class EmailUnsubscribeRequest(BaseModel):
    token: str
    unsubscribe_type: Literal["email-only", "full"] = "email-only"


class EmailUnsubscribeResponse(BaseModel):
    success: bool
    message: str
    details: UnsubscribeResult


class ExpiryCheckDetails(BaseModel):
    two_day_reminders: int = 0
    one_day_reminders: int = 0
    expired_subscriptions: int = 0


class ExpiryCheckResult(BaseModel):
    checked: int = 0
    reminders_sent: int = 0
    expired: int = 0
    errors: list[str] = Field(default_factory=list)
    details: ExpiryCheckDetails = Field(default_factory=ExpiryCheckDetails)


class ExpiryCheckResponse(BaseModel):
    success: bool
    duration_ms: int
    result: ExpiryCheckResult
