"""Domain records read from the repositories and passed to the mailer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Mapping

from pydantic import BaseModel, Field


class NotificationMode(str, Enum):
    NONE = "none"
    NEW = "new"
    ALL = "all"


class NotificationSettings(BaseModel):
    """Per-user notification preferences for a single project."""

    mode: NotificationMode = NotificationMode.NONE
    report_critical_errors: bool = False
    report_regressions: bool = False
    report_404_errors: bool = False
    report_known_bot_errors: bool = False
    send_daily_summary: bool = False


class SignatureInfo(BaseModel):
    """Descriptive parts of a stack signature.

    Stacks store their signature as a loose string mapping. Only three keys
    matter for notifications; a stack is treated as a 404 stack when its
    signature carried a ``Path`` key at all, even an empty one.
    """

    exception_type: str | None = None
    method: str | None = None
    path: str | None = None
    has_path: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, str] | None) -> "SignatureInfo":
        data = data or {}
        return cls(
            exception_type=data.get("ExceptionType"),
            method=data.get("Method"),
            path=data.get("Path"),
            has_path="Path" in data,
        )

    @property
    def is_404(self) -> bool:
        return self.has_path


class Organization(BaseModel):
    id: str
    name: str = ""
    plan_id: str = ""
    has_premium_features: bool = False


class Project(BaseModel):
    id: str
    organization_id: str
    name: str = ""
    time_zone: str = "UTC"
    total_error_count: int = 0
    notification_settings: dict[str, NotificationSettings] = Field(default_factory=dict)

    def summary_user_ids(self) -> list[str]:
        """User ids that opted into the daily summary."""
        return [user_id for user_id, settings in self.notification_settings.items() if settings.send_daily_summary]


class User(BaseModel):
    id: str
    email_address: str = ""
    is_email_address_verified: bool = False
    email_notifications_enabled: bool = True
    organization_ids: list[str] = Field(default_factory=list)


class ErrorStack(BaseModel):
    id: str
    project_id: str
    title: str = ""
    signature_info: SignatureInfo = Field(default_factory=SignatureInfo)
    total_occurrences: int = 0
    first_occurrence: datetime | None = None
    last_occurrence: datetime | None = None
    disable_notifications: bool = False
    is_hidden: bool = False


class FrequentStack(BaseModel):
    """One entry of the most-frequent list; enriched from the stack once resolved."""

    id: str
    total: int = 0
    type: str | None = None
    method: str | None = None
    path: str | None = None
    is_404: bool = False
    title: str | None = None
    first: datetime | None = None
    last: datetime | None = None


class ProjectErrorStats(BaseModel):
    total: int = 0
    per_hour_average: float = 0.0
    new_total: int = 0
    unique_total: int = 0
    most_frequent: list[FrequentStack] = Field(default_factory=list)


class SummaryModel(BaseModel):
    """Daily digest for one project."""

    project_id: str
    project_name: str
    start_date: datetime
    end_date: datetime
    total: int
    per_hour_average: float
    new_total: int
    new: list[ErrorStack] = Field(default_factory=list)
    unique_total: int
    most_frequent: list[FrequentStack] = Field(default_factory=list)
    has_submitted_errors: bool
    is_free_plan: bool


class NoticeModel(BaseModel):
    """Single occurrence notice handed to the mailer."""

    project_id: str
    project_name: str
    error_id: str
    error_stack_id: str
    total_occurrences: int
    code: str | None = None
    user_agent: str | None = None
    url: str | None = None
    title: str | None = None
    type: str | None = None
    message: str | None = None
    occurrence_date: datetime | None = None
    is_new: bool = False
    is_regression: bool = False
    is_critical: bool = False
