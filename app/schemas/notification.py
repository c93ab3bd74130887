from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime
from typing import Optional, List
from enum import Enum
import re

ACTION_URL_PATTERN = re.compile(r"^https?://.+")


class NotificationType(str, Enum):
    warning = "Warning"
    info = "Info"
    success = "Success"
    error = "Error"


class NotificationPriority(str, Enum):
    high = "High"
    medium = "Medium"
    low = "Low"


class NotificationCategory(str, Enum):
    system = "System"
    marketing = "Marketing"
    security = "Security"
    updates = "Updates"
    general = "General"


class NotificationStatus(str, Enum):
    draft = "Draft"
    scheduled = "Scheduled"
    sending = "Sending"  # claimed by a dispatch, not yet finalized
    sent = "Sent"
    failed = "Failed"
    cancelled = "Cancelled"


TERMINAL_STATUSES = (
    NotificationStatus.sent.value,
    NotificationStatus.failed.value,
    NotificationStatus.cancelled.value,
)
EDITABLE_STATUSES = (
    NotificationStatus.draft.value,
    NotificationStatus.scheduled.value,
)


class Platform(str, Enum):
    web = "web"
    mobile = "mobile"
    both = "both"


class StatsPeriod(str, Enum):
    week = "7d"
    month = "30d"
    quarter = "90d"


class ActionButton(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    text: Optional[str] = Field(default=None, max_length=50)
    url: Optional[str] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        if v and not ACTION_URL_PATTERN.match(v):
            raise ValueError("Action URL must be a valid HTTP/HTTPS URL")
        return v


class NotificationMetadata(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    platform: Platform = Platform.both
    sound: bool = True
    vibration: bool = False


def _dedupe(users: List[str]) -> List[str]:
    seen = []
    for user_id in users:
        if user_id not in seen:
            seen.append(user_id)
    return seen


class NotificationBase(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True, validate_default=True)

    title: str = Field(..., min_length=3, max_length=200)
    message: str = Field(..., min_length=5, max_length=1000)
    type: NotificationType = NotificationType.info
    priority: NotificationPriority = NotificationPriority.medium
    category: NotificationCategory = NotificationCategory.general
    sendToAllUsers: bool = False
    targetUsers: List[str] = Field(default_factory=list)
    scheduledTime: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    icon: str = "bell"
    actionButton: Optional[ActionButton] = None
    metadata: NotificationMetadata = Field(default_factory=NotificationMetadata)


class NotificationCreate(NotificationBase):
    # Keep a Draft for later editing instead of sending right away
    saveAsDraft: bool = False

    @field_validator("targetUsers")
    @classmethod
    def dedupe_targets(cls, v):
        return _dedupe(v)

    @model_validator(mode="after")
    def check_audience(self):
        if not self.sendToAllUsers and not self.targetUsers:
            raise ValueError("Target users are required when not sending to all users")
        return self


class NotificationUpdate(BaseModel):
    """Partial update; only the fields the caller sent are applied."""

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    message: Optional[str] = Field(default=None, min_length=5, max_length=1000)
    type: Optional[NotificationType] = None
    priority: Optional[NotificationPriority] = None
    category: Optional[NotificationCategory] = None
    sendToAllUsers: Optional[bool] = None
    targetUsers: Optional[List[str]] = None
    scheduledTime: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    icon: Optional[str] = None
    actionButton: Optional[ActionButton] = None
    metadata: Optional[NotificationMetadata] = None
    isActive: Optional[bool] = None

    @field_validator("targetUsers")
    @classmethod
    def dedupe_targets(cls, v):
        return _dedupe(v) if v is not None else v

    @field_validator("title", "message", "type", "priority", "category", "sendToAllUsers", "icon", "isActive")
    @classmethod
    def not_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v
