from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_DEVICE_TYPES = {"ANDROID", "IOS", "WEB"}


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID | None = None
    type: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None


class NotificationListResponse(BaseModel):
    items: list[NotificationOut]
    total: int


class UnreadCountResponse(BaseModel):
    count: int


class DeviceRegisterRequest(BaseModel):
    fcm_token: str = Field(min_length=1, max_length=512)
    device_type: str | None = None

    @field_validator("fcm_token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        value = v.strip()
        if not value:
            raise ValueError("Value cannot be empty")
        return value

    @field_validator("device_type")
    @classmethod
    def validate_device_type(cls, v: str | None) -> str | None:
        if v is None:
            return v
        normalized = v.strip().upper()
        if normalized not in ALLOWED_DEVICE_TYPES:
            raise ValueError(f"Invalid device_type. Allowed: {sorted(ALLOWED_DEVICE_TYPES)}")
        return normalized


class DeviceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    fcm_token: str
    device_type: str | None = None
    is_active: bool = True
    last_seen_at: datetime | None = None
