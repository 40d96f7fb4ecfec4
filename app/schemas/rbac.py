from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class MenuOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    url_pattern: str | None = None
    category: str


class RoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None


class RoleMenuOut(BaseModel):
    role_id: UUID
    menu_id: UUID
    menu_code: str | None = None
    granted_at: datetime | None = None
    revoked_at: datetime | None = None
    is_effective: bool


class MyMenusResponse(BaseModel):
    roles: list[str]
    menus: list[str]
