from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LoanHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    loan_application_id: UUID
    actor_user_id: UUID
    action: str
    action_display_name: str | None = None
    comment: str | None = None
    from_status: str | None = None
    to_status: str
    created_at: datetime | None = None


class LoanHistoryListResponse(BaseModel):
    loan_id: UUID
    items: list[LoanHistoryEntry]
    total: int


class ActorHistoryItem(LoanHistoryEntry):
    applicant_username: str | None = None
    product_name: str | None = None
    amount: Decimal | None = None
    current_status: str | None = None


class ActorHistoryResponse(BaseModel):
    items: list[ActorHistoryItem]
    total: int
    page: int
    size: int


class MilestoneState(str, Enum):
    COMPLETED = "COMPLETED"
    CURRENT = "CURRENT"
    PENDING = "PENDING"


class Milestone(BaseModel):
    key: str
    label: str
    state: MilestoneState
    reached_at: datetime | None = None


class LoanMilestonesResponse(BaseModel):
    loan_id: UUID
    current_status: str
    milestones: list[Milestone]
