from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LoanStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    IN_REVIEW = "IN_REVIEW"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    APPROVED_WAITING_DISBURSEMENT = "APPROVED_WAITING_DISBURSEMENT"
    DISBURSED = "DISBURSED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class LoanAction(str, Enum):
    SUBMIT = "SUBMIT"
    COMMENT = "COMMENT"
    FORWARD_TO_MANAGER = "FORWARD_TO_MANAGER"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    DISBURSE = "DISBURSE"


class LoanSubmitRequest(BaseModel):
    product_id: UUID
    amount: Decimal = Field(gt=0)
    tenure_months: int = Field(ge=1)
    interest_rate_applied: Decimal | None = Field(default=None, ge=0)


class LoanActionRequest(BaseModel):
    loan_id: UUID
    # Free text so unknown names surface as invalid_action instead of a schema error.
    action: str = Field(min_length=1, max_length=40)
    comment: str | None = Field(default=None, max_length=2000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str | None) -> str | None:
        if v is None:
            return None
        value = v.strip()
        return value or None


class LoanPaymentCompletedRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=2000)


class LoanApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    product_id: UUID
    amount: Decimal
    tenure_months: int
    interest_rate_applied: Decimal
    total_amount_to_pay: Decimal
    current_status: LoanStatus
    is_paid: bool = False
    paid_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AllowedActionsResponse(BaseModel):
    loan_id: UUID
    current_status: LoanStatus
    allowed_actions: list[LoanAction]


class LoanQueueItem(BaseModel):
    id: UUID
    user_id: UUID
    applicant_username: str | None = None
    applicant_email: str | None = None
    product_id: UUID
    product_name: str | None = None
    amount: Decimal
    tenure_months: int
    interest_rate_applied: Decimal
    total_amount_to_pay: Decimal
    current_status: LoanStatus
    allowed_actions: list[LoanAction] = Field(default_factory=list)
    marketing_comment: str | None = None
    branch_manager_comment: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanQueueResponse(BaseModel):
    items: list[LoanQueueItem]
    total: int
    page: int
    size: int
