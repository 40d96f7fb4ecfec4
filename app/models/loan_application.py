import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_loan_app_amount_positive"),
        CheckConstraint("tenure_months > 0", name="ck_loan_app_tenure_positive"),
        CheckConstraint("interest_rate_applied >= 0", name="ck_loan_app_rate_nonneg"),
        CheckConstraint("total_amount_to_pay >= 0", name="ck_loan_app_total_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "current_status IN ('SUBMITTED', 'IN_REVIEW', 'WAITING_APPROVAL', "
            "'APPROVED_WAITING_DISBURSEMENT', 'DISBURSED', 'REJECTED', 'PAID')",
            name="ck_loan_app_status",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    product_id = Column(
        UUID(as_uuid=True), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    amount = Column(Numeric(18, 2), nullable=False)
    tenure_months = Column(Integer, nullable=False)
    interest_rate_applied = Column(Numeric(10, 4), nullable=False)
    total_amount_to_pay = Column(Numeric(18, 2), nullable=False)
    current_status = Column(String(40), nullable=False, default="SUBMITTED", index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # updated_at is fetched back in the flush instead of being left expired.
    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}
