from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class LoanHistory(Base):
    """Append-only record of one workflow step. Rows are never updated or deleted."""

    __tablename__ = "loan_history"
    __table_args__ = (
        Index("ix_loan_history_loan_created", "loan_application_id", "created_at"),
        Index("ix_loan_history_actor_created", "actor_user_id", "created_at"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="RESTRICT"),
        nullable=False,
    )
    actor_user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    action = Column(String(40), nullable=False)
    comment = Column(Text, nullable=True)
    from_status = Column(String(40), nullable=True)
    to_status = Column(String(40), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
