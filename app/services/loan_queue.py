from __future__ import annotations

from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.loan_application import LoanApplication
from app.models.loan_history import LoanHistory
from app.models.product import Product
from app.models.user import User
from app.core.permissions import RoleName
from app.schemas.loan import LoanQueueItem, LoanStatus
from app.services.loan_actions import QUEUE_STATUSES, allowed_actions, sorted_actions

MARKETING_COMMENT_STATUSES = (LoanStatus.SUBMITTED.value, LoanStatus.IN_REVIEW.value)
BRANCH_MANAGER_COMMENT_STATUSES = (LoanStatus.WAITING_APPROVAL.value,)


async def latest_comments(db: AsyncSession, loan_ids: list) -> dict:
    """Newest non-empty marketing and branch-manager comment per loan, in one query."""
    if not loan_ids:
        return {}
    stmt = (
        select(LoanHistory.loan_application_id, LoanHistory.from_status, LoanHistory.comment)
        .where(
            LoanHistory.loan_application_id.in_(loan_ids),
            LoanHistory.comment.is_not(None),
            LoanHistory.comment != "",
            LoanHistory.from_status.in_(MARKETING_COMMENT_STATUSES + BRANCH_MANAGER_COMMENT_STATUSES),
        )
        .order_by(LoanHistory.created_at.desc(), LoanHistory.id.desc())
    )
    result = await db.execute(stmt)
    comments: dict = {}
    for loan_id, from_status, comment in result.all():
        bucket = "marketing" if from_status in MARKETING_COMMENT_STATUSES else "branch_manager"
        comments.setdefault(loan_id, {}).setdefault(bucket, comment)
    return comments


async def list_queue(
    db: AsyncSession,
    role: RoleName,
    requester_roles: Iterable[str],
    *,
    limit: int,
    offset: int,
) -> tuple[list[LoanQueueItem], int]:
    statuses = sorted(status.value for status in QUEUE_STATUSES[role])
    conditions = [LoanApplication.current_status.in_(statuses)]

    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    count_result = await db.execute(count_stmt)
    total = int(count_result.scalar_one_or_none() or 0)

    # Oldest first: a queue is worked in arrival order.
    stmt = (
        select(LoanApplication, User.username, User.email, Product.name)
        .join(User, User.id == LoanApplication.user_id)
        .join(Product, Product.id == LoanApplication.product_id)
        .where(*conditions)
        .order_by(LoanApplication.created_at.asc(), LoanApplication.id.asc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    rows = result.all()

    roles = list(requester_roles)
    comments = await latest_comments(db, [row[0].id for row in rows])
    items: list[LoanQueueItem] = []
    for loan, username, email, product_name in rows:
        loan_comments = comments.get(loan.id, {})
        items.append(
            LoanQueueItem(
                id=loan.id,
                user_id=loan.user_id,
                applicant_username=username,
                applicant_email=email,
                product_id=loan.product_id,
                product_name=product_name,
                amount=loan.amount,
                tenure_months=loan.tenure_months,
                interest_rate_applied=loan.interest_rate_applied,
                total_amount_to_pay=loan.total_amount_to_pay,
                current_status=loan.current_status,
                allowed_actions=sorted_actions(allowed_actions(loan.current_status, roles)),
                marketing_comment=loan_comments.get("marketing"),
                branch_manager_comment=loan_comments.get("branch_manager"),
                created_at=loan.created_at,
                updated_at=loan.updated_at,
            )
        )
    return items, total
