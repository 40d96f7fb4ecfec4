"""Append-only loan history: the write path used by the workflow and the read views."""

from __future__ import annotations

from calendar import monthrange
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.loan_application import LoanApplication
from app.models.loan_history import LoanHistory
from app.models.product import Product
from app.models.user import User
from app.schemas.history import (
    ActorHistoryItem,
    LoanHistoryEntry,
    Milestone,
    MilestoneState,
)
from app.schemas.loan import LoanAction, LoanStatus

PAYMENT_COMPLETED = "PAYMENT_COMPLETED"

ACTION_DISPLAY_NAMES = MappingProxyType(
    {
        LoanAction.SUBMIT.value: "Submitted",
        LoanAction.COMMENT.value: "Commented",
        LoanAction.FORWARD_TO_MANAGER.value: "Forwarded to Manager",
        LoanAction.APPROVE.value: "Approved",
        LoanAction.REJECT.value: "Rejected",
        LoanAction.DISBURSE.value: "Disbursed",
        PAYMENT_COMPLETED: "Payment Completed",
    }
)

# (key, label, status whose first arrival completes the milestone)
MILESTONES: tuple[tuple[str, str, LoanStatus], ...] = (
    ("SUBMITTED", "Submitted", LoanStatus.SUBMITTED),
    ("MARKETING", "Marketing", LoanStatus.IN_REVIEW),
    ("BRANCH_MANAGER", "Branch Manager", LoanStatus.WAITING_APPROVAL),
    ("BACK_OFFICE", "Back Office", LoanStatus.APPROVED_WAITING_DISBURSEMENT),
    ("DISBURSED", "Disbursed", LoanStatus.DISBURSED),
)


def display_name(action: str) -> str:
    return ACTION_DISPLAY_NAMES.get(action, action.replace("_", " ").title())


def append_history(
    db: AsyncSession,
    *,
    loan_id,
    actor_id,
    action: str,
    to_status: str,
    from_status: str | None = None,
    comment: str | None = None,
) -> LoanHistory:
    """Stage a new history row on the session. Committing is the caller's job."""
    entry = LoanHistory(
        loan_application_id=loan_id,
        actor_user_id=actor_id,
        action=action,
        comment=comment,
        from_status=from_status,
        to_status=to_status,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry


def to_entry(row: LoanHistory) -> LoanHistoryEntry:
    entry = LoanHistoryEntry.model_validate(row)
    entry.action_display_name = display_name(row.action)
    return entry


async def list_by_loan(db: AsyncSession, loan_id) -> list[LoanHistory]:
    """Newest first. ``id`` breaks ties between rows written in the same instant."""
    stmt = (
        select(LoanHistory)
        .where(LoanHistory.loan_application_id == loan_id)
        .order_by(LoanHistory.created_at.desc(), LoanHistory.id.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def replay_status(rows: Iterable[LoanHistory]) -> str | None:
    """Fold oldest-first history rows into the status they lead to.

    Raises ``ValueError`` when a row does not start where the previous one ended.
    """
    status: str | None = None
    for row in rows:
        if row.from_status != status:
            raise ValueError(
                f"History gap before row {row.id}: expected from_status={status}, got {row.from_status}"
            )
        status = row.to_status
    return status


def _period_bounds(month: int | None, year: int | None) -> tuple[datetime, datetime] | None:
    if month is None and year is None:
        return None
    if year is None:
        year = datetime.now(timezone.utc).year
    if month is None:
        return (
            datetime(year, 1, 1, tzinfo=timezone.utc),
            datetime(year + 1, 1, 1, tzinfo=timezone.utc),
        )
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    last_day = monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year, month, last_day, tzinfo=timezone.utc)
    return start, end.replace(hour=23, minute=59, second=59, microsecond=999999)


async def list_actor_history(
    db: AsyncSession,
    actor_id,
    actions: Iterable[str],
    *,
    month: int | None = None,
    year: int | None = None,
    page: int = 0,
    size: int = 20,
) -> tuple[list[ActorHistoryItem], int]:
    action_values = sorted({str(action) for action in actions})
    if not action_values:
        return [], 0
    conditions = [
        LoanHistory.actor_user_id == actor_id,
        LoanHistory.action.in_(action_values),
    ]
    bounds = _period_bounds(month, year)
    if bounds:
        conditions.append(LoanHistory.created_at >= bounds[0])
        conditions.append(LoanHistory.created_at <= bounds[1])

    count_stmt = select(func.count()).select_from(LoanHistory).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one_or_none() or 0)

    stmt = (
        select(LoanHistory, LoanApplication, User.username, Product.name)
        .join(LoanApplication, LoanApplication.id == LoanHistory.loan_application_id)
        .join(User, User.id == LoanApplication.user_id)
        .join(Product, Product.id == LoanApplication.product_id)
        .where(*conditions)
        .order_by(LoanHistory.created_at.desc(), LoanHistory.id.desc())
        .offset(max(page, 0) * size)
        .limit(size)
    )
    result = await db.execute(stmt)
    items: list[ActorHistoryItem] = []
    for history, loan, username, product_name in result.all():
        items.append(
            ActorHistoryItem(
                **to_entry(history).model_dump(),
                applicant_username=username,
                product_name=product_name,
                amount=loan.amount,
                current_status=loan.current_status,
            )
        )
    return items, total


def milestones(loan: LoanApplication, rows: Sequence[LoanHistory]) -> list[Milestone]:
    """Progress markers for the applicant view; ``rows`` must be oldest first."""
    first_reached: dict[str, datetime | None] = {}
    for row in rows:
        first_reached.setdefault(row.to_status, row.created_at)

    result: list[Milestone] = []
    for key, label, status in MILESTONES:
        if status is LoanStatus.SUBMITTED:
            result.append(
                Milestone(
                    key=key,
                    label=label,
                    state=MilestoneState.COMPLETED,
                    reached_at=loan.created_at or first_reached.get(status.value),
                )
            )
            continue
        reached = status.value in first_reached
        if loan.current_status == status.value:
            state = MilestoneState.CURRENT
        elif reached:
            state = MilestoneState.COMPLETED
        else:
            state = MilestoneState.PENDING
        result.append(
            Milestone(key=key, label=label, state=state, reached_at=first_reached.get(status.value))
        )
    return result
