from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Mapping
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.context import bind_loan_id
from app.core.errors import (
    AppError,
    BusinessRuleViolation,
    ConcurrentModification,
    InvalidAction,
    InvalidTransition,
    NotFound,
)
from app.models.loan_application import LoanApplication
from app.models.loan_history import LoanHistory
from app.models.product import Product
from app.schemas.loan import LoanAction, LoanStatus, LoanSubmitRequest
from app.services.audit import record_audit_event
from app.services.loan_history import PAYMENT_COMPLETED, append_history

if TYPE_CHECKING:
    from app.services.notifications.dispatcher import LoanNotificationDispatcher

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

TRANSITIONS: Mapping[tuple[LoanStatus, LoanAction], LoanStatus] = MappingProxyType(
    {
        (LoanStatus.SUBMITTED, LoanAction.COMMENT): LoanStatus.IN_REVIEW,
        (LoanStatus.IN_REVIEW, LoanAction.COMMENT): LoanStatus.IN_REVIEW,
        (LoanStatus.IN_REVIEW, LoanAction.FORWARD_TO_MANAGER): LoanStatus.WAITING_APPROVAL,
        (LoanStatus.WAITING_APPROVAL, LoanAction.COMMENT): LoanStatus.WAITING_APPROVAL,
        (LoanStatus.WAITING_APPROVAL, LoanAction.APPROVE): LoanStatus.APPROVED_WAITING_DISBURSEMENT,
        (LoanStatus.WAITING_APPROVAL, LoanAction.REJECT): LoanStatus.REJECTED,
        (LoanStatus.APPROVED_WAITING_DISBURSEMENT, LoanAction.DISBURSE): LoanStatus.DISBURSED,
    }
)

TERMINAL_STATUSES = frozenset({LoanStatus.DISBURSED, LoanStatus.REJECTED, LoanStatus.PAID})


@dataclass(frozen=True)
class TransitionResult:
    loan: LoanApplication
    history: LoanHistory
    from_status: LoanStatus | None
    to_status: LoanStatus

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


def parse_action(value: str | LoanAction) -> LoanAction:
    if isinstance(value, LoanAction):
        return value
    try:
        return LoanAction(str(value).strip().upper())
    except ValueError:
        raise InvalidAction(
            f"Unknown action '{value}'",
            details={"action": str(value), "allowed": [action.value for action in LoanAction]},
        ) from None


def legal_actions(status: LoanStatus | str) -> frozenset[LoanAction]:
    current = LoanStatus(status)
    return frozenset(action for (source, action) in TRANSITIONS if source is current)


def next_status(status: LoanStatus | str, action: LoanAction) -> LoanStatus:
    current = LoanStatus(status)
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransition(
            f"Action {action.value} is not allowed when loan status is {current.value}",
            details={
                "current_status": current.value,
                "action": action.value,
                "allowed": sorted(a.value for a in legal_actions(current)),
            },
        )
    return target


def calculate_total_payable(
    principal: Decimal | int | str, annual_rate_percent: Decimal | int | str, tenure_months: int
) -> Decimal:
    """Total of ``tenure_months`` equal instalments on an amortizing loan."""
    amount = Decimal(str(principal))
    rate = Decimal(str(annual_rate_percent))
    if tenure_months <= 0 or rate == 0:
        return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    monthly = rate / Decimal(12) / Decimal(100)
    factor = (Decimal(1) + monthly) ** tenure_months
    emi = amount * monthly * factor / (factor - Decimal(1))
    return (emi * tenure_months).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


async def get_loan(db: AsyncSession, loan_id) -> LoanApplication:
    stmt = select(LoanApplication).where(LoanApplication.id == loan_id)
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFound.for_resource("loan_application", loan_id)
    return loan


async def _lock_loan(db: AsyncSession, loan_id) -> LoanApplication:
    bind_loan_id(loan_id)
    # populate_existing: a copy already in the identity map is overwritten
    # with the row as of the lock.
    stmt = (
        select(LoanApplication)
        .where(LoanApplication.id == loan_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFound.for_resource("loan_application", loan_id)
    return loan


async def _commit_transition(db: AsyncSession, loan: LoanApplication) -> None:
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrentModification(
            f"Loan {loan.id} was modified by another request; reload and retry",
            details={"loan_id": str(loan.id)},
        ) from exc
    await db.refresh(loan)


def _audit_transition(result: TransitionResult, actor_id, comment: str | None) -> None:
    record_audit_event(
        actor_id=actor_id,
        action="loan_application.transition",
        resource_type="loan_application",
        resource_id=result.loan.id,
        old_value={"current_status": result.from_status.value if result.from_status else None},
        new_value={"current_status": result.to_status.value},
        extra={"workflow_action": result.history.action, "has_comment": comment is not None},
    )


async def _notify(
    dispatcher: "LoanNotificationDispatcher | None", result: TransitionResult
) -> None:
    if dispatcher is None or result.from_status is None:
        return
    try:
        await dispatcher.dispatch(result.loan, result.from_status, result.to_status)
    except Exception:
        # The transition is already committed.
        logger.exception("Notification dispatch failed for loan %s", result.loan.id)


def _clean_comment(comment: str | None) -> str | None:
    if comment is None:
        return None
    value = comment.strip()
    return value or None


async def submit_loan(
    db: AsyncSession,
    actor_id,
    payload: LoanSubmitRequest,
) -> TransitionResult:
    product = await db.get(Product, payload.product_id)
    if product is None:
        raise NotFound.for_resource("product", payload.product_id)
    if not product.is_active:
        raise BusinessRuleViolation(
            f"Product {product.code} is not active",
            code="product_inactive",
            details={"product_id": str(product.id)},
        )
    if not product.min_amount <= payload.amount <= product.max_amount:
        raise BusinessRuleViolation(
            f"Amount must be between {product.min_amount} and {product.max_amount}",
            code="amount_out_of_range",
            details={
                "amount": str(payload.amount),
                "min_amount": str(product.min_amount),
                "max_amount": str(product.max_amount),
            },
        )
    if not product.min_tenure_months <= payload.tenure_months <= product.max_tenure_months:
        raise BusinessRuleViolation(
            f"Tenure must be between {product.min_tenure_months} and {product.max_tenure_months} months",
            code="tenure_out_of_range",
            details={
                "tenure_months": payload.tenure_months,
                "min_tenure_months": product.min_tenure_months,
                "max_tenure_months": product.max_tenure_months,
            },
        )

    active_stmt = (
        select(LoanApplication.id)
        .where(
            LoanApplication.user_id == actor_id,
            LoanApplication.current_status.not_in([status.value for status in TERMINAL_STATUSES]),
        )
        .limit(1)
    )
    active_loan_id = (await db.execute(active_stmt)).scalar_one_or_none()
    if active_loan_id is not None:
        raise BusinessRuleViolation(
            "You already have an active loan application",
            code="active_loan_exists",
            details={"loan_id": str(active_loan_id)},
        )

    rate = (
        payload.interest_rate_applied
        if payload.interest_rate_applied is not None
        else Decimal(str(product.interest_rate))
    )
    loan = LoanApplication(
        id=uuid4(),
        user_id=actor_id,
        product_id=product.id,
        amount=payload.amount,
        tenure_months=payload.tenure_months,
        interest_rate_applied=rate,
        total_amount_to_pay=calculate_total_payable(payload.amount, rate, payload.tenure_months),
        current_status=LoanStatus.SUBMITTED.value,
        is_paid=False,
    )
    db.add(loan)
    await db.flush()
    history = append_history(
        db,
        loan_id=loan.id,
        actor_id=actor_id,
        action=LoanAction.SUBMIT.value,
        from_status=None,
        to_status=LoanStatus.SUBMITTED.value,
    )
    await db.commit()
    await db.refresh(loan)

    result = TransitionResult(loan=loan, history=history, from_status=None, to_status=LoanStatus.SUBMITTED)
    _audit_transition(result, actor_id, None)
    logger.info("Loan %s submitted by %s", loan.id, actor_id)
    return result


async def perform_action(
    db: AsyncSession,
    loan_id,
    action: str | LoanAction,
    actor_id,
    comment: str | None = None,
    *,
    dispatcher: "LoanNotificationDispatcher | None" = None,
    authorize: Callable[[LoanApplication, LoanAction], None] | None = None,
) -> TransitionResult:
    """Apply one workflow action.

    The status update and the history row are committed together; a rejected
    action leaves no trace. ``authorize`` is called with the locked loan and
    may raise an ``AppError`` to refuse the action. Notifications run only
    after the commit and never raise.
    """
    comment = _clean_comment(comment)
    try:
        loan = await _lock_loan(db, loan_id)
        parsed = parse_action(action)
        if authorize is not None:
            authorize(loan, parsed)
        current = LoanStatus(loan.current_status)
        target = next_status(current, parsed)
        if target is not current:
            loan.current_status = target.value
        history = append_history(
            db,
            loan_id=loan.id,
            actor_id=actor_id,
            action=parsed.value,
            comment=comment,
            from_status=current.value,
            to_status=target.value,
        )
        await _commit_transition(db, loan)
    except AppError:
        await db.rollback()
        raise

    result = TransitionResult(loan=loan, history=history, from_status=current, to_status=target)
    _audit_transition(result, actor_id, comment)
    await _notify(dispatcher, result)
    return result


async def complete_payment(
    db: AsyncSession,
    loan_id,
    actor_id,
    comment: str | None = None,
    *,
    dispatcher: "LoanNotificationDispatcher | None" = None,
) -> TransitionResult:
    """Settle a disbursed loan. Triggered by the payment process, not a workflow action."""
    comment = _clean_comment(comment)
    try:
        loan = await _lock_loan(db, loan_id)
        current = LoanStatus(loan.current_status)
        if current is not LoanStatus.DISBURSED:
            raise InvalidTransition(
                f"Payment can only be completed for a DISBURSED loan; loan status is {current.value}",
                details={"current_status": current.value, "action": PAYMENT_COMPLETED},
            )
        loan.current_status = LoanStatus.PAID.value
        loan.is_paid = True
        loan.paid_at = datetime.now(timezone.utc)
        history = append_history(
            db,
            loan_id=loan.id,
            actor_id=actor_id,
            action=PAYMENT_COMPLETED,
            comment=comment,
            from_status=current.value,
            to_status=LoanStatus.PAID.value,
        )
        await _commit_transition(db, loan)
    except AppError:
        await db.rollback()
        raise

    result = TransitionResult(loan=loan, history=history, from_status=current, to_status=LoanStatus.PAID)
    _audit_transition(result, actor_id, comment)
    await _notify(dispatcher, result)
    return result
