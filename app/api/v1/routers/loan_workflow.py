from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import Forbidden, NotFound
from app.core.permissions import MenuCode, RoleName
from app.db.session import get_db
from app.models.loan_application import LoanApplication
from app.schemas.history import (
    ActorHistoryResponse,
    LoanHistoryListResponse,
    LoanMilestonesResponse,
)
from app.schemas.loan import (
    AllowedActionsResponse,
    LoanActionRequest,
    LoanApplicationResponse,
    LoanPaymentCompletedRequest,
    LoanQueueResponse,
    LoanSubmitRequest,
)
from app.services import loan_actions, loan_history, loan_queue, loan_workflow
from app.services.notifications.dispatcher import LoanNotificationDispatcher

router = APIRouter(
    prefix="/loan-workflow",
    tags=["loan-workflow"],
    dependencies=[Depends(deps.require_menu_access)],
)


def _ensure_can_view(loan: LoanApplication, actor: deps.Actor) -> None:
    # Applicants only see their own loans; a foreign loan looks missing.
    if not actor.is_staff and loan.user_id != actor.user_id:
        raise NotFound.for_resource("loan_application", loan.id)


def _ensure_holds_role(actor: deps.Actor, role: RoleName) -> None:
    if not (actor.is_admin or actor.has_role(role)):
        raise Forbidden(
            f"Role {role.value} is required",
            details={"required_role": role.value},
        )


@router.post(
    "/submit",
    response_model=LoanApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a new loan application",
)
async def submit_loan(
    payload: LoanSubmitRequest,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationResponse:
    result = await loan_workflow.submit_loan(db, actor.user_id, payload)
    return LoanApplicationResponse.model_validate(result.loan)


@router.post(
    "/action",
    response_model=LoanApplicationResponse,
    summary="Perform a workflow action on a loan",
)
async def perform_action(
    payload: LoanActionRequest,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
    dispatcher: LoanNotificationDispatcher = Depends(deps.get_notification_dispatcher),
) -> LoanApplicationResponse:
    _, action = await loan_actions.authorize_loan_action(
        db, payload.loan_id, payload.action, actor.roles
    )
    result = await loan_workflow.perform_action(
        db,
        payload.loan_id,
        action,
        actor.user_id,
        payload.comment,
        dispatcher=dispatcher,
        authorize=lambda loan, locked_action: loan_actions.ensure_action_permitted(
            loan, locked_action, actor.roles
        ),
    )
    return LoanApplicationResponse.model_validate(result.loan)


@router.get(
    "/queue/{role}",
    response_model=LoanQueueResponse,
    summary="Loans waiting on a staff role",
)
async def get_queue(
    role: str,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=200),
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanQueueResponse:
    staff_role = loan_actions.resolve_staff_role(role)
    _ensure_holds_role(actor, staff_role)
    items, total = await loan_queue.list_queue(
        db, staff_role, actor.roles, limit=size, offset=page * size
    )
    return LoanQueueResponse(items=items, total=total, page=page, size=size)


@router.get(
    "/history/{role}",
    response_model=ActorHistoryResponse,
    summary="Actions the current user performed in a staff role",
)
async def get_actor_history(
    role: str,
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=9999),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=200),
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> ActorHistoryResponse:
    staff_role = loan_actions.resolve_staff_role(role)
    _ensure_holds_role(actor, staff_role)
    items, total = await loan_history.list_actor_history(
        db,
        actor.user_id,
        loan_actions.role_actions(staff_role),
        month=month,
        year=year,
        page=page,
        size=size,
    )
    return ActorHistoryResponse(items=items, total=total, page=page, size=size)


@router.get(
    "/{loan_id}/allowed-actions",
    response_model=AllowedActionsResponse,
    summary="Actions the current user may perform on a loan",
)
async def get_allowed_actions(
    loan_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> AllowedActionsResponse:
    loan = await loan_workflow.get_loan(db, loan_id)
    actions = loan_actions.allowed_actions(loan.current_status, actor.roles)
    return AllowedActionsResponse(
        loan_id=loan.id,
        current_status=loan.current_status,
        allowed_actions=loan_actions.sorted_actions(actions),
    )


@router.post(
    "/{loan_id}/payment-completed",
    response_model=LoanApplicationResponse,
    summary="Mark a disbursed loan as fully paid",
)
async def payment_completed(
    loan_id: UUID,
    payload: LoanPaymentCompletedRequest | None = None,
    actor: deps.Actor = Depends(deps.require_menu(MenuCode.LOAN_PAYMENT_COMPLETE)),
    db: AsyncSession = Depends(get_db),
    dispatcher: LoanNotificationDispatcher = Depends(deps.get_notification_dispatcher),
) -> LoanApplicationResponse:
    result = await loan_workflow.complete_payment(
        db,
        loan_id,
        actor.user_id,
        payload.comment if payload else None,
        dispatcher=dispatcher,
    )
    return LoanApplicationResponse.model_validate(result.loan)


@router.get(
    "/{loan_id}/history",
    response_model=LoanHistoryListResponse,
    summary="Audit trail of a loan, newest first",
)
async def get_loan_history(
    loan_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanHistoryListResponse:
    loan = await loan_workflow.get_loan(db, loan_id)
    _ensure_can_view(loan, actor)
    rows = await loan_history.list_by_loan(db, loan.id)
    return LoanHistoryListResponse(
        loan_id=loan.id,
        items=[loan_history.to_entry(row) for row in rows],
        total=len(rows),
    )


@router.get(
    "/{loan_id}/milestones",
    response_model=LoanMilestonesResponse,
    summary="Progress milestones of a loan",
)
async def get_loan_milestones(
    loan_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> LoanMilestonesResponse:
    loan = await loan_workflow.get_loan(db, loan_id)
    _ensure_can_view(loan, actor)
    rows = await loan_history.list_by_loan(db, loan.id)
    return LoanMilestonesResponse(
        loan_id=loan.id,
        current_status=loan.current_status,
        milestones=loan_history.milestones(loan, list(reversed(rows))),
    )
