"""Which workflow actions a set of roles may request at a given loan status."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Forbidden, InvalidAction
from app.core.permissions import RoleName, normalize_roles
from app.models.loan_application import LoanApplication
from app.schemas.loan import LoanAction, LoanStatus
from app.services import loan_workflow
from app.services.loan_history import PAYMENT_COMPLETED

ROLE_STATUS_ACTIONS: Mapping[LoanStatus, Mapping[RoleName, frozenset[LoanAction]]] = MappingProxyType(
    {
        LoanStatus.SUBMITTED: MappingProxyType(
            {RoleName.MARKETING: frozenset({LoanAction.COMMENT})}
        ),
        LoanStatus.IN_REVIEW: MappingProxyType(
            {RoleName.MARKETING: frozenset({LoanAction.COMMENT, LoanAction.FORWARD_TO_MANAGER})}
        ),
        LoanStatus.WAITING_APPROVAL: MappingProxyType(
            {
                RoleName.BRANCH_MANAGER: frozenset(
                    {LoanAction.COMMENT, LoanAction.APPROVE, LoanAction.REJECT}
                )
            }
        ),
        LoanStatus.APPROVED_WAITING_DISBURSEMENT: MappingProxyType(
            {RoleName.BACK_OFFICE: frozenset({LoanAction.DISBURSE})}
        ),
    }
)

# Statuses each staff role works on next.
QUEUE_STATUSES: Mapping[RoleName, frozenset[LoanStatus]] = MappingProxyType(
    {
        role: frozenset(
            status for status, grants in ROLE_STATUS_ACTIONS.items() if role in grants
        )
        for role in (RoleName.MARKETING, RoleName.BRANCH_MANAGER, RoleName.BACK_OFFICE)
    }
)

QUEUE_SLUGS: Mapping[str, RoleName] = MappingProxyType(
    {
        "marketing": RoleName.MARKETING,
        "branch-manager": RoleName.BRANCH_MANAGER,
        "back-office": RoleName.BACK_OFFICE,
    }
)


def resolve_staff_role(value: str) -> RoleName:
    """Map a queue slug (``branch-manager``) to its role.

    Only the exact slugs resolve; they are the paths the menu patterns claim.
    """
    if value in QUEUE_SLUGS:
        return QUEUE_SLUGS[value]
    raise InvalidAction(
        f"Unknown staff role '{value}'",
        code="unknown_role",
        details={"role": value, "allowed": sorted(QUEUE_SLUGS)},
    )


def allowed_actions(current_status: LoanStatus | str, roles: Iterable[str]) -> frozenset[LoanAction]:
    """Actions the role set may request; always a subset of the legal actions for the status."""
    status = LoanStatus(current_status)
    role_names = normalize_roles(roles)
    grants = ROLE_STATUS_ACTIONS.get(status, {})
    if RoleName.ADMIN.value in role_names:
        granted = frozenset().union(*grants.values()) if grants else frozenset()
    else:
        granted = frozenset().union(
            *(actions for role, actions in grants.items() if role.value in role_names)
        )
    return granted & loan_workflow.legal_actions(status)


def role_actions(role: RoleName) -> frozenset[str]:
    """Every action a role can ever perform, plus the actions whose history it reports on."""
    actions: set[str] = set()
    for grants in ROLE_STATUS_ACTIONS.values():
        actions.update(action.value for action in grants.get(role, ()))
    if role is RoleName.BACK_OFFICE:
        actions.add(PAYMENT_COMPLETED)
    return frozenset(actions)


def sorted_actions(actions: Iterable[LoanAction]) -> list[LoanAction]:
    order = list(LoanAction)
    return sorted(actions, key=order.index)


async def authorize_loan_action(
    db: AsyncSession,
    loan_id,
    action: str,
    roles: Iterable[str],
) -> tuple[LoanApplication, LoanAction]:
    """Reject a request whose action the actor's roles are not entitled to at the loan's status.

    Runs before the workflow engine so a denied request has no side effects.
    The engine repeats the check on the locked row via ``ensure_action_permitted``.
    """
    loan = await loan_workflow.get_loan(db, loan_id)
    parsed = loan_workflow.parse_action(action)
    ensure_action_permitted(loan, parsed, roles)
    return loan, parsed


def ensure_action_permitted(
    loan: LoanApplication, action: LoanAction, roles: Iterable[str]
) -> None:
    permitted = allowed_actions(loan.current_status, roles)
    if action not in permitted:
        raise Forbidden(
            f"Your roles may not perform {action.value} on a loan in status {loan.current_status}",
            code="action_not_permitted",
            details={
                "loan_id": str(loan.id),
                "current_status": loan.current_status,
                "action": action.value,
                "allowed": [a.value for a in sorted_actions(permitted)],
            },
        )
