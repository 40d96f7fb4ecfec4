from enum import Enum
from types import MappingProxyType
from typing import Iterable


class RoleName(str, Enum):
    ADMIN = "ADMIN"
    MARKETING = "MARKETING"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    BACK_OFFICE = "BACK_OFFICE"
    USER = "USER"

    @classmethod
    def staff(cls) -> frozenset["RoleName"]:
        return frozenset({cls.MARKETING, cls.BRANCH_MANAGER, cls.BACK_OFFICE})


class MenuCode(str, Enum):
    # Loan workflow
    LOAN_SUBMIT = "LOAN_SUBMIT"
    LOAN_ACTION = "LOAN_ACTION"
    LOAN_ALLOWED_ACTIONS = "LOAN_ALLOWED_ACTIONS"
    LOAN_QUEUE_MARKETING = "LOAN_QUEUE_MARKETING"
    LOAN_QUEUE_BRANCH_MANAGER = "LOAN_QUEUE_BRANCH_MANAGER"
    LOAN_QUEUE_BACK_OFFICE = "LOAN_QUEUE_BACK_OFFICE"
    LOAN_PAYMENT_COMPLETE = "LOAN_PAYMENT_COMPLETE"

    # Loan history
    LOAN_HISTORY_VIEW = "LOAN_HISTORY_VIEW"
    LOAN_MILESTONES_VIEW = "LOAN_MILESTONES_VIEW"
    LOAN_HISTORY_MARKETING = "LOAN_HISTORY_MARKETING"
    LOAN_HISTORY_BRANCH_MANAGER = "LOAN_HISTORY_BRANCH_MANAGER"
    LOAN_HISTORY_BACK_OFFICE = "LOAN_HISTORY_BACK_OFFICE"

    # Notifications
    NOTIFICATION_VIEW = "NOTIFICATION_VIEW"

    # RBAC management
    RBAC_MENU_VIEW = "RBAC_MENU_VIEW"
    RBAC_ROLE_MANAGE = "RBAC_ROLE_MANAGE"


def normalize_roles(values: Iterable[str] | None) -> frozenset[str]:
    """Upper-case role names and drop the ``ROLE_`` prefix some token issuers add."""
    roles: set[str] = set()
    for value in values or ():
        name = str(value).strip().upper()
        if name.startswith("ROLE_"):
            name = name[len("ROLE_"):]
        if name:
            roles.add(name)
    return frozenset(roles)


MENU_CATEGORIES = MappingProxyType(
    {
        "LOAN_HISTORY": "Loan History",
        "LOAN_MILESTONES": "Loan History",
        "LOAN": "Loan Workflow",
        "NOTIFICATION": "Notification",
        "RBAC": "RBAC Management",
    }
)


def menu_category(code: str) -> str:
    # Longest prefix wins so LOAN_HISTORY_* is not filed under LOAN.
    for prefix in sorted(MENU_CATEGORIES, key=len, reverse=True):
        if code == prefix or code.startswith(prefix + "_"):
            return MENU_CATEGORIES[prefix]
    return "Other"
