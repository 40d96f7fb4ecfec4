from __future__ import annotations

from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.core.permissions import MenuCode, RoleName, menu_category
from app.models.menu import Menu
from app.models.role import Role
from app.models.role_menu import RoleMenu
from app.schemas.rbac import MenuOut, RoleMenuOut
from app.services.audit import record_audit_event

# code -> (display name, URL pattern relative to the API prefix or None)
MENU_DEFINITIONS: Mapping[MenuCode, tuple[str, str | None]] = MappingProxyType(
    {
        MenuCode.LOAN_SUBMIT: ("Submit Loan", "/loan-workflow/submit"),
        MenuCode.LOAN_ACTION: ("Loan Workflow Action", "/loan-workflow/action"),
        MenuCode.LOAN_ALLOWED_ACTIONS: ("Allowed Loan Actions", "/loan-workflow/*/allowed-actions"),
        MenuCode.LOAN_QUEUE_MARKETING: ("Marketing Queue", "/loan-workflow/queue/marketing"),
        MenuCode.LOAN_QUEUE_BRANCH_MANAGER: (
            "Branch Manager Queue",
            "/loan-workflow/queue/branch-manager",
        ),
        MenuCode.LOAN_QUEUE_BACK_OFFICE: ("Back Office Queue", "/loan-workflow/queue/back-office"),
        MenuCode.LOAN_PAYMENT_COMPLETE: ("Complete Loan Payment", None),
        MenuCode.LOAN_HISTORY_VIEW: ("Loan History", "/loan-workflow/*/history"),
        MenuCode.LOAN_MILESTONES_VIEW: ("Loan Milestones", "/loan-workflow/*/milestones"),
        MenuCode.LOAN_HISTORY_MARKETING: ("Marketing Action History", "/loan-workflow/history/marketing"),
        MenuCode.LOAN_HISTORY_BRANCH_MANAGER: (
            "Branch Manager Action History",
            "/loan-workflow/history/branch-manager",
        ),
        MenuCode.LOAN_HISTORY_BACK_OFFICE: (
            "Back Office Action History",
            "/loan-workflow/history/back-office",
        ),
        MenuCode.NOTIFICATION_VIEW: ("Notifications", "/notifications/**"),
        MenuCode.RBAC_MENU_VIEW: ("Menu Catalog", "/rbac/menus"),
        MenuCode.RBAC_ROLE_MANAGE: ("Role Menu Management", "/rbac/roles/**"),
    }
)

_READ_LOAN = (MenuCode.LOAN_HISTORY_VIEW, MenuCode.LOAN_MILESTONES_VIEW, MenuCode.NOTIFICATION_VIEW)

ROLE_DEFINITIONS: Mapping[RoleName, tuple[str, tuple[MenuCode, ...]]] = MappingProxyType(
    {
        RoleName.ADMIN: ("Full access to every menu", ()),
        RoleName.USER: ("Loan applicant", (MenuCode.LOAN_SUBMIT, *_READ_LOAN)),
        RoleName.MARKETING: (
            "Reviews new submissions",
            (
                MenuCode.LOAN_ACTION,
                MenuCode.LOAN_ALLOWED_ACTIONS,
                MenuCode.LOAN_QUEUE_MARKETING,
                MenuCode.LOAN_HISTORY_MARKETING,
                *_READ_LOAN,
            ),
        ),
        RoleName.BRANCH_MANAGER: (
            "Approves or rejects reviewed loans",
            (
                MenuCode.LOAN_ACTION,
                MenuCode.LOAN_ALLOWED_ACTIONS,
                MenuCode.LOAN_QUEUE_BRANCH_MANAGER,
                MenuCode.LOAN_HISTORY_BRANCH_MANAGER,
                *_READ_LOAN,
            ),
        ),
        RoleName.BACK_OFFICE: (
            "Disburses approved loans and settles payments",
            (
                MenuCode.LOAN_ACTION,
                MenuCode.LOAN_ALLOWED_ACTIONS,
                MenuCode.LOAN_QUEUE_BACK_OFFICE,
                MenuCode.LOAN_HISTORY_BACK_OFFICE,
                MenuCode.LOAN_PAYMENT_COMPLETE,
                *_READ_LOAN,
            ),
        ),
    }
)


def to_menu_out(menu: Menu) -> MenuOut:
    return MenuOut(
        id=menu.id,
        code=menu.code,
        name=menu.name,
        url_pattern=menu.url_pattern or None,
        category=menu_category(menu.code),
    )


def to_role_menu_out(row: RoleMenu, menu_code: str | None = None) -> RoleMenuOut:
    return RoleMenuOut(
        role_id=row.role_id,
        menu_id=row.menu_id,
        menu_code=menu_code,
        granted_at=row.granted_at,
        revoked_at=row.revoked_at,
        is_effective=row.is_effective,
    )


async def list_menus(db: AsyncSession) -> list[MenuOut]:
    result = await db.execute(select(Menu).order_by(Menu.code))
    return [to_menu_out(menu) for menu in result.scalars().all()]


async def list_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(select(Role).order_by(Role.name))
    return list(result.scalars().all())


async def _get_role(db: AsyncSession, role_id) -> Role:
    role = await db.get(Role, role_id)
    if role is None:
        raise NotFound.for_resource("role", role_id)
    return role


async def _get_menu(db: AsyncSession, menu_id) -> Menu:
    menu = await db.get(Menu, menu_id)
    if menu is None:
        raise NotFound.for_resource("menu", menu_id)
    return menu


async def list_role_menus(
    db: AsyncSession, role_id, *, include_revoked: bool = False
) -> list[RoleMenuOut]:
    await _get_role(db, role_id)
    conditions = [RoleMenu.role_id == role_id]
    if not include_revoked:
        conditions.append(RoleMenu.effective())
    stmt = (
        select(RoleMenu, Menu.code)
        .join(Menu, Menu.id == RoleMenu.menu_id)
        .where(*conditions)
        .order_by(Menu.code)
    )
    result = await db.execute(stmt)
    return [to_role_menu_out(row, code) for row, code in result.all()]


async def grant_menu(db: AsyncSession, role_id, menu_id, *, actor_id=None) -> RoleMenuOut:
    """Grant a menu to a role; a previously revoked grant is reinstated in place."""
    role = await _get_role(db, role_id)
    menu = await _get_menu(db, menu_id)
    row = await db.get(RoleMenu, (role.id, menu.id))
    now = datetime.now(timezone.utc)
    if row is None:
        row = RoleMenu(role_id=role.id, menu_id=menu.id, granted_at=now, revoked_at=None)
        db.add(row)
    elif row.revoked_at is not None:
        row.revoked_at = None
        row.granted_at = now
    else:
        return to_role_menu_out(row, menu.code)
    await db.commit()
    record_audit_event(
        actor_id=actor_id,
        action="role_menu.granted",
        resource_type="role_menu",
        resource_id=f"{role.name}:{menu.code}",
    )
    return to_role_menu_out(row, menu.code)


async def revoke_menu(db: AsyncSession, role_id, menu_id, *, actor_id=None) -> RoleMenuOut:
    """Soft revoke: the row stays as a record of the former grant."""
    role = await _get_role(db, role_id)
    menu = await _get_menu(db, menu_id)
    row = await db.get(RoleMenu, (role.id, menu.id))
    if row is None:
        raise NotFound(
            f"Role {role.name} has no grant for menu {menu.code}",
            details={"role_id": str(role.id), "menu_id": str(menu.id)},
        )
    if row.revoked_at is None:
        row.revoked_at = datetime.now(timezone.utc)
        await db.commit()
        record_audit_event(
            actor_id=actor_id,
            action="role_menu.revoked",
            resource_type="role_menu",
            resource_id=f"{role.name}:{menu.code}",
        )
    return to_role_menu_out(row, menu.code)
