from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.rbac import MenuOut, MyMenusResponse, RoleMenuOut, RoleOut
from app.services import menu_authz, rbac

router = APIRouter(
    prefix="/rbac",
    tags=["rbac"],
    dependencies=[Depends(deps.require_menu_access)],
)


@router.get("/menus", response_model=list[MenuOut], summary="Menu catalog")
async def list_menus(db: AsyncSession = Depends(get_db)) -> list[MenuOut]:
    return await rbac.list_menus(db)


@router.get("/roles", response_model=list[RoleOut], summary="Roles")
async def list_roles(db: AsyncSession = Depends(get_db)) -> list[RoleOut]:
    return [RoleOut.model_validate(role) for role in await rbac.list_roles(db)]


@router.get("/roles/{role_id}/menus", response_model=list[RoleMenuOut])
async def list_role_menus(
    role_id: UUID,
    include_revoked: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
) -> list[RoleMenuOut]:
    return await rbac.list_role_menus(db, role_id, include_revoked=include_revoked)


@router.put("/roles/{role_id}/menus/{menu_id}", response_model=RoleMenuOut, summary="Grant a menu")
async def grant_menu(
    role_id: UUID,
    menu_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> RoleMenuOut:
    return await rbac.grant_menu(db, role_id, menu_id, actor_id=actor.user_id)


@router.delete("/roles/{role_id}/menus/{menu_id}", response_model=RoleMenuOut, summary="Revoke a menu")
async def revoke_menu(
    role_id: UUID,
    menu_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> RoleMenuOut:
    return await rbac.revoke_menu(db, role_id, menu_id, actor_id=actor.user_id)


@router.get("/me/menus", response_model=MyMenusResponse, summary="Menus reachable by the current user")
async def my_menus(
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> MyMenusResponse:
    menus = await menu_authz.menu_codes_for_roles(db, actor.roles)
    return MyMenusResponse(roles=sorted(actor.roles), menus=menus)
