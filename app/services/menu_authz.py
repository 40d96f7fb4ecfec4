"""Path-based authorization driven by role -> menu -> URL-pattern grants.

A path claimed by at least one menu pattern is closed unless one of the
matching menus is granted to the actor. A path no menu claims is open to any
authenticated actor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable
from uuid import UUID

from pydantic import BaseModel, TypeAdapter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import RoleName, normalize_roles
from app.core.settings import settings
from app.models.menu import Menu
from app.models.role import Role
from app.models.role_menu import RoleMenu
from app.utils import path_matcher
from app.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)


class MenuPattern(BaseModel):
    id: UUID
    code: str
    url_pattern: str


_PATTERNS_ADAPTER = TypeAdapter(list[MenuPattern])


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str
    matched_menu_ids: frozenset[UUID] = field(default_factory=frozenset)


def _cache_key() -> str:
    return redis_key("menu", "patterns")


async def _get_cached_patterns() -> list[MenuPattern] | None:
    try:
        redis = get_redis_client()
        cached = await redis.get(_cache_key())
        if cached:
            return _PATTERNS_ADAPTER.validate_json(cached)
    except Exception:
        logger.warning("Menu pattern cache read failed; loading from database", exc_info=True)
    return None


async def _set_cached_patterns(patterns: list[MenuPattern]) -> None:
    try:
        redis = get_redis_client()
        await redis.setex(
            _cache_key(),
            settings.menu_cache_ttl_seconds,
            _PATTERNS_ADAPTER.dump_json(patterns),
        )
    except Exception:
        logger.warning("Menu pattern cache write failed", exc_info=True)


async def invalidate_menu_patterns() -> None:
    try:
        await get_redis_client().delete(_cache_key())
    except Exception:
        logger.warning("Could not invalidate cached menu patterns", exc_info=True)


async def load_menu_patterns(db: AsyncSession) -> list[MenuPattern]:
    """Menus that declare a non-empty URL pattern, from cache when available."""
    cached = await _get_cached_patterns()
    if cached is not None:
        return cached
    stmt = select(Menu.id, Menu.code, Menu.url_pattern).where(
        Menu.url_pattern.is_not(None), Menu.url_pattern != ""
    )
    result = await db.execute(stmt)
    patterns = [
        MenuPattern(id=menu_id, code=code, url_pattern=pattern.strip())
        for menu_id, code, pattern in result.all()
        if pattern and pattern.strip()
    ]
    await _set_cached_patterns(patterns)
    return patterns


async def allowed_menu_ids(db: AsyncSession, roles: Iterable[str]) -> set[UUID]:
    role_names = sorted(normalize_roles(roles))
    if not role_names:
        return set()
    stmt = (
        select(RoleMenu.menu_id)
        .join(Role, Role.id == RoleMenu.role_id)
        .where(Role.name.in_(role_names), RoleMenu.effective())
    )
    result = await db.execute(stmt)
    return {row[0] for row in result.all()}


async def authorize(
    db: AsyncSession,
    roles: Iterable[str] | None,
    request_paths: str | Iterable[str],
) -> AuthorizationDecision:
    """Decide whether an actor holding ``roles`` may call ``request_paths``.

    ``roles`` is ``None`` for an unauthenticated caller. Several paths may be
    given for one request (with and without the API prefix); a menu matches
    when its pattern matches any of them.
    """
    if roles is None:
        return AuthorizationDecision(False, "unauthenticated")
    role_names = normalize_roles(roles)
    if RoleName.ADMIN.value in role_names:
        return AuthorizationDecision(True, "admin")
    if not role_names:
        return AuthorizationDecision(False, "no_roles")

    paths = [request_paths] if isinstance(request_paths, str) else list(request_paths)
    patterns = await load_menu_patterns(db)
    matched = frozenset(
        menu.id for menu in patterns if path_matcher.match_any(menu.url_pattern, paths)
    )
    if not matched:
        logger.debug("No menu pattern claims %s; allowing authenticated caller", paths)
        return AuthorizationDecision(True, "unclaimed")

    granted = await allowed_menu_ids(db, role_names)
    if matched & granted:
        return AuthorizationDecision(True, "granted", matched)
    return AuthorizationDecision(False, "not_granted", matched)


async def has_menu(db: AsyncSession, roles: Iterable[str], menu_code: str) -> bool:
    role_names = sorted(normalize_roles(roles))
    if RoleName.ADMIN.value in role_names:
        return True
    if not role_names:
        return False
    stmt = (
        select(Menu.id)
        .join(RoleMenu, RoleMenu.menu_id == Menu.id)
        .join(Role, Role.id == RoleMenu.role_id)
        .where(Menu.code == menu_code, Role.name.in_(role_names), RoleMenu.effective())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def menu_codes_for_roles(db: AsyncSession, roles: Iterable[str]) -> list[str]:
    role_names = sorted(normalize_roles(roles))
    if RoleName.ADMIN.value in role_names:
        stmt = select(Menu.code).order_by(Menu.code)
    elif role_names:
        stmt = (
            select(Menu.code)
            .join(RoleMenu, RoleMenu.menu_id == Menu.id)
            .join(Role, Role.id == RoleMenu.role_id)
            .where(Role.name.in_(role_names), RoleMenu.effective())
            .distinct()
            .order_by(Menu.code)
        )
    else:
        return []
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]
