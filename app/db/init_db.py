import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.permissions import RoleName
from app.core.settings import settings
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine
from app.models import Menu, Role, RoleMenu, User, UserRole
from app.services.menu_authz import invalidate_menu_patterns
from app.services.rbac import MENU_DEFINITIONS, ROLE_DEFINITIONS

logger = logging.getLogger(__name__)


async def create_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_rbac(session: AsyncSession) -> None:
    """Idempotently create roles, the menu catalog, default grants and the admin user.

    Grants an administrator revoked are left revoked.
    """
    roles = {role.name: role for role in (await session.execute(select(Role))).scalars().all()}
    for name, (description, _) in ROLE_DEFINITIONS.items():
        if name.value not in roles:
            role = Role(name=name.value, description=description)
            session.add(role)
            roles[name.value] = role

    menus = {menu.code: menu for menu in (await session.execute(select(Menu))).scalars().all()}
    for code, (title, pattern) in MENU_DEFINITIONS.items():
        menu = menus.get(code.value)
        if menu is None:
            menu = Menu(code=code.value, name=title, url_pattern=pattern)
            session.add(menu)
            menus[code.value] = menu
        else:
            menu.name = title
            menu.url_pattern = pattern
    await session.flush()

    existing = {
        (row.role_id, row.menu_id)
        for row in (await session.execute(select(RoleMenu))).scalars().all()
    }
    for name, (_, menu_codes) in ROLE_DEFINITIONS.items():
        role = roles[name.value]
        for code in menu_codes:
            menu = menus[code.value]
            if (role.id, menu.id) not in existing:
                session.add(RoleMenu(role_id=role.id, menu_id=menu.id))
                existing.add((role.id, menu.id))

    stmt = select(User).where(User.username == settings.seed_admin_username)
    admin = (await session.execute(stmt)).scalar_one_or_none()
    if admin is None:
        logger.info("Creating admin user %s", settings.seed_admin_username)
        admin = User(
            username=settings.seed_admin_username,
            email=settings.seed_admin_email,
            full_name="Administrator",
            is_active=True,
        )
        session.add(admin)
        await session.flush()
        session.add(UserRole(user_id=admin.id, role_id=roles[RoleName.ADMIN.value].id))

    await session.commit()
    await invalidate_menu_patterns()


async def init_db() -> None:
    if not settings.seed_rbac_on_startup:
        logger.info("RBAC seeding disabled")
        return
    await create_schema()
    async with AsyncSessionLocal() as session:
        logger.info("Seeding roles and menus...")
        await seed_rbac(session)


if __name__ == "__main__":
    asyncio.run(init_db())
