import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import bind_actor
from app.core.errors import Forbidden, Unauthorized
from app.core.permissions import MenuCode, RoleName, normalize_roles
from app.core.security import decode_token
from app.core.settings import settings
from app.db.session import get_db
from app.models import Role, User, UserRole
from app.services import menu_authz
from app.services.notifications.channels import PushNotificationChannel
from app.services.notifications.dispatcher import LoanNotificationDispatcher
from app.services.notifications.email import SmtpMailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: UUID
    username: str
    email: str
    roles: frozenset[str]

    def has_role(self, role: RoleName | str) -> bool:
        name = role.value if isinstance(role, RoleName) else str(role)
        return name in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(RoleName.ADMIN)

    @property
    def is_staff(self) -> bool:
        return self.is_admin or any(self.has_role(role) for role in RoleName.staff())


# Tokens are issued by the external identity service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_actor(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> Actor:
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise Unauthorized(str(exc)) from exc
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthorized("Invalid token subject") from None

    # One query for the user and every role name it holds.
    stmt = (
        select(User, Role.name)
        .outerjoin(UserRole, UserRole.user_id == User.id)
        .outerjoin(Role, Role.id == UserRole.role_id)
        .where(User.id == user_id)
    )
    result = await db.execute(stmt)
    rows = result.all()
    if not rows:
        raise Unauthorized("User not found")
    user = rows[0][0]
    if not user.is_active:
        raise Unauthorized("Inactive user")

    roles = normalize_roles(name for _, name in rows if name)
    bind_actor(str(user.id), roles)
    return Actor(user_id=user.id, username=user.username, email=user.email, roles=roles)


def request_paths(request: Request) -> list[str]:
    """The request path as routed and with the API prefix stripped."""
    path = request.url.path
    paths = [path]
    prefix = settings.api_prefix.rstrip("/")
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        paths.append(path[len(prefix):] or "/")
    return paths


async def require_menu_access(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db_session),
) -> Actor:
    decision = await menu_authz.authorize(db, actor.roles, request_paths(request))
    if not decision.allowed:
        logger.info(
            "Menu access denied for %s on %s (%s)", actor.username, request.url.path, decision.reason
        )
        raise Forbidden(
            f"Access denied to {request.method} {request.url.path}",
            code="menu_access_denied",
            details={"path": request.url.path, "reason": decision.reason},
        )
    return actor


def require_menu(menu_code: MenuCode | str):
    code = menu_code.value if isinstance(menu_code, MenuCode) else str(menu_code)

    async def dependency(
        actor: Actor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db_session),
    ) -> Actor:
        if not await menu_authz.has_menu(db, actor.roles, code):
            raise Forbidden(
                f"Missing menu: {code}",
                code="menu_access_denied",
                details={"menu": code},
            )
        return actor

    return dependency


async def get_notification_dispatcher(
    db: AsyncSession = Depends(get_db_session),
) -> LoanNotificationDispatcher:
    return LoanNotificationDispatcher(db, channels=[PushNotificationChannel(db)], mailer=SmtpMailer())
