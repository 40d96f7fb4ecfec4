from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.core.errors import NotFound
from app.core.permissions import MenuCode, RoleName, menu_category
from app.db.init_db import seed_rbac
from app.models.menu import Menu
from app.models.role import Role
from app.models.role_menu import RoleMenu
from app.models.user import User
from app.models.user_role import UserRole
from app.services import menu_authz, rbac
from app.utils.path_matcher import match
from conftest import FakeAsyncSession, FakeResult, entity_handler, make_actor

BASE = "/api/v1/rbac"


def _role(name="MARKETING") -> Role:
    return Role(id=uuid4(), name=name, description=None)


def _menu(code="LOAN_QUEUE_MARKETING", pattern="/loan-workflow/queue/marketing") -> Menu:
    return Menu(id=uuid4(), code=code, name=code.title(), url_pattern=pattern)


def _session(role, menu, grant=None) -> FakeAsyncSession:
    db = FakeAsyncSession().on_get(Role, role.id, role).on_get(Menu, menu.id, menu)
    if grant is not None:
        db.on_get(RoleMenu, (role.id, menu.id), grant)
    return db


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_every_menu_code_is_defined():
    assert set(rbac.MENU_DEFINITIONS) == set(MenuCode)


def test_every_role_is_defined():
    assert set(rbac.ROLE_DEFINITIONS) == set(RoleName)


def test_staff_queues_are_only_granted_to_their_role():
    for role, (_, codes) in rbac.ROLE_DEFINITIONS.items():
        queue_codes = {code for code in codes if code.value.startswith("LOAN_QUEUE_")}
        expected = set() if role not in RoleName.staff() else {MenuCode(f"LOAN_QUEUE_{role.value}")}
        assert queue_codes == expected


def test_menu_patterns_claim_their_routes():
    patterns = {code: pattern for code, (_, pattern) in rbac.MENU_DEFINITIONS.items()}
    assert match(patterns[MenuCode.LOAN_HISTORY_VIEW], f"/loan-workflow/{uuid4()}/history")
    assert not match(patterns[MenuCode.LOAN_HISTORY_VIEW], "/loan-workflow/history/marketing")
    assert match(patterns[MenuCode.NOTIFICATION_VIEW], "/notifications/unread-count")
    assert match(patterns[MenuCode.RBAC_ROLE_MANAGE], f"/rbac/roles/{uuid4()}/menus")


@pytest.mark.parametrize(
    "code, category",
    [
        ("LOAN_SUBMIT", "Loan Workflow"),
        ("LOAN_HISTORY_MARKETING", "Loan History"),
        ("LOAN_MILESTONES_VIEW", "Loan History"),
        ("NOTIFICATION_VIEW", "Notification"),
        ("RBAC_MENU_VIEW", "RBAC Management"),
        ("REPORT_EXPORT", "Other"),
    ],
)
def test_menu_category(code, category):
    assert menu_category(code) == category


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_grant_creates_row(fake_redis):
    role, menu = _role(), _menu()
    db = _session(role, menu)

    out = await rbac.grant_menu(db, role.id, menu.id, actor_id=uuid4())

    (row,) = db.added_of(RoleMenu)
    assert (row.role_id, row.menu_id) == (role.id, menu.id)
    assert out.is_effective
    assert out.menu_code == "LOAN_QUEUE_MARKETING"
    assert db.committed


@pytest.mark.asyncio
async def test_grant_reinstates_revoked_row():
    role, menu = _role(), _menu()
    grant = RoleMenu(
        role_id=role.id,
        menu_id=menu.id,
        granted_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        revoked_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
    )
    db = _session(role, menu, grant)

    out = await rbac.grant_menu(db, role.id, menu.id)

    assert grant.revoked_at is None
    assert out.is_effective
    assert db.added == []


@pytest.mark.asyncio
async def test_grant_is_idempotent():
    role, menu = _role(), _menu()
    grant = RoleMenu(role_id=role.id, menu_id=menu.id, granted_at=datetime.now(timezone.utc))
    db = _session(role, menu, grant)

    out = await rbac.grant_menu(db, role.id, menu.id)

    assert out.is_effective
    assert not db.committed


@pytest.mark.asyncio
async def test_revoke_is_soft():
    role, menu = _role(), _menu()
    grant = RoleMenu(role_id=role.id, menu_id=menu.id, granted_at=datetime.now(timezone.utc))
    db = _session(role, menu, grant)

    out = await rbac.revoke_menu(db, role.id, menu.id)

    assert grant.revoked_at is not None
    assert not out.is_effective
    assert db.deleted == []


@pytest.mark.asyncio
async def test_revoke_without_grant_is_not_found():
    role, menu = _role(), _menu()
    with pytest.raises(NotFound):
        await rbac.revoke_menu(_session(role, menu), role.id, menu.id)


@pytest.mark.asyncio
async def test_grant_unknown_role_is_not_found():
    with pytest.raises(NotFound) as exc_info:
        await rbac.grant_menu(FakeAsyncSession(), uuid4(), uuid4())
    assert exc_info.value.details["resource"] == "role"


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_seed_creates_catalog_and_admin(fake_redis):
    fake_redis.store[menu_authz._cache_key()] = b"[]"
    db = FakeAsyncSession()

    await seed_rbac(db)

    assert {role.name for role in db.added_of(Role)} == {role.value for role in RoleName}
    assert {menu.code for menu in db.added_of(Menu)} == {code.value for code in MenuCode}
    expected_grants = sum(len(codes) for _, codes in rbac.ROLE_DEFINITIONS.values())
    assert len(db.added_of(RoleMenu)) == expected_grants
    (admin,) = db.added_of(User)
    (link,) = db.added_of(UserRole)
    assert link.user_id == admin.id
    assert db.committed
    # The cached pattern catalog is dropped after seeding.
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_seed_keeps_revoked_grants_revoked():
    marketing = _role("MARKETING")
    queue = Menu(
        id=uuid4(), code="LOAN_QUEUE_MARKETING", name="Old", url_pattern="/old"
    )
    revoked = RoleMenu(
        role_id=marketing.id,
        menu_id=queue.id,
        revoked_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
    )
    admin = User(id=uuid4(), username="admin", email="admin@loans.local", is_active=True)
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Role, FakeResult(items=[marketing])))
    db.on_execute(entity_handler(Menu, FakeResult(items=[queue])))
    db.on_execute(entity_handler(RoleMenu, FakeResult(items=[revoked])))
    db.on_execute(entity_handler(User, FakeResult(scalar=admin)))

    await seed_rbac(db)

    assert revoked.revoked_at is not None
    assert not any(
        row.role_id == marketing.id and row.menu_id == queue.id for row in db.added_of(RoleMenu)
    )
    assert queue.url_pattern == "/loan-workflow/queue/marketing"
    assert "MARKETING" not in {role.name for role in db.added_of(Role)}
    assert db.added_of(User) == []


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def test_my_menus(client, fake_db, allow_menu_access):
    fake_db.on_execute(
        entity_handler(Menu, FakeResult(rows=[("LOAN_ACTION",), ("LOAN_QUEUE_MARKETING",)]))
    )

    resp = client.get(f"{BASE}/me/menus")

    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "roles": ["MARKETING"],
        "menus": ["LOAN_ACTION", "LOAN_QUEUE_MARKETING"],
    }


def test_list_menus_includes_category(client, fake_db, allow_menu_access):
    fake_db.on_execute(entity_handler(Menu, FakeResult(items=[_menu()])))

    resp = client.get(f"{BASE}/menus")

    assert resp.status_code == 200
    (item,) = resp.json()["data"]
    assert item["category"] == "Loan Workflow"


def test_grant_over_http(client, fake_db, allow_menu_access):
    role, menu = _role(), _menu()
    fake_db.on_get(Role, role.id, role).on_get(Menu, menu.id, menu)

    resp = client.put(f"{BASE}/roles/{role.id}/menus/{menu.id}")

    assert resp.status_code == 200
    assert resp.json()["data"]["is_effective"] is True


def test_role_management_denied_without_grant(client, fake_db):
    role, menu = _role(), _menu()
    fake_db.on_execute(
        entity_handler(Menu, FakeResult(rows=[(uuid4(), "RBAC_ROLE_MANAGE", "/rbac/roles/**")]))
    )

    resp = client.put(f"{BASE}/roles/{role.id}/menus/{menu.id}")

    assert resp.status_code == 403
    assert resp.json()["code"] == "menu_access_denied"
    assert fake_db.added == []


def test_admin_manages_roles_without_grants(client, fake_db):
    from app.api import deps
    from app.main import app

    async def _admin():
        return make_actor("ADMIN")

    app.dependency_overrides[deps.get_current_actor] = _admin
    role, menu = _role(), _menu()
    fake_db.on_get(Role, role.id, role).on_get(Menu, menu.id, menu)

    resp = client.delete(f"{BASE}/roles/{role.id}/menus/{menu.id}")

    # ADMIN passes the guard; the missing grant is then reported.
    assert resp.status_code == 404
