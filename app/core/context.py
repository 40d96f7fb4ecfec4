import contextvars
from collections.abc import Iterable

UNBOUND = "-"

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default=UNBOUND)
_actor_id: contextvars.ContextVar[str] = contextvars.ContextVar("actor_id", default=UNBOUND)
_actor_roles: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar("actor_roles", default=())
_loan_id: contextvars.ContextVar[str] = contextvars.ContextVar("loan_id", default=UNBOUND)


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


def bind_actor(actor_id: str, roles: Iterable[str] = ()) -> None:
    """Record who is calling; set once the bearer token has been resolved."""
    _actor_id.set(actor_id)
    _actor_roles.set(tuple(sorted(roles)))


def get_actor_id() -> str:
    return _actor_id.get()


def get_actor_roles() -> tuple[str, ...]:
    return _actor_roles.get()


def bind_loan_id(loan_id) -> None:
    _loan_id.set(str(loan_id))


def get_loan_id() -> str:
    return _loan_id.get()


def snapshot() -> dict[str, str]:
    return {
        "request_id": _request_id.get(),
        "actor_id": _actor_id.get(),
        "actor_roles": ",".join(_actor_roles.get()) or UNBOUND,
        "loan_id": _loan_id.get(),
    }


def clear_context() -> None:
    _request_id.set(UNBOUND)
    _actor_id.set(UNBOUND)
    _actor_roles.set(())
    _loan_id.set(UNBOUND)
