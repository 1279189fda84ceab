from __future__ import annotations

from contextvars import ContextVar

user_id_ctx: ContextVar[str | None] = ContextVar("user_id", default=None)
org_id_ctx: ContextVar[str | None] = ContextVar("org_id", default=None)


def set_request_context(user_id: str | None, org_id: str | None) -> None:
    user_id_ctx.set(user_id)
    org_id_ctx.set(org_id)


def get_user_id() -> str | None:
    return user_id_ctx.get()


def get_org_id() -> str | None:
    return org_id_ctx.get()
