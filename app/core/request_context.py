from __future__ import annotations

from contextvars import ContextVar, Token

_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
# Sync session driving the current import/sync run, if any.
_sync_session_id_ctx: ContextVar[str | None] = ContextVar("sync_session_id", default=None)


def set_request_id(request_id: str) -> Token[str]:
    return _request_id_ctx.set(request_id)


def get_request_id() -> str:
    return _request_id_ctx.get()


def reset_request_id(token: Token[str]) -> None:
    _request_id_ctx.reset(token)


def bind_sync_session(session_id: str | None) -> Token[str | None]:
    return _sync_session_id_ctx.set(session_id)


def get_sync_session_id() -> str | None:
    return _sync_session_id_ctx.get()


def unbind_sync_session(token: Token[str | None]) -> None:
    _sync_session_id_ctx.reset(token)
