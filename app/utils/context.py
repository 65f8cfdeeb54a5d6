from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional

# Correlates log lines of one HTTP request or one scheduler tick
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_context.get()


def set_request_id(request_id: str) -> Token:
    return request_id_context.set(request_id)


def reset_request_id(token: Token) -> None:
    request_id_context.reset(token)


@contextmanager
def request_id_scope(request_id: str) -> Iterator[str]:
    """Bind a request id for the duration of a block, restoring the previous one after."""
    token = set_request_id(request_id)
    try:
        yield request_id
    finally:
        reset_request_id(token)
