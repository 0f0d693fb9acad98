from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


_WRITE_INTENT: ContextVar[bool] = ContextVar("rental_write_intent", default=False)


def wants_write_lock() -> bool:
    return _WRITE_INTENT.get()


@contextmanager
def write_intent() -> Iterator[None]:
    """Mark transactions begun inside the block as write transactions."""
    token = _WRITE_INTENT.set(True)
    try:
        yield
    finally:
        _WRITE_INTENT.reset(token)
