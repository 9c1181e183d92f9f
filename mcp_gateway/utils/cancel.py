"""Cooperative cancellation for blocking work run in worker threads.

Gateway operations are synchronous ``requests`` code executed through
``asyncio.to_thread``. Cancelling the awaiting task does not stop the thread,
so ``run_cancellable`` marks a ``CancelScope`` instead, and every outbound
call site calls ``checkpoint()`` first. Once the caller has gone away, no
further request leaves the gateway on its behalf.

The scope travels in a context variable: ``asyncio.to_thread`` copies the
current context into the worker, so nothing has to be passed down by hand.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, TypeVar

from mcp_gateway.utils.errors import OperationCancelledError

T = TypeVar("T")


class CancelScope:
    """A one-way cancellation flag shared between the event loop and a worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


current_scope: ContextVar[CancelScope | None] = ContextVar("cancel_scope", default=None)


def checkpoint() -> None:
    """Raise if the operation running in this context has been cancelled.

    Outside ``run_cancellable`` this is a no-op.

    Raises:
        OperationCancelledError: If the enclosing scope was cancelled.
    """
    scope = current_scope.get()
    if scope is not None and scope.cancelled:
        raise OperationCancelledError("Operation cancelled by caller")


async def run_cancellable(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run ``func`` in a worker thread under a fresh ``CancelScope``.

    If the awaiting task is cancelled, the scope is cancelled too and the
    ``CancelledError`` propagates. The worker stops at its next checkpoint.
    """
    scope = CancelScope()
    token = current_scope.set(scope)
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except asyncio.CancelledError:
        scope.cancel()
        raise
    finally:
        current_scope.reset(token)


__all__ = [
    "CancelScope",
    "checkpoint",
    "current_scope",
    "run_cancellable",
]
