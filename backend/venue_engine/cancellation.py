from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one search or enrichment run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("operation cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    awaitable: Awaitable[T], token: CancellationToken | None
) -> T:
    """Await ``awaitable``, aborting it and raising ``Cancelled`` if ``token`` fires first."""
    if token is None:
        return await awaitable
    token.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    unregister = token.on_cancel(task.cancel)
    try:
        return await task
    except asyncio.CancelledError:
        if token.cancelled:
            raise Cancelled("operation cancelled") from None
        raise
    finally:
        unregister()


__all__ = ["CancellationToken", "run_cancellable"]
