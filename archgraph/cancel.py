"""Cooperative cancellation shared by every async boundary of a run."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class RunCancelled(Exception):
    """Raised when a run is stopped through its CancelToken."""


class CancelToken:
    """A one-shot cancellation flag that async operations can wait on."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunCancelled(self.reason or "cancelled")

    def _get_event(self) -> asyncio.Event:
        # Created lazily so the token can be built outside a running loop.
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await aw, aborting it as soon as the token fires."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, Exception):
            pass
        raise RunCancelled(self.reason or "cancelled")


def check(token: Optional[CancelToken]) -> None:
    """Raise RunCancelled if token is set and has fired."""
    if token is not None:
        token.raise_if_cancelled()
