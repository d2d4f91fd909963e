"""
Main context hand-off.

The event loop that owns the store is its main context. Purchase queue
callbacks may arrive on another thread; anything touching store state or
host-facing callbacks is handed to the main context first.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol


class Dispatcher(Protocol):
    """Runs callbacks on the main context."""

    def dispatch(self, callback: Callable[[], None]) -> None:
        """Schedule a callback on the main context."""
        ...


class MainThreadDispatcher:
    """Schedules callbacks on an asyncio event loop from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    @classmethod
    def for_running_loop(cls) -> "MainThreadDispatcher":
        """Build a dispatcher for the loop running in the current thread."""
        return cls(asyncio.get_running_loop())

    def dispatch(self, callback: Callable[[], None]) -> None:
        """Schedule a callback on the loop."""
        self.loop.call_soon_threadsafe(callback)


class ImmediateDispatcher:
    """Runs callbacks inline. For callers already on the main context."""

    def dispatch(self, callback: Callable[[], None]) -> None:
        """Run the callback now."""
        callback()
