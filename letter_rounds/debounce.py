"""Per-key trailing debounce for free-text edits (round notes)."""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs only the last action scheduled for a key, *delay* seconds later.

    Scheduling again before the delay elapses cancels the pending action.
    """

    def __init__(self, delay: float = 0.8) -> None:
        self.delay = delay
        self._pending: dict[str, asyncio.Task] = {}
        self._actions: dict[str, Callable[[], Awaitable[object]]] = {}

    @property
    def pending(self) -> list[str]:
        return sorted(self._pending)

    def schedule(self, key: str, action: Callable[[], Awaitable[object]]) -> None:
        self._cancel(key)
        self._actions[key] = action

        async def _run_after_delay() -> None:
            await asyncio.sleep(self.delay)
            # Past this point a new schedule() no longer interrupts the write
            if self._pending.get(key) is task:
                del self._pending[key]
            await self._execute(key)

        task = asyncio.create_task(_run_after_delay(), name=f"debounce-{key}")
        self._pending[key] = task

    async def _execute(self, key: str) -> None:
        action = self._actions.pop(key, None)
        if action is None:
            return
        try:
            await action()
        except Exception as e:
            logger.error(f"Debounced action {key} failed: {e}")

    async def flush(self) -> None:
        """Run every pending action now instead of waiting for its delay."""
        for key in list(self._pending):
            self._cancel(key)
            await self._execute(key)

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self._cancel(key)
        self._actions.clear()

    def _cancel(self, key: str) -> None:
        task = self._pending.pop(key, None)
        if task and not task.done():
            task.cancel()
