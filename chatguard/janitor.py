"""Background sweep that reclaims expired admission state.

Read paths already heal expired windows, blocks and blacklist entries on
their own; the janitor only bounds memory held by keys nobody asks about
any more.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol

_logger = logging.getLogger("chatguard")


class Sweepable(Protocol):
    def sweep(self) -> int: ...


class Janitor:
    """Runs ``sweep()`` on every registered store at a fixed interval."""

    def __init__(self, stores: Dict[str, Sweepable], interval_seconds: float) -> None:
        self._stores = stores
        self.interval_seconds = interval_seconds
        self._task: Optional["asyncio.Task[None]"] = None

    def sweep(self) -> Dict[str, int]:
        """Sweep every store once and return the number of records touched per store."""
        touched = {name: store.sweep() for name, store in self._stores.items()}
        total = sum(touched.values())
        if total:
            _logger.debug("Janitor sweep touched %d record(s): %s", total, touched)
        return touched

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the recurring sweep on the running event loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="chatguard_janitor")

    async def stop(self) -> None:
        """Cancel the recurring sweep and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.sweep()
            except Exception:  # noqa: BLE001
                _logger.exception("Janitor sweep failed")
