"""
Status polling as an explicit, cancellable task.

A ``StatusPoller`` re-fetches one record every ``interval`` seconds and
yields a snapshot whenever it changed. It stops by itself once the
record's status leaves ``keep_polling``, when the record disappears, or
when ``cancel()`` is called. A broadcast pushed onto ``wake`` triggers the
next fetch immediately instead of waiting out the interval.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, FrozenSet, Optional

logger = logging.getLogger(__name__)


def status_value(snapshot) -> Optional[str]:
    status = snapshot.get("status") if isinstance(snapshot, dict) else getattr(snapshot, "status", None)
    return getattr(status, "value", status)


class StatusPoller:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[Any]],
        interval: float,
        keep_polling: FrozenSet[str],
        fingerprint: Callable[[Any], Any] = status_value,
        wake: Optional[asyncio.Queue] = None,
        name: str = "poller",
    ):
        self.fetch = fetch
        self.interval = interval
        self.keep_polling = frozenset(keep_polling)
        self.fingerprint = fingerprint
        self.wake = wake
        self.name = name
        self.ticks = 0
        self._stopped = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._stopped.is_set()

    def cancel(self):
        self._stopped.set()

    def __aiter__(self) -> AsyncIterator[Any]:
        return self.run()

    async def run(self) -> AsyncIterator[Any]:
        last = object()
        while not self.cancelled:
            self.ticks += 1
            try:
                snapshot = await self.fetch()
            except Exception as e:
                # A failed tick is skipped; the next one tries again
                logger.warning(f"[Poller] {self.name} fetch failed: {e}")
                await self._pause()
                continue

            if snapshot is None:
                logger.info(f"[Poller] {self.name} record gone, stopping")
                return
            if self.cancelled:
                return

            current = self.fingerprint(snapshot)
            if current != last:
                last = current
                yield snapshot

            if status_value(snapshot) not in self.keep_polling:
                logger.info(f"[Poller] {self.name} reached '{status_value(snapshot)}', stopping")
                return
            await self._pause()

    async def _pause(self):
        waiters = [asyncio.ensure_future(self._stopped.wait())]
        if self.wake is not None:
            waiters.append(asyncio.ensure_future(self.wake.get()))
        try:
            await asyncio.wait(waiters, timeout=self.interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
