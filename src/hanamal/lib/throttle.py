"""Rate limiting combining concurrency control and temporal spacing.

A Throttle enforces both a maximum number of in-flight requests (semaphore)
and a minimum interval between request starts. The image pipeline uses the
first to bound parallel downloads; the records client uses the second to
stay under Airtable's per-base request rate.

Example:
    from hanamal.lib.throttle import Throttle

    downloads = Throttle(max_concurrent=4)
    airtable = Throttle(max_concurrent=1, min_interval=0.2)

    async def fetch_page():
        async with airtable:
            return await client.get(url)
"""

import asyncio
import time
from types import TracebackType


class _LoopState:
    """Per-event-loop state for a Throttle instance."""

    __slots__ = ("semaphore", "last_start", "lock")

    def __init__(self, semaphore: asyncio.Semaphore) -> None:
        self.semaphore = semaphore
        self.last_start: float = 0.0
        self.lock = asyncio.Lock()


class Throttle:
    """Async context manager limiting concurrency and request spacing.

    State is created lazily per event loop, so one instance can be reused
    across separate ``asyncio.run`` calls (the CLI runs one per command).

    Args:
        max_concurrent: Maximum simultaneous holders.
        min_interval: Minimum seconds between consecutive starts.
            0.0 disables spacing (pure concurrency limiting).
    """

    def __init__(self, max_concurrent: int, min_interval: float = 0.0) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._min_interval = min_interval
        self._state: dict[int, _LoopState] = {}

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def _get_state(self) -> _LoopState:
        loop_id = id(asyncio.get_running_loop())
        if loop_id not in self._state:
            self._state[loop_id] = _LoopState(
                asyncio.Semaphore(self._max_concurrent),
            )
        return self._state[loop_id]

    async def __aenter__(self) -> None:
        state = self._get_state()
        await state.semaphore.acquire()
        if self._min_interval > 0:
            async with state.lock:
                if state.last_start > 0:
                    remaining = self._min_interval - (time.monotonic() - state.last_start)
                    if remaining > 0:
                        await asyncio.sleep(remaining)
                state.last_start = time.monotonic()

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._get_state().semaphore.release()
