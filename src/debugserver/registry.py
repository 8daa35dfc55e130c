from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field


@dataclass(slots=True)
class PendingRequest:
    """A request whose headers are sent and whose body waits for a release."""

    sequence_number: int
    arrived_at: float
    remote_address: str
    path: str
    method: str
    release_signal: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def released(self) -> bool:
        return self.release_signal.is_set()

    def release(self) -> None:
        self.release_signal.set()

    async def wait_released(self) -> None:
        await self.release_signal.wait()

    def waited_seconds(self, now: float | None = None) -> float:
        ts = now if now is not None else time.monotonic()
        return max(0.0, ts - self.arrived_at)


class PendingRequestRegistry:
    """Track held requests in arrival order until the operator drains them."""

    def __init__(self) -> None:
        self._pending: list[PendingRequest] = []
        self._counter = 0
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def total_registered(self) -> int:
        return self._counter

    async def register(
        self, remote_address: str, path: str, method: str
    ) -> tuple[PendingRequest, int]:
        async with self._lock:
            self._counter += 1
            pending = PendingRequest(
                sequence_number=self._counter,
                arrived_at=time.monotonic(),
                remote_address=remote_address,
                path=path,
                method=method,
            )
            self._pending.append(pending)
            return pending, len(self._pending)

    async def drain_all(self) -> list[PendingRequest]:
        async with self._lock:
            drained, self._pending = self._pending, []
            return drained
