"""Message passing between the render engine and the job writer.

The engine runs frame encoding in a worker thread. It never touches the job
record: it publishes progress fractions on a ``ProgressChannel`` and checks
a ``CancellationToken`` between frames. The job's own run coroutine is the
only consumer and the only writer of the record.
"""

import asyncio
import threading

from montage.exceptions import RenderCancelled, RenderFailure

_CLOSED = object()


class ProgressChannel:
    """Thread-safe, single-consumer stream of progress fractions in [0, 1]."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def _put(self, item: object) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def publish(self, fraction: float) -> None:
        """Publish a progress fraction. Safe to call from any thread."""
        if self._closed:
            return
        self._put(min(1.0, max(0.0, float(fraction))))

    def close(self) -> None:
        """Signal that no more progress will be published."""
        if self._closed:
            return
        self._closed = True
        self._put(_CLOSED)

    async def get(self, timeout: float | None = None) -> float | None:
        """Next fraction, or None once the channel is closed.

        Raises:
            asyncio.TimeoutError: If nothing arrives within ``timeout`` seconds
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            return None
        return item


class CancellationToken:
    """Cooperative cancellation flag shared by a job run and its engine calls."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: RenderFailure | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> RenderFailure | None:
        return self._reason

    def cancel(self, reason: RenderFailure | None = None) -> None:
        """Request cancellation; the first reason wins."""
        if self._event.is_set():
            return
        self._reason = reason or RenderCancelled()
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise self._reason or RenderCancelled()
