"""Timeouts kept in a priority queue ordered by expiration time.

A queue hands out :class:`SctpTimeout` objects. Starting a timeout puts it in
the queue, stopping it takes it out, and :meth:`SctpTimeoutQueue.run` fires
the handler for every timeout whose expiration has passed.
"""

from __future__ import annotations

import itertools
from typing import Callable, Hashable, Optional

NANOSECONDS_PER_MICROSECOND = 1000
NANOSECONDS_PER_MILLISECOND = 1000 * NANOSECONDS_PER_MICROSECOND

_NEVER = 2**63 - 1

Clock = Callable[[], int]
TimeoutHandler = Callable[[Hashable], None]


class SctpTimeout:
    """A single timeout belonging to an :class:`SctpTimeoutQueue`."""

    def __init__(self, queue: "SctpTimeoutQueue", clock: Clock) -> None:
        self._queue = queue
        self._clock = clock
        self._timeout_id: Optional[Hashable] = None
        self._expiration = _NEVER
        self._sequence = 0
        # A negative index means the timeout is not in the queue.
        self._heap_index = -1

    def start(self, duration_ms: int, timeout_id: Hashable) -> None:
        """Arm the timeout to expire ``duration_ms`` milliseconds from now."""
        if self.active:
            raise RuntimeError("timeout is already started")
        self._arm(duration_ms, timeout_id)
        self._queue._add(self)

    def stop(self) -> None:
        """Disarm the timeout; stopping an inactive timeout does nothing."""
        if self.active:
            self._expiration = _NEVER
            self._queue._remove(self)
            self._heap_index = -1

    def restart(self, duration_ms: int, timeout_id: Hashable) -> None:
        """Re-arm a running timeout with a new duration and id."""
        if not self.active:
            raise RuntimeError("timeout is not started")
        self._arm(duration_ms, timeout_id)
        self._queue._update(self)

    @property
    def timeout_id(self) -> Optional[Hashable]:
        """The id passed to the last start or restart."""
        return self._timeout_id

    @property
    def expiration(self) -> int:
        """Expiration time in nanoseconds on the queue's clock."""
        return self._expiration

    @property
    def active(self) -> bool:
        """Whether the timeout is currently in its queue."""
        return self._heap_index >= 0

    def _arm(self, duration_ms: int, timeout_id: Hashable) -> None:
        self._timeout_id = timeout_id
        self._expiration = self._clock() + duration_ms * NANOSECONDS_PER_MILLISECOND
        self._sequence = next(self._queue._sequence)

    def _key(self) -> tuple[int, int]:
        return (self._expiration, self._sequence)


class SctpTimeoutQueue:
    """Priority queue of timeouts; :meth:`run` fires the expired ones.

    ``handler`` is called with the timeout id of each expired timeout.
    ``clock`` returns the current time in nanoseconds.
    """

    def __init__(self, handler: TimeoutHandler, clock: Clock) -> None:
        self._handler = handler
        self._clock = clock
        self._heap: list[SctpTimeout] = []
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def run(self) -> None:
        """Fire the handler for every timeout that has expired."""
        now = self._clock()
        while self._heap:
            timeout = self._heap[0]
            if timeout.expiration > now:
                break
            timeout.stop()
            self._handler(timeout.timeout_id)

    def create_timeout(self) -> SctpTimeout:
        """Return a new, not yet started, timeout bound to this queue."""
        return SctpTimeout(self, self._clock)

    def get_time_us(self) -> int:
        """Current clock time in whole microseconds."""
        return self._clock() // NANOSECONDS_PER_MICROSECOND

    def next_timeout_ms(self) -> Optional[int]:
        """Milliseconds until the earliest timeout, rounded up; None if empty."""
        if not self._heap:
            return None
        remaining = self._heap[0].expiration - self._clock()
        return max(0, -(-remaining // NANOSECONDS_PER_MILLISECOND))

    # Heap maintenance, used only by SctpTimeout.

    def _add(self, timeout: SctpTimeout) -> None:
        timeout._heap_index = len(self._heap)
        self._heap.append(timeout)
        self._sift_up(timeout._heap_index)

    def _remove(self, timeout: SctpTimeout) -> None:
        index = timeout._heap_index
        last = self._heap.pop()
        if last is not timeout:
            self._heap[index] = last
            last._heap_index = index
            self._sift_up(index)
            self._sift_down(last._heap_index)

    def _update(self, timeout: SctpTimeout) -> None:
        self._sift_up(timeout._heap_index)
        self._sift_down(timeout._heap_index)

    def _swap(self, i: int, j: int) -> None:
        heap = self._heap
        heap[i], heap[j] = heap[j], heap[i]
        heap[i]._heap_index = i
        heap[j]._heap_index = j

    def _sift_up(self, index: int) -> None:
        while index > 0:
            parent = (index - 1) // 2
            if self._heap[index]._key() >= self._heap[parent]._key():
                break
            self._swap(index, parent)
            index = parent

    def _sift_down(self, index: int) -> None:
        size = len(self._heap)
        while True:
            smallest = index
            for child in (2 * index + 1, 2 * index + 2):
                if child < size and self._heap[child]._key() < self._heap[smallest]._key():
                    smallest = child
            if smallest == index:
                return
            self._swap(index, smallest)
            index = smallest