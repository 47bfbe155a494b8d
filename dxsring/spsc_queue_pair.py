"""A pair of single-producer single-consumer circular byte queues.

Each side owns a *local* region (doorbells page plus ring) that the peer
writes into, and writes into the peer's region, its *remote* region. A
sender copies data into the remote ring and then publishes the running
total of bytes produced in the remote doorbells. A receiver reads data
from its local ring and publishes the running total of bytes consumed in
the remote doorbells, which is where the peer looks for free space.

The doorbells page holds two little-endian 64-bit counters, each at the
start of its own 64-byte cache line: ``bytes_produced`` at offset 0 and
``remote_bytes_consumed`` at offset 64.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

PAGE_SIZE = 4096
CACHELINE_SIZE = 64
DOORBELLS_SIZE = PAGE_SIZE

BYTES_PRODUCED_OFFSET = 0
REMOTE_BYTES_CONSUMED_OFFSET = CACHELINE_SIZE

_U64_MASK = (1 << 64) - 1
_EMPTY = memoryview(bytearray())


class QueueError(Exception):
    """Base class for queue errors."""


class QueueFullError(QueueError):
    """There is not enough free space in the peer's ring."""


class QueueEmptyError(QueueError):
    """There is no data, or not enough data, to receive."""


class QueueCorruptError(QueueError):
    """The peer's counters break the queue's invariants."""


@dataclass(frozen=True)
class QueuePairState:
    """Counters saved for a restart and handed back to restore it."""

    local_bytes_consumed: int = 0
    remote_bytes_produced: int = 0


def _byte_view(buffer) -> memoryview:
    return memoryview(buffer).cast("B")


def _read_u64(view: memoryview, offset: int) -> int:
    return int.from_bytes(view[offset : offset + 8], "little")


def _write_u64(view: memoryview, offset: int, value: int) -> None:
    view[offset : offset + 8] = (value & _U64_MASK).to_bytes(8, "little")


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def _check_region(doorbells: memoryview, ring: memoryview, name: str) -> None:
    if len(doorbells) < DOORBELLS_SIZE:
        raise ValueError(f"{name} doorbells size is less than kDoorbellsSize")
    if len(ring) % PAGE_SIZE != 0:
        raise ValueError(f"{name} ring size is not a multiple of 4K")
    if not _is_power_of_two(len(ring)):
        raise ValueError(f"{name} ring size is not a power of two")


class SendBatch:
    """An ongoing send; nothing is visible to the peer until :meth:`commit`."""

    def __init__(
        self,
        queue: "SpscQueuePair",
        segment: memoryview,
        backup_segment: memoryview,
    ) -> None:
        self._queue = queue
        self._segment = segment
        self._backup = backup_segment
        self._pending = 0
        self._committed = False

    def _free(self) -> int:
        return len(self._segment) + len(self._backup)

    def append(self, data) -> None:
        """Copy ``data`` into the peer's ring; QueueFullError if it won't fit."""
        source = _byte_view(data)
        size = len(source)
        if self._free() < size:
            raise QueueFullError(f"cannot append {size} bytes, {self._free()} free")
        first = min(size, len(self._segment))
        self._segment[:first] = source[:first]
        self._segment = self._segment[first:]
        self._pending += first
        if first == size:
            return
        second = size - first
        self._segment, self._backup = self._backup, _EMPTY
        self._segment[:second] = source[first:]
        self._segment = self._segment[second:]
        self._pending += second

    def skip(self, size: int) -> None:
        """Advance the write position without writing data."""
        if self._free() < size:
            raise QueueFullError(f"cannot skip {size} bytes, {self._free()} free")
        if size <= len(self._segment):
            self._segment = self._segment[size:]
        else:
            self._segment = self._backup[size - len(self._segment) :]
            self._backup = _EMPTY
        self._pending += size

    @property
    def pending_bytes(self) -> int:
        """Bytes appended or skipped so far in this batch."""
        return self._pending

    def commit(self) -> None:
        """Publish the batch to the peer. The batch cannot be used afterwards."""
        if self._committed:
            raise RuntimeError("send batch already committed")
        self._committed = True
        queue = self._queue
        queue._remote_bytes_produced = (
            queue._remote_bytes_produced + self._pending
        ) & _U64_MASK
        _write_u64(
            queue._remote_doorbells,
            BYTES_PRODUCED_OFFSET,
            queue._remote_bytes_produced,
        )


class ReceiveBatch:
    """An ongoing receive over all bytes available when it began.

    The data is ``first_segment()`` followed by ``second_segment()``; the
    second is non-empty only when the data wraps around the ring's end.
    Consumption is reported to the peer only on :meth:`commit`.
    """

    def __init__(
        self,
        queue: "SpscQueuePair",
        segment: memoryview,
        backup_segment: memoryview,
    ) -> None:
        self._queue = queue
        self._segment = segment
        self._backup = backup_segment
        self._taken = 0
        self._committed = False

    def _take(self, size: int, sink: Optional[bytearray]) -> None:
        if self.remaining_bytes() < size:
            raise QueueEmptyError(
                f"{size} bytes requested, {self.remaining_bytes()} available"
            )
        first = min(size, len(self._segment))
        if sink is not None:
            sink += self._segment[:first]
        self._segment = self._segment[first:]
        self._taken += first
        if not len(self._segment):
            self._segment, self._backup = self._backup, _EMPTY
        if first == size:
            return
        second = size - first
        if sink is not None:
            sink += self._segment[:second]
        self._segment = self._segment[second:]
        self._taken += second

    def recv(self, size: int) -> bytes:
        """Take and return the next ``size`` bytes; QueueEmptyError if short."""
        out = bytearray()
        self._take(size, out)
        return bytes(out)

    def remove_prefix(self, size: int) -> None:
        """Discard the next ``size`` bytes; QueueEmptyError if short."""
        self._take(size, None)

    def first_segment(self) -> memoryview:
        """Read-only view of the data up to the ring's end."""
        return self._segment.toreadonly()

    def second_segment(self) -> memoryview:
        """Read-only view of the data that wrapped to the ring's start."""
        return self._backup.toreadonly()

    def remaining_bytes(self) -> int:
        """Bytes not yet taken from this batch."""
        return len(self._segment) + len(self._backup)

    def commit(self) -> None:
        """Report the taken bytes as consumed. The batch cannot be used afterwards."""
        if self._committed:
            raise RuntimeError("receive batch already committed")
        self._committed = True
        queue = self._queue
        queue._local_bytes_consumed = (
            queue._local_bytes_consumed + self._taken
        ) & _U64_MASK
        _write_u64(
            queue._remote_doorbells,
            REMOTE_BYTES_CONSUMED_OFFSET,
            queue._local_bytes_consumed,
        )


class SpscQueuePair:
    """One side of a bidirectional queue over shared memory regions.

    Rings must be a power of two in size and a multiple of 4 KiB; doorbells
    must be at least one page. The memory is not owned by the queue.
    Only one batch in each direction may be outstanding at a time.
    """

    def __init__(self, local_doorbells, local_ring, remote_doorbells, remote_ring) -> None:
        local_doorbells = _byte_view(local_doorbells)
        local_ring = _byte_view(local_ring)
        remote_doorbells = _byte_view(remote_doorbells)
        remote_ring = _byte_view(remote_ring)
        _check_region(local_doorbells, local_ring, "Local region")
        _check_region(remote_doorbells, remote_ring, "Remote region")
        self._local_doorbells = local_doorbells
        self._local_ring = local_ring
        self._remote_doorbells = remote_doorbells
        self._remote_ring = remote_ring
        self._local_bytes_consumed = 0
        self._remote_bytes_produced = 0
        self._local_mask = len(local_ring) - 1
        self._remote_mask = len(remote_ring) - 1

    def begin_send(self) -> SendBatch:
        """Start a batch covering all free space in the peer's ring."""
        ring = self._remote_ring
        size = len(ring)
        consumed = _read_u64(self._local_doorbells, REMOTE_BYTES_CONSUMED_OFFSET)
        used = (self._remote_bytes_produced - consumed) & _U64_MASK
        free = (size - used) & _U64_MASK
        if free > size:
            logger.error("Broken invariant. Malicious peer?")
            return SendBatch(self, _EMPTY, _EMPTY)
        offset = self._remote_bytes_produced & self._remote_mask
        if free > size - offset:
            first = size - offset
            return SendBatch(
                self, ring[offset : offset + first], ring[: free - first]
            )
        return SendBatch(self, ring[offset : offset + free], _EMPTY)

    def begin_receive(self) -> ReceiveBatch:
        """Start a batch over all received bytes.

        Raises QueueEmptyError when nothing has arrived and QueueCorruptError
        when the peer claims more data than the ring holds.
        """
        ring = self._local_ring
        produced = _read_u64(self._local_doorbells, BYTES_PRODUCED_OFFSET)
        available = (produced - self._local_bytes_consumed) & _U64_MASK
        if available == 0:
            raise QueueEmptyError("no new data")
        if available > len(ring):
            logger.error("Broken invariant. Malicious peer?")
            raise QueueCorruptError(
                f"{available} bytes available exceeds ring size {len(ring)}"
            )
        start = self._local_bytes_consumed & self._local_mask
        first = min(available, len(ring) - start)
        backup = ring[: available - first] if first < available else _EMPTY
        return ReceiveBatch(self, ring[start : start + first], backup)

    def save_state(self) -> QueuePairState:
        """Counters needed to restore this queue after a restart."""
        return QueuePairState(
            local_bytes_consumed=self._local_bytes_consumed,
            remote_bytes_produced=self._remote_bytes_produced,
        )

    def restore_state(self, state: QueuePairState) -> None:
        """Resume from saved counters; they must match the peer's doorbells."""
        if self._local_bytes_consumed != 0 or self._remote_bytes_produced != 0:
            raise RuntimeError("Cannot restore to an unclean SpscQueuePair")
        expected_consumed = _read_u64(
            self._remote_doorbells, REMOTE_BYTES_CONSUMED_OFFSET
        )
        expected_produced = _read_u64(self._remote_doorbells, BYTES_PRODUCED_OFFSET)
        if (
            state.local_bytes_consumed != expected_consumed
            or state.remote_bytes_produced != expected_produced
        ):
            raise ValueError(
                f"state mismatch: {state} expected_consumed={expected_consumed} "
                f"expected_produced={expected_produced}"
            )
        self._local_bytes_consumed = state.local_bytes_consumed
        self._remote_bytes_produced = state.remote_bytes_produced