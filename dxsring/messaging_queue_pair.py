"""Message framing over a :class:`SpscQueuePair`.

Every message is written as:

- a 4-byte little-endian header: 8 reserved bits (zero), then 24 bits of
  body length;
- the body;
- padding up to the next 64-byte boundary, so header, body and padding
  together take a multiple of 64 bytes.

The padding length is not sent; the receiver works it out from the body
length. Padding is not zero-filled and may hold stale queue data.
"""

from __future__ import annotations

import logging
from typing import Callable

from dxsring.spsc_queue_pair import (
    DOORBELLS_SIZE,
    QueueEmptyError,
    QueuePairState,
    SpscQueuePair,
)

logger = logging.getLogger(__name__)

ALIGNMENT = 64
MAX_MESSAGE_SIZE = 16 * 1024 * 1024 - 1
HEADER_SIZE = 4

_BODY_SHIFT = 8

Handler = Callable[[memoryview, memoryview], object]


def _align_up(value: int, align: int) -> int:
    return align * ((value + align - 1) // align)


def padding_bytes(body_bytes: int) -> int:
    """Padding that follows a body of ``body_bytes`` bytes."""
    return _align_up(body_bytes + HEADER_SIZE, ALIGNMENT) - HEADER_SIZE - body_bytes


def _encode_header(body_bytes: int) -> bytes:
    return (body_bytes << _BODY_SHIFT).to_bytes(HEADER_SIZE, "little")


def _decode_header(raw) -> int:
    return int.from_bytes(bytes(raw[:HEADER_SIZE]), "little") >> _BODY_SHIFT


class SpscMessagingQueuePair:
    """A queue pair that preserves message boundaries and cache-line alignment.

    Each region is a doorbells page followed by a ring whose size is a power
    of two and a multiple of 4 KiB. Peer writes land in ``local_region``;
    this side writes to ``remote_region``.
    """

    def __init__(self, queue_pair: SpscQueuePair) -> None:
        self._qp = queue_pair

    @classmethod
    def create(cls, local_region, remote_region) -> "SpscMessagingQueuePair":
        """Build a queue over two zero-filled regions."""
        local = memoryview(local_region).cast("B")
        remote = memoryview(remote_region).cast("B")
        qp = SpscQueuePair(
            local[:DOORBELLS_SIZE],
            local[DOORBELLS_SIZE:],
            remote[:DOORBELLS_SIZE],
            remote[DOORBELLS_SIZE:],
        )
        return cls(qp)

    @classmethod
    def restore(
        cls, local_region, remote_region, state: QueuePairState
    ) -> "SpscMessagingQueuePair":
        """Rebuild a queue from :meth:`save_state` over the same regions."""
        if (
            state.remote_bytes_produced % ALIGNMENT != 0
            or state.local_bytes_consumed % ALIGNMENT != 0
        ):
            raise ValueError(f"state values are not aligned: {state}")
        queue = cls.create(local_region, remote_region)
        queue._qp.restore_state(state)
        return queue

    def send(self, msg) -> None:
        """Send one message.

        Raises ValueError if it is longer than MAX_MESSAGE_SIZE and
        QueueFullError if the peer's ring has no room for it.
        """
        body = memoryview(msg).cast("B")
        if len(body) > MAX_MESSAGE_SIZE:
            raise ValueError(
                f"message of {len(body)} bytes exceeds {MAX_MESSAGE_SIZE}"
            )
        batch = self._qp.begin_send()
        batch.append(_encode_header(len(body)))
        batch.append(body)
        batch.skip(padding_bytes(len(body)))
        batch.commit()

    def receive_with(self, handler: Handler) -> None:
        """Receive one message and pass its body to ``handler``.

        ``handler`` gets two read-only views; the second is empty unless the
        body wraps around the ring's end. The views are only valid during
        the call. Raises QueueEmptyError if no complete message is there, in
        which case the handler is not called.
        """
        batch = self._qp.begin_receive()
        first = batch.first_segment()
        if len(first) < HEADER_SIZE:
            logger.error(
                "MessageHeader should never cross the queue boundary, "
                "fallback to copy"
            )
            body_bytes = _decode_header(batch.recv(HEADER_SIZE))
        else:
            body_bytes = _decode_header(first)
            batch.remove_prefix(HEADER_SIZE)
        if batch.remaining_bytes() < body_bytes:
            logger.error("Message received but incomplete")
            raise QueueEmptyError("Message received but incomplete")
        first = batch.first_segment()
        if body_bytes > len(first):
            handler(first, batch.second_segment()[: body_bytes - len(first)])
        else:
            handler(first[:body_bytes], memoryview(b""))
        batch.remove_prefix(body_bytes)
        batch.remove_prefix(padding_bytes(body_bytes))
        batch.commit()

    def receive(self) -> bytes:
        """Receive one message and return a copy of its body."""
        parts: list[bytes] = []

        def collect(first: memoryview, second: memoryview) -> None:
            parts.append(bytes(first))
            parts.append(bytes(second))

        self.receive_with(collect)
        return b"".join(parts)

    def save_state(self) -> QueuePairState:
        """Counters for :meth:`restore`; stop using the queue after this."""
        return self._qp.save_state()