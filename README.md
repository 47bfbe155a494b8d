# dxsring

Building blocks for a data-transfer offload client, in pure Python with no
third-party dependencies.

## Modules

- `dxsring.spsc_queue_pair`: `SpscQueuePair` is one side of a
  single-producer/single-consumer pair of circular byte rings with doorbell
  counters. Each side has a doorbells page and a ring. A ring's size must be a
  power of two and a multiple of 4 KiB, and a doorbells page must be at least
  4096 bytes. A bad size raises `ValueError`.
  - `begin_send()` returns a `SendBatch`, which has `append`, `skip` and
    `commit`. `append` and `skip` raise `QueueFullError` when the peer's ring
    lacks room.
  - `begin_receive()` returns a `ReceiveBatch`, which has `recv`,
    `remove_prefix`, `first_segment`, `second_segment`, `remaining_bytes` and
    `commit`. It raises `QueueEmptyError` when nothing has arrived, and
    `QueueCorruptError` when the peer's counters claim more data than the ring
    holds.
  - `save_state()` returns a `QueuePairState`. `restore_state(state)` resumes
    from it and checks it against the peer's doorbells.
  - All queue errors derive from `QueueError`.
- `dxsring.messaging_queue_pair`: `SpscMessagingQueuePair` frames messages
  on top of the ring. Each message is a 4-byte header (24-bit body length),
  then the body, then padding to a 64-byte boundary (`padding_bytes`).
  - Build one with `create(local_region, remote_region)`, or with
    `restore(local_region, remote_region, state)` after `save_state()`.
  - `send(msg)` raises `ValueError` when the message is longer than
    `MAX_MESSAGE_SIZE` (2^24 − 1 bytes), and `QueueFullError` when the peer's
    ring has no room.
  - `receive()` returns a copy of the body. `receive_with(handler)` passes the
    body to `handler` as two read-only views; the second view is empty unless
    the body wraps. Both raise `QueueEmptyError` when no complete message is
    waiting.
- `dxsring.timeout_queue`: `SctpTimeoutQueue(handler, clock)` keeps
  `SctpTimeout` objects in a heap ordered by expiry. The clock returns
  nanoseconds.
  - `create_timeout()` makes a timeout. It has `start`, `stop` and `restart`,
    and the properties `timeout_id`, `expiration` and `active`.
  - `run()` calls `handler(timeout_id)` for every expired timeout.
  - `next_timeout_ms()` gives the milliseconds until the earliest expiry,
    rounded up, or `None` when the queue is empty.
  - `get_time_us()` gives the clock time in microseconds, and `len(queue)`
    the number of armed timeouts.
- `dxsring.thread_shim`: `ThreadShim(callback, thread_name)` (or
  `new_thread_shim`) starts `callback` on a named thread. Call `join()` to
  wait for it, or use the shim as a context manager, which joins on exit.
- `dxsring.netdev`:
  - `SocketDev` is a record of an interface: name, IP and optional PCI path.
  - `sort_devices` orders devices. Those without a PCI path come first, sorted
    by name; the rest are sorted by the PCI address at the end of the path.
  - `find_device_by_ip` returns a device's index and raises `KeyError` when no
    device has that IP.
  - `get_speed(dev_name, sysfs_root)` reads the link speed in Mbps from
    `<sysfs_root>/<dev>/speed`. It falls back to 10000 when the file is missing
    or the value is not positive.
  - `PciIndexMap` maps GPU PCI addresses, sorted with duplicates removed, to
    their index and back (`index_of`, `pci_of`). Lookups ignore case, and an
    unknown key raises `KeyError`.
- `dxsring.nccl_status`: `NcclResult` holds the result codes.
  `nccl_error_string(code)` describes a code. `check_nccl(code)` raises
  `NcclError` for anything other than success.

## Install

```
pip install .
pip install ".[test]"
pytest
```

## Examples

```python
from dxsring.messaging_queue_pair import SpscMessagingQueuePair

# Each region is one doorbells page followed by a power-of-two ring.
size = 4096 + 4096
a_local, b_local = bytearray(size), bytearray(size)

a = SpscMessagingQueuePair.create(a_local, b_local)
b = SpscMessagingQueuePair.create(b_local, a_local)

a.send(b"hello")
assert b.receive() == b"hello"
```

```python
from dxsring.timeout_queue import SctpTimeoutQueue

now = [0]
expired = []
queue = SctpTimeoutQueue(expired.append, lambda: now[0])
timer = queue.create_timeout()
timer.start(10, 7)
assert queue.next_timeout_ms() == 10
now[0] = 10_000_000
queue.run()
assert expired == [7]
```

## What it does not do

The package has no command-line program. It does not discover network
interfaces itself: `SocketDev` records and GPU PCI addresses must be supplied
by the caller. It does not talk to GPUs or to a transfer daemon. The queues
work on any writable buffer, such as a `bytearray` or an `mmap`; setting up
shared or device-mapped memory between peers is up to the caller.