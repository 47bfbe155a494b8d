import pytest

from dxsring.spsc_queue_pair import (
    BYTES_PRODUCED_OFFSET,
    DOORBELLS_SIZE,
    PAGE_SIZE,
    REMOTE_BYTES_CONSUMED_OFFSET,
    QueueCorruptError,
    QueueEmptyError,
    QueueFullError,
    QueuePairState,
    SpscQueuePair,
)

RING = PAGE_SIZE


def make_memory(ring_size=RING):
    return {
        "db_a": bytearray(DOORBELLS_SIZE),
        "ring_a": bytearray(ring_size),
        "db_b": bytearray(DOORBELLS_SIZE),
        "ring_b": bytearray(ring_size),
    }


def make_pair(mem):
    a = SpscQueuePair(mem["db_a"], mem["ring_a"], mem["db_b"], mem["ring_b"])
    b = SpscQueuePair(mem["db_b"], mem["ring_b"], mem["db_a"], mem["ring_a"])
    return a, b


def send(queue, data):
    batch = queue.begin_send()
    batch.append(data)
    batch.commit()


def receive_all(queue):
    batch = queue.begin_receive()
    data = batch.recv(batch.remaining_bytes())
    batch.commit()
    return data


def test_doorbell_layout_used_by_queue():
    assert DOORBELLS_SIZE == 4096
    assert BYTES_PRODUCED_OFFSET == 0
    assert REMOTE_BYTES_CONSUMED_OFFSET == 64
    mem = make_memory()
    a, b = make_pair(mem)
    send(a, b"layout")
    produced = mem["db_b"][BYTES_PRODUCED_OFFSET:BYTES_PRODUCED_OFFSET + 8]
    assert int.from_bytes(produced, "little") == 6
    assert receive_all(b) == b"layout"
    consumed = mem["db_a"][REMOTE_BYTES_CONSUMED_OFFSET:REMOTE_BYTES_CONSUMED_OFFSET + 8]
    assert int.from_bytes(consumed, "little") == 6


def test_round_trip_both_directions():
    a, b = make_pair(make_memory())
    send(a, b"hello")
    send(b, b"world!")
    assert receive_all(b) == b"hello"
    assert receive_all(a) == b"world!"


def test_commit_publishes_bytes_produced():
    mem = make_memory()
    a, _ = make_pair(mem)
    send(a, b"abcdefg")
    assert int.from_bytes(mem["db_b"][0:8], "little") == len(b"abcdefg")
    assert mem["ring_b"][:7] == b"abcdefg"


def test_receive_commit_publishes_consumed():
    mem = make_memory()
    a, b = make_pair(mem)
    send(a, b"xyz")
    receive_all(b)
    assert int.from_bytes(mem["db_a"][64:72], "little") == 3


def test_nothing_visible_before_commit():
    a, b = make_pair(make_memory())
    batch = a.begin_send()
    batch.append(b"data")
    with pytest.raises(QueueEmptyError):
        b.begin_receive()
    batch.commit()
    assert receive_all(b) == b"data"


def test_empty_queue_raises():
    _, b = make_pair(make_memory())
    with pytest.raises(QueueEmptyError):
        b.begin_receive()


def test_full_ring_raises():
    a, b = make_pair(make_memory())
    batch = a.begin_send()
    batch.append(bytes(RING))
    with pytest.raises(QueueFullError):
        batch.append(b"x")
    batch.commit()
    with pytest.raises(QueueFullError):
        a.begin_send().append(b"x")
    receive_all(b)
    send(a, b"x")
    assert receive_all(b) == b"x"


def test_append_larger_than_ring_raises():
    a, _ = make_pair(make_memory())
    with pytest.raises(QueueFullError):
        a.begin_send().append(bytes(RING + 1))


def test_wrap_around_splits_segments():
    a, b = make_pair(make_memory())
    send(a, bytes(RING - 96))
    receive_all(b)
    payload = bytes(range(200))
    send(a, payload)
    batch = b.begin_receive()
    first = bytes(batch.first_segment())
    second = bytes(batch.second_segment())
    assert len(first) == 96
    assert first + second == payload
    assert batch.remaining_bytes() == len(payload)
    assert batch.recv(len(payload)) == payload
    assert batch.remaining_bytes() == 0


def test_partial_recv_and_remove_prefix():
    a, b = make_pair(make_memory())
    send(a, b"0123456789")
    batch = b.begin_receive()
    assert batch.recv(3) == b"012"
    batch.remove_prefix(2)
    assert batch.recv(5) == b"56789"
    with pytest.raises(QueueEmptyError):
        batch.recv(1)


def test_uncommitted_receive_is_seen_again():
    a, b = make_pair(make_memory())
    send(a, b"again")
    batch = b.begin_receive()
    assert batch.recv(5) == b"again"
    assert receive_all(b) == b"again"


def test_skip_advances_without_writing():
    mem = make_memory()
    a, b = make_pair(mem)
    mem["ring_b"][0:4] = b"OLD!"
    batch = a.begin_send()
    batch.skip(4)
    batch.append(b"new")
    assert batch.pending_bytes == 7
    batch.commit()
    assert receive_all(b) == b"OLD!new"


def test_skip_too_far_raises():
    a, _ = make_pair(make_memory())
    with pytest.raises(QueueFullError):
        a.begin_send().skip(RING + 1)


def test_double_commit_rejected():
    a, _ = make_pair(make_memory())
    batch = a.begin_send()
    batch.commit()
    with pytest.raises(RuntimeError):
        batch.commit()


def test_corrupt_producer_counter():
    mem = make_memory()
    _, b = make_pair(mem)
    mem["db_b"][0:8] = (RING * 2).to_bytes(8, "little")
    with pytest.raises(QueueCorruptError):
        b.begin_receive()


def test_broken_consumer_counter_gives_empty_batch():
    mem = make_memory()
    a, _ = make_pair(mem)
    mem["db_a"][64:72] = (RING * 4).to_bytes(8, "little")
    batch = a.begin_send()
    with pytest.raises(QueueFullError):
        batch.append(b"x")


@pytest.mark.parametrize(
    "ring_size, message",
    [(1000, "multiple of 4K"), (3 * PAGE_SIZE, "power of two"), (0, "power of two")],
)
def test_invalid_ring_sizes(ring_size, message):
    with pytest.raises(ValueError, match=message):
        SpscQueuePair(
            bytearray(DOORBELLS_SIZE),
            bytearray(ring_size),
            bytearray(DOORBELLS_SIZE),
            bytearray(PAGE_SIZE),
        )


def test_small_doorbells_rejected():
    with pytest.raises(ValueError, match="Remote region doorbells"):
        SpscQueuePair(
            bytearray(DOORBELLS_SIZE),
            bytearray(PAGE_SIZE),
            bytearray(DOORBELLS_SIZE - 1),
            bytearray(PAGE_SIZE),
        )


def test_save_and_restore():
    mem = make_memory()
    a, b = make_pair(mem)
    send(a, b"first")
    send(b, b"reply")
    receive_all(b)
    state = a.save_state()
    assert state == QueuePairState(local_bytes_consumed=0, remote_bytes_produced=5)
    restored = SpscQueuePair(mem["db_a"], mem["ring_a"], mem["db_b"], mem["ring_b"])
    restored.restore_state(state)
    assert restored.save_state() == state
    assert receive_all(restored) == b"reply"
    send(restored, b"second")
    assert receive_all(b) == b"second"


def test_restore_mismatch_rejected():
    mem = make_memory()
    a, _ = make_pair(mem)
    send(a, b"abc")
    fresh = SpscQueuePair(mem["db_a"], mem["ring_a"], mem["db_b"], mem["ring_b"])
    with pytest.raises(ValueError, match="state mismatch"):
        fresh.restore_state(QueuePairState(0, 0))


def test_restore_unclean_rejected():
    mem = make_memory()
    a, _ = make_pair(mem)
    send(a, b"abc")
    with pytest.raises(RuntimeError):
        a.restore_state(a.save_state())


def test_many_messages_preserve_order():
    a, b = make_pair(make_memory())
    received = []
    for i in range(50):
        message = bytes([i]) * (i * 37 % 300 + 1)
        send(a, message)
        received.append((message, receive_all(b)))
    assert all(sent == got for sent, got in received)
    assert a.save_state().remote_bytes_produced == b.save_state().local_bytes_consumed