import threading
from concurrent.futures import ThreadPoolExecutor

from roomrelay.backend.models import Answer, Candidate, Offer
from roomrelay.backend.relay import RelayQueue
from roomrelay.backend.store import create_relay_state


def test_drain_returns_messages_in_enqueue_order_then_empty() -> None:
    relay = RelayQueue(create_relay_state())
    messages = [
        Offer(from_peer_id="a", description={"type": "offer", "sdp": "o"}),
        Candidate(from_peer_id="a", candidate={"candidate": "c1"}),
        Candidate(from_peer_id="a", candidate={"candidate": "c2"}),
        Answer(from_peer_id="c", description={"type": "answer", "sdp": "x"}),
    ]
    for message in messages:
        relay.enqueue("room", "b", message)

    assert relay.drain("room", "b") == messages
    assert relay.drain("room", "b") == []


def test_enqueue_does_not_require_room_membership() -> None:
    relay = RelayQueue(create_relay_state())

    relay.enqueue("not-yet-created", "b", Offer(from_peer_id="a", description={}))

    assert len(relay.drain("not-yet-created", "b")) == 1


def test_mailboxes_are_isolated_per_recipient_and_room() -> None:
    relay = RelayQueue(create_relay_state())
    relay.enqueue("room", "b", Offer(from_peer_id="a", description={"n": 1}))
    relay.enqueue("room", "c", Offer(from_peer_id="a", description={"n": 2}))
    relay.enqueue("other", "b", Offer(from_peer_id="a", description={"n": 3}))

    assert [message.payload["n"] for message in relay.drain("room", "b")] == [1]
    assert [message.payload["n"] for message in relay.drain("room", "c")] == [2]
    assert [message.payload["n"] for message in relay.drain("other", "b")] == [3]


def test_full_mailbox_drops_oldest_entry() -> None:
    relay = RelayQueue(create_relay_state(), max_mailbox_size=3)
    for index in range(5):
        relay.enqueue("room", "b", Candidate(from_peer_id="a", candidate={"n": index}))

    assert [message.payload["n"] for message in relay.drain("room", "b")] == [2, 3, 4]


def test_concurrent_drains_partition_mailbox_contents() -> None:
    relay = RelayQueue(create_relay_state())
    total = 2000
    barrier = threading.Barrier(3)

    def produce() -> None:
        barrier.wait()
        for index in range(total):
            relay.enqueue("room", "b", Candidate(from_peer_id="a", candidate={"n": index}))

    def consume() -> list[int]:
        barrier.wait()
        seen: list[int] = []
        for _ in range(400):
            seen.extend(message.payload["n"] for message in relay.drain("room", "b"))
        return seen

    with ThreadPoolExecutor(max_workers=3) as pool:
        producer = pool.submit(produce)
        first = pool.submit(consume)
        second = pool.submit(consume)
        producer.result()
        results = first.result() + second.result()

    results.extend(message.payload["n"] for message in relay.drain("room", "b"))
    assert len(results) == total
    assert sorted(results) == list(range(total))


def test_each_concurrent_drain_sees_fifo_slice() -> None:
    relay = RelayQueue(create_relay_state())
    for index in range(500):
        relay.enqueue("room", "b", Candidate(from_peer_id="a", candidate={"n": index}))

    with ThreadPoolExecutor(max_workers=4) as pool:
        batches = list(pool.map(lambda _: [m.payload["n"] for m in relay.drain("room", "b")], range(4)))

    for batch in batches:
        assert batch == sorted(batch)
    assert sorted(n for batch in batches for n in batch) == list(range(500))
