import pytest

from roomrelay.backend.models import Answer, Candidate, Offer, message_from_wire, message_to_wire


def test_message_to_wire_tags_kind_and_sender() -> None:
    wire = message_to_wire(Candidate(from_peer_id="a", candidate={"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host"}))

    assert wire["kind"] == "candidate"
    assert wire["from"] == "a"
    assert wire["payload"]["candidate"].startswith("candidate:")
    assert wire["enqueued_at"].endswith("+00:00")


def test_message_from_wire_restores_variant() -> None:
    offer = Offer(from_peer_id="a", description={"type": "offer", "sdp": "v=0"})

    restored = message_from_wire(message_to_wire(offer))

    assert isinstance(restored, Offer)
    assert restored == offer
    assert isinstance(message_from_wire({"kind": "answer", "from": "b", "payload": {}}), Answer)


def test_message_from_wire_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        message_from_wire({"kind": "bye", "from": "a", "payload": {}})
