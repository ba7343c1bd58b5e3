from datetime import timedelta

import pytest

from roomrelay.backend.directory import RoomDirectory
from roomrelay.backend.errors import RoomNotFoundError
from roomrelay.backend.models import Offer, utc_now
from roomrelay.backend.relay import RelayQueue
from roomrelay.backend.store import create_relay_state
from roomrelay.backend.sweeper import IdleSweeper


def test_sweep_removes_idle_rooms_with_mailboxes() -> None:
    state = create_relay_state()
    directory = RoomDirectory(state)
    relay = RelayQueue(state)
    sweeper = IdleSweeper(state, idle_seconds=60)
    directory.join("idle", "a", "")
    relay.enqueue("idle", "b", Offer(from_peer_id="a", description={}))

    result = sweeper.sweep(now=utc_now() + timedelta(seconds=61))

    assert result.rooms_removed == ("idle",)
    with pytest.raises(RoomNotFoundError):
        directory.describe("idle")
    assert relay.drain("idle", "b") == []


def test_sweep_keeps_recently_active_rooms() -> None:
    state = create_relay_state()
    directory = RoomDirectory(state)
    sweeper = IdleSweeper(state, idle_seconds=60)
    directory.join("busy", "a", "")

    result = sweeper.sweep(now=utc_now() + timedelta(seconds=30))

    assert result.rooms_removed == ()
    assert directory.describe("busy").initiator.peer_id == "a"


def test_sweep_removes_orphan_mailboxes() -> None:
    state = create_relay_state()
    relay = RelayQueue(state)
    sweeper = IdleSweeper(state, idle_seconds=60)
    relay.enqueue("ghost", "b", Offer(from_peer_id="a", description={}))

    assert sweeper.sweep().mailboxes_removed == ()

    result = sweeper.sweep(now=utc_now() + timedelta(seconds=120))

    assert result.mailboxes_removed == (("ghost", "b"),)
    assert relay.drain("ghost", "b") == []
