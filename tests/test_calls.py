import pytest

from skycall.signaling.calls import CallState, CallStateTable, call_key
from skycall.signaling.errors import Busy, IllegalTransition


def test_call_key_is_order_independent():
    assert call_key("bob", "alice") == call_key("alice", "bob") == ("alice", "bob")


def test_start_rings_and_retains_offer():
    table = CallStateTable()
    call = table.start("alice", "bob", offer={"sdp": "x"})

    assert table.state_of("bob", "alice") is CallState.RINGING
    assert call.offer == {"sdp": "x"}
    assert table.active_call_of("alice") is call
    assert table.active_call_of("bob") is call
    assert call.peer_of("alice") == "bob"


def test_start_refuses_busy_parties():
    table = CallStateTable()
    table.start("alice", "bob")

    with pytest.raises(Busy):
        table.start("carol", "alice")
    with pytest.raises(Busy):
        table.start("bob", "carol")
    # Crossed offers: the first one keeps the slot.
    with pytest.raises(Busy):
        table.start("bob", "alice")

    assert len(table) == 1
    assert table.get("alice", "bob").caller == "alice"
    assert table.active_call_of("carol") is None


def test_accept_moves_to_negotiating_and_drops_offer():
    table = CallStateTable()
    table.start("alice", "bob", offer={"sdp": "x"})

    call = table.accept("bob", "alice")

    assert call.state is CallState.NEGOTIATING
    assert call.offer is None


def test_accept_by_caller_or_twice_is_illegal():
    table = CallStateTable()
    table.start("alice", "bob")

    with pytest.raises(IllegalTransition):
        table.accept("alice", "bob")
    table.accept("bob", "alice")
    with pytest.raises(IllegalTransition):
        table.accept("bob", "alice")
    assert table.state_of("alice", "bob") is CallState.NEGOTIATING


def test_require_without_record_is_illegal():
    table = CallStateTable()
    with pytest.raises(IllegalTransition):
        table.require("alice", "bob")


def test_require_finds_call_from_either_party():
    table = CallStateTable()
    call = table.start("alice", "bob")

    assert table.require("alice", "bob") is call
    assert table.require("bob", "alice") is call
    with pytest.raises(IllegalTransition):
        table.require("carol", "bob")


def test_terminate_evicts_both_indexes():
    table = CallStateTable()
    table.start("alice", "bob")

    call = table.terminate("bob", "alice", "rejected")

    assert call.state is CallState.TERMINATED
    assert call.end_reason == "rejected"
    assert table.state_of("alice", "bob") is CallState.NONE
    assert table.active_call_of("alice") is None
    assert table.terminate("alice", "bob", "rejected") is None
    # Both parties are free again
    table.start("bob", "carol")


def test_terminate_user():
    table = CallStateTable()
    table.start("alice", "bob")

    call = table.terminate_user("bob", "peer disconnected")

    assert (call.caller, call.callee) == ("alice", "bob")
    assert len(table) == 0
    assert table.terminate_user("bob", "peer disconnected") is None
