from __future__ import annotations

from datetime import UTC, datetime

import pytest

from liquidation_relay.core.connection import (
    ConnectionState,
    GiveUp,
    InvalidTransition,
    ReconnectPolicy,
    ScheduleReconnect,
    begin_closing,
    begin_connect,
    connection_lost,
    mark_closed,
    mark_connected,
)
from liquidation_relay.core.enums import ConnectionPhase

NOW = datetime(2026, 1, 15, 10, 0, tzinfo=UTC)


def test_initial_state_is_disconnected() -> None:
    state = ConnectionState()

    assert state.phase is ConnectionPhase.DISCONNECTED
    assert state.reconnect_attempts == 0
    assert state.is_connected is False


def test_open_resets_attempt_counter() -> None:
    state = ConnectionState(phase=ConnectionPhase.CONNECTING, reconnect_attempts=7)

    connected = mark_connected(state, NOW)

    assert connected.phase is ConnectionPhase.CONNECTED
    assert connected.reconnect_attempts == 0
    assert connected.connected_since == NOW
    assert state.reconnect_attempts == 7


def test_close_after_three_failures_waits_eight_initial_delays() -> None:
    policy = ReconnectPolicy(max_attempts=10, initial_delay_seconds=1.0)
    state = ConnectionState(phase=ConnectionPhase.CONNECTING, reconnect_attempts=3)

    new_state, decision = connection_lost(state, policy, code=1006, reason="")

    assert decision == ScheduleReconnect(delay_seconds=8.0, attempt=4)
    assert new_state.phase is ConnectionPhase.DISCONNECTED
    assert new_state.reconnect_attempts == 4
    assert new_state.last_close_code == 1006


def test_backoff_sequence_doubles_until_cap_then_gives_up() -> None:
    policy = ReconnectPolicy(max_attempts=5, initial_delay_seconds=0.5)
    state = ConnectionState()
    delays: list[float] = []

    while True:
        state = begin_connect(state)
        state, decision = connection_lost(state, policy, code=1006)
        if isinstance(decision, GiveUp):
            break
        delays.append(decision.delay_seconds)

    assert delays == [0.5, 1.0, 2.0, 4.0, 8.0]
    assert decision == GiveUp(attempts=5)
    assert state.phase is ConnectionPhase.DISCONNECTED


def test_failure_after_stable_connection_restarts_backoff() -> None:
    policy = ReconnectPolicy(max_attempts=10, initial_delay_seconds=1.0)
    state = ConnectionState(phase=ConnectionPhase.CONNECTING, reconnect_attempts=6)

    state = mark_connected(state, NOW)
    _, decision = connection_lost(state, policy, code=1001, reason="going away")

    assert decision == ScheduleReconnect(delay_seconds=1.0, attempt=1)


def test_zero_max_attempts_gives_up_immediately() -> None:
    state = ConnectionState(phase=ConnectionPhase.CONNECTED)

    _, decision = connection_lost(state, ReconnectPolicy(max_attempts=0))

    assert decision == GiveUp(attempts=0)


def test_invalid_transitions_are_rejected() -> None:
    with pytest.raises(InvalidTransition):
        mark_connected(ConnectionState(), NOW)
    with pytest.raises(InvalidTransition):
        begin_connect(ConnectionState(phase=ConnectionPhase.CONNECTED))
    with pytest.raises(InvalidTransition):
        connection_lost(ConnectionState(), ReconnectPolicy())


def test_closing_path_keeps_counter() -> None:
    state = ConnectionState(phase=ConnectionPhase.CONNECTED, connected_since=NOW)

    closing = begin_closing(state)
    closed = mark_closed(closing, code=1000, reason="shutdown")

    assert closing.phase is ConnectionPhase.CLOSING
    assert closed.phase is ConnectionPhase.DISCONNECTED
    assert closed.connected_since is None
    assert closed.last_close_reason == "shutdown"
    assert begin_closing(ConnectionState()) == ConnectionState()
