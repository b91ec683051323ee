"""Connection lifecycle state machine.

Every transition is a pure function of the current state (and, for failures,
the reconnect policy). The supervisor owns the only live ``ConnectionState``
and swaps it for the value each transition returns; side effects such as
sleeping or exiting are described by the returned effect objects and carried
out by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from liquidation_relay.core.enums import ConnectionPhase


class InvalidTransition(RuntimeError):
    """Raised when a lifecycle event arrives in a phase that cannot accept it."""


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    max_attempts: int = 10
    initial_delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.initial_delay_seconds * (2**attempt)


@dataclass(frozen=True, slots=True)
class ConnectionState:
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    reconnect_attempts: int = 0
    connected_since: datetime | None = None
    last_close_code: int | None = None
    last_close_reason: str | None = None

    @property
    def is_connected(self) -> bool:
        return self.phase is ConnectionPhase.CONNECTED


@dataclass(frozen=True, slots=True)
class ScheduleReconnect:
    delay_seconds: float
    attempt: int


@dataclass(frozen=True, slots=True)
class GiveUp:
    attempts: int


ReconnectDecision = ScheduleReconnect | GiveUp


def _require_phase(state: ConnectionState, event: str, *allowed: ConnectionPhase) -> None:
    if state.phase not in allowed:
        raise InvalidTransition(f"cannot handle {event} while {state.phase.value}")


def begin_connect(state: ConnectionState) -> ConnectionState:
    _require_phase(state, "connect", ConnectionPhase.DISCONNECTED)
    return replace(state, phase=ConnectionPhase.CONNECTING)


def mark_connected(state: ConnectionState, now: datetime) -> ConnectionState:
    _require_phase(state, "open", ConnectionPhase.CONNECTING)
    return replace(
        state,
        phase=ConnectionPhase.CONNECTED,
        reconnect_attempts=0,
        connected_since=now,
    )


def begin_closing(state: ConnectionState) -> ConnectionState:
    if state.phase in (ConnectionPhase.DISCONNECTED, ConnectionPhase.CLOSING):
        return state
    return replace(state, phase=ConnectionPhase.CLOSING)


def mark_closed(
    state: ConnectionState,
    code: int | None = None,
    reason: str | None = None,
) -> ConnectionState:
    return replace(
        state,
        phase=ConnectionPhase.DISCONNECTED,
        connected_since=None,
        last_close_code=code,
        last_close_reason=reason,
    )


def connection_lost(
    state: ConnectionState,
    policy: ReconnectPolicy,
    code: int | None = None,
    reason: str | None = None,
) -> tuple[ConnectionState, ReconnectDecision]:
    """Move to DISCONNECTED and decide whether another attempt is allowed.

    The k-th consecutive failure (k counted from zero) waits
    ``initial_delay * 2**k``. Once ``max_attempts`` reconnects have been
    scheduled without a successful open in between, the decision is ``GiveUp``.
    """
    _require_phase(state, "connection loss", ConnectionPhase.CONNECTING, ConnectionPhase.CONNECTED)
    closed = mark_closed(state, code, reason)

    attempt = state.reconnect_attempts
    if attempt >= policy.max_attempts:
        return closed, GiveUp(attempts=attempt)

    return (
        replace(closed, reconnect_attempts=attempt + 1),
        ScheduleReconnect(delay_seconds=policy.delay_for(attempt), attempt=attempt + 1),
    )
