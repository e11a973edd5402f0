"""Per-field save states and their transitions.

    idle ──edit──▶ dirty ──debounce_fired──▶ queued ──sent──▶ in_flight ──acked──▶ idle
                     ▲                          │                 │
                     └──────────edit────────────┴─────────────────┤
                                                                  failed
                                                                  ▼
                                          queued ◀──retry── failed

Any state goes back to idle on ``torn_down`` (character context discarded).
An edit always wins: whatever the field was doing, a new value makes it
dirty again.
"""

from __future__ import annotations

from enum import Enum


class FieldState(str, Enum):
    IDLE = "idle"
    DIRTY = "dirty"
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"


class FieldEvent(str, Enum):
    EDIT = "edit"
    DEBOUNCE_FIRED = "debounce_fired"
    SENT = "sent"
    ACKED = "acked"
    FAILED = "failed"
    RETRY = "retry"
    TORN_DOWN = "torn_down"


class InvalidTransition(ValueError):
    """The event is not allowed in the field's current state."""


_TRANSITIONS: dict[tuple[FieldState, FieldEvent], FieldState] = {
    (FieldState.DIRTY, FieldEvent.DEBOUNCE_FIRED): FieldState.QUEUED,
    (FieldState.QUEUED, FieldEvent.SENT): FieldState.IN_FLIGHT,
    (FieldState.IN_FLIGHT, FieldEvent.ACKED): FieldState.IDLE,
    (FieldState.IN_FLIGHT, FieldEvent.FAILED): FieldState.FAILED,
    (FieldState.FAILED, FieldEvent.RETRY): FieldState.QUEUED,
}


def transition(state: FieldState, event: FieldEvent) -> FieldState:
    """Return the state after ``event``. Pure; raises InvalidTransition."""
    if event is FieldEvent.EDIT:
        return FieldState.DIRTY
    if event is FieldEvent.TORN_DOWN:
        return FieldState.IDLE
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} is not valid while {state.value}") from None


def is_pending(state: FieldState) -> bool:
    """True while the field holds a value the server has not acknowledged."""
    return state is not FieldState.IDLE
