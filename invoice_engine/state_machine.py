from __future__ import annotations

from typing import Final


class InvalidTransitionError(ValueError):
    pass


INITIAL_STATE: Final[str] = "RECEIVED"

TERMINAL_STATES: Final[set[str]] = {"CLASSIFIED", "FAILED"}

ALLOWED_TRANSITIONS: Final[dict[str, set[str]]] = {
    "RECEIVED": {"EXTRACTED", "FAILED"},
    "EXTRACTED": {"ENHANCED", "FAILED"},
    "ENHANCED": {"VALIDATED", "FAILED"},
    "VALIDATED": {"SCORED", "FAILED"},
    "SCORED": {"CLASSIFIED", "FAILED"},
    "CLASSIFIED": set(),
    "FAILED": set(),
}


def can_transition(from_state: str, to_state: str) -> bool:
    from_norm = from_state.strip().upper()
    to_norm = to_state.strip().upper()
    return to_norm in ALLOWED_TRANSITIONS.get(from_norm, set())


def transition_state(from_state: str, to_state: str) -> str:
    from_norm = from_state.strip().upper()
    to_norm = to_state.strip().upper()

    if from_norm not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown state: {from_state}")
    if to_norm not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown state: {to_state}")
    if to_norm not in ALLOWED_TRANSITIONS[from_norm]:
        raise InvalidTransitionError(f"Invalid transition: {from_norm} -> {to_norm}")
    return to_norm


class ExtractionStateTracker:
    """Walks one extraction run through the allowed states and keeps its history."""

    def __init__(self) -> None:
        self._history: list[str] = [INITIAL_STATE]

    @property
    def state(self) -> str:
        return self._history[-1]

    @property
    def history(self) -> tuple[str, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, to_state: str) -> str:
        next_state = transition_state(self.state, to_state)
        self._history.append(next_state)
        return next_state

    def fail(self) -> str:
        if self.state == "FAILED":
            return self.state
        return self.advance("FAILED")
