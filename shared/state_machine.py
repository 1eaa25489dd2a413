from enum import Enum
from typing import Optional, List
from dataclasses import dataclass

from .errors import InvalidState, ValidationError


class TournamentState(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransitionError(InvalidState):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass(frozen=True)
class Transition:
    from_state: TournamentState
    to_state: TournamentState
    action: str


class TournamentStateMachine:
    TRANSITIONS = [
        Transition(TournamentState.DRAFT, TournamentState.OPEN, "open"),
        Transition(TournamentState.OPEN, TournamentState.ACTIVE, "start"),
        Transition(TournamentState.ACTIVE, TournamentState.COMPLETED, "complete"),
        Transition(TournamentState.DRAFT, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.OPEN, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.ACTIVE, TournamentState.CANCELLED, "cancel"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.DRAFT: ["edit", "open", "cancel", "unregister"],
        TournamentState.OPEN: ["register", "unregister", "start", "cancel"],
        TournamentState.ACTIVE: ["schedule_match", "record_result", "advance_round", "complete", "cancel"],
        TournamentState.COMPLETED: [],
        TournamentState.CANCELLED: [],
    }

    def __init__(self, initial_state: TournamentState = TournamentState.DRAFT):
        self._state = TournamentState(initial_state)

    @property
    def state(self) -> TournamentState:
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def _find(self, action: str) -> Optional[Transition]:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return t
        return None

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str) -> TournamentState:
        t = self._find(action)
        if t is None:
            raise TransitionError(
                self._state.value,
                "unknown",
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )
        self._state = t.to_state
        return self._state

    @classmethod
    def states_allowing(cls, action: str) -> List[TournamentState]:
        """Every state in which ``action`` is permitted, in declaration order."""
        return [state for state, actions in cls.ALLOWED_ACTIONS.items() if action in actions]

    @classmethod
    def from_state_string(cls, state_str: str) -> "TournamentStateMachine":
        if isinstance(state_str, TournamentState):
            return cls(initial_state=state_str)
        try:
            state = TournamentState((state_str or "").upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Unknown tournament status '{state_str}'")
        return cls(initial_state=state)
