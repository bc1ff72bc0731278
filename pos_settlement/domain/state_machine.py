"""Settlement lifecycle: Idle -> MethodSelected -> Validating -> Writing -> Settled | Failed"""

from enum import Enum
from typing import Dict, List, Optional, Set

from pos_settlement.domain.exceptions import InvalidStateTransition
from pos_settlement.domain.models import PaymentMethod


class SettlementState(str, Enum):
    IDLE = "idle"
    METHOD_SELECTED = "method_selected"
    VALIDATING = "validating"
    WRITING = "writing"
    SETTLED = "settled"
    FAILED = "failed"


TRANSITIONS: Dict[SettlementState, Set[SettlementState]] = {
    SettlementState.IDLE: {SettlementState.METHOD_SELECTED},
    SettlementState.METHOD_SELECTED: {SettlementState.METHOD_SELECTED, SettlementState.VALIDATING},
    SettlementState.VALIDATING: {SettlementState.WRITING, SettlementState.FAILED},
    SettlementState.WRITING: {SettlementState.SETTLED, SettlementState.FAILED},
    SettlementState.SETTLED: set(),
    SettlementState.FAILED: set(),
}


class SettlementStateMachine:
    """
    Tracks one checkout through the settlement states.

    Writes may only start from Validating, so every validation failure lands
    in Failed with nothing persisted. A checkout can be abandoned at any point
    before Writing; once writing has started it runs to Settled or Failed.
    """

    def __init__(self) -> None:
        self.state = SettlementState.IDLE
        self.method: Optional[PaymentMethod] = None
        self.error: Optional[str] = None
        self.history: List[SettlementState] = [SettlementState.IDLE]

    def _move(self, target: SettlementState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"Cannot move from {self.state.value} to {target.value}")
        self.state = target
        self.history.append(target)

    def select_method(self, method: PaymentMethod) -> None:
        self._move(SettlementState.METHOD_SELECTED)
        self.method = method

    def begin_validation(self) -> None:
        self._move(SettlementState.VALIDATING)

    def begin_writing(self) -> None:
        self._move(SettlementState.WRITING)

    def settle(self) -> None:
        self._move(SettlementState.SETTLED)

    def fail(self, error: str) -> None:
        self._move(SettlementState.FAILED)
        self.error = error

    def abandon(self) -> None:
        """Drop the checkout without side effects; only legal before writing"""
        if self.state in (SettlementState.WRITING, SettlementState.SETTLED, SettlementState.FAILED):
            raise InvalidStateTransition(f"Cannot abandon a checkout in state {self.state.value}")
        self.state = SettlementState.IDLE
        self.method = None
        self.history.append(SettlementState.IDLE)

    @property
    def is_terminal(self) -> bool:
        return self.state in (SettlementState.SETTLED, SettlementState.FAILED)
