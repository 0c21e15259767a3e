# Overview: Lifecycle state machines for lots, returns, quotations, credits and ledger operations.

"""
Parts Ledger Lifecycle State Machines

================================================================================
PURPOSE: One place that knows every legal status transition
================================================================================

LOT:
    ACTIVE <-> EXHAUSTED

    ACTIVE:    remaining_quantity > 0, eligible for FIFO allocation
    EXHAUSTED: remaining_quantity == 0, skipped by allocation; a reversal
               brings it back to ACTIVE. Lots are never deleted.

RETURN:
    REQUESTED -> APPROVED
    REQUESTED -> REJECTED

    APPROVED and REJECTED are terminal: a return is finalized exactly once.

QUOTATION:
    DRAFT -> PENDING -> CONFIRMED
    DRAFT -> CANCELLED
    PENDING -> CANCELLED

    DRAFT:     lines are being edited; no stock is reserved
    PENDING:   offered to the customer; lines frozen
    CONFIRMED: converted into a sale that consumed stock (terminal)
    CANCELLED: dropped without touching stock (terminal)

CREDIT:
    TEMPORARY -> ACTIVE
    TEMPORARY -> DISCARDED

    TEMPORARY: credit sale being assembled; stock is NOT consumed yet
    ACTIVE:    registered; every line consumed FIFO (terminal)
    DISCARDED: abandoned before registration (terminal)

LEDGER OPERATION (one consumption / reversal / intake attempt):
    PLANNING -> VALIDATING -> COMMITTING -> COMMITTED
    (any non-terminal state) -> ABORTED

    ABORTED has no side effects. COMMITTED is the only state from which
    audit records exist.

RULES:
1. Transitions not listed in a table are rejected with InvalidTransitionError
2. Terminal states accept no transitions
3. Status columns store the enum value (plain strings in the database)
================================================================================
"""

from __future__ import annotations

from enum import Enum

from ..errors import InvalidTransitionError


class LotStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXHAUSTED = "EXHAUSTED"


class ReturnStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class QuotationStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class CreditStatus(str, Enum):
    TEMPORARY = "TEMPORARY"
    ACTIVE = "ACTIVE"
    DISCARDED = "DISCARDED"


class OperationState(str, Enum):
    PLANNING = "PLANNING"
    VALIDATING = "VALIDATING"
    COMMITTING = "COMMITTING"
    COMMITTED = "COMMITTED"
    ABORTED = "ABORTED"


LOT_TRANSITIONS = {
    (LotStatus.ACTIVE, LotStatus.EXHAUSTED),
    (LotStatus.EXHAUSTED, LotStatus.ACTIVE),
}

RETURN_TRANSITIONS = {
    (ReturnStatus.REQUESTED, ReturnStatus.APPROVED),
    (ReturnStatus.REQUESTED, ReturnStatus.REJECTED),
}

QUOTATION_TRANSITIONS = {
    (QuotationStatus.DRAFT, QuotationStatus.PENDING),
    (QuotationStatus.PENDING, QuotationStatus.CONFIRMED),
    (QuotationStatus.DRAFT, QuotationStatus.CANCELLED),
    (QuotationStatus.PENDING, QuotationStatus.CANCELLED),
}

CREDIT_TRANSITIONS = {
    (CreditStatus.TEMPORARY, CreditStatus.ACTIVE),
    (CreditStatus.TEMPORARY, CreditStatus.DISCARDED),
}

OPERATION_TRANSITIONS = {
    (OperationState.PLANNING, OperationState.VALIDATING),
    (OperationState.VALIDATING, OperationState.COMMITTING),
    (OperationState.COMMITTING, OperationState.COMMITTED),
    (OperationState.PLANNING, OperationState.ABORTED),
    (OperationState.VALIDATING, OperationState.ABORTED),
    (OperationState.COMMITTING, OperationState.ABORTED),
}

_TABLES = {
    LotStatus: LOT_TRANSITIONS,
    ReturnStatus: RETURN_TRANSITIONS,
    QuotationStatus: QUOTATION_TRANSITIONS,
    CreditStatus: CREDIT_TRANSITIONS,
    OperationState: OPERATION_TRANSITIONS,
}


def can_transition(current: Enum, target: Enum) -> bool:
    """
    Check a transition against the table of the enum's state machine.

    Same-state transitions are not transitions and are reported as False;
    callers that only want to sync a status should compare first.
    """
    if type(current) is not type(target):
        return False
    return (current, target) in _TABLES[type(current)]


def transition(current, target: Enum) -> Enum:
    """
    Validate and return the target state.

    `current` may be the enum member or its stored string value.

    Raises:
        InvalidTransitionError: If the table does not allow current -> target
    """
    machine = type(target)
    try:
        current_state = machine(current)
    except ValueError:
        raise InvalidTransitionError(f"Unknown {machine.__name__} '{current}'")

    if not can_transition(current_state, target):
        raise InvalidTransitionError(
            f"Illegal {machine.__name__} transition {current_state.value} -> {target.value}"
        )
    return target


def lot_status_for(remaining_quantity: int) -> LotStatus:
    """Status a lot must have for the given remaining quantity."""
    return LotStatus.ACTIVE if remaining_quantity > 0 else LotStatus.EXHAUSTED


def sync_lot_status(lot) -> None:
    """
    Move a lot to the status implied by its remaining quantity.

    No-op when already consistent; otherwise goes through the transition table.
    """
    desired = lot_status_for(lot.remaining_quantity)
    if lot.status != desired.value:
        lot.status = transition(lot.status, desired).value


class LedgerOperation:
    """
    Tracks the state of one ledger operation attempt.

    The coordinator creates one per attempt; services advance it from
    PLANNING through VALIDATING once their read phase is done.
    """

    def __init__(self, name: str):
        self.name = name
        self.state = OperationState.PLANNING
        self.history = [OperationState.PLANNING]

    def advance(self, target: OperationState) -> None:
        self.state = transition(self.state, target)
        self.history.append(target)

    def abort(self) -> None:
        if self.is_terminal:
            return
        self.advance(OperationState.ABORTED)

    @property
    def is_terminal(self) -> bool:
        return self.state in (OperationState.COMMITTED, OperationState.ABORTED)

    def __repr__(self) -> str:
        return f"<LedgerOperation name={self.name!r} state={self.state.value}>"
