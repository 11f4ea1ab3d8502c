"""
Inventory Lifecycle State Machine

This module is the SINGLE SOURCE OF TRUTH for all inventory status transitions.
All status changes must go through this module.

Lifecycle:
    planning -> open -> count1_open -> count1_closed -> count2_open -> count2_closed
        -> count3_required -> count3_open -> count3_closed -> audit_mode -> closed
        -> audit_mode (when every item settled after round 2)
    cancelled is reachable from every non-terminal state.
"""

from typing import List, Dict, Tuple
from datetime import datetime, timezone

from stocktake.core.exceptions import InventoryStateError, BusinessValidationError
from stocktake.models.inventory import InventoryStatus


S = InventoryStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
INVENTORY_TRANSITIONS: Dict[InventoryStatus, List[InventoryStatus]] = {
    S.PLANNING: [
        S.OPEN,             # Release for counting
        S.CANCELLED,
    ],
    S.OPEN: [
        S.COUNT1_OPEN,      # Start counting
        S.CANCELLED,
    ],
    S.COUNT1_OPEN: [
        S.COUNT1_CLOSED,    # Finish counting
        S.CANCELLED,
    ],
    S.COUNT1_CLOSED: [
        S.COUNT2_OPEN,      # Start counting
        S.CANCELLED,
    ],
    S.COUNT2_OPEN: [
        S.COUNT2_CLOSED,    # Finish counting
        S.CANCELLED,
    ],
    S.COUNT2_CLOSED: [
        S.COUNT3_REQUIRED,  # Some items unsettled
        S.AUDIT_MODE,       # Every item settled, skip the third round
        S.COUNT3_OPEN,      # Start counting
        S.CANCELLED,
    ],
    S.COUNT3_REQUIRED: [
        S.COUNT3_OPEN,      # Start counting
        S.CANCELLED,
    ],
    S.COUNT3_OPEN: [
        S.COUNT3_CLOSED,    # Finish counting
        S.CANCELLED,
    ],
    S.COUNT3_CLOSED: [
        S.AUDIT_MODE,       # Always, unsettled items go to manual audit
        S.CANCELLED,
    ],
    S.AUDIT_MODE: [
        S.CLOSED,           # Only when every item is settled
        S.CANCELLED,
    ],
    S.CLOSED: [],           # Terminal state - no transitions
    S.CANCELLED: [],        # Terminal state - no transitions
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[Tuple[InventoryStatus, InventoryStatus], str] = {
    (S.PLANNING, S.OPEN): "Open Inventory",
    (S.OPEN, S.COUNT1_OPEN): "Start 1st Count",
    (S.COUNT1_OPEN, S.COUNT1_CLOSED): "Finish 1st Count",
    (S.COUNT1_CLOSED, S.COUNT2_OPEN): "Start 2nd Count",
    (S.COUNT2_OPEN, S.COUNT2_CLOSED): "Finish 2nd Count",
    (S.COUNT2_CLOSED, S.COUNT3_REQUIRED): "Require 3rd Count",
    (S.COUNT2_CLOSED, S.AUDIT_MODE): "Skip 3rd Count",
    (S.COUNT2_CLOSED, S.COUNT3_OPEN): "Start 3rd Count",
    (S.COUNT3_REQUIRED, S.COUNT3_OPEN): "Start 3rd Count",
    (S.COUNT3_OPEN, S.COUNT3_CLOSED): "Finish 3rd Count",
    (S.COUNT3_CLOSED, S.AUDIT_MODE): "Enter Audit",
    (S.AUDIT_MODE, S.CLOSED): "Close Inventory",
}

# "start counting" and "finish counting" resolve their target from the source
START_COUNTING: Dict[InventoryStatus, InventoryStatus] = {
    S.OPEN: S.COUNT1_OPEN,
    S.COUNT1_CLOSED: S.COUNT2_OPEN,
    S.COUNT2_CLOSED: S.COUNT3_OPEN,
    S.COUNT3_REQUIRED: S.COUNT3_OPEN,
}

FINISH_COUNTING: Dict[InventoryStatus, InventoryStatus] = {
    S.COUNT1_OPEN: S.COUNT1_CLOSED,
    S.COUNT2_OPEN: S.COUNT2_CLOSED,
    S.COUNT3_OPEN: S.COUNT3_CLOSED,
}

# Status in which each count stage may be written
STAGE_OPEN_STATUS: Dict[int, InventoryStatus] = {
    1: S.COUNT1_OPEN,
    2: S.COUNT2_OPEN,
    3: S.COUNT3_OPEN,
    4: S.AUDIT_MODE,
}

TERMINAL_STATUSES = frozenset({S.CLOSED, S.CANCELLED})


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def as_status(value) -> InventoryStatus:
    """Coerce a stored status string into the enum."""
    try:
        return InventoryStatus(value)
    except ValueError:
        raise BusinessValidationError(
            f"Unknown inventory status '{value}'",
            error_code="INVALID_STATUS",
        )


def can_transition(current_status: InventoryStatus, new_status: InventoryStatus) -> bool:
    """Check if a transition is allowed."""
    return new_status in INVENTORY_TRANSITIONS.get(as_status(current_status), [])


def get_allowed_transitions(current_status: InventoryStatus) -> List[InventoryStatus]:
    """Get list of statuses that can be transitioned to from current status."""
    return INVENTORY_TRANSITIONS.get(as_status(current_status), [])


def get_transition_action(current_status: InventoryStatus, new_status: InventoryStatus) -> str:
    """Get human-readable action name for a transition."""
    if new_status == S.CANCELLED:
        return "Cancel Inventory"
    return TRANSITION_ACTIONS.get(
        (as_status(current_status), as_status(new_status)),
        f"{as_status(current_status).value} -> {as_status(new_status).value}"
    )


def is_terminal(status: InventoryStatus) -> bool:
    """Is this a terminal (final) state?"""
    return as_status(status) in TERMINAL_STATUSES


def ensure_not_terminal(status: InventoryStatus) -> None:
    """Reject any mutation of a closed or cancelled inventory."""
    if is_terminal(status):
        raise InventoryStateError(
            f"Inventory in '{as_status(status).value}' status cannot be modified. "
            f"This is a terminal state.",
            error_code="INVENTORY_TERMINAL",
            details={"status": as_status(status).value},
        )


def validate_transition(current_status: InventoryStatus, new_status: InventoryStatus) -> None:
    """
    Validate a status transition. Raises InventoryStateError if invalid.

    Re-invoking a transition from a state the inventory has already left is
    rejected, never silently repeated.
    """
    current = as_status(current_status)
    target = as_status(new_status)

    ensure_not_terminal(current)

    if not can_transition(current, target):
        allowed = get_allowed_transitions(current)
        raise InventoryStateError(
            f"Cannot change inventory from '{current.value}' to '{target.value}'. "
            f"Allowed transitions: {', '.join(s.value for s in allowed)}",
            error_code="INVALID_TRANSITION",
            details={
                "current_status": current.value,
                "requested_status": target.value,
                "allowed": [s.value for s in allowed],
            },
        )


def start_counting_target(current_status: InventoryStatus) -> InventoryStatus:
    """Resolve the counting round opened by "start counting"."""
    current = as_status(current_status)
    ensure_not_terminal(current)
    target = START_COUNTING.get(current)
    if target is None:
        raise InventoryStateError(
            f"Cannot start counting from '{current.value}'",
            error_code="INVALID_TRANSITION",
            details={"current_status": current.value, "allowed_from": [s.value for s in START_COUNTING]},
        )
    return target


def finish_counting_target(current_status: InventoryStatus) -> InventoryStatus:
    """Resolve the status reached by "finish counting"."""
    current = as_status(current_status)
    ensure_not_terminal(current)
    target = FINISH_COUNTING.get(current)
    if target is None:
        raise InventoryStateError(
            f"Cannot finish counting from '{current.value}'",
            error_code="INVALID_TRANSITION",
            details={"current_status": current.value, "allowed_from": [s.value for s in FINISH_COUNTING]},
        )
    return target


def second_round_outcome(unsettled_count: int) -> InventoryStatus:
    """After round 2: a third round if anything is unsettled, audit otherwise."""
    return S.COUNT3_REQUIRED if unsettled_count > 0 else S.AUDIT_MODE


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_inventory(inventory, new_status: InventoryStatus, user_id=None) -> InventoryStatus:
    """
    Transition an inventory to a new status.

    This function:
    1. Validates the transition is allowed
    2. Updates the status
    3. Sets lifecycle timestamps based on the transition

    Returns:
        The previous status

    Raises:
        InventoryStateError: If transition is not allowed
    """
    previous = as_status(inventory.status)
    target = as_status(new_status)

    validate_transition(previous, target)

    inventory.status = target.value
    now = datetime.now(timezone.utc)

    if target == S.COUNT1_OPEN and inventory.start_date is None:
        inventory.start_date = now

    elif target == S.CLOSED:
        inventory.end_date = now
        inventory.closed_by = user_id

    elif target == S.CANCELLED:
        inventory.end_date = now
        inventory.cancelled_at = now
        inventory.cancelled_by = user_id

    return previous


# =============================================================================
# VISUALIZATION (for debugging/documentation)
# =============================================================================

def print_state_diagram():
    """Print a text representation of the state machine."""
    print("\n=== Inventory State Machine ===\n")
    for status in InventoryStatus:
        transitions = get_allowed_transitions(status)
        if transitions:
            print(f"{status.value}:")
            for t in transitions:
                print(f"  -> {t.value} ({get_transition_action(status, t)})")
        else:
            print(f"{status.value}: [TERMINAL STATE]")
        print()


if __name__ == "__main__":
    # Run this file directly to see the state diagram
    print_state_diagram()
