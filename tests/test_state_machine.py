"""Tests for the inventory lifecycle transition table."""
from types import SimpleNamespace
import uuid

import pytest

from stocktake.core.exceptions import InventoryStateError, BusinessValidationError
from stocktake.models.inventory import InventoryStatus as S
from stocktake.services.inventory_state_machine import (
    INVENTORY_TRANSITIONS, TRANSITION_ACTIONS, can_transition, get_allowed_transitions, validate_transition,
    start_counting_target, finish_counting_target, second_round_outcome,
    transition_inventory, is_terminal, as_status,
)


def _inventory(status: S):
    return SimpleNamespace(
        status=status.value, start_date=None, end_date=None,
        closed_by=None, cancelled_at=None, cancelled_by=None,
    )


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(INVENTORY_TRANSITIONS) == set(S)

    def test_every_transition_has_an_action_name(self):
        for source, targets in INVENTORY_TRANSITIONS.items():
            for target in targets:
                assert (source, target) in TRANSITION_ACTIONS or target == S.CANCELLED

    @pytest.mark.parametrize("status", [s for s in S if s not in (S.CLOSED, S.CANCELLED)])
    def test_cancel_reachable_from_every_non_terminal_state(self, status):
        assert can_transition(status, S.CANCELLED)

    @pytest.mark.parametrize("status", [S.CLOSED, S.CANCELLED])
    def test_terminal_states_have_no_exits(self, status):
        assert get_allowed_transitions(status) == []
        assert is_terminal(status)

    def test_audit_mode_only_reachable_from_round_closures(self):
        sources = {src for src, targets in INVENTORY_TRANSITIONS.items() if S.AUDIT_MODE in targets}
        assert sources == {S.COUNT2_CLOSED, S.COUNT3_CLOSED}

    def test_closed_only_reachable_from_audit_mode(self):
        sources = {src for src, targets in INVENTORY_TRANSITIONS.items() if S.CLOSED in targets}
        assert sources == {S.AUDIT_MODE}


class TestValidateTransition:

    def test_skipping_a_round_is_rejected(self):
        with pytest.raises(InventoryStateError) as exc_info:
            validate_transition(S.COUNT1_OPEN, S.COUNT2_OPEN)
        assert exc_info.value.error_code == "INVALID_TRANSITION"
        assert exc_info.value.details["allowed"] == ["count1_closed", "cancelled"]

    def test_terminal_state_is_rejected(self):
        with pytest.raises(InventoryStateError) as exc_info:
            validate_transition(S.CLOSED, S.AUDIT_MODE)
        assert exc_info.value.error_code == "INVENTORY_TERMINAL"

    def test_string_statuses_are_accepted(self):
        validate_transition("open", "count1_open")

    def test_unknown_status(self):
        with pytest.raises(BusinessValidationError):
            as_status("archived")


class TestCountingTargets:

    @pytest.mark.parametrize("source,target", [
        (S.OPEN, S.COUNT1_OPEN),
        (S.COUNT1_CLOSED, S.COUNT2_OPEN),
        (S.COUNT2_CLOSED, S.COUNT3_OPEN),
        (S.COUNT3_REQUIRED, S.COUNT3_OPEN),
    ])
    def test_start_counting(self, source, target):
        assert start_counting_target(source) == target

    @pytest.mark.parametrize("source", [S.PLANNING, S.COUNT1_OPEN, S.AUDIT_MODE])
    def test_start_counting_from_wrong_state(self, source):
        with pytest.raises(InventoryStateError):
            start_counting_target(source)

    @pytest.mark.parametrize("source,target", [
        (S.COUNT1_OPEN, S.COUNT1_CLOSED),
        (S.COUNT2_OPEN, S.COUNT2_CLOSED),
        (S.COUNT3_OPEN, S.COUNT3_CLOSED),
    ])
    def test_finish_counting(self, source, target):
        assert finish_counting_target(source) == target

    def test_finishing_twice_is_rejected(self):
        with pytest.raises(InventoryStateError):
            finish_counting_target(S.COUNT1_CLOSED)

    def test_second_round_outcome(self):
        assert second_round_outcome(0) == S.AUDIT_MODE
        assert second_round_outcome(3) == S.COUNT3_REQUIRED


class TestTransitionInventory:

    def test_first_round_sets_start_date(self):
        inventory = _inventory(S.OPEN)
        previous = transition_inventory(inventory, S.COUNT1_OPEN)
        assert previous == S.OPEN
        assert inventory.status == "count1_open"
        assert inventory.start_date is not None

    def test_close_records_closer(self):
        user_id = uuid.uuid4()
        inventory = _inventory(S.AUDIT_MODE)
        transition_inventory(inventory, S.CLOSED, user_id)
        assert inventory.closed_by == user_id
        assert inventory.end_date is not None

    def test_cancel_records_canceller(self):
        user_id = uuid.uuid4()
        inventory = _inventory(S.COUNT2_OPEN)
        transition_inventory(inventory, S.CANCELLED, user_id)
        assert inventory.cancelled_by == user_id
        assert inventory.cancelled_at is not None

    def test_rejected_transition_leaves_status(self):
        inventory = _inventory(S.PLANNING)
        with pytest.raises(InventoryStateError):
            transition_inventory(inventory, S.CLOSED)
        assert inventory.status == "planning"
