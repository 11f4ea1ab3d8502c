"""
Tests for the reconciliation rules.

Pure functions, no database.
"""
from decimal import Decimal
from itertools import permutations

import pytest

from stocktake.core.exceptions import DataInconsistencyError
from stocktake.models.inventory import DivergenceClass, ItemStatus, InventoryItem
from stocktake.services.reconciliation import reconcile, apply_reconciliation


D = Decimal


class TestTwoCountRules:

    def test_matching_counts_equal_to_expected(self):
        result = reconcile(D("10"), D("10"), D("10"))
        assert result.final_quantity == D("10")
        assert result.divergence_class == DivergenceClass.NO_DIVERGENCE
        assert result.item_status == ItemStatus.CONFIRMED
        assert result.divergence_qty == 0

    def test_matching_counts_different_from_expected(self):
        result = reconcile(D("10"), D("8"), D("8"))
        assert result.final_quantity == D("8")
        assert result.divergence_class == DivergenceClass.CONSISTENT_DIVERGENCE
        assert result.item_status == ItemStatus.DIVERGENT
        assert result.divergence_qty == D("-2")

    def test_disagreeing_counts_need_third_round(self):
        result = reconcile(D("10"), D("8"), D("9"))
        assert result.final_quantity is None
        assert result.divergence_class == DivergenceClass.NEEDS_THIRD_COUNT
        assert result.item_status == ItemStatus.PENDING_RECOUNT
        assert not result.is_settled

    def test_single_count_waits(self):
        result = reconcile(D("10"), D("10"))
        assert result.final_quantity is None
        assert result.divergence_class == DivergenceClass.AWAITING_COUNTS
        assert result.item_status == ItemStatus.IN_PROGRESS

    def test_no_counts_is_pending(self):
        result = reconcile(D("10"))
        assert result.item_status == ItemStatus.PENDING
        assert result.final_quantity is None

    def test_zero_expected_and_zero_counts(self):
        result = reconcile(D("0"), D("0"), D("0"))
        assert result.final_quantity == D("0")
        assert result.item_status == ItemStatus.CONFIRMED


class TestThirdCount:

    def test_third_count_matches_first(self):
        result = reconcile(D("10"), D("8"), D("9"), D("8"))
        assert result.final_quantity == D("8")
        assert result.divergence_class == DivergenceClass.RESOLVED_ON_THIRD_COUNT

    def test_third_count_matches_second(self):
        result = reconcile(D("10"), D("8"), D("10"), D("10"))
        assert result.final_quantity == D("10")
        assert result.item_status == ItemStatus.CONFIRMED

    def test_third_count_matches_neither(self):
        result = reconcile(D("10"), D("8"), D("9"), D("7"))
        assert result.final_quantity is None
        assert result.divergence_class == DivergenceClass.NEEDS_AUDIT
        assert result.item_status == ItemStatus.PENDING_AUDIT

    def test_third_count_does_not_override_settled_pair(self):
        result = reconcile(D("10"), D("8"), D("8"), D("5"))
        assert result.final_quantity == D("8")
        assert result.divergence_class == DivergenceClass.CONSISTENT_DIVERGENCE

    def test_third_count_with_only_first_count(self):
        result = reconcile(D("10"), D("8"), None, D("8"))
        assert result.final_quantity == D("8")


class TestAuditOverride:

    @pytest.mark.parametrize("counts", [
        (None, None, None),
        (D("8"), D("9"), D("7")),
        (D("10"), D("10"), None),
    ])
    def test_count4_always_wins(self, counts):
        result = reconcile(D("10"), *counts, D("6"))
        assert result.final_quantity == D("6")
        assert result.divergence_class == DivergenceClass.AUDIT_SETTLED
        assert result.item_status == ItemStatus.DIVERGENT

    def test_count4_equal_to_expected_confirms(self):
        result = reconcile(D("10"), D("8"), D("9"), D("7"), D("10"))
        assert result.item_status == ItemStatus.CONFIRMED
        assert result.divergence_qty == 0


class TestAuditMode:

    @pytest.mark.parametrize("counts", [
        (None, None, None),
        (D("8"), None, None),
        (D("8"), D("9"), None),
        (D("8"), D("9"), D("7")),
    ])
    def test_unsettled_items_await_audit(self, counts):
        result = reconcile(D("10"), *counts, audit_mode=True)
        assert result.final_quantity is None
        assert result.divergence_class == DivergenceClass.NEEDS_AUDIT
        assert result.item_status == ItemStatus.PENDING_AUDIT

    def test_settled_items_keep_their_outcome(self):
        assert reconcile(D("10"), D("8"), D("8"), audit_mode=True) == reconcile(D("10"), D("8"), D("8"))

    def test_count4_still_wins(self):
        result = reconcile(D("10"), D("8"), D("9"), None, D("9"), audit_mode=True)
        assert result.final_quantity == D("9")
        assert result.divergence_class == DivergenceClass.AUDIT_SETTLED


class TestDeterminism:

    def test_same_counts_same_result(self):
        counts = (D("8"), D("9"), D("8"), None)
        assert reconcile(D("10"), *counts) == reconcile(D("10"), *counts)

    def test_result_independent_of_write_order(self):
        """Writing the same counts in any order yields the same stored result."""
        final_counts = {"count1": D("8"), "count2": D("9"), "count3": D("9")}
        results = set()
        for order in permutations(final_counts):
            item = InventoryItem(expected_quantity=D("10"))
            for field in order:
                setattr(item, field, final_counts[field])
                apply_reconciliation(item)
            results.add((item.final_quantity, item.divergence_class, item.status))
        assert results == {(D("9"), DivergenceClass.RESOLVED_ON_THIRD_COUNT.value, ItemStatus.DIVERGENT.value)}

    def test_recompute_is_idempotent(self):
        item = InventoryItem(expected_quantity=D("5"), count1=D("5"), count2=D("4"), count3=D("4"))
        first = apply_reconciliation(item)
        second = apply_reconciliation(item)
        assert first == second
        assert item.final_quantity == D("4")


class TestInconsistentData:

    def test_missing_expected_quantity(self):
        with pytest.raises(DataInconsistencyError) as exc_info:
            reconcile(None, D("1"), D("1"))
        assert exc_info.value.error_code == "MISSING_EXPECTED_QUANTITY"
        assert exc_info.value.status_code == 500
