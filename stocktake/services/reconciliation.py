"""
Reconciliation Engine.

Decides an item's settled ("final") quantity from its expected quantity and
the counts recorded so far. This is the only place final quantities are
derived; every count write re-runs it against the full stored count set, so
the result depends on the counts alone and never on write order.

Rules, in precedence order:
1. count4 (audit override) present -> final = count4.
2. count1 and count2 present:
   - equal and equal to expected -> final = expected (no divergence)
   - equal, differ from expected -> final = count2 (consistent divergence)
   - different -> third count needed, unless count3 settles it (rule 3)
3. count3 present and equal to count1 or count2 -> final = count3.
   count3 matching neither prior count -> needs audit.
4. Once the inventory is in audit mode no counting round remains, so every
   unsettled item needs audit.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from stocktake.core.exceptions import DataInconsistencyError
from stocktake.models.inventory import DivergenceClass, ItemStatus, InventoryItem


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of reconciling one item."""
    final_quantity: Optional[Decimal]
    divergence_class: DivergenceClass
    item_status: ItemStatus
    divergence_qty: Optional[Decimal] = None

    @property
    def is_settled(self) -> bool:
        return self.final_quantity is not None


def reconcile(
    expected: Optional[Decimal],
    count1: Optional[Decimal] = None,
    count2: Optional[Decimal] = None,
    count3: Optional[Decimal] = None,
    count4: Optional[Decimal] = None,
    audit_mode: bool = False,
) -> ReconciliationResult:
    """
    Compute final quantity, classification and item status.

    Pure and deterministic: the same inputs always give the same result.

    Raises:
        DataInconsistencyError: if the expected quantity is missing.
    """
    if expected is None:
        raise DataInconsistencyError(
            "Item has no expected quantity; stock snapshot is inconsistent",
            error_code="MISSING_EXPECTED_QUANTITY",
        )

    if count4 is not None:
        return _settled(expected, count4, DivergenceClass.AUDIT_SETTLED)

    result = _reconcile_counts(expected, count1, count2, count3)
    if audit_mode and not result.is_settled:
        return ReconciliationResult(
            final_quantity=None,
            divergence_class=DivergenceClass.NEEDS_AUDIT,
            item_status=ItemStatus.PENDING_AUDIT,
        )
    return result


def _reconcile_counts(
    expected: Decimal,
    count1: Optional[Decimal],
    count2: Optional[Decimal],
    count3: Optional[Decimal],
) -> ReconciliationResult:
    if count1 is not None and count2 is not None:
        if count1 == count2:
            if count2 == expected:
                return _settled(expected, expected, DivergenceClass.NO_DIVERGENCE)
            return _settled(expected, count2, DivergenceClass.CONSISTENT_DIVERGENCE)

        if count3 is None:
            return ReconciliationResult(
                final_quantity=None,
                divergence_class=DivergenceClass.NEEDS_THIRD_COUNT,
                item_status=ItemStatus.PENDING_RECOUNT,
            )

    if count3 is not None:
        if count3 == count1 or count3 == count2:
            return _settled(expected, count3, DivergenceClass.RESOLVED_ON_THIRD_COUNT)
        return ReconciliationResult(
            final_quantity=None,
            divergence_class=DivergenceClass.NEEDS_AUDIT,
            item_status=ItemStatus.PENDING_AUDIT,
        )

    counted = count1 is not None or count2 is not None
    return ReconciliationResult(
        final_quantity=None,
        divergence_class=DivergenceClass.AWAITING_COUNTS,
        item_status=ItemStatus.IN_PROGRESS if counted else ItemStatus.PENDING,
    )


def _settled(expected: Decimal, final: Decimal, divergence_class: DivergenceClass) -> ReconciliationResult:
    delta = final - expected
    return ReconciliationResult(
        final_quantity=final,
        divergence_class=divergence_class,
        item_status=ItemStatus.CONFIRMED if delta == 0 else ItemStatus.DIVERGENT,
        divergence_qty=delta,
    )


def apply_reconciliation(item: InventoryItem, audit_mode: bool = False) -> ReconciliationResult:
    """Recompute and store the derived fields of an item from its counts."""
    result = reconcile(
        item.expected_quantity,
        item.count1,
        item.count2,
        item.count3,
        item.count4,
        audit_mode=audit_mode,
    )
    item.final_quantity = result.final_quantity
    item.divergence_qty = result.divergence_qty
    item.divergence_class = result.divergence_class.value
    item.status = result.item_status.value
    return result
