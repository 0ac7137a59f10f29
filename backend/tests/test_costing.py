import pytest

from hwpos.errors import InsufficientStockError, ValidationError
from hwpos.models.inventory import LOG_ASSEMBLY, LOG_RECEIVED
from hwpos.models.purchasing import PO_APPROVED, PO_PARTIALLY_RECEIVED, PO_RECEIVED
from hwpos.services.costing import (
    AssemblyPart,
    ItemState,
    compute_sale_totals,
    derive_po_status,
    find_duplicate_serials,
    normalize_serials,
    plan_assembly,
    plan_receipt_line,
    weighted_average_cost_cents,
)


class TestWeightedAverageCost:
    def test_empty_stock_takes_batch_price(self):
        assert weighted_average_cost_cents(0, 0, 4, 500) == 500

    def test_negative_stock_takes_batch_price(self):
        assert weighted_average_cost_cents(-3, 900, 2, 500) == 500

    def test_blends_equal_batches(self):
        assert weighted_average_cost_cents(10, 500, 10, 700) == 600

    def test_rounds_half_up_to_the_cent(self):
        # (100 + 101) / 2 = 100.5
        assert weighted_average_cost_cents(1, 100, 1, 101) == 101
        # (100 + 202) / 3 = 100.67
        assert weighted_average_cost_cents(1, 100, 2, 101) == 101
        # (300 + 101) / 4 = 100.25
        assert weighted_average_cost_cents(3, 100, 1, 101) == 100

    def test_rejects_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            weighted_average_cost_cents(5, 100, 0, 100)


class TestPlanReceiptLine:
    item = ItemState(id=1, name="Drill", stock=0, cost_cents=0)

    def _plan(self, item=None, **overrides):
        kwargs = dict(
            ordered_quantity=10,
            previously_received=0,
            cumulative_received=4,
            unit_price_cents=500,
            description="Received from PO PO-000001 - Acme",
        )
        kwargs.update(overrides)
        return plan_receipt_line(item or self.item, **kwargs)

    def test_first_receipt(self):
        plan = self._plan()
        assert plan.quantity_to_add == 4
        assert plan.received_quantity == 4
        assert plan.new_stock == 4
        assert plan.new_cost_cents == 500
        assert plan.movement.log_type == LOG_RECEIVED
        assert plan.movement.quantity_change == 4
        assert (plan.movement.old_stock, plan.movement.new_stock) == (0, 4)

    def test_resubmitting_cumulative_amount_is_noop(self):
        item = ItemState(id=1, name="Drill", stock=4, cost_cents=500)
        plan = self._plan(item, previously_received=4, cumulative_received=4)
        assert plan.is_noop
        assert plan.movement is None
        assert plan.new_stock == 4
        assert plan.new_cost_cents == 500

    def test_second_receipt_adds_only_the_difference(self):
        item = ItemState(id=1, name="Drill", stock=4, cost_cents=500)
        plan = self._plan(item, previously_received=4, cumulative_received=10)
        assert plan.quantity_to_add == 6
        assert plan.new_stock == 10

    def test_rejects_more_than_ordered(self):
        with pytest.raises(ValidationError):
            self._plan(cumulative_received=11)

    def test_rejects_going_backwards(self):
        with pytest.raises(ValidationError):
            self._plan(previously_received=6, cumulative_received=5)

    def test_rejects_negative(self):
        with pytest.raises(ValidationError):
            self._plan(cumulative_received=-1)


class TestDerivePoStatus:
    def test_all_lines_full(self):
        assert derive_po_status(PO_PARTIALLY_RECEIVED, [(10, 10), (5, 5)]) == PO_RECEIVED

    def test_some_received(self):
        assert derive_po_status(PO_APPROVED, [(10, 4), (5, 0)]) == PO_PARTIALLY_RECEIVED

    def test_nothing_received_keeps_status(self):
        assert derive_po_status(PO_APPROVED, [(10, 0)]) == PO_APPROVED


class TestPlanAssembly:
    part_a = ItemState(id=1, name="Part A", stock=10, cost_cents=200)
    part_b = ItemState(id=2, name="Part B", stock=5, cost_cents=500)
    final = ItemState(id=3, name="Kit", stock=0, cost_cents=0)

    def test_costs_final_item_from_parts(self):
        plan = plan_assembly(self.final, 1, [AssemblyPart(self.part_a, 3), AssemblyPart(self.part_b, 1)])

        assert plan.unit_cost_cents == 1100
        assert plan.final_cost_cents == 1100
        assert [(m.item_id, m.quantity_change, m.old_stock, m.new_stock) for m in plan.part_movements] == [
            (1, -3, 10, 7),
            (2, -1, 5, 4),
        ]
        assert all(m.log_type == LOG_ASSEMBLY for m in plan.part_movements)
        assert plan.part_movements[0].description == "Used in assembly of 1x Kit"
        assert plan.final_movement.quantity_change == 1
        assert plan.final_movement.description == "Assembled from: Part A (3), Part B (1)"
        assert plan.part_usage == [(1, 3, 3), (2, 1, 1)]

    def test_scales_with_quantity(self):
        plan = plan_assembly(self.final, 2, [AssemblyPart(self.part_a, 3)])
        assert plan.part_movements[0].quantity_change == -6
        assert plan.final_movement.new_stock == 2
        assert plan.unit_cost_cents == 600

    def test_merges_repeated_parts(self):
        plan = plan_assembly(self.final, 1, [AssemblyPart(self.part_a, 2), AssemblyPart(self.part_a, 1)])
        assert plan.part_usage == [(1, 3, 3)]

    def test_shortage_rejects_whole_build(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_assembly(self.final, 2, [AssemblyPart(self.part_a, 1), AssemblyPart(self.part_b, 3)])
        assert str(exc_info.value) == "Insufficient stock for Part B. Required: 6, Available: 5"
        assert exc_info.value.required == 6
        assert exc_info.value.available == 5

    def test_zero_cost_parts_keep_final_cost(self):
        free = ItemState(id=4, name="Sticker", stock=10, cost_cents=0)
        final = ItemState(id=3, name="Kit", stock=0, cost_cents=750)
        plan = plan_assembly(final, 1, [AssemblyPart(free, 1)])
        assert plan.unit_cost_cents == 0
        assert plan.final_cost_cents == 750

    def test_rejects_final_item_as_part(self):
        with pytest.raises(ValidationError):
            plan_assembly(self.final, 1, [AssemblyPart(self.final, 1)])

    def test_rejects_bad_quantities(self):
        with pytest.raises(ValidationError):
            plan_assembly(self.final, 0, [AssemblyPart(self.part_a, 1)])
        with pytest.raises(ValidationError):
            plan_assembly(self.final, 1, [AssemblyPart(self.part_a, 0)])
        with pytest.raises(ValidationError):
            plan_assembly(self.final, 1, [])


class TestSaleTotals:
    def test_cash_exact(self):
        totals = compute_sale_totals([(5000, 2)], "cash", 10000)
        assert totals.total_cents == 10000
        assert totals.change_given_cents == 0

    def test_cash_with_change(self):
        totals = compute_sale_totals([(5000, 2), (250, 4)], "cash", 12000)
        assert totals.subtotal_cents == 11000
        assert totals.total_cents == 11000
        assert totals.amount_paid_cents == 12000
        assert totals.change_given_cents == 1000

    def test_cash_underpayment_gives_no_change(self):
        totals = compute_sale_totals([(5000, 2)], "cash", 8000)
        assert totals.total_cents == 10000
        assert totals.amount_paid_cents == 8000
        assert totals.change_given_cents == 0

    def test_cash_negative_tender_rejected(self):
        with pytest.raises(ValidationError):
            compute_sale_totals([(5000, 2)], "cash", -1)

    def test_cash_requires_amount(self):
        with pytest.raises(ValidationError):
            compute_sale_totals([(5000, 2)], "cash")

    @pytest.mark.parametrize("method", ["bank", "credit"])
    def test_non_cash_paid_exactly(self, method):
        totals = compute_sale_totals([(25000, 1)], method, 1)
        assert totals.amount_paid_cents == 25000
        assert totals.change_given_cents == 0

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            compute_sale_totals([(100, 1)], "barter")


class TestSerials:
    def test_normalize_drops_blanks(self):
        assert normalize_serials([" A1 ", "", None, "B2", "   "]) == ["A1", "B2"]
        assert normalize_serials(None) == []

    def test_duplicates_are_case_insensitive(self):
        assert find_duplicate_serials(["SN1", "sn1", "SN2"]) == ["sn1"]
        assert find_duplicate_serials(["SN1", "SN2"]) == []
