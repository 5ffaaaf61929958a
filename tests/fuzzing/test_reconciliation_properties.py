"""
Hypothesis property tests for allocation and reconciliation.

Properties:
- Conservation: allocated + pending equals each OC line quantity, and
  allocated + left over equals the consumed quantity.
- Oldest first: a line receives anything only when every older line is full.
- Monotonicity: receiving more never increases any pending quantity.
- Petty-cash isolation: petty-cash receipts never change OC pending.
- Free-to-purchase is never negative and matches its formula.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from site_engines.allocation import AllocationResolver, OrderLineSlot
from site_engines.reconciliation import reconcile_line
from site_kernel.domain.documents import ReceiptSource
from tests.builders import SnapshotBuilder

quantities = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
consumed_values = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("5000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


def _slots(sizes, day_offsets):
    base = date(2025, 1, 1)
    return [
        OrderLineSlot(
            order_line_id=uuid4(),
            purchase_order_id=uuid4(),
            purchase_request_line_id=uuid4(),
            quantity=size,
            order_date=base + timedelta(days=offset),
            sequence=index,
        )
        for index, (size, offset) in enumerate(zip(sizes, day_offsets))
    ]


slot_lists = st.lists(quantities, min_size=1, max_size=8).flatmap(
    lambda sizes: st.tuples(
        st.just(sizes),
        st.lists(st.integers(0, 30), min_size=len(sizes), max_size=len(sizes)),
    )
)


class TestAllocationProperties:
    @given(slot_lists, consumed_values)
    @settings(max_examples=200, deadline=None)
    def test_conservation(self, sizes_and_days, consumed):
        slots = _slots(*sizes_and_days)

        result = AllocationResolver().allocate(consumed, slots)

        for line in result.lines:
            assert line.allocated + line.pending == line.slot.quantity
            assert Decimal("0") <= line.pending <= line.slot.quantity
        assert result.total_allocated + result.remaining_consumed == consumed
        assert result.total_allocated <= consumed

    @given(slot_lists, consumed_values)
    @settings(max_examples=200, deadline=None)
    def test_oldest_first(self, sizes_and_days, consumed):
        slots = _slots(*sizes_and_days)

        lines = AllocationResolver().allocate(consumed, slots).lines

        for earlier, later in zip(lines, lines[1:]):
            assert earlier.slot.sort_key <= later.slot.sort_key
            if later.allocated > 0:
                assert earlier.pending == 0

    @given(slot_lists, consumed_values, consumed_values)
    @settings(max_examples=200, deadline=None)
    def test_monotonic_in_consumed(self, sizes_and_days, a, b):
        slots = _slots(*sizes_and_days)
        low, high = sorted((a, b))
        resolver = AllocationResolver()

        before = resolver.allocate(low, slots)
        after = resolver.allocate(high, slots)

        for line in slots:
            assert after.pending_for(line.order_line_id) <= before.pending_for(line.order_line_id)


class TestSnapshotProperties:
    @given(
        st.lists(quantities, min_size=1, max_size=4),
        st.lists(quantities, max_size=4),
        st.lists(quantities, max_size=4),
    )
    @settings(max_examples=100, deadline=None)
    def test_petty_cash_isolation(self, order_sizes, po_receipts, petty_receipts):
        b = SnapshotBuilder()
        line = b.requisition_line(sum(order_sizes) + Decimal("10"))
        sc = b.request_line(line, sum(order_sizes))
        for offset, size in enumerate(order_sizes):
            b.order(date(2025, 1, 1) + timedelta(days=offset), [(sc, size)])
        for qty in po_receipts:
            b.receipt(line, qty)
        without_petty = AllocationResolver().resolve(sc.id, b.build())

        for qty in petty_receipts:
            b.receipt(line, qty, source=ReceiptSource.PETTY_CASH)
        with_petty = AllocationResolver().resolve(sc.id, b.build())

        assert [a.pending for a in with_petty.lines] == [a.pending for a in without_petty.lines]

    @given(quantities, st.lists(quantities, max_size=3), st.lists(quantities, max_size=3))
    @settings(max_examples=100, deadline=None)
    def test_free_to_purchase_formula(self, requested, order_sizes, receipts):
        b = SnapshotBuilder()
        line = b.requisition_line(requested)
        if order_sizes:
            sc = b.request_line(line, sum(order_sizes))
            for offset, size in enumerate(order_sizes):
                b.order(date(2025, 1, 1) + timedelta(days=offset), [(sc, size)])
        for qty in receipts:
            b.receipt(line, qty)

        balance = reconcile_line(b.build(), line.id)

        assert balance.free >= 0
        assert balance.free == max(requested - balance.fulfilled - balance.pipeline_pending, Decimal("0"))
        assert balance.fulfilled == sum(receipts, Decimal("0"))
