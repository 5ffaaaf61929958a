"""
Tests for the change feed: buffering, merging and recomputation.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

import pytest

from site_config.schema import ChangeFeedSettings
from site_kernel.domain.documents import ReceiptSource
from site_services.change_feed import (
    ChangeBatch,
    ChangeBuffer,
    ChangeEvent,
    ChangeOp,
    RecomputeDispatcher,
    merge_updates,
)


def event(table, row_id, op=ChangeOp.UPDATE, **record):
    return ChangeEvent(table, op, str(row_id), record)


# =============================================================================
# ChangeBuffer
# =============================================================================


class TestChangeBuffer:
    @pytest.fixture
    def buffer(self, deterministic_clock):
        return ChangeBuffer(deterministic_clock, debounce_seconds=0.5, max_batch_size=3)

    def test_not_ready_until_debounce_elapses(self, buffer, deterministic_clock):
        buffer.push(event("purchase_orders", "a"))

        assert not buffer.ready()
        assert buffer.drain() is None

        deterministic_clock.advance(0.5)

        assert buffer.ready()
        batch = buffer.drain()
        assert len(batch) == 1
        assert len(buffer) == 0

    def test_force_drains_immediately(self, buffer):
        buffer.push(event("purchase_orders", "a"))

        assert len(buffer.drain(force=True)) == 1

    def test_empty_buffer_never_ready(self, buffer, deterministic_clock):
        deterministic_clock.advance(60)

        assert not buffer.ready()
        assert buffer.drain(force=True) is None

    def test_last_event_per_row_wins(self, buffer):
        buffer.push(event("purchase_orders", "a", status="issued"))
        buffer.push(event("purchase_orders", "a", status="cancelled"))

        batch = buffer.drain(force=True)

        (only,) = batch.upserts
        assert only.record["status"] == "cancelled"

    def test_delete_cancels_upsert_and_back(self, buffer):
        buffer.push(event("requisition_lines", "a", ChangeOp.INSERT))
        buffer.push(event("requisition_lines", "a", ChangeOp.DELETE))
        buffer.push(event("requisition_lines", "b", ChangeOp.DELETE))
        buffer.push(event("requisition_lines", "b", ChangeOp.INSERT))

        batch = buffer.drain(force=True)

        assert batch.delete_ids("requisition_lines") == {"a"}
        assert batch.upsert_ids("requisition_lines") == {"b"}

    def test_same_id_in_different_tables_kept_apart(self, buffer):
        buffer.push(event("purchase_orders", "x"))
        buffer.push(event("purchase_order_lines", "x"))

        batch = buffer.drain(force=True)

        assert batch.tables == {"purchase_orders", "purchase_order_lines"}

    def test_events_without_row_id_dropped(self, buffer):
        buffer.push(event("purchase_orders", ""))

        assert len(buffer) == 0

    def test_full_buffer_ready_without_waiting(self, buffer):
        buffer.push_all(event("purchase_orders", i) for i in range(3))

        assert buffer.ready()

    def test_oversized_buffer_drains_in_batches(self, buffer, deterministic_clock):
        buffer.push_all(event("purchase_orders", i) for i in range(5))

        first = buffer.drain()
        second = buffer.drain(force=True)

        assert (len(first), len(second)) == (3, 2)
        assert first.batch_id != second.batch_id
        assert buffer.drain(force=True) is None

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            ChangeBuffer(max_batch_size=0)

    def test_from_settings(self, deterministic_clock):
        buffer = ChangeBuffer.from_settings(
            ChangeFeedSettings(debounce_seconds=2.0, max_batch_size=10), deterministic_clock
        )
        buffer.push(event("purchase_orders", "a"))
        deterministic_clock.advance(1)

        assert not buffer.ready()


# =============================================================================
# merge_updates
# =============================================================================


@dataclass(frozen=True)
class Row:
    id: str
    value: int


class TestMergeUpdates:
    def test_upserts_overwrite_and_append(self):
        current = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}]

        merged = merge_updates(current, [{"id": 2, "v": "B"}, {"id": 3, "v": "c"}], [])

        assert merged == [{"id": 1, "v": "a"}, {"id": 2, "v": "B"}, {"id": 3, "v": "c"}]

    def test_deleted_ids_removed(self):
        current = [{"id": 1}, {"id": 2}]

        assert merge_updates(current, [], ["1"]) == [{"id": 2}]

    def test_objects_and_sort_key(self):
        current = [Row("a", 3), Row("b", 1)]

        merged = merge_updates(current, [Row("c", 2)], [], sort_key=lambda r: r.value)

        assert [r.id for r in merged] == ["b", "c", "a"]

    def test_custom_id_field(self):
        current = [{"line_id": "x", "q": 1}]

        merged = merge_updates(current, [{"line_id": "x", "q": 2}], [], id_field="line_id")

        assert merged == [{"line_id": "x", "q": 2}]


# =============================================================================
# RecomputeDispatcher
# =============================================================================


class TestRecomputeDispatcher:
    @pytest.fixture
    def dispatcher(self, session, reconciliation):
        return RecomputeDispatcher(session, reconciliation)

    def batch(self, *events):
        return ChangeBatch(
            batch_id=uuid4(),
            upserts=tuple(e for e in events if not e.is_delete),
            deletes=tuple(e for e in events if e.is_delete),
        )

    def test_order_change_maps_to_requisition(self, dispatcher, ordered_requisition):
        batch = self.batch(event("purchase_orders", ordered_requisition.oc_a.id))

        assert dispatcher.affected_requisitions(batch) == (ordered_requisition.requisition.id,)

    def test_order_line_looked_up_without_record(self, dispatcher, ordered_requisition):
        batch = self.batch(event("purchase_order_lines", ordered_requisition.oc_b.lines[0].id))

        assert dispatcher.affected_requisitions(batch) == (ordered_requisition.requisition.id,)

    def test_record_linkage_used_first(self, dispatcher, engine):
        rid = uuid4()
        batch = self.batch(event("inventory_ledger_entries", uuid4(), ChangeOp.INSERT, requisition_id=str(rid)))

        assert dispatcher.affected_requisitions(batch) == (rid,)

    def test_requisition_delete_and_unlinked_tables_ignored(self, dispatcher, engine):
        batch = self.batch(
            event("requisitions", uuid4(), ChangeOp.DELETE),
            event("budget_entries", uuid4()),
            event("catalog_items", uuid4()),
        )

        assert dispatcher.affected_requisitions(batch) == ()

    def test_dispatch_recomputes_balances(self, dispatcher, reconciliation, ordered_requisition, test_actor_id):
        s = ordered_requisition
        outcome = reconciliation.apply_receipt(s.line.id, Decimal("35"), ReceiptSource.PURCHASE_ORDER, test_actor_id)
        batch = self.batch(
            event("inventory_ledger_entries", outcome.entry.id, ChangeOp.INSERT, requisition_id=str(s.requisition.id)),
            event("requisition_lines", s.line.id, requisition_id=str(s.requisition.id)),
        )

        result = dispatcher.dispatch(batch)

        assert result.requisition_ids == (s.requisition.id,)
        (balance,) = result.balances[s.requisition.id]
        assert balance.fulfilled == Decimal("35")
        assert balance.pipeline_pending == Decimal("15")
        assert [o.number for o in result.active_orders] == ["OC-B"]
        assert result.missing == ()

    def test_dispatch_reports_missing_requisitions(self, dispatcher, engine, captured_logs):
        rid = uuid4()
        batch = self.batch(event("requisition_lines", uuid4(), requisition_id=str(rid)))

        result = dispatcher.dispatch(batch)

        assert result.missing == (rid,)
        assert result.balances == {}
        (record,) = [r for r in captured_logs() if r["message"] == "change_batch_recomputed"]
        assert record["change_batch_id"] == str(batch.batch_id)
