"""
Tests for the Inventory Module Service.

Validates:
- Receipts append IN entries and update the stock level
- Exits are refused above the stock on hand
- Ledger entries are append-only (update and delete raise)
- Stock is grouped by canonical item, so legacy descriptions share stock
- The normalised stock report
- Stock reads come from the stored level; audit and repair against the ledger
- A cached stock report is invalidated by every ledger append
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from site_engines.reconciliation import PATH_FREE_TO_PURCHASE, ReceiptPlan
from site_kernel.domain.documents import (
    MovementDirection,
    ReceiptSource,
    RequisitionLineStatus,
)
from site_kernel.domain.item_ref import ByDescription, ItemKind
from site_kernel.exceptions import (
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidQuantityError,
)
from site_modules.inventory.orm import LedgerEntryModel, StockLevelModel
from site_modules.inventory.service import STOCK_REPORT_KEY, InventoryService
from site_services.inventory_cache import InventoryCache


def receipt_plan(item_ref, quantity, source=ReceiptSource.PETTY_CASH):
    quantity = Decimal(quantity)
    return ReceiptPlan(
        requisition_line_id=uuid4(),
        requisition_id=uuid4(),
        item_ref=item_ref,
        quantity=quantity,
        source=source,
        allocation_path=PATH_FREE_TO_PURCHASE,
        available=quantity,
        quantity_requested=quantity,
        new_fulfilled=quantity,
        new_status=RequisitionLineStatus.FULFILLED,
    )


class TestReceipts:
    def test_receipt_appends_in_entry(self, inventory_service, materials, test_actor_id, deterministic_clock):
        plan = receipt_plan(materials["cement"].ref, "30")

        entry = inventory_service.append_receipt(
            plan, test_actor_id, document_reference="FAC-101", requester="Almacen"
        )

        assert entry.direction is MovementDirection.IN
        assert entry.quantity == Decimal("30")
        assert entry.source_type is ReceiptSource.PETTY_CASH
        assert entry.requisition_line_id == plan.requisition_line_id
        assert entry.document_reference == "FAC-101"
        assert inventory_service.get_stock_level(materials["cement"].ref) == Decimal("30")

    def test_movements_filtered_by_direction(self, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "30"), test_actor_id)
        inventory_service.register_exit(cement, Decimal("10"), "Losa nivel 3", "Maestro de obra", test_actor_id)

        entries = inventory_service.get_movements(direction=MovementDirection.IN)
        exits = inventory_service.get_movements(direction=MovementDirection.OUT)

        assert [e.quantity for e in entries] == [Decimal("30")]
        assert [e.destination_or_use for e in exits] == ["Losa nivel 3"]


class TestExits:
    def test_exit_reduces_stock(self, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "30"), test_actor_id)

        inventory_service.register_exit(cement, Decimal("10"), "Losa nivel 3", "Maestro de obra", test_actor_id)

        assert inventory_service.get_stock_level(cement) == Decimal("20")

    def test_exit_above_stock_refused(self, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "20"), test_actor_id)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.register_exit(cement, Decimal("25"), "Losa", "Maestro", test_actor_id)

        assert exc_info.value.available == Decimal("20")
        assert inventory_service.get_movements(direction=MovementDirection.OUT) == ()

    def test_exit_of_unknown_item_refused(self, inventory_service, materials, test_actor_id):
        with pytest.raises(InsufficientStockError):
            inventory_service.register_exit(materials["mixer"].ref, Decimal("1"), "Torre 2", "Maestro", test_actor_id)

    def test_zero_exit_rejected(self, inventory_service, materials, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            inventory_service.register_exit(materials["cement"].ref, Decimal("0"), "Losa", "Maestro", test_actor_id)


class TestLedgerImmutability:
    @pytest.fixture
    def entry_model(self, session, inventory_service, materials, test_actor_id):
        entry = inventory_service.append_receipt(receipt_plan(materials["cement"].ref, "30"), test_actor_id)
        return session.get(LedgerEntryModel, entry.id)

    def test_update_raises(self, session, entry_model):
        entry_model.quantity = Decimal("31")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.operation == "update"

    def test_delete_raises(self, session, entry_model):
        session.delete(entry_model)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.operation == "delete"


class TestStockLevels:
    def test_legacy_description_shares_catalog_stock(self, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "10"), test_actor_id)
        inventory_service.append_receipt(
            receipt_plan(ByDescription("CEMENTO  gris", "obra gris"), "5"), test_actor_id
        )

        (level,) = inventory_service.get_stock_levels()

        assert level.item_ref == cement
        assert level.quantity == Decimal("15")

    def test_last_entry_is_latest_receipt(self, inventory_service, materials, test_actor_id, deterministic_clock):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "10"), test_actor_id)
        deterministic_clock.advance(3600)
        inventory_service.append_receipt(receipt_plan(cement, "5"), test_actor_id)

        (level,) = inventory_service.get_stock_levels()

        assert level.last_entry.replace(tzinfo=None) == deterministic_clock.now().replace(tzinfo=None)

    def test_stock_report_normalises_item_kinds(self, inventory_service, materials, test_actor_id):
        inventory_service.append_receipt(receipt_plan(materials["cement"].ref, "10"), test_actor_id)
        inventory_service.append_receipt(receipt_plan(materials["gloves"].ref, "40"), test_actor_id)
        inventory_service.append_receipt(receipt_plan(materials["mixer"].ref, "1"), test_actor_id)
        inventory_service.append_receipt(
            receipt_plan(ByDescription("Arena lavada", "Agregados", ItemKind.MATERIAL), "6"), test_actor_id
        )

        report = inventory_service.stock_report()

        by_description = {row.description: row for row in report}
        assert [row.kind for row in report] == ["Equipment", "Material", "Material", "PPE"]
        assert by_description["Cemento gris"].unit == "bulto"
        assert by_description["Mezcladora"].detail == "1 saco"
        assert by_description["Guantes de carnaza"].quantity == Decimal("40")
        legacy = by_description["Arena lavada"]
        assert legacy.category == "Agregados"
        assert legacy.unit == "-"
        assert legacy.detail == "-"


def _stored_level(session, item_ref):
    return next(row for row in session.scalars(select(StockLevelModel)) if row.item_ref == item_ref)


class TestStoredLevels:
    def test_stock_level_reads_stored_row(self, session, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "30"), test_actor_id)

        _stored_level(session, cement).quantity = Decimal("12")
        session.flush()

        assert inventory_service.get_stock_level(cement) == Decimal("12")
        assert inventory_service.ledger_stock_levels()[0].quantity == Decimal("30")

    def test_audit_reports_drift(self, session, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "30"), test_actor_id)
        assert inventory_service.audit_stock_levels() == ()

        _stored_level(session, cement).quantity = Decimal("12")
        session.flush()

        (drift,) = inventory_service.audit_stock_levels()
        assert drift.item_ref == cement
        assert (drift.stored_quantity, drift.ledger_quantity) == (Decimal("12"), Decimal("30"))

    def test_repair_rewrites_from_ledger(self, session, inventory_service, materials, test_actor_id):
        cement = materials["cement"].ref
        inventory_service.append_receipt(receipt_plan(cement, "30"), test_actor_id)
        inventory_service.register_exit(cement, Decimal("5"), "Losa", "Maestro", test_actor_id)
        _stored_level(session, cement).quantity = Decimal("2")
        session.flush()

        repaired = inventory_service.repair_stock_levels(test_actor_id)

        assert len(repaired) == 1
        assert inventory_service.get_stock_level(cement) == Decimal("25")
        assert inventory_service.audit_stock_levels() == ()

    def test_repair_without_drift_is_noop(self, inventory_service, materials, test_actor_id):
        inventory_service.append_receipt(receipt_plan(materials["cement"].ref, "30"), test_actor_id)

        assert inventory_service.repair_stock_levels(test_actor_id) == ()


class TestStockCache:
    @pytest.fixture
    def cache(self, deterministic_clock):
        return InventoryCache(deterministic_clock)

    @pytest.fixture
    def cached_service(self, session, deterministic_clock, cache):
        return InventoryService(session, clock=deterministic_clock, cache=cache)

    def test_report_served_from_cache(self, session, cached_service, cache, materials, test_actor_id):
        cement = materials["cement"].ref
        cached_service.append_receipt(receipt_plan(cement, "10"), test_actor_id)
        (first,) = cached_service.stock_report()

        _stored_level(session, cement).quantity = Decimal("99")
        session.flush()

        assert STOCK_REPORT_KEY in cache
        assert cached_service.stock_report() == (first,)

    def test_receipt_invalidates_cached_report(self, cached_service, cache, materials, test_actor_id):
        cement = materials["cement"].ref
        cached_service.append_receipt(receipt_plan(cement, "10"), test_actor_id)
        (before,) = cached_service.stock_report()

        cached_service.append_receipt(receipt_plan(cement, "5"), test_actor_id)

        assert STOCK_REPORT_KEY not in cache
        (after,) = cached_service.stock_report()
        assert (before.quantity, after.quantity) == (Decimal("10"), Decimal("15"))

    def test_exit_invalidates_cached_levels(self, cached_service, materials, test_actor_id):
        cement = materials["cement"].ref
        cached_service.append_receipt(receipt_plan(cement, "10"), test_actor_id)
        assert cached_service.get_stock_levels()[0].quantity == Decimal("10")

        cached_service.register_exit(cement, Decimal("4"), "Losa", "Maestro", test_actor_id)

        assert cached_service.get_stock_levels()[0].quantity == Decimal("6")
