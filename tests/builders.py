"""
In-memory document builders for engine tests.

``SnapshotBuilder`` assembles a ``ReconciliationSnapshot`` one document at
a time so tests read as the scenario they describe::

    b = SnapshotBuilder()
    line = b.requisition_line(Decimal("50"))
    sc = b.request_line(line, Decimal("50"))
    oc_a = b.order(date(2025, 1, 10), [(sc, Decimal("30"))])
    b.receipt(line, Decimal("35"))
    snapshot = b.build()
"""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from site_kernel.domain.documents import (
    LedgerEntry,
    MovementDirection,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    PurchaseRequestLine,
    ReceiptSource,
    ReconciliationSnapshot,
    RequisitionLine,
    RequisitionLineStatus,
)
from site_kernel.domain.item_ref import ById, ItemKind, ItemRef

CEMENT = ById(ItemKind.MATERIAL, "cement")
REBAR = ById(ItemKind.MATERIAL, "rebar-12mm")


class SnapshotBuilder:
    def __init__(self, requisition_id: UUID | None = None):
        self.requisition_id = requisition_id or uuid4()
        self.requisition_lines: list[RequisitionLine] = []
        self.request_lines: list[PurchaseRequestLine] = []
        self.orders: list[PurchaseOrder] = []
        self.entries: list[LedgerEntry] = []
        self._sequence = 0
        self._ts = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)

    def requisition_line(
        self,
        quantity: Decimal | str,
        item_ref: ItemRef | None = CEMENT,
        status: RequisitionLineStatus = RequisitionLineStatus.PENDING,
        fulfilled: Decimal | str = "0",
    ) -> RequisitionLine:
        line = RequisitionLine(
            id=uuid4(),
            requisition_id=self.requisition_id,
            kind=ItemKind.MATERIAL,
            item_ref=item_ref,
            unit="bag",
            quantity_requested=Decimal(quantity),
            quantity_fulfilled=Decimal(fulfilled),
            status=status,
            line_number=len(self.requisition_lines) + 1,
        )
        self.requisition_lines.append(line)
        return line

    def request_line(
        self,
        line: RequisitionLine,
        quantity: Decimal | str,
        item_ref: ItemRef | None = None,
        use_line_item: bool = True,
    ) -> PurchaseRequestLine:
        sc = PurchaseRequestLine(
            id=uuid4(),
            purchase_request_id=uuid4(),
            requisition_id=line.requisition_id,
            item_ref=item_ref if item_ref is not None or not use_line_item else line.item_ref,
            quantity=Decimal(quantity),
        )
        self.request_lines.append(sc)
        return sc

    def order(
        self,
        order_date: date,
        lines: list[tuple[PurchaseRequestLine, Decimal | str]],
        status: PurchaseOrderStatus = PurchaseOrderStatus.ISSUED,
        sequence: int | None = None,
    ) -> PurchaseOrder:
        self._sequence += 1
        order_id = uuid4()
        order = PurchaseOrder(
            id=order_id,
            number=f"OC-{self._sequence:03d}",
            supplier="Ferreteria Central",
            status=status,
            order_date=order_date,
            sequence=self._sequence if sequence is None else sequence,
            lines=tuple(
                PurchaseOrderLine(
                    id=uuid4(),
                    purchase_order_id=order_id,
                    purchase_request_line_id=sc.id,
                    quantity=Decimal(qty),
                )
                for sc, qty in lines
            ),
        )
        self.orders.append(order)
        return order

    def cancel(self, order: PurchaseOrder) -> PurchaseOrder:
        cancelled = replace(order, status=PurchaseOrderStatus.CANCELLED)
        self.orders[self.orders.index(order)] = cancelled
        return cancelled

    def receipt(
        self,
        line: RequisitionLine,
        quantity: Decimal | str,
        source: ReceiptSource = ReceiptSource.PURCHASE_ORDER,
        linked: bool = True,
    ) -> LedgerEntry:
        self._ts += timedelta(minutes=1)
        entry = LedgerEntry(
            id=uuid4(),
            direction=MovementDirection.IN,
            item_ref=line.item_ref,
            quantity=Decimal(quantity),
            timestamp=self._ts,
            requisition_id=line.requisition_id,
            requisition_line_id=line.id if linked else None,
            source_type=source,
        )
        self.entries.append(entry)
        return entry

    def exit(self, line: RequisitionLine, quantity: Decimal | str) -> LedgerEntry:
        entry = LedgerEntry(
            id=uuid4(),
            direction=MovementDirection.OUT,
            item_ref=line.item_ref,
            quantity=Decimal(quantity),
            timestamp=self._ts,
            requisition_id=line.requisition_id,
            destination_or_use="Block A slab",
        )
        self.entries.append(entry)
        return entry

    def build(self) -> ReconciliationSnapshot:
        return ReconciliationSnapshot(
            requisition_lines=tuple(self.requisition_lines),
            request_lines=tuple(self.request_lines),
            orders=tuple(self.orders),
            entries=tuple(self.entries),
        )


# Work-site structure used by the persistence tests
WORK_SITE_ID = UUID("00000000-0000-4000-a000-000000000001")
FRONT_ID = UUID("00000000-0000-4000-a000-000000000002")
FRONT_SPECIALTY_ID = UUID("00000000-0000-4000-a000-000000000003")
