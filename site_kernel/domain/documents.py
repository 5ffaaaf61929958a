"""
Document snapshots -- the nouns the reconciliation engines read.

Responsibility:
    Frozen dataclass value objects for requisitions, purchase requests (SC),
    purchase orders (OC), warehouse ledger entries and budget entries, plus
    ``ReconciliationSnapshot``, the in-memory bundle an engine call operates
    on.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.  Built by
    ``site_services.snapshot_service`` from ORM rows and consumed by
    ``site_engines``.

Invariants enforced:
    - All quantities are ``Decimal``.
    - Snapshots are immutable; engines never mutate them.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from site_kernel.domain.item_ref import ItemKind, ItemRef, items_match
from site_kernel.exceptions import (
    PurchaseOrderLineNotFoundError,
    PurchaseOrderNotFoundError,
    PurchaseRequestLineNotFoundError,
    RequisitionLineNotFoundError,
)

ZERO = Decimal("0")


class RequisitionLineStatus(str, Enum):
    """Fulfilment state of a requisition line."""

    PENDING = "pending"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class PurchaseRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CANCELLED = "cancelled"


class PurchaseOrderStatus(str, Enum):
    """Purchase order header states.  Cancelled orders are ignored."""

    ISSUED = "issued"
    CANCELLED = "cancelled"
    RECEIVED = "received"


class MovementDirection(str, Enum):
    IN = "in"
    OUT = "out"


class ReceiptSource(str, Enum):
    """Where a warehouse receipt came from."""

    PURCHASE_ORDER = "purchase_order"
    PETTY_CASH = "petty_cash"


@dataclass(frozen=True)
class RequisitionLine:
    """A demand unit.  ``quantity_fulfilled`` is a cache of the ledger."""

    id: UUID
    requisition_id: UUID
    kind: ItemKind
    item_ref: ItemRef | None
    unit: str
    quantity_requested: Decimal
    quantity_fulfilled: Decimal = ZERO
    status: RequisitionLineStatus = RequisitionLineStatus.PENDING
    description: str = ""
    line_number: int = 0


@dataclass(frozen=True)
class Requisition:
    """Requisition header: who asked for what, for which front."""

    id: UUID
    number: int
    work_site_id: UUID | None
    front_id: UUID | None
    specialty: str
    requester: str
    request_date: date
    block: str = ""
    front_specialty_id: UUID | None = None
    lines: tuple[RequisitionLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseRequestLine:
    """SC line: the quantity approved for purchase for one item."""

    id: UUID
    purchase_request_id: UUID
    requisition_id: UUID
    item_ref: ItemRef | None
    quantity: Decimal
    unit: str = "und"
    status: PurchaseRequestStatus = PurchaseRequestStatus.PENDING


@dataclass(frozen=True)
class PurchaseRequest:
    id: UUID
    number: str
    requisition_id: UUID
    request_date: date
    status: PurchaseRequestStatus = PurchaseRequestStatus.PENDING
    lines: tuple[PurchaseRequestLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseOrderLine:
    """OC line: references exactly one SC line."""

    id: UUID
    purchase_order_id: UUID
    purchase_request_line_id: UUID
    quantity: Decimal
    unit_price: Decimal = ZERO


@dataclass(frozen=True)
class PurchaseOrder:
    """
    OC header.

    ``sequence`` is the creation sequence; it breaks ties between orders
    issued on the same ``order_date``.
    """

    id: UUID
    number: str
    supplier: str
    status: PurchaseOrderStatus
    order_date: date
    sequence: int = 0
    purchase_request_id: UUID | None = None
    expected_date: date | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)

    @property
    def is_cancelled(self) -> bool:
        return self.status == PurchaseOrderStatus.CANCELLED


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable warehouse movement."""

    id: UUID
    direction: MovementDirection
    item_ref: ItemRef | None
    quantity: Decimal
    timestamp: datetime
    requisition_id: UUID | None = None
    requisition_line_id: UUID | None = None
    source_type: ReceiptSource | None = None
    purchase_order_line_id: UUID | None = None
    destination_or_use: str = ""
    document_reference: str = ""
    requester: str = ""

    @property
    def is_receipt(self) -> bool:
        return self.direction == MovementDirection.IN

    @property
    def is_petty_cash(self) -> bool:
        return self.source_type == ReceiptSource.PETTY_CASH


@dataclass(frozen=True)
class BudgetEntry:
    """Budgeted vs utilized quantity for one material on one front specialty."""

    id: UUID
    front_specialty_id: UUID
    material_id: UUID | str
    quantity_budgeted: Decimal
    quantity_utilized: Decimal = ZERO


@dataclass(frozen=True)
class ReconciliationSnapshot:
    """
    Everything the engines need about one or more requisitions.

    Contract:
        Collections are fetched together by the caller ("read snapshot,
        compute, act").  The snapshot is never refreshed in place; a new
        one is built after every write.
    """

    requisition_lines: tuple[RequisitionLine, ...] = ()
    request_lines: tuple[PurchaseRequestLine, ...] = ()
    orders: tuple[PurchaseOrder, ...] = ()
    entries: tuple[LedgerEntry, ...] = ()

    # Lookups -----------------------------------------------------------

    def requisition_line(self, line_id: UUID) -> RequisitionLine:
        for line in self.requisition_lines:
            if line.id == line_id:
                return line
        raise RequisitionLineNotFoundError(line_id)

    def request_line(self, line_id: UUID) -> PurchaseRequestLine:
        for line in self.request_lines:
            if line.id == line_id:
                return line
        raise PurchaseRequestLineNotFoundError(line_id)

    def order(self, order_id: UUID) -> PurchaseOrder:
        for order in self.orders:
            if order.id == order_id:
                return order
        raise PurchaseOrderNotFoundError(order_id)

    def order_line(self, order_line_id: UUID) -> tuple[PurchaseOrder, PurchaseOrderLine]:
        for order in self.orders:
            for line in order.lines:
                if line.id == order_line_id:
                    return order, line
        raise PurchaseOrderLineNotFoundError(order_line_id)

    def iter_order_lines(
        self, include_cancelled: bool = False
    ) -> Iterator[tuple[int, PurchaseOrder, PurchaseOrderLine]]:
        """Yield ``(position, order, line)`` in snapshot order."""
        for order in self.orders:
            if order.is_cancelled and not include_cancelled:
                continue
            for position, line in enumerate(order.lines):
                yield position, order, line

    def request_lines_for(self, requisition_line: RequisitionLine) -> tuple[PurchaseRequestLine, ...]:
        """SC lines derived from a requisition line (same requisition, same item)."""
        return tuple(
            rl
            for rl in self.request_lines
            if rl.requisition_id == requisition_line.requisition_id
            and items_match(rl.item_ref, requisition_line.item_ref)
        )

    def receipts(self) -> Iterable[LedgerEntry]:
        return (e for e in self.entries if e.is_receipt)
