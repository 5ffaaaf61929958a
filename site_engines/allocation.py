"""
Module: site_engines.allocation
Responsibility:
    Attribute received quantity to purchase-order (OC) lines oldest order
    first, and derive how much of each OC line is still pending.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import site_kernel (domain values, exceptions, logging).

Invariants enforced:
    - Conservation: sum(allocated) + remaining_consumed == consumed.
    - No OC line is credited more than its own ordered quantity, so pending
      is never negative and never above the ordered quantity.
    - Petty-cash receipts never enter ``consumed``.
    - Purity: no clock access, no I/O.

Failure modes:
    - InvalidQuantityError on a zero or negative OC line quantity.
    - PurchaseRequestLineNotFoundError / PurchaseOrderLineNotFoundError when
      the snapshot does not carry the referenced line.
    - A request line without item data produces pending 0 on every line of
      its pool and a DataIntegrityWarning.

Ordering:
    OC lines are walked by the owning order's ``order_date``, then the
    order's creation ``sequence``, then the line's position inside the
    order.  Remaining ties keep snapshot order (``sorted`` is stable).

Allocation pool:
    Every purchase-request (SC) line of the same requisition that matches
    the same item is walked together.  Two SC lines for one item therefore
    share a single queue of OC lines and can never both claim the same
    receipts.

Usage:
    from site_engines.allocation import AllocationResolver

    resolver = AllocationResolver()
    result = resolver.resolve(request_line_id, snapshot)
    result.pending_for(order_line_id)
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from site_engines.tracer import traced_engine
from site_kernel.domain.documents import (
    LedgerEntry,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseRequestLine,
    ReconciliationSnapshot,
)
from site_kernel.domain.item_ref import ItemCatalog, items_match
from site_kernel.domain.quantity import ZERO, quantity_sum
from site_kernel.exceptions import InvalidQuantityError, MissingLinkageError
from site_kernel.integrity import REQUEST_LINE_WITHOUT_ITEM, warn_data_integrity
from site_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class OrderLineSlot:
    """
    One OC line as seen by the allocation walk.

    Contract:
        Carries only what ordering and allocation need: the ordered
        quantity and the sort key fields.
    """

    order_line_id: UUID
    purchase_order_id: UUID
    purchase_request_line_id: UUID
    quantity: Decimal
    order_date: date
    sequence: int = 0
    position: int = 0

    @property
    def sort_key(self) -> tuple[date, int, int]:
        return (self.order_date, self.sequence, self.position)

    @classmethod
    def from_order_line(
        cls, order: PurchaseOrder, line: PurchaseOrderLine, position: int
    ) -> OrderLineSlot:
        return cls(
            order_line_id=line.id,
            purchase_order_id=order.id,
            purchase_request_line_id=line.purchase_request_line_id,
            quantity=line.quantity,
            order_date=order.order_date,
            sequence=order.sequence,
            position=position,
        )


@dataclass(frozen=True)
class OrderLineAllocation:
    """
    Outcome of the walk for a single OC line.

    Guarantees:
        - ``allocated + pending == slot.quantity``.
        - ``0 <= pending <= slot.quantity``.
    """

    slot: OrderLineSlot
    allocated: Decimal
    pending: Decimal

    @property
    def order_line_id(self) -> UUID:
        return self.slot.order_line_id

    @property
    def is_fully_received(self) -> bool:
        return self.pending == ZERO


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation for one pool.

    Guarantees:
        - ``total_allocated + remaining_consumed == consumed``.
        - ``lines`` are in walk order.
    """

    consumed: Decimal
    lines: tuple[OrderLineAllocation, ...]
    remaining_consumed: Decimal
    unresolved: bool = False

    @property
    def total_allocated(self) -> Decimal:
        return quantity_sum(line.allocated for line in self.lines)

    @property
    def total_pending(self) -> Decimal:
        return quantity_sum(line.pending for line in self.lines)

    def pending_for(self, order_line_id: UUID) -> Decimal:
        """Pending of one OC line; lines outside the pool report zero."""
        for line in self.lines:
            if line.order_line_id == order_line_id:
                return line.pending
        return ZERO

    def pending_by_request_line(self) -> dict[UUID, Decimal]:
        totals: dict[UUID, Decimal] = {}
        for line in self.lines:
            key = line.slot.purchase_request_line_id
            totals[key] = totals.get(key, ZERO) + line.pending
        return totals


class AllocationResolver:
    """
    Oldest-order-first allocation of consumed quantity across OC lines.

    Contract:
        Pure functions over an in-memory ``ReconciliationSnapshot``.
        Every call re-derives the walk from the full history; nothing is
        cached between calls.
    """

    def __init__(self, catalog: ItemCatalog | None = None):
        self._catalog = catalog

    @property
    def catalog(self) -> ItemCatalog | None:
        return self._catalog

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    @staticmethod
    def order_slots(slots: Iterable[OrderLineSlot]) -> list[OrderLineSlot]:
        """Sort slots oldest first; equal keys keep their input order."""
        return sorted(slots, key=lambda slot: slot.sort_key)

    @traced_engine("allocation", "1.0", fingerprint_fields=("consumed", "slots"))
    def allocate(
        self,
        consumed: Decimal,
        slots: Sequence[OrderLineSlot],
        stop_at: UUID | None = None,
    ) -> AllocationResult:
        """
        Walk ``slots`` oldest first and credit ``consumed`` to each in turn.

        Args:
            consumed: Received quantity to distribute (negative treated as 0).
            slots: OC lines in any order; they are sorted here.
            stop_at: When given, the walk ends after this OC line.

        Raises:
            InvalidQuantityError: if any slot quantity is zero or negative.
        """
        for slot in slots:
            if slot.quantity <= ZERO:
                raise InvalidQuantityError(
                    "order_line_quantity", slot.quantity, slot.order_line_id
                )

        remaining = consumed if consumed > ZERO else ZERO
        results: list[OrderLineAllocation] = []
        for slot in self.order_slots(slots):
            allocated = min(slot.quantity, remaining)
            remaining -= allocated
            results.append(
                OrderLineAllocation(
                    slot=slot,
                    allocated=allocated,
                    pending=slot.quantity - allocated,
                )
            )
            if stop_at is not None and slot.order_line_id == stop_at:
                break

        return AllocationResult(
            consumed=consumed if consumed > ZERO else ZERO,
            lines=tuple(results),
            remaining_consumed=remaining,
        )

    # ------------------------------------------------------------------
    # Snapshot queries
    # ------------------------------------------------------------------

    def consumed_for(
        self,
        request_line: PurchaseRequestLine,
        entries: Iterable[LedgerEntry],
    ) -> Decimal:
        """
        Receipts that count against the OC pipeline of ``request_line``.

        IN entries, not petty cash, for the same requisition and item.
        """
        if request_line.item_ref is None:
            return ZERO
        return quantity_sum(
            entry.quantity
            for entry in entries
            if entry.is_receipt
            and not entry.is_petty_cash
            and entry.requisition_id == request_line.requisition_id
            and items_match(entry.item_ref, request_line.item_ref, self._catalog)
        )

    def pool_for(
        self,
        request_line: PurchaseRequestLine,
        snapshot: ReconciliationSnapshot,
    ) -> tuple[PurchaseRequestLine, ...]:
        """SC lines sharing one allocation queue with ``request_line``."""
        if request_line.item_ref is None:
            return (request_line,)
        return tuple(
            other
            for other in snapshot.request_lines
            if other.id == request_line.id
            or (
                other.requisition_id == request_line.requisition_id
                and items_match(other.item_ref, request_line.item_ref, self._catalog)
            )
        )

    @staticmethod
    def slots_for(
        request_line_ids: Iterable[UUID],
        snapshot: ReconciliationSnapshot,
    ) -> list[OrderLineSlot]:
        """Non-cancelled OC lines referencing any of ``request_line_ids``."""
        wanted = set(request_line_ids)
        return [
            OrderLineSlot.from_order_line(order, line, position)
            for position, order, line in snapshot.iter_order_lines()
            if line.purchase_request_line_id in wanted
        ]

    def resolve(
        self,
        request_line_id: UUID,
        snapshot: ReconciliationSnapshot,
        stop_at: UUID | None = None,
    ) -> AllocationResult:
        """
        Allocate consumed quantity across the pool of ``request_line_id``.

        Raises:
            PurchaseRequestLineNotFoundError: if the line is not in the snapshot.
        """
        request_line = snapshot.request_line(request_line_id)
        pool = self.pool_for(request_line, snapshot)
        slots = self.slots_for((rl.id for rl in pool), snapshot)

        if request_line.item_ref is None:
            warn_data_integrity(
                REQUEST_LINE_WITHOUT_ITEM,
                "Purchase request line has no item data; pending treated as 0",
                purchase_request_line_id=request_line.id,
            )
            return AllocationResult(
                consumed=ZERO,
                lines=tuple(
                    OrderLineAllocation(slot=slot, allocated=ZERO, pending=ZERO)
                    for slot in self.order_slots(slots)
                ),
                remaining_consumed=ZERO,
                unresolved=True,
            )

        consumed = self.consumed_for(request_line, snapshot.entries)
        result = self.allocate(consumed, slots, stop_at=stop_at)
        logger.debug(
            "allocation_resolved",
            extra={
                "purchase_request_line_id": str(request_line_id),
                "pool_size": len(pool),
                "order_lines": len(result.lines),
                "consumed": str(consumed),
                "remaining_consumed": str(result.remaining_consumed),
            },
        )
        return result


def compute_pending_for_order_line(
    snapshot: ReconciliationSnapshot,
    order_line: PurchaseOrderLine,
    order_id: UUID,
    requisition_id: UUID,
    resolver: AllocationResolver | None = None,
) -> Decimal:
    """
    Pending quantity of one OC line after oldest-first allocation.

    Cancelled orders report 0.  The walk stops as soon as the target line
    has been credited.

    Raises:
        PurchaseOrderNotFoundError: if ``order_id`` is not in the snapshot.
        MissingLinkageError: if the OC line is not on ``order_id`` or its
            request line belongs to a different requisition.
    """
    resolver = resolver or AllocationResolver()
    order = snapshot.order(order_id)
    if order_line.purchase_order_id != order.id:
        raise MissingLinkageError(
            "PurchaseOrderLine",
            order_line.id,
            f"belongs to purchase order {order_line.purchase_order_id}, not {order.id}",
        )
    if order.is_cancelled:
        return ZERO

    request_line = snapshot.request_line(order_line.purchase_request_line_id)
    if request_line.requisition_id != requisition_id:
        raise MissingLinkageError(
            "PurchaseOrderLine",
            order_line.id,
            f"request line {request_line.id} belongs to requisition "
            f"{request_line.requisition_id}, not {requisition_id}",
        )

    result = resolver.resolve(request_line.id, snapshot, stop_at=order_line.id)
    return result.pending_for(order_line.id)
