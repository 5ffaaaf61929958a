"""
Module: site_engines.reconciliation
Responsibility:
    Requisition-level balances: how much of a requisition line is still
    free to purchase, which purchase orders are still open for receipt,
    and whether a proposed warehouse receipt is acceptable.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Builds on
    ``site_engines.allocation`` for per-OC-line pending quantities.

Invariants enforced:
    - The ledger is the source of truth: fulfilled quantity is derived
      from IN entries, never read from the cached field.
    - Petty-cash receipts reduce free-to-purchase but never OC pending.
    - Lines repeating an item in one requisition are balanced as a pool;
      together they are never free for more than the pool.
    - Free-to-purchase and pending are clamped at zero.
    - ``plan_receipt`` raises before anything is written.

Failure modes:
    - InvalidQuantityError for zero/negative receipt quantities.
    - ReceiptExceedsBalanceError when the receipt is above the balance of
      the chosen path (free-to-purchase, one OC line, or the pipeline).
    - MissingLinkageError when an OC line does not serve the requisition line
      or the line has no item data to receive.
    - CancelledOrderError for receipts against a cancelled order.
    - *NotFoundError for ids absent from the snapshot.
    - DataIntegrityWarning (issued, not raised) when fulfilled > requested.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from site_engines.allocation import AllocationResolver, AllocationResult
from site_engines.tracer import traced_engine
from site_kernel.domain.documents import (
    LedgerEntry,
    PurchaseOrder,
    PurchaseRequestLine,
    ReceiptSource,
    ReconciliationSnapshot,
    RequisitionLine,
    RequisitionLineStatus,
)
from site_kernel.domain.item_ref import ItemCatalog, ItemRef, items_match
from site_kernel.domain.quantity import (
    ZERO,
    clamp_non_negative,
    quantity_sum,
    require_positive,
)
from site_kernel.exceptions import (
    CancelledOrderError,
    MissingLinkageError,
    ReceiptExceedsBalanceError,
)
from site_kernel.integrity import (
    FULFILLED_CACHE_DRIFT,
    FULFILLED_EXCEEDS_REQUESTED,
    warn_data_integrity,
)
from site_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")

PATH_FREE_TO_PURCHASE = "free-to-purchase"
PATH_ORDER_LINE = "purchase order line"
PATH_PIPELINE = "purchase order pipeline"


# ---------------------------------------------------------------------------
# Status and ledger-derived totals
# ---------------------------------------------------------------------------


def derive_status(requested: Decimal, received: Decimal) -> RequisitionLineStatus:
    """PENDING if nothing received, PARTIAL below requested, else FULFILLED."""
    if received <= ZERO:
        return RequisitionLineStatus.PENDING
    if received < requested:
        return RequisitionLineStatus.PARTIAL
    return RequisitionLineStatus.FULFILLED


def entry_matches_line(
    entry: LedgerEntry,
    line: RequisitionLine,
    catalog: ItemCatalog | None = None,
) -> bool:
    """
    True when an IN entry counts toward ``line``.

    Entries that name their requisition line match on that id.  Older
    entries carry only the requisition id and are matched by item.
    """
    if not entry.is_receipt:
        return False
    if entry.requisition_line_id is not None:
        return entry.requisition_line_id == line.id
    return entry.requisition_id == line.requisition_id and items_match(
        entry.item_ref, line.item_ref, catalog
    )


def fulfilled_from_ledger(
    line: RequisitionLine,
    entries: Iterable[LedgerEntry],
    catalog: ItemCatalog | None = None,
) -> Decimal:
    """Sum of IN entries matched to ``line``, regardless of source."""
    return quantity_sum(
        entry.quantity for entry in entries if entry_matches_line(entry, line, catalog)
    )


# ---------------------------------------------------------------------------
# Line balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineBalance:
    """
    Reconciled figures for one requisition line.

    Guarantees:
        - ``free <= max(requested - fulfilled - pipeline_pending, 0)``, with
          equality when the line is alone in its item pool.
        - ``pipeline_pending`` is the pending of the whole item pool.
    """

    requisition_line_id: UUID
    requested: Decimal
    fulfilled: Decimal
    pipeline_pending: Decimal
    free: Decimal

    @property
    def status(self) -> RequisitionLineStatus:
        return derive_status(self.requested, self.fulfilled)


def pipeline_pending(
    line: RequisitionLine,
    snapshot: ReconciliationSnapshot,
    resolver: AllocationResolver | None = None,
) -> Decimal:
    """Pending of every non-cancelled OC line serving ``line``."""
    resolver = resolver or AllocationResolver()
    request_lines = [
        rl
        for rl in snapshot.request_lines
        if rl.requisition_id == line.requisition_id
        and items_match(rl.item_ref, line.item_ref, resolver.catalog)
    ]
    if not request_lines:
        return ZERO
    # One pool covers every SC line of this requisition and item.
    return resolver.resolve(request_lines[0].id, snapshot).total_pending


def requisition_pool(
    line: RequisitionLine,
    snapshot: ReconciliationSnapshot,
    catalog: ItemCatalog | None = None,
) -> tuple[RequisitionLine, ...]:
    """
    Open lines of ``line``'s requisition that ask for the same item.

    Requisitions may repeat an item on several lines.  Those lines share
    one pipeline, so their balances are only meaningful together.
    """
    if line.item_ref is None:
        return (line,)
    return tuple(
        other
        for other in snapshot.requisition_lines
        if other.status != RequisitionLineStatus.CANCELLED
        and (
            other.id == line.id
            or (
                other.requisition_id == line.requisition_id
                and items_match(other.item_ref, line.item_ref, catalog)
            )
        )
    )


def free_within_pool(
    line: RequisitionLine,
    snapshot: ReconciliationSnapshot,
    pending: Decimal,
    catalog: ItemCatalog | None = None,
) -> Decimal:
    """
    Share of the item pool's free quantity that belongs to ``line``.

    The pool's free quantity is summed requested minus summed fulfilled
    minus the pool's pipeline pending.  Walking the open lines in
    requisition order, the pipeline first covers each line's outstanding
    quantity and the pool's free quantity is handed out from what is left.
    The lines together are never free for more than the pool.
    """
    pool = requisition_pool(line, snapshot, catalog)
    pool_fulfilled = quantity_sum(
        entry.quantity
        for entry in snapshot.entries
        if any(entry_matches_line(entry, member, catalog) for member in pool)
    )
    remaining = clamp_non_negative(
        quantity_sum(member.quantity_requested for member in pool) - pool_fulfilled - pending
    )
    unassigned_pipeline = pending
    for member in pool:
        outstanding = clamp_non_negative(
            member.quantity_requested
            - fulfilled_from_ledger(member, snapshot.entries, catalog)
        )
        covered = min(outstanding, unassigned_pipeline)
        unassigned_pipeline -= covered
        share = min(outstanding - covered, remaining)
        if member.id == line.id:
            return share
        remaining -= share
    return ZERO


def reconcile_line(
    snapshot: ReconciliationSnapshot,
    requisition_line_id: UUID,
    resolver: AllocationResolver | None = None,
) -> LineBalance:
    """
    Derive requested / fulfilled / pipeline / free for one line.

    Cancelled lines have nothing free to purchase.
    """
    resolver = resolver or AllocationResolver()
    line = snapshot.requisition_line(requisition_line_id)
    fulfilled = fulfilled_from_ledger(line, snapshot.entries, resolver.catalog)
    if fulfilled > line.quantity_requested:
        warn_data_integrity(
            FULFILLED_EXCEEDS_REQUESTED,
            "Requisition line received more than requested",
            requisition_line_id=line.id,
            requested=line.quantity_requested,
            fulfilled=fulfilled,
        )
    pending = pipeline_pending(line, snapshot, resolver)
    if line.status == RequisitionLineStatus.CANCELLED:
        free = ZERO
    else:
        free = free_within_pool(line, snapshot, pending, resolver.catalog)
    return LineBalance(
        requisition_line_id=line.id,
        requested=line.quantity_requested,
        fulfilled=fulfilled,
        pipeline_pending=pending,
        free=free,
    )


@traced_engine("reconciliation", "1.0", fingerprint_fields=("requisition_line_id",))
def compute_free_to_purchase(
    snapshot: ReconciliationSnapshot,
    requisition_line_id: UUID,
    resolver: AllocationResolver | None = None,
) -> Decimal:
    """``requested - fulfilled - pending_in_pipeline``, clamped at zero."""
    return reconcile_line(snapshot, requisition_line_id, resolver).free


# ---------------------------------------------------------------------------
# Active orders
# ---------------------------------------------------------------------------


@traced_engine("reconciliation.active_orders", "1.0")
def list_active_purchase_orders(
    snapshot: ReconciliationSnapshot,
    orders: Sequence[PurchaseOrder] | None = None,
    resolver: AllocationResolver | None = None,
) -> tuple[PurchaseOrder, ...]:
    """
    Orders with at least one non-cancelled line still pending.

    ``orders`` defaults to every order in the snapshot; pending is always
    computed against the whole snapshot so older orders absorb receipts
    first.
    """
    resolver = resolver or AllocationResolver()
    candidates = snapshot.orders if orders is None else orders
    results: dict[UUID, AllocationResult] = {}

    def pending_of(request_line_id: UUID, order_line_id: UUID) -> Decimal:
        if request_line_id not in results:
            result = resolver.resolve(request_line_id, snapshot)
            for slot_line in result.lines:
                results.setdefault(slot_line.slot.purchase_request_line_id, result)
            results.setdefault(request_line_id, result)
        return results[request_line_id].pending_for(order_line_id)

    active = tuple(
        order
        for order in candidates
        if not order.is_cancelled
        and any(
            pending_of(line.purchase_request_line_id, line.id) > ZERO
            for line in order.lines
        )
    )
    logger.debug(
        "active_orders_listed",
        extra={"candidates": len(candidates), "active": len(active)},
    )
    return active


# ---------------------------------------------------------------------------
# Receipt planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptPlan:
    """
    A validated receipt, ready to be appended by the service layer.

    Contract:
        Produced only when every check passed.  Carries the ledger entry
        fields and the requisition line's resulting cache values.
    """

    requisition_line_id: UUID
    requisition_id: UUID
    item_ref: ItemRef
    quantity: Decimal
    source: ReceiptSource
    allocation_path: str
    available: Decimal
    quantity_requested: Decimal
    new_fulfilled: Decimal
    new_status: RequisitionLineStatus
    purchase_order_line_id: UUID | None = None
    purchase_order_id: UUID | None = None

    @property
    def exceeds_requested(self) -> bool:
        return self.new_fulfilled > self.quantity_requested


@traced_engine(
    "reconciliation.plan_receipt",
    "1.0",
    fingerprint_fields=("requisition_line_id", "quantity", "source", "order_line_id"),
)
def plan_receipt(
    snapshot: ReconciliationSnapshot,
    requisition_line_id: UUID,
    quantity: Decimal,
    source: ReceiptSource,
    order_line_id: UUID | None = None,
    resolver: AllocationResolver | None = None,
) -> ReceiptPlan:
    """
    Validate a warehouse receipt against the current snapshot.

    Petty-cash receipts are checked against free-to-purchase.  Purchase
    order receipts are checked against the pending of the chosen OC line,
    or against the whole pipeline when no line is chosen.
    """
    resolver = resolver or AllocationResolver()
    quantity = require_positive(quantity, "quantity", requisition_line_id)
    line = snapshot.requisition_line(requisition_line_id)
    if line.item_ref is None:
        raise MissingLinkageError(
            "RequisitionLine", line.id, "line has no item to receive"
        )
    balance = reconcile_line(snapshot, requisition_line_id, resolver)
    purchase_order_id: UUID | None = None

    if source == ReceiptSource.PETTY_CASH:
        if order_line_id is not None:
            raise MissingLinkageError(
                "LedgerEntry",
                order_line_id,
                "petty cash receipts are not backed by a purchase order line",
            )
        path, available = PATH_FREE_TO_PURCHASE, balance.free
    elif order_line_id is not None:
        order, order_line = snapshot.order_line(order_line_id)
        if order.is_cancelled:
            raise CancelledOrderError(order.id)
        request_line = snapshot.request_line(order_line.purchase_request_line_id)
        if request_line.requisition_id != line.requisition_id or not items_match(
            request_line.item_ref, line.item_ref, resolver.catalog
        ):
            raise MissingLinkageError(
                "PurchaseOrderLine",
                order_line_id,
                f"does not serve requisition line {line.id}",
            )
        result = resolver.resolve(request_line.id, snapshot, stop_at=order_line_id)
        path, available = PATH_ORDER_LINE, result.pending_for(order_line_id)
        purchase_order_id = order.id
    else:
        path, available = PATH_PIPELINE, balance.pipeline_pending

    if quantity > available:
        logger.info(
            "receipt_rejected",
            extra={
                "requisition_line_id": str(line.id),
                "quantity": str(quantity),
                "available": str(available),
                "allocation_path": path,
            },
        )
        raise ReceiptExceedsBalanceError(line.id, quantity, available, path)

    new_fulfilled = balance.fulfilled + quantity
    if line.status == RequisitionLineStatus.CANCELLED:
        new_status = RequisitionLineStatus.CANCELLED
    else:
        new_status = derive_status(line.quantity_requested, new_fulfilled)

    return ReceiptPlan(
        requisition_line_id=line.id,
        requisition_id=line.requisition_id,
        item_ref=line.item_ref,
        quantity=quantity,
        source=source,
        allocation_path=path,
        available=available,
        quantity_requested=line.quantity_requested,
        new_fulfilled=new_fulfilled,
        new_status=new_status,
        purchase_order_line_id=order_line_id,
        purchase_order_id=purchase_order_id,
    )


# ---------------------------------------------------------------------------
# Cache audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FulfilledDrift:
    """A requisition line whose cached totals disagree with the ledger."""

    requisition_line_id: UUID
    cached_fulfilled: Decimal
    derived_fulfilled: Decimal
    cached_status: RequisitionLineStatus
    derived_status: RequisitionLineStatus


def audit_fulfilled_cache(
    snapshot: ReconciliationSnapshot,
    catalog: ItemCatalog | None = None,
) -> tuple[FulfilledDrift, ...]:
    """Recompute fulfilled/status for every line and report mismatches."""
    drifts: list[FulfilledDrift] = []
    for line in snapshot.requisition_lines:
        derived = fulfilled_from_ledger(line, snapshot.entries, catalog)
        if line.status == RequisitionLineStatus.CANCELLED:
            status = RequisitionLineStatus.CANCELLED
        else:
            status = derive_status(line.quantity_requested, derived)
        if derived != line.quantity_fulfilled or status != line.status:
            drifts.append(
                FulfilledDrift(
                    requisition_line_id=line.id,
                    cached_fulfilled=line.quantity_fulfilled,
                    derived_fulfilled=derived,
                    cached_status=line.status,
                    derived_status=status,
                )
            )
    if drifts:
        warn_data_integrity(
            FULFILLED_CACHE_DRIFT,
            "Cached fulfilled quantities disagree with the ledger",
            lines=len(drifts),
        )
    return tuple(drifts)


# ---------------------------------------------------------------------------
# Ordering coverage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderableLine:
    """An SC line with quantity not yet covered by purchase orders."""

    request_line: PurchaseRequestLine
    ordered: Decimal
    unordered: Decimal


def ordered_quantity(
    request_line: PurchaseRequestLine,
    orders: Iterable[PurchaseOrder],
) -> Decimal:
    return quantity_sum(
        line.quantity
        for order in orders
        if not order.is_cancelled
        for line in order.lines
        if line.purchase_request_line_id == request_line.id
    )


def unordered_quantity(
    request_line: PurchaseRequestLine,
    orders: Iterable[PurchaseOrder],
) -> Decimal:
    """SC quantity not yet on a non-cancelled OC (over-ordering reads 0)."""
    return clamp_non_negative(request_line.quantity - ordered_quantity(request_line, orders))


def list_orderable_request_lines(
    request_lines: Iterable[PurchaseRequestLine],
    orders: Sequence[PurchaseOrder],
) -> tuple[OrderableLine, ...]:
    """SC lines that can still go on a new purchase order."""
    orderable: list[OrderableLine] = []
    for request_line in request_lines:
        ordered = ordered_quantity(request_line, orders)
        remaining = clamp_non_negative(request_line.quantity - ordered)
        if remaining > ZERO:
            orderable.append(OrderableLine(request_line, ordered, remaining))
    return tuple(orderable)
