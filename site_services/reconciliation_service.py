"""
site_services.reconciliation_service -- Pending, free-to-purchase and receipts.

Responsibility:
    Facade over the reconciliation engines.  Loads a snapshot through
    ``SnapshotService``, delegates the arithmetic to
    ``site_engines.allocation``, ``site_engines.reconciliation`` and
    ``site_engines.budget``, and persists warehouse receipts.

Architecture position:
    Services -- stateful orchestration over engines + modules.
    Composes ``InventoryService`` with ``auto_commit=False`` so the ledger
    entry and the cached fulfilled quantity share one transaction.

Invariants enforced:
    - A receipt is validated (``plan_receipt``) before anything is added
      to the session.
    - The ledger entry and the requisition line cache update commit
      together or not at all.
    - The cached ``quantity_fulfilled`` is always rewritten from the
      ledger-derived value, never incremented blindly.

Failure modes:
    - ReceiptExceedsBalanceError, MissingLinkageError, CancelledOrderError,
      InvalidQuantityError from ``plan_receipt``.
    - *NotFoundError for unknown ids.

Usage:
    service = ReconciliationService(session, clock=clock)
    free = service.compute_free_to_purchase(line_id)
    outcome = service.apply_receipt(
        line_id, Decimal("35"), ReceiptSource.PURCHASE_ORDER, actor_id=actor_id,
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from site_config.schema import ReconciliationPolicy
from site_engines.allocation import AllocationResolver, compute_pending_for_order_line
from site_engines.budget import BudgetCheck, check_budget
from site_engines.reconciliation import (
    FulfilledDrift,
    LineBalance,
    ReceiptPlan,
    audit_fulfilled_cache,
    compute_free_to_purchase,
    list_active_purchase_orders,
    plan_receipt,
    reconcile_line,
)
from site_kernel.domain.clock import Clock, SystemClock
from site_kernel.domain.documents import (
    LedgerEntry,
    PurchaseOrder,
    ReceiptSource,
    RequisitionLineStatus,
)
from site_kernel.domain.quantity import ZERO
from site_kernel.exceptions import RequisitionLineNotFoundError
from site_kernel.integrity import FULFILLED_EXCEEDS_REQUESTED, warn_data_integrity
from site_kernel.logging_config import LogContext, get_logger
from site_modules.inventory.service import InventoryService
from site_modules.procurement.orm import RequisitionLineModel
from site_services.inventory_cache import InventoryCache
from site_services.snapshot_service import SnapshotService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class ReceiptOutcome:
    """Result of a persisted receipt."""

    new_fulfilled: Decimal
    new_status: RequisitionLineStatus
    entry: LedgerEntry
    plan: ReceiptPlan


class ReconciliationService:
    """
    Requisition balances and receipt posting.

    Contract:
        Query methods are read-only and load a fresh snapshot per call.
        ``apply_receipt`` and ``repair_fulfilled_cache`` commit on success
        and roll back on failure.

    Non-goals:
        - Does NOT create or cancel purchase documents (see
          ``ProcurementService``).
        - Does NOT cache snapshots between calls; an injected
          ``InventoryCache`` is only invalidated after receipts.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ReconciliationPolicy | None = None,
        cache: InventoryCache | None = None,
    ):
        self._session = session
        self._cache = cache
        self._clock = clock or SystemClock()
        self._policy = policy or ReconciliationPolicy()
        self._snapshots = SnapshotService(session)

    @property
    def snapshots(self) -> SnapshotService:
        return self._snapshots

    def _resolver(self) -> AllocationResolver:
        return AllocationResolver(self._snapshots.catalog)

    # =========================================================================
    # Queries
    # =========================================================================

    def compute_pending_for_order_line(
        self,
        order_line_id: UUID,
        order_id: UUID,
        requisition_id: UUID,
    ) -> Decimal:
        """Pending quantity of one OC line for a requisition."""
        snapshot = self._snapshots.load_snapshot(requisition_id)
        _, order_line = snapshot.order_line(order_line_id)
        return compute_pending_for_order_line(
            snapshot, order_line, order_id, requisition_id, self._resolver()
        )

    def compute_free_to_purchase(self, requisition_line_id: UUID) -> Decimal:
        requisition_id = self._snapshots.requisition_id_for_line(requisition_line_id)
        snapshot = self._snapshots.load_snapshot(requisition_id)
        return compute_free_to_purchase(snapshot, requisition_line_id, self._resolver())

    def line_balances(self, requisition_id: UUID) -> tuple[LineBalance, ...]:
        """Requested / fulfilled / pipeline / free for every line."""
        snapshot = self._snapshots.load_snapshot(requisition_id)
        resolver = self._resolver()
        return tuple(
            reconcile_line(snapshot, line.id, resolver)
            for line in snapshot.requisition_lines
        )

    def list_active_purchase_orders(
        self,
        requisition_id: UUID | None = None,
        front_id: UUID | None = None,
    ) -> tuple[PurchaseOrder, ...]:
        """
        Orders with quantity still to receive.

        With neither filter every requisition with orders is considered.
        """
        if requisition_id is not None:
            requisition_ids: tuple[UUID, ...] = (requisition_id,)
        elif front_id is not None:
            requisition_ids = self._snapshots.requisition_ids_for_front(front_id)
        else:
            requisition_ids = self._snapshots.requisition_ids_with_orders()
        if not requisition_ids:
            return ()
        snapshot = self._snapshots.load_combined_snapshot(requisition_ids)
        orders = (
            self._snapshots.get_purchase_orders(front_id=front_id)
            if requisition_id is None and front_id is not None
            else None
        )
        return list_active_purchase_orders(snapshot, orders, self._resolver())

    def check_budget(
        self,
        material_id: UUID | str,
        front_specialty_id: UUID,
        requested_qty: Decimal,
        pending_in_form_qty: Decimal = ZERO,
    ) -> BudgetCheck:
        entries = self._snapshots.get_budget_entries(front_specialty_id)
        return check_budget(
            entries,
            material_id,
            front_specialty_id,
            requested_qty,
            pending_in_form_qty,
            self._policy.near_budget_threshold,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def apply_receipt(
        self,
        requisition_line_id: UUID,
        quantity: Decimal,
        source: ReceiptSource,
        actor_id: UUID,
        order_line_id: UUID | None = None,
        document_reference: str = "",
        requester: str = "",
        destination_or_use: str = "",
    ) -> ReceiptOutcome:
        """
        Validate and persist a warehouse receipt.

        Appends the IN ledger entry and rewrites the line's cached
        fulfilled quantity and status in one transaction.
        """
        line_model = self._session.get(RequisitionLineModel, requisition_line_id)
        if line_model is None:
            raise RequisitionLineNotFoundError(requisition_line_id)

        with LogContext.bind(requisition_id=str(line_model.requisition_id)):
            try:
                snapshot = self._snapshots.load_snapshot(line_model.requisition_id)
                plan = plan_receipt(
                    snapshot,
                    requisition_line_id,
                    quantity,
                    source,
                    order_line_id,
                    self._resolver(),
                )
                inventory = InventoryService(
                    self._session, clock=self._clock, auto_commit=False, cache=self._cache
                )
                entry = inventory.append_receipt(
                    plan,
                    actor_id,
                    document_reference=document_reference,
                    requester=requester,
                    destination_or_use=destination_or_use,
                )
                line_model.quantity_fulfilled = plan.new_fulfilled
                line_model.status = plan.new_status.value
                line_model.updated_by_id = actor_id
                self._session.commit()
                if self._cache is not None:
                    self._cache.invalidate()
            except Exception:
                self._session.rollback()
                raise

            if plan.exceeds_requested:
                warn_data_integrity(
                    FULFILLED_EXCEEDS_REQUESTED,
                    "Receipt took the line above its requested quantity",
                    requisition_line_id=requisition_line_id,
                    requested=plan.quantity_requested,
                    fulfilled=plan.new_fulfilled,
                )

            logger.info("receipt_applied", extra={
                "requisition_line_id": str(requisition_line_id),
                "ledger_entry_id": str(entry.id),
                "source_type": source.value,
                "allocation_path": plan.allocation_path,
                "quantity": str(plan.quantity),
                "new_fulfilled": str(plan.new_fulfilled),
                "new_status": plan.new_status.value,
            })

        return ReceiptOutcome(
            new_fulfilled=plan.new_fulfilled,
            new_status=plan.new_status,
            entry=entry,
            plan=plan,
        )

    def repair_fulfilled_cache(
        self,
        requisition_id: UUID,
        actor_id: UUID,
    ) -> tuple[FulfilledDrift, ...]:
        """Rewrite cached fulfilled/status of lines that drifted from the ledger."""
        try:
            snapshot = self._snapshots.load_snapshot(requisition_id)
            drifts = audit_fulfilled_cache(snapshot, self._snapshots.catalog)
            for drift in drifts:
                model = self._session.get(RequisitionLineModel, drift.requisition_line_id)
                model.quantity_fulfilled = drift.derived_fulfilled
                model.status = drift.derived_status.value
                model.updated_by_id = actor_id
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("fulfilled_cache_repaired", extra={
            "requisition_id": str(requisition_id),
            "repaired": len(drifts),
        })
        return drifts
