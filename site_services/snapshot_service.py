"""
SnapshotService -- read side of the reconciliation core.

Responsibility:
    Fetch purchase orders, ledger entries, requisition lines, purchase
    request lines and budget entries from the database and hand them to
    the engines as frozen documents.  Item references are canonicalised
    through the catalog once, here, so the engines compare ids.

Architecture position:
    Services -- orchestration.  Reads ``site_modules`` ORM models and
    builds ``site_kernel.domain.documents.ReconciliationSnapshot``.

Invariants enforced:
    - Read-only: never adds, flushes or commits.
    - A snapshot is built from one session in one pass; it is never
      refreshed in place.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from site_kernel.domain.documents import (
    BudgetEntry,
    LedgerEntry,
    MovementDirection,
    PurchaseOrder,
    PurchaseRequestLine,
    ReconciliationSnapshot,
    RequisitionLine,
)
from site_kernel.domain.item_ref import ItemCatalog
from site_kernel.exceptions import RequisitionLineNotFoundError, RequisitionNotFoundError
from site_kernel.logging_config import get_logger
from site_modules.budget.orm import BudgetEntryModel
from site_modules.inventory.orm import LedgerEntryModel
from site_modules.procurement.catalog import load_catalog
from site_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    PurchaseRequestLineModel,
    RequisitionLineModel,
    RequisitionModel,
)

logger = get_logger("services.snapshot")


class SnapshotService:
    """
    Collection reads for the reconciliation engines.

    Contract:
        Every method returns tuples of frozen documents.  No pagination:
        a requisition's history is small (tens of rows).
    """

    def __init__(self, session: Session, catalog: ItemCatalog | None = None):
        self._session = session
        self._catalog = catalog

    @property
    def catalog(self) -> ItemCatalog:
        if self._catalog is None:
            self._catalog = load_catalog(self._session)
        return self._catalog

    def _canonical(self, doc):
        return replace(doc, item_ref=self.catalog.resolve(doc.item_ref))

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def get_purchase_orders(
        self,
        requisition_id: UUID | None = None,
        front_id: UUID | None = None,
    ) -> tuple[PurchaseOrder, ...]:
        """Orders (with lines) serving a requisition or a work front."""
        stmt = select(PurchaseOrderModel).order_by(
            PurchaseOrderModel.order_date, PurchaseOrderModel.sequence
        )
        if requisition_id is not None or front_id is not None:
            stmt = (
                stmt.join(PurchaseOrderLineModel)
                .join(
                    PurchaseRequestLineModel,
                    PurchaseOrderLineModel.purchase_request_line_id == PurchaseRequestLineModel.id,
                )
                .distinct()
            )
            if requisition_id is not None:
                stmt = stmt.where(PurchaseRequestLineModel.requisition_id == requisition_id)
            if front_id is not None:
                stmt = stmt.join(
                    RequisitionModel,
                    PurchaseRequestLineModel.requisition_id == RequisitionModel.id,
                ).where(RequisitionModel.front_id == front_id)
        return tuple(row.to_dto() for row in self._session.scalars(stmt))

    def get_ledger_entries(
        self,
        requisition_id: UUID | None = None,
        direction: MovementDirection | None = None,
    ) -> tuple[LedgerEntry, ...]:
        stmt = select(LedgerEntryModel).order_by(
            LedgerEntryModel.timestamp, LedgerEntryModel.created_at
        )
        if requisition_id is not None:
            stmt = stmt.where(LedgerEntryModel.requisition_id == requisition_id)
        if direction is not None:
            stmt = stmt.where(LedgerEntryModel.direction == direction.value)
        return tuple(self._canonical(row.to_dto()) for row in self._session.scalars(stmt))

    def get_requisition_lines(self, requisition_id: UUID) -> tuple[RequisitionLine, ...]:
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(requisition_id)
        return tuple(self._canonical(line.to_dto()) for line in requisition.lines)

    def get_request_lines(self, requisition_id: UUID) -> tuple[PurchaseRequestLine, ...]:
        stmt = (
            select(PurchaseRequestLineModel)
            .where(PurchaseRequestLineModel.requisition_id == requisition_id)
            .order_by(PurchaseRequestLineModel.created_at, PurchaseRequestLineModel.line_number)
        )
        return tuple(self._canonical(row.to_dto()) for row in self._session.scalars(stmt))

    def get_budget_entries(self, front_specialty_id: UUID) -> tuple[BudgetEntry, ...]:
        stmt = select(BudgetEntryModel).where(
            BudgetEntryModel.front_specialty_id == front_specialty_id
        )
        return tuple(row.to_dto() for row in self._session.scalars(stmt))

    def requisition_id_for_line(self, requisition_line_id: UUID) -> UUID:
        line = self._session.get(RequisitionLineModel, requisition_line_id)
        if line is None:
            raise RequisitionLineNotFoundError(requisition_line_id)
        return line.requisition_id

    def requisition_ids_for_front(self, front_id: UUID) -> tuple[UUID, ...]:
        stmt = select(RequisitionModel.id).where(RequisitionModel.front_id == front_id)
        return tuple(self._session.scalars(stmt))

    def requisition_ids_with_orders(self) -> tuple[UUID, ...]:
        stmt = (
            select(PurchaseRequestLineModel.requisition_id)
            .join(
                PurchaseOrderLineModel,
                PurchaseOrderLineModel.purchase_request_line_id == PurchaseRequestLineModel.id,
            )
            .distinct()
        )
        return tuple(self._session.scalars(stmt))

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def load_snapshot(self, requisition_id: UUID) -> ReconciliationSnapshot:
        """Everything the engines need for one requisition."""
        return self.load_combined_snapshot((requisition_id,))

    def load_combined_snapshot(self, requisition_ids: Iterable[UUID]) -> ReconciliationSnapshot:
        """One snapshot covering several requisitions (e.g. a work front)."""
        ids = list(dict.fromkeys(requisition_ids))
        requisition_lines: list[RequisitionLine] = []
        request_lines: list[PurchaseRequestLine] = []
        entries: list[LedgerEntry] = []
        orders: dict[UUID, PurchaseOrder] = {}
        for requisition_id in ids:
            requisition_lines.extend(self.get_requisition_lines(requisition_id))
            request_lines.extend(self.get_request_lines(requisition_id))
            entries.extend(self.get_ledger_entries(requisition_id, MovementDirection.IN))
            for order in self.get_purchase_orders(requisition_id=requisition_id):
                orders.setdefault(order.id, order)

        snapshot = ReconciliationSnapshot(
            requisition_lines=tuple(requisition_lines),
            request_lines=tuple(request_lines),
            orders=tuple(sorted(orders.values(), key=lambda o: (o.order_date, o.sequence))),
            entries=tuple(entries),
        )
        logger.debug("snapshot_loaded", extra={
            "requisitions": len(ids),
            "requisition_lines": len(snapshot.requisition_lines),
            "request_lines": len(snapshot.request_lines),
            "orders": len(snapshot.orders),
            "entries": len(snapshot.entries),
        })
        return snapshot
