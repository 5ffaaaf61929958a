"""
Inventory Module Service (``site_modules.inventory.service``).

Responsibility
--------------
Append warehouse movements to the ledger, keep the denormalised stock
level in step, and answer stock and movement queries.  Stock reads come
from ``StockLevelModel``; the ledger scan is the audit and repair path.

Architecture position
---------------------
**Modules layer** -- thin ERP glue over ``LedgerEntryModel`` and
``StockLevelModel``.  Receipts against requisitions are validated by
``site_engines.reconciliation.plan_receipt`` before ``append_receipt``
is called; this service does not re-validate them.

Invariants enforced
-------------------
* Ledger rows are only ever inserted.
* Stock per item is IN - OUT over the ledger; ``StockLevelModel`` is
  updated in the same transaction as every movement and can be rebuilt
  from the ledger with ``repair_stock_levels``.
* An injected ``StockCache`` serves stock listings and the stock report;
  every ledger append invalidates it.
* Exits are validated against current stock before anything is written.
* Public methods commit on success and roll back on failure when
  ``auto_commit`` is True.

Failure modes
-------------
* ``InvalidQuantityError`` for zero/negative quantities.
* ``InsufficientStockError`` for exits above the stock on hand.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from site_engines.reconciliation import ReceiptPlan
from site_kernel.domain.clock import Clock, SystemClock
from site_kernel.domain.documents import LedgerEntry, MovementDirection
from site_kernel.domain.item_ref import ItemCatalog, ItemRef
from site_kernel.domain.quantity import ZERO, require_positive
from site_kernel.exceptions import InsufficientStockError
from site_kernel.logging_config import get_logger
from site_modules.inventory.models import KIND_LABELS, StockDrift, StockLevel, StockReportRow
from site_modules.inventory.orm import LedgerEntryModel, StockLevelModel
from site_modules.procurement.catalog import load_catalog

logger = get_logger("modules.inventory.service")


def item_key(ref: ItemRef) -> str:
    """Stable string key of a (canonicalised) item reference."""
    return "|".join(str(part) for part in ref.key)


class StockCache(Protocol):
    """Read-through cache for stock listings (see ``site_services.inventory_cache``)."""

    def get_or_refresh(
        self, key: Hashable, loader: Callable[[], Any], ttl: float | None = ...
    ) -> Any: ...

    def invalidate(self, key: Hashable | None = ...) -> None: ...


STOCK_LEVELS_KEY = "stock_levels"
STOCK_REPORT_KEY = "stock_report"


class InventoryService:
    """
    Warehouse ledger and stock.

    Contract
    --------
    * Writes return the frozen ``LedgerEntry`` that was appended.
    * Item references are canonicalised through the catalog before stock
      is grouped, so a legacy description and its catalog id share a
      stock level.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
        cache: StockCache | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._cache = cache
        self._catalog: ItemCatalog | None = None

    @property
    def catalog(self) -> ItemCatalog:
        if self._catalog is None:
            self._catalog = load_catalog(self._session)
        return self._catalog

    def _canonical(self, ref: ItemRef) -> ItemRef:
        return self.catalog.resolve(ref)

    # =========================================================================
    # Movements
    # =========================================================================

    def _append(
        self,
        direction: MovementDirection,
        item_ref: ItemRef,
        quantity: Decimal,
        actor_id: UUID,
        **fields,
    ) -> LedgerEntryModel:
        now = self._clock.now()
        model = LedgerEntryModel(
            direction=direction.value,
            quantity=quantity,
            timestamp=now,
            created_by_id=actor_id,
            **fields,
        )
        model.item_ref = item_ref
        self._session.add(model)
        if direction == MovementDirection.IN:
            self._apply_to_stock(item_ref, quantity, actor_id, now)
        else:
            self._apply_to_stock(item_ref, -quantity, actor_id, None)
        self._session.flush()
        return model

    def _apply_to_stock(
        self,
        item_ref: ItemRef,
        delta: Decimal,
        actor_id: UUID,
        entry_at: datetime | None,
    ) -> None:
        canonical = self._canonical(item_ref)
        key = item_key(canonical)
        level = self._session.scalars(
            select(StockLevelModel).where(StockLevelModel.item_key == key)
        ).first()
        if level is None:
            level = StockLevelModel(item_key=key, quantity=ZERO, created_by_id=actor_id)
            level.item_ref = canonical
            self._session.add(level)
        else:
            level.updated_by_id = actor_id
        level.quantity = (level.quantity or ZERO) + delta
        if entry_at is not None:
            level.last_entry_at = entry_at

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        if self._cache is not None:
            self._cache.invalidate()

    def _cached(self, key: str, loader: Callable[[], Any]) -> Any:
        if self._cache is None:
            return loader()
        return self._cache.get_or_refresh(key, loader)

    def append_receipt(
        self,
        plan: ReceiptPlan,
        actor_id: UUID,
        document_reference: str = "",
        requester: str = "",
        destination_or_use: str = "",
    ) -> LedgerEntry:
        """Append the IN entry described by a validated ``ReceiptPlan``."""
        try:
            model = self._append(
                MovementDirection.IN,
                plan.item_ref,
                plan.quantity,
                actor_id,
                requisition_id=plan.requisition_id,
                requisition_line_id=plan.requisition_line_id,
                source_type=plan.source.value,
                purchase_order_line_id=plan.purchase_order_line_id,
                destination_or_use=destination_or_use,
                document_reference=document_reference,
                requester=requester,
            )
            self._finish()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

        logger.info("inventory_receipt_appended", extra={
            "ledger_entry_id": str(model.id),
            "requisition_line_id": str(plan.requisition_line_id),
            "source_type": plan.source.value,
            "quantity": str(plan.quantity),
        })
        return model.to_dto()

    def register_exit(
        self,
        item_ref: ItemRef,
        quantity: Decimal,
        destination: str,
        requester: str,
        actor_id: UUID,
        requisition_id: UUID | None = None,
        document_reference: str = "",
    ) -> LedgerEntry:
        """
        Issue stock to a destination or use.

        Raises:
            InvalidQuantityError: quantity is zero or negative.
            InsufficientStockError: quantity is above the stock on hand.
        """
        quantity = require_positive(quantity, "quantity")
        available = self.get_stock_level(item_ref)
        if quantity > available:
            logger.warning("inventory_exit_rejected", extra={
                "item": str(item_ref),
                "requested": str(quantity),
                "available": str(available),
            })
            raise InsufficientStockError(str(item_ref), quantity, available)

        try:
            model = self._append(
                MovementDirection.OUT,
                item_ref,
                quantity,
                actor_id,
                requisition_id=requisition_id,
                destination_or_use=destination,
                document_reference=document_reference,
                requester=requester,
            )
            self._finish()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

        logger.info("inventory_exit_registered", extra={
            "ledger_entry_id": str(model.id),
            "item": str(item_ref),
            "quantity": str(quantity),
            "destination": destination,
        })
        return model.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_movements(
        self,
        direction: MovementDirection | None = None,
        requisition_id: UUID | None = None,
        limit: int = 100,
    ) -> tuple[LedgerEntry, ...]:
        """Most recent movements first."""
        stmt = select(LedgerEntryModel).order_by(
            LedgerEntryModel.timestamp.desc(), LedgerEntryModel.created_at.desc()
        )
        if direction is not None:
            stmt = stmt.where(LedgerEntryModel.direction == direction.value)
        if requisition_id is not None:
            stmt = stmt.where(LedgerEntryModel.requisition_id == requisition_id)
        return tuple(row.to_dto() for row in self._session.scalars(stmt.limit(limit)))

    def get_stock_levels(self) -> tuple[StockLevel, ...]:
        """Stored stock per item, ordered by item key."""
        return self._cached(STOCK_LEVELS_KEY, self._load_stock_levels)

    def _load_stock_levels(self) -> tuple[StockLevel, ...]:
        stmt = select(StockLevelModel).order_by(StockLevelModel.item_key)
        return tuple(
            StockLevel(item_ref=row.item_ref, quantity=row.quantity, last_entry=row.last_entry_at)
            for row in self._session.scalars(stmt)
        )

    def get_stock_level(self, item_ref: ItemRef) -> Decimal:
        """Stored stock of one item; read fresh so exits validate against it."""
        key = item_key(self._canonical(item_ref))
        level = self._session.scalars(
            select(StockLevelModel).where(StockLevelModel.item_key == key)
        ).first()
        return ZERO if level is None else level.quantity

    def ledger_stock_levels(self) -> tuple[StockLevel, ...]:
        """Stock per item as IN - OUT over the whole ledger."""
        totals: dict[str, list] = {}
        for row in self._session.scalars(select(LedgerEntryModel)):
            ref = row.item_ref
            if ref is None:
                continue
            canonical = self._canonical(ref)
            slot = totals.setdefault(item_key(canonical), [canonical, ZERO, None])
            if row.direction == MovementDirection.IN.value:
                slot[1] += row.quantity
                if slot[2] is None or row.timestamp > slot[2]:
                    slot[2] = row.timestamp
            else:
                slot[1] -= row.quantity
        return tuple(
            StockLevel(item_ref=ref, quantity=qty, last_entry=last)
            for _key, (ref, qty, last) in sorted(totals.items())
        )

    def audit_stock_levels(self) -> tuple[StockDrift, ...]:
        """Items whose stored level disagrees with the ledger."""
        stored = {
            row.item_key: row.quantity
            for row in self._session.scalars(select(StockLevelModel))
        }
        drifts: list[StockDrift] = []
        derived_keys: set[str] = set()
        for level in self.ledger_stock_levels():
            key = item_key(level.item_ref)
            derived_keys.add(key)
            if stored.get(key) != level.quantity:
                drifts.append(StockDrift(level.item_ref, stored.get(key, ZERO), level.quantity))
        for row in self._session.scalars(select(StockLevelModel)):
            if row.item_key not in derived_keys and row.quantity != ZERO:
                drifts.append(StockDrift(row.item_ref, row.quantity, ZERO))
        return tuple(drifts)

    def repair_stock_levels(self, actor_id: UUID) -> tuple[StockDrift, ...]:
        """
        Rewrite drifted ``StockLevelModel`` rows from the ledger.

        Returns the drifts that were corrected.
        """
        drifts = self.audit_stock_levels()
        if not drifts:
            return drifts
        ledger = {item_key(level.item_ref): level for level in self.ledger_stock_levels()}
        try:
            for drift in drifts:
                key = item_key(drift.item_ref)
                row = self._session.scalars(
                    select(StockLevelModel).where(StockLevelModel.item_key == key)
                ).first()
                if row is None:
                    row = StockLevelModel(item_key=key, quantity=ZERO, created_by_id=actor_id)
                    row.item_ref = drift.item_ref
                    self._session.add(row)
                else:
                    row.updated_by_id = actor_id
                row.quantity = drift.ledger_quantity
                if key in ledger:
                    row.last_entry_at = ledger[key].last_entry
            self._session.flush()
            self._finish()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

        logger.warning("stock_levels_repaired", extra={"items": len(drifts)})
        return drifts

    def stock_report(self) -> tuple[StockReportRow, ...]:
        """Stock levels normalised across materials, equipment and PPE."""
        return self._cached(STOCK_REPORT_KEY, self._build_stock_report)

    def _build_stock_report(self) -> tuple[StockReportRow, ...]:
        rows = []
        for level in self.get_stock_levels():
            item = self.catalog.get(level.item_ref)
            if item is not None:
                rows.append(StockReportRow(
                    kind=KIND_LABELS[item.kind],
                    description=item.description or "-",
                    detail=item.detail or "-",
                    category=item.category or "-",
                    unit=item.unit or "-",
                    quantity=level.quantity,
                    last_entry=level.last_entry,
                ))
            else:
                ref = level.item_ref
                rows.append(StockReportRow(
                    kind=KIND_LABELS[ref.kind],
                    description=getattr(ref, "description", "") or str(ref),
                    detail="-",
                    category=getattr(ref, "category", "") or "-",
                    unit="-",
                    quantity=level.quantity,
                    last_entry=level.last_entry,
                ))
        return tuple(sorted(rows, key=lambda r: (r.kind, r.description)))
