"""
SQLAlchemy ORM persistence models for the Inventory module.

Responsibility
--------------
Persist the warehouse movement ledger and the denormalised stock level
per item.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``InventoryService``,
``ReconciliationService`` and the snapshot service.

Invariants enforced
-------------------
* Ledger entries are append-only: ORM ``before_update`` and
  ``before_delete`` listeners raise ``ImmutabilityViolationError``.
  Corrections are new entries.
* All quantities use ``Decimal`` (Numeric(38,9)) -- never float.
* ``StockLevelModel`` is a cache of IN - OUT per item; the ledger wins on
  disagreement.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, Index, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from site_kernel.db.base import TrackedBase
from site_kernel.exceptions import ImmutabilityViolationError
from site_modules._item_columns import ItemRefColumns

# ---------------------------------------------------------------------------
# LedgerEntryModel
# ---------------------------------------------------------------------------


class LedgerEntryModel(ItemRefColumns, TrackedBase):
    """
    One warehouse movement (entry or exit).

    Maps to ``site_kernel.domain.documents.LedgerEntry``.
    """

    __tablename__ = "inventory_ledger_entries"

    __table_args__ = (
        Index("idx_ledger_requisition", "requisition_id"),
        Index("idx_ledger_requisition_line", "requisition_line_id"),
        Index("idx_ledger_direction", "direction"),
        Index("idx_ledger_timestamp", "timestamp"),
    )

    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requisition_id: Mapped[UUID | None]
    requisition_line_id: Mapped[UUID | None]
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    purchase_order_line_id: Mapped[UUID | None]
    destination_or_use: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    document_reference: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    requester: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    def to_dto(self):
        from site_kernel.domain.documents import (
            LedgerEntry,
            MovementDirection,
            ReceiptSource,
        )

        return LedgerEntry(
            id=self.id,
            direction=MovementDirection(self.direction),
            item_ref=self.item_ref,
            quantity=self.quantity,
            timestamp=self.timestamp,
            requisition_id=self.requisition_id,
            requisition_line_id=self.requisition_line_id,
            source_type=ReceiptSource(self.source_type) if self.source_type else None,
            purchase_order_line_id=self.purchase_order_line_id,
            destination_or_use=self.destination_or_use,
            document_reference=self.document_reference,
            requester=self.requester,
        )

    def __repr__(self) -> str:
        return f"<LedgerEntryModel {self.direction} {self.quantity}>"


@event.listens_for(LedgerEntryModel, "before_update")
def prevent_ledger_update(mapper, connection, target):
    """Ledger entries are never edited; post a correcting entry instead."""
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        operation="update",
    )


@event.listens_for(LedgerEntryModel, "before_delete")
def prevent_ledger_delete(mapper, connection, target):
    """Ledger entries are never deleted; post a correcting entry instead."""
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        operation="delete",
    )


# ---------------------------------------------------------------------------
# StockLevelModel
# ---------------------------------------------------------------------------


class StockLevelModel(ItemRefColumns, TrackedBase):
    """Current quantity on hand for one item at the work site."""

    __tablename__ = "inventory_stock_levels"

    __table_args__ = (
        UniqueConstraint("item_key", name="uq_stock_level_item"),
    )

    item_key: Mapped[str] = mapped_column(String(700), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    last_entry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<StockLevelModel {self.item_key}: {self.quantity}>"
