"""
SQLAlchemy ORM persistence models for the Procurement module.

Responsibility
--------------
Database-backed persistence for the material catalog, requisitions and
their lines, purchase requests (SC) and purchase orders (OC).

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProcurementService`` and the
snapshot service.  Inherits from ``TrackedBase`` (kernel db layer).
``to_dto`` returns the frozen kernel documents the engines read.

Invariants enforced
-------------------
* All quantities use ``Decimal`` (Numeric(38,9)) -- never float.
* Enum fields stored as String(50) for readability and portability.
* Every OC line references exactly one SC line (non-null foreign key).
* Purchase order ``sequence`` is unique; it orders orders issued on the
  same date.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_kernel.db.base import TrackedBase
from site_modules._item_columns import ItemRefColumns

# ---------------------------------------------------------------------------
# MaterialModel
# ---------------------------------------------------------------------------


class MaterialModel(TrackedBase):
    """
    Catalog entry for a material, piece of equipment or PPE item.

    Guarantees:
        - (kind, description, category) identifies legacy description
          references; duplicates make a description ambiguous.
    """

    __tablename__ = "catalog_items"

    __table_args__ = (
        Index("idx_catalog_kind_description", "kind", "description"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="material")
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="und")
    detail: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    stock_max: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    def to_catalog_item(self):
        from site_kernel.domain.item_ref import CatalogItem, ItemKind

        return CatalogItem(
            item_id=self.id,
            kind=ItemKind(self.kind),
            description=self.description,
            category=self.category,
            unit=self.unit,
            detail=self.detail,
            stock_max=self.stock_max,
        )

    def __repr__(self) -> str:
        return f"<MaterialModel {self.kind}:{self.description}>"


# ---------------------------------------------------------------------------
# RequisitionModel
# ---------------------------------------------------------------------------


class RequisitionModel(TrackedBase):
    """
    A requisition raised by a work front.

    Maps to ``site_kernel.domain.documents.Requisition``.
    """

    __tablename__ = "requisitions"

    __table_args__ = (
        UniqueConstraint("number", name="uq_requisition_number"),
        Index("idx_requisition_front", "front_id"),
        Index("idx_requisition_date", "request_date"),
    )

    number: Mapped[int] = mapped_column(Integer, nullable=False)
    work_site_id: Mapped[UUID | None]
    front_id: Mapped[UUID | None]
    front_specialty_id: Mapped[UUID | None]
    block: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    specialty: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    requester: Mapped[str] = mapped_column(String(200), nullable=False)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)

    lines: Mapped[list["RequisitionLineModel"]] = relationship(
        "RequisitionLineModel",
        back_populates="requisition",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RequisitionLineModel.line_number",
    )

    def to_dto(self):
        from site_kernel.domain.documents import Requisition

        return Requisition(
            id=self.id,
            number=self.number,
            work_site_id=self.work_site_id,
            front_id=self.front_id,
            specialty=self.specialty,
            requester=self.requester,
            request_date=self.request_date,
            block=self.block,
            front_specialty_id=self.front_specialty_id,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<RequisitionModel #{self.number}>"


class RequisitionLineModel(ItemRefColumns, TrackedBase):
    """
    A requisition line.

    ``quantity_fulfilled`` and ``status`` are a cache of the ledger; they
    are written only by ``ReconciliationService``.
    """

    __tablename__ = "requisition_lines"

    __table_args__ = (
        Index("idx_requisition_line_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(ForeignKey("requisitions.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="material")
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="und")
    quantity_requested: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_fulfilled: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")

    requisition: Mapped[RequisitionModel] = relationship(
        "RequisitionModel",
        back_populates="lines",
    )

    def to_dto(self):
        from site_kernel.domain.documents import RequisitionLine, RequisitionLineStatus
        from site_kernel.domain.item_ref import ItemKind

        return RequisitionLine(
            id=self.id,
            requisition_id=self.requisition_id,
            kind=ItemKind(self.kind),
            item_ref=self.item_ref,
            unit=self.unit,
            quantity_requested=self.quantity_requested,
            quantity_fulfilled=self.quantity_fulfilled,
            status=RequisitionLineStatus(self.status),
            description=self.description,
            line_number=self.line_number,
        )

    def __repr__(self) -> str:
        return f"<RequisitionLineModel {self.line_number}: {self.quantity_requested} [{self.status}]>"


# ---------------------------------------------------------------------------
# PurchaseRequestModel (SC)
# ---------------------------------------------------------------------------


class PurchaseRequestModel(TrackedBase):
    """A purchase request raised from one requisition."""

    __tablename__ = "purchase_requests"

    __table_args__ = (
        UniqueConstraint("number", name="uq_purchase_request_number"),
        Index("idx_purchase_request_requisition", "requisition_id"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    requisition_id: Mapped[UUID] = mapped_column(ForeignKey("requisitions.id"), nullable=False)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")

    lines: Mapped[list["PurchaseRequestLineModel"]] = relationship(
        "PurchaseRequestLineModel",
        back_populates="purchase_request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseRequestLineModel.line_number",
    )

    def to_dto(self):
        from site_kernel.domain.documents import PurchaseRequest, PurchaseRequestStatus

        return PurchaseRequest(
            id=self.id,
            number=self.number,
            requisition_id=self.requisition_id,
            request_date=self.request_date,
            status=PurchaseRequestStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseRequestModel {self.number} [{self.status}]>"


class PurchaseRequestLineModel(ItemRefColumns, TrackedBase):
    """SC line: quantity approved for purchase of one catalog item."""

    __tablename__ = "purchase_request_lines"

    __table_args__ = (
        Index("idx_purchase_request_line_request", "purchase_request_id"),
        Index("idx_purchase_request_line_requisition", "requisition_id"),
    )

    purchase_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_requests.id"), nullable=False
    )
    requisition_id: Mapped[UUID] = mapped_column(ForeignKey("requisitions.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="und")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")

    purchase_request: Mapped[PurchaseRequestModel] = relationship(
        "PurchaseRequestModel",
        back_populates="lines",
    )

    def to_dto(self):
        from site_kernel.domain.documents import PurchaseRequestLine, PurchaseRequestStatus

        return PurchaseRequestLine(
            id=self.id,
            purchase_request_id=self.purchase_request_id,
            requisition_id=self.requisition_id,
            item_ref=self.item_ref,
            quantity=self.quantity,
            unit=self.unit,
            status=PurchaseRequestStatus(self.status),
        )

    def __repr__(self) -> str:
        return f"<PurchaseRequestLineModel {self.line_number}: {self.quantity}>"


# ---------------------------------------------------------------------------
# PurchaseOrderModel (OC)
# ---------------------------------------------------------------------------


class PurchaseOrderModel(TrackedBase):
    """
    A purchase order issued to a supplier.

    Guarantees:
        - ``sequence`` is assigned at creation and never reused.
        - ``status`` follows issued -> received | cancelled.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("number", name="uq_purchase_order_number"),
        UniqueConstraint("sequence", name="uq_purchase_order_sequence"),
        Index("idx_purchase_order_date", "order_date"),
    )

    number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="issued")
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("purchase_requests.id"), nullable=True
    )

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    def to_dto(self):
        from site_kernel.domain.documents import PurchaseOrder, PurchaseOrderStatus

        return PurchaseOrder(
            id=self.id,
            number=self.number,
            supplier=self.supplier,
            status=PurchaseOrderStatus(self.status),
            order_date=self.order_date,
            sequence=self.sequence,
            purchase_request_id=self.purchase_request_id,
            expected_date=self.expected_date,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.number} [{self.status}]>"


class PurchaseOrderLineModel(TrackedBase):
    """OC line against exactly one SC line."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        Index("idx_purchase_order_line_order", "purchase_order_id"),
        Index("idx_purchase_order_line_request_line", "purchase_request_line_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False
    )
    purchase_request_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("purchase_request_lines.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    purchase_order: Mapped[PurchaseOrderModel] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_dto(self):
        from site_kernel.domain.documents import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            purchase_request_line_id=self.purchase_request_line_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderLineModel {self.line_number}: {self.quantity}>"
