"""
Procurement inputs and results (``site_modules.procurement.models``).

Frozen dataclasses describing what callers hand to ``ProcurementService``
and what it returns alongside the kernel documents.  Pure data, zero I/O.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from site_engines.budget import BudgetCheck, BudgetStatus
from site_kernel.domain.documents import PurchaseRequest, Requisition
from site_kernel.domain.item_ref import ItemKind, ItemRef


@dataclass(frozen=True)
class RequisitionHeader:
    """Who is asking, for which front, and when."""

    requester: str
    request_date: date
    work_site_id: UUID | None = None
    front_id: UUID | None = None
    front_specialty_id: UUID | None = None
    block: str = ""
    specialty: str = ""


@dataclass(frozen=True)
class RequisitionLineInput:
    kind: ItemKind
    quantity: Decimal
    item_ref: ItemRef | None = None
    unit: str = "und"
    description: str = ""


@dataclass(frozen=True)
class RequisitionResult:
    """The persisted requisition plus the budget check of each material line."""

    requisition: Requisition
    budget_checks: tuple[tuple[UUID, BudgetCheck], ...] = ()

    @property
    def warnings(self) -> tuple[tuple[UUID, BudgetCheck], ...]:
        return tuple(
            (line_id, check)
            for line_id, check in self.budget_checks
            if check.status is not BudgetStatus.OK
        )


@dataclass(frozen=True)
class PurchaseRequestItem:
    """
    One item for a new purchase request.

    ``material_id`` wins when given; otherwise description and category
    are matched against the catalog.
    """

    quantity: Decimal
    material_id: UUID | str | None = None
    description: str = ""
    category: str = ""
    unit: str = "und"
    kind: ItemKind = ItemKind.MATERIAL


@dataclass(frozen=True)
class SkippedItem:
    index: int
    description: str
    reason: str


@dataclass(frozen=True)
class PurchaseRequestResult:
    purchase_request: PurchaseRequest
    skipped: tuple[SkippedItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PurchaseOrderItem:
    purchase_request_line_id: UUID
    quantity: Decimal
    unit_price: Decimal = Decimal("0")
