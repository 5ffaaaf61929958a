"""
Inventory value objects (``site_modules.inventory.models``).

Stock levels and the normalised stock report row shared by materials,
equipment and PPE.  Pure data, zero I/O.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from site_kernel.domain.item_ref import ItemKind, ItemRef

KIND_LABELS = {
    ItemKind.MATERIAL: "Material",
    ItemKind.EQUIPMENT: "Equipment",
    ItemKind.PPE: "PPE",
    ItemKind.SERVICE: "Service",
}


@dataclass(frozen=True)
class StockLevel:
    """Quantity on hand for one item."""

    item_ref: ItemRef
    quantity: Decimal
    last_entry: datetime | None = None


@dataclass(frozen=True)
class StockReportRow:
    """
    One line of the stock report.

    Items missing from the catalog keep their ledger description and show
    "-" for the fields only the catalog knows.
    """

    kind: str
    description: str
    detail: str
    category: str
    unit: str
    quantity: Decimal
    last_entry: datetime | None = None


@dataclass(frozen=True)
class StockDrift:
    """An item whose stored stock level disagrees with the ledger."""

    item_ref: ItemRef
    stored_quantity: Decimal
    ledger_quantity: Decimal
