"""
Budget import rows and results (``site_modules.budget.models``).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class BudgetImportRow:
    """
    One spreadsheet row.

    ``entry_id`` updates that budget row directly.  Otherwise the material
    is taken from ``material_id`` or matched by ``description``.
    """

    quantity_budgeted: Decimal | str | int
    material_id: UUID | str | None = None
    description: str = ""
    unit: str = "und"
    entry_id: UUID | None = None


@dataclass(frozen=True)
class BudgetImportResult:
    created: int = 0
    updated: int = 0
    skipped: tuple[tuple[int, str], ...] = field(default_factory=tuple)

    @property
    def imported(self) -> int:
        return self.created + self.updated
