"""
SQLAlchemy ORM persistence models for the Budget module.

Responsibility
--------------
Persist budgeted vs utilized quantity per (front specialty, material).

Invariants enforced
-------------------
* One row per (front_specialty_id, material_id).
* ``quantity_utilized`` only grows; imports never reset it.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from site_kernel.db.base import TrackedBase


class BudgetEntryModel(TrackedBase):
    """Budget row for one material on one front specialty."""

    __tablename__ = "budget_entries"

    __table_args__ = (
        UniqueConstraint("front_specialty_id", "material_id", name="uq_budget_front_material"),
        Index("idx_budget_front_specialty", "front_specialty_id"),
    )

    front_specialty_id: Mapped[UUID] = mapped_column(nullable=False)
    material_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="und")
    quantity_budgeted: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quantity_utilized: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    def to_dto(self):
        from site_kernel.domain.documents import BudgetEntry

        return BudgetEntry(
            id=self.id,
            front_specialty_id=self.front_specialty_id,
            material_id=_parse_material_id(self.material_id),
            quantity_budgeted=self.quantity_budgeted,
            quantity_utilized=self.quantity_utilized,
        )

    def __repr__(self) -> str:
        return f"<BudgetEntryModel {self.material_id}: {self.quantity_utilized}/{self.quantity_budgeted}>"


def _parse_material_id(value: str) -> UUID | str:
    try:
        return UUID(value)
    except ValueError:
        return value
