"""
Budget Module Service (``site_modules.budget.service``).

Responsibility
--------------
Read budget rows, accumulate utilisation when requisition lines are
persisted, import budget spreadsheets and produce the consumption summary.
Calculations are delegated to ``site_engines.budget``.

Invariants enforced
-------------------
* ``quantity_utilized`` only grows (``accumulate_utilization`` rejects
  negative deltas); imports never touch it.
* Public methods own the transaction boundary when ``auto_commit`` is
  True (``commit`` on success, ``rollback`` and re-raise on failure).
  Callers composing several services pass ``auto_commit=False`` and
  commit themselves.

Failure modes
-------------
* ``InvalidQuantityError`` for negative utilisation.
* Import rows that cannot be matched or parsed are skipped and reported,
  never raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from site_engines.budget import (
    BudgetSummaryRow,
    accumulate_utilization,
    summarize_budget,
)
from site_kernel.domain.documents import BudgetEntry
from site_kernel.domain.quantity import ZERO, to_quantity
from site_kernel.exceptions import InvalidQuantityError
from site_kernel.logging_config import get_logger
from site_modules.budget.models import BudgetImportResult, BudgetImportRow
from site_modules.budget.orm import BudgetEntryModel
from site_modules.procurement.catalog import load_catalog

logger = get_logger("modules.budget.service")


class BudgetService:
    """
    Budget rows per (front specialty, material).

    Contract
    --------
    * Read methods return frozen ``BudgetEntry`` documents.
    * ``record_utilization`` and ``import_rows`` write; they commit only
      when ``auto_commit`` is True.
    """

    def __init__(self, session: Session, auto_commit: bool = True):
        self._session = session
        self._auto_commit = auto_commit

    # =========================================================================
    # Queries
    # =========================================================================

    def _query(self, front_specialty_id: UUID | None = None):
        stmt = select(BudgetEntryModel).order_by(BudgetEntryModel.description)
        if front_specialty_id is not None:
            stmt = stmt.where(BudgetEntryModel.front_specialty_id == front_specialty_id)
        return self._session.scalars(stmt)

    def get_entries(self, front_specialty_id: UUID | None = None) -> tuple[BudgetEntry, ...]:
        return tuple(row.to_dto() for row in self._query(front_specialty_id))

    def _find_model(self, front_specialty_id: UUID, material_id: UUID | str) -> BudgetEntryModel | None:
        return self._session.scalars(
            select(BudgetEntryModel).where(
                BudgetEntryModel.front_specialty_id == front_specialty_id,
                BudgetEntryModel.material_id == str(material_id),
            )
        ).first()

    def get_entry(self, front_specialty_id: UUID, material_id: UUID | str) -> BudgetEntry | None:
        model = self._find_model(front_specialty_id, material_id)
        return model.to_dto() if model is not None else None

    def summarize(self, front_specialty_id: UUID | None = None) -> tuple[BudgetSummaryRow, ...]:
        return summarize_budget(self.get_entries(front_specialty_id))

    # =========================================================================
    # Writes
    # =========================================================================

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def record_utilization(
        self,
        front_specialty_id: UUID,
        material_id: UUID | str,
        quantity: Decimal,
        actor_id: UUID,
    ) -> BudgetEntry | None:
        """
        Add ``quantity`` to the utilisation of a budget row.

        Returns the updated entry, or None when the material is unbudgeted.
        """
        try:
            model = self._find_model(front_specialty_id, material_id)
            if model is None:
                logger.info("budget_utilization_unbudgeted", extra={
                    "front_specialty_id": str(front_specialty_id),
                    "material_id": str(material_id),
                })
                return None

            updated = accumulate_utilization(model.to_dto(), quantity)
            model.quantity_utilized = updated.quantity_utilized
            model.updated_by_id = actor_id
            self._finish()

            logger.info("budget_utilization_recorded", extra={
                "budget_entry_id": str(model.id),
                "material_id": str(material_id),
                "delta": str(quantity),
                "utilized": str(updated.quantity_utilized),
                "budgeted": str(updated.quantity_budgeted),
            })
            return updated

        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

    def import_rows(
        self,
        front_specialty_id: UUID,
        rows: Sequence[BudgetImportRow],
        actor_id: UUID,
    ) -> BudgetImportResult:
        """
        Upsert budget rows for a front specialty.

        Rows are matched by ``entry_id``, then by (front specialty,
        material).  Existing rows get a new ``quantity_budgeted``; their
        ``quantity_utilized`` is kept.
        """
        catalog = load_catalog(self._session)
        created = updated = 0
        skipped: list[tuple[int, str]] = []

        try:
            for index, row in enumerate(rows):
                try:
                    budgeted = to_quantity(row.quantity_budgeted, "quantity_budgeted")
                except InvalidQuantityError:
                    skipped.append((index, f"invalid quantity {row.quantity_budgeted!r}"))
                    continue
                if budgeted < ZERO:
                    skipped.append((index, f"negative quantity {budgeted}"))
                    continue

                model = None
                if row.entry_id is not None:
                    model = self._session.get(BudgetEntryModel, row.entry_id)
                    if model is None:
                        skipped.append((index, f"budget entry {row.entry_id} not found"))
                        continue

                if model is None:
                    material_id = row.material_id
                    description = row.description
                    if material_id is None:
                        item = catalog.find_by_description(row.description)
                        if item is None:
                            skipped.append((index, f"no catalog material for {row.description!r}"))
                            continue
                        material_id = item.item_id
                        description = item.description
                    model = self._find_model(front_specialty_id, material_id)
                    if model is None:
                        self._session.add(BudgetEntryModel(
                            front_specialty_id=front_specialty_id,
                            material_id=str(material_id),
                            description=description,
                            unit=row.unit,
                            quantity_budgeted=budgeted,
                            quantity_utilized=ZERO,
                            created_by_id=actor_id,
                        ))
                        created += 1
                        continue

                model.quantity_budgeted = budgeted
                model.updated_by_id = actor_id
                updated += 1

            self._finish()
        except Exception:
            if self._auto_commit:
                self._session.rollback()
            raise

        result = BudgetImportResult(created=created, updated=updated, skipped=tuple(skipped))
        logger.info("budget_rows_imported", extra={
            "front_specialty_id": str(front_specialty_id),
            "rows_created": created,
            "rows_updated": updated,
            "rows_skipped": len(skipped),
        })
        return result
