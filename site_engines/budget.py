"""
Module: site_engines.budget
Responsibility:
    Soft-gate requisition lines against the per-(front specialty, material)
    budget, accumulate utilisation, and summarise budget consumption.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``check_budget`` is read-only; utilisation only grows through
      ``accumulate_utilization``, which returns a new entry.
    - Utilisation is monotonic: negative adjustments are rejected.

Failure modes:
    - InvalidQuantityError on negative or non-numeric quantities.

Usage:
    from site_engines.budget import BudgetStatus, check_budget

    result = check_budget(entries, material_id, front_specialty_id,
                          requested_qty=Decimal("6"),
                          pending_in_form_qty=Decimal("0"))
    if result.status is BudgetStatus.WARN:
        ...
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from site_engines.tracer import traced_engine
from site_kernel.domain.documents import BudgetEntry
from site_kernel.domain.quantity import ZERO, quantity_sum, to_quantity
from site_kernel.exceptions import InvalidQuantityError
from site_kernel.logging_config import get_logger

logger = get_logger("engines.budget")

DEFAULT_NEAR_THRESHOLD = Decimal("0.90")
_HUNDRED = Decimal("100")
_PERCENT_PLACES = Decimal("0.01")


class BudgetStatus(str, Enum):
    """Outcome of a budget check."""

    OK = "ok"
    WARN = "warn"
    OVER = "over"
    UNBUDGETED = "unbudgeted"


@dataclass(frozen=True)
class BudgetCheck:
    """
    Result of ``check_budget``.

    Guarantees:
        - ``projected == utilized + pending_in_form + requested``.
        - ``budgeted`` and ``utilized`` are zero when UNBUDGETED.
    """

    status: BudgetStatus
    projected: Decimal
    budgeted: Decimal
    utilized: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.budgeted - self.projected

    @property
    def ratio(self) -> Decimal | None:
        if self.budgeted <= ZERO:
            return None
        return self.projected / self.budgeted


def _same_id(a: Any, b: Any) -> bool:
    return str(a) == str(b)


def _non_negative(value: Any, field: str) -> Decimal:
    quantity = to_quantity(value, field)
    if quantity < ZERO:
        raise InvalidQuantityError(field, quantity)
    return quantity


def matching_entries(
    entries: Iterable[BudgetEntry],
    material_id: UUID | str,
    front_specialty_id: UUID | str,
) -> list[BudgetEntry]:
    return [
        entry
        for entry in entries
        if _same_id(entry.material_id, material_id)
        and _same_id(entry.front_specialty_id, front_specialty_id)
    ]


@traced_engine(
    "budget",
    "1.0",
    fingerprint_fields=(
        "material_id",
        "front_specialty_id",
        "requested_qty",
        "pending_in_form_qty",
    ),
)
def check_budget(
    entries: Sequence[BudgetEntry],
    material_id: UUID | str,
    front_specialty_id: UUID | str,
    requested_qty: Decimal,
    pending_in_form_qty: Decimal = ZERO,
    near_threshold: Decimal | float = DEFAULT_NEAR_THRESHOLD,
) -> BudgetCheck:
    """
    Classify a requested quantity against the budget.

    ``projected = utilized + pending_in_form_qty + requested_qty``.
    OVER when projected exceeds budgeted, WARN when projected reaches
    ``near_threshold`` of budgeted, UNBUDGETED when the material has no
    budget row for the front specialty.
    """
    requested = _non_negative(requested_qty, "requested_qty")
    in_form = _non_negative(pending_in_form_qty, "pending_in_form_qty")
    threshold = to_quantity(near_threshold, "near_threshold")

    matched = matching_entries(entries, material_id, front_specialty_id)
    if not matched:
        logger.info(
            "budget_unbudgeted",
            extra={
                "material_id": str(material_id),
                "front_specialty_id": str(front_specialty_id),
            },
        )
        return BudgetCheck(
            status=BudgetStatus.UNBUDGETED,
            projected=in_form + requested,
            budgeted=ZERO,
        )

    budgeted = quantity_sum(e.quantity_budgeted for e in matched)
    utilized = quantity_sum(e.quantity_utilized for e in matched)
    projected = utilized + in_form + requested

    if projected > budgeted:
        status = BudgetStatus.OVER
    elif budgeted > ZERO and projected / budgeted >= threshold:
        status = BudgetStatus.WARN
    else:
        status = BudgetStatus.OK

    if status is not BudgetStatus.OK:
        logger.info(
            "budget_threshold_reached",
            extra={
                "status": status.value,
                "material_id": str(material_id),
                "front_specialty_id": str(front_specialty_id),
                "projected": str(projected),
                "budgeted": str(budgeted),
            },
        )
    return BudgetCheck(status, projected, budgeted, utilized)


def accumulate_utilization(entry: BudgetEntry, quantity: Decimal) -> BudgetEntry:
    """Return ``entry`` with ``quantity_utilized`` increased by ``quantity``."""
    delta = _non_negative(quantity, "utilized_delta")
    if delta == ZERO:
        return entry
    return replace(entry, quantity_utilized=entry.quantity_utilized + delta)


@dataclass(frozen=True)
class BudgetSummaryRow:
    """One row of the budget consumption report."""

    entry_id: UUID
    front_specialty_id: UUID
    material_id: UUID | str
    budgeted: Decimal
    utilized: Decimal
    balance: Decimal
    percent_used: Decimal | None

    @property
    def is_over(self) -> bool:
        return self.utilized > self.budgeted


def summarize_budget(entries: Iterable[BudgetEntry]) -> tuple[BudgetSummaryRow, ...]:
    """Budgeted, utilized, balance and percent used per budget entry."""
    rows = []
    for entry in entries:
        percent = None
        if entry.quantity_budgeted > ZERO:
            percent = (
                entry.quantity_utilized / entry.quantity_budgeted * _HUNDRED
            ).quantize(_PERCENT_PLACES, rounding=ROUND_HALF_UP)
        rows.append(
            BudgetSummaryRow(
                entry_id=entry.id,
                front_specialty_id=entry.front_specialty_id,
                material_id=entry.material_id,
                budgeted=entry.quantity_budgeted,
                utilized=entry.quantity_utilized,
                balance=entry.quantity_budgeted - entry.quantity_utilized,
                percent_used=percent,
            )
        )
    return tuple(rows)
