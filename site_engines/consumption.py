"""
Module: site_engines.consumption
Responsibility:
    Material consumption statistics over requisitions: the global
    fulfilled/requested ratio, the most consumed materials, consumption
    per specialty and per requester, consumption against each catalog
    item's stock maximum, the daily trend and a short-range forecast from
    the average daily consumption of the trailing window.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Consumption of a line is its fulfilled quantity; cancelled lines
      are left out of every figure.
    - Lines are grouped by canonical item, so legacy description rows
      count towards their catalog entry.
    - The forecast window ends at ``as_of``; the engine never reads the
      clock.
    - Rankings break ties on name, so identical inputs give identical
      output.

Failure modes:
    - InvalidQuantityError when ``window_days`` is not positive.

Usage:
    from site_engines.consumption import consumption_statistics

    stats = consumption_statistics(requisitions, catalog, as_of=date.today())
    stats.consumption_ratio      # Decimal("62.50")
    stats.top_consumed[0].name   # "Cemento gris"
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from site_engines.tracer import traced_engine
from site_kernel.domain.documents import Requisition, RequisitionLine, RequisitionLineStatus
from site_kernel.domain.item_ref import ByDescription, ItemCatalog, normalize_text
from site_kernel.domain.quantity import ZERO, quantity_sum
from site_kernel.exceptions import InvalidQuantityError

TOP_CONSUMED_LIMIT = 10
TOP_REQUESTER_LIMIT = 10
STOCK_COMPARISON_LIMIT = 15
FORECAST_LIMIT = 10
DEFAULT_WINDOW_DAYS = 30

NO_SPECIALTY = "(no specialty)"
UNKNOWN_REQUESTER = "(unknown requester)"

_HUNDRED = Decimal("100")
_CENTS = Decimal("0.01")
_TENTHS = Decimal("0.1")


@dataclass(frozen=True)
class ConsumptionFigure:
    """A consumed quantity attributed to a name (material, specialty, requester)."""

    name: str
    quantity: Decimal


@dataclass(frozen=True)
class DailyConsumption:
    day: date
    quantity: Decimal


@dataclass(frozen=True)
class StockComparison:
    """
    Consumption of one catalog item against its stock maximum.

    ``ratio`` is None when the item has no stock maximum.
    """

    name: str
    consumed: Decimal
    stock_max: Decimal
    ratio: Decimal | None


@dataclass(frozen=True)
class ConsumptionForecast:
    """Average daily consumption over the window, projected forward."""

    name: str
    average_daily: Decimal
    next_15_days: Decimal
    next_30_days: Decimal


@dataclass(frozen=True)
class ConsumptionStatistics:
    """
    Result of ``consumption_statistics``.

    Guarantees:
        - ``consumption_ratio == fulfilled / requested * 100`` rounded to
          cents, and zero when nothing was requested.
        - ``by_specialty`` and ``by_requester`` sum to at most
          ``fulfilled`` (``by_requester`` is truncated).
    """

    requested: Decimal
    fulfilled: Decimal
    consumption_ratio: Decimal
    top_consumed: tuple[ConsumptionFigure, ...]
    by_specialty: tuple[ConsumptionFigure, ...]
    by_requester: tuple[ConsumptionFigure, ...]
    stock_vs_consumed: tuple[StockComparison, ...]
    daily_trend: tuple[DailyConsumption, ...]
    forecast: tuple[ConsumptionForecast, ...]


@dataclass(frozen=True)
class _Row:
    key: tuple
    name: str
    requisition: Requisition
    line: RequisitionLine


def _item_identity(line: RequisitionLine, catalog: ItemCatalog) -> tuple[tuple, str, str]:
    """(grouping key, display name, category) of a requisition line."""
    item = catalog.get(line.item_ref)
    if item is not None:
        return item.ref.key, item.description, item.category
    ref = line.item_ref
    if isinstance(ref, ByDescription):
        return ref.key, ref.description, ref.category
    if ref is not None:
        return ref.key, line.description or str(ref), ""
    return ("line", normalize_text(line.description)), line.description or "-", ""


def _ranked(totals: dict[str, Decimal], limit: int | None = None) -> tuple[ConsumptionFigure, ...]:
    ordered = sorted(totals.items(), key=lambda pair: (-pair[1], pair[0]))
    if limit is not None:
        ordered = ordered[:limit]
    return tuple(ConsumptionFigure(name, quantity) for name, quantity in ordered)


def _add(totals: dict, key, quantity: Decimal) -> None:
    totals[key] = totals.get(key, ZERO) + quantity


def _selected_rows(
    requisitions: Iterable[Requisition],
    catalog: ItemCatalog,
    start_date: date | None,
    end_date: date | None,
    category: str | None,
) -> list[_Row]:
    wanted_category = normalize_text(category) if category else None
    rows = []
    for requisition in requisitions:
        if start_date is not None and requisition.request_date < start_date:
            continue
        if end_date is not None and requisition.request_date > end_date:
            continue
        for line in requisition.lines:
            if line.status == RequisitionLineStatus.CANCELLED:
                continue
            key, name, line_category = _item_identity(line, catalog)
            if wanted_category is not None and normalize_text(line_category) != wanted_category:
                continue
            rows.append(_Row(key, name, requisition, line))
    return rows


@traced_engine(
    "consumption",
    "1.0",
    fingerprint_fields=("as_of", "start_date", "end_date", "category", "window_days"),
)
def consumption_statistics(
    requisitions: Sequence[Requisition],
    catalog: ItemCatalog,
    as_of: date,
    start_date: date | None = None,
    end_date: date | None = None,
    category: str | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> ConsumptionStatistics:
    """
    Consumption figures for the requisitions raised in a date range.

    ``start_date``/``end_date`` bound the requisition date (inclusive) and
    ``category`` keeps only lines whose item is in that catalog category.
    The forecast averages the consumption of requisitions dated within
    ``window_days`` before ``as_of`` over the whole window.
    """
    if window_days <= 0:
        raise InvalidQuantityError("window_days", window_days)

    rows = _selected_rows(requisitions, catalog, start_date, end_date, category)

    requested = quantity_sum(row.line.quantity_requested for row in rows)
    fulfilled = quantity_sum(row.line.quantity_fulfilled for row in rows)
    ratio = ZERO
    if requested > ZERO:
        ratio = (fulfilled / requested * _HUNDRED).quantize(_CENTS, rounding=ROUND_HALF_UP)

    by_item: dict[tuple, Decimal] = {}
    names: dict[tuple, str] = {}
    by_specialty: dict[str, Decimal] = {}
    by_requester: dict[str, Decimal] = {}
    by_day: dict[date, Decimal] = {}
    recent: dict[tuple, Decimal] = {}
    window_start = as_of - timedelta(days=window_days)

    for row in rows:
        consumed = row.line.quantity_fulfilled
        names.setdefault(row.key, row.name)
        _add(by_item, row.key, consumed)
        _add(by_specialty, row.requisition.specialty or NO_SPECIALTY, consumed)
        _add(by_requester, row.requisition.requester or UNKNOWN_REQUESTER, consumed)
        _add(by_day, row.requisition.request_date, consumed)
        if window_start <= row.requisition.request_date <= as_of:
            _add(recent, row.key, consumed)

    comparisons = []
    for item in catalog:
        consumed = by_item.get(item.ref.key, ZERO)
        if consumed <= ZERO:
            continue
        ratio_to_max = consumed / item.stock_max if item.stock_max > ZERO else None
        comparisons.append(StockComparison(item.description, consumed, item.stock_max, ratio_to_max))
    comparisons.sort(key=lambda c: (-c.consumed, c.name))

    forecasts = []
    for key, total in recent.items():
        average = total / window_days
        forecasts.append(ConsumptionForecast(
            name=names[key],
            average_daily=average.quantize(_CENTS, rounding=ROUND_HALF_UP),
            next_15_days=(average * 15).quantize(_TENTHS, rounding=ROUND_HALF_UP),
            next_30_days=(average * 30).quantize(_TENTHS, rounding=ROUND_HALF_UP),
        ))
    forecasts.sort(key=lambda f: (-f.next_30_days, f.name))

    return ConsumptionStatistics(
        requested=requested,
        fulfilled=fulfilled,
        consumption_ratio=ratio,
        top_consumed=tuple(
            ConsumptionFigure(names[key], by_item[key])
            for key in sorted(by_item, key=lambda k: (-by_item[k], names[k]))[:TOP_CONSUMED_LIMIT]
        ),
        by_specialty=_ranked(by_specialty),
        by_requester=_ranked(by_requester, TOP_REQUESTER_LIMIT),
        stock_vs_consumed=tuple(comparisons[:STOCK_COMPARISON_LIMIT]),
        daily_trend=tuple(DailyConsumption(day, by_day[day]) for day in sorted(by_day)),
        forecast=tuple(forecasts[:FORECAST_LIMIT]),
    )
