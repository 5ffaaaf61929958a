"""
Tests for material consumption statistics.

Covers:
- Global fulfilled/requested ratio, cancelled lines excluded
- Top consumed materials with legacy descriptions merged into the catalog item
- Consumption per specialty and per requester
- Consumption against the catalog stock maximum
- Daily trend and the trailing-window forecast
- Date range and category filters
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from site_engines.consumption import (
    NO_SPECIALTY,
    UNKNOWN_REQUESTER,
    ConsumptionFigure,
    DailyConsumption,
    consumption_statistics,
)
from site_kernel.domain.documents import Requisition, RequisitionLine, RequisitionLineStatus
from site_kernel.domain.item_ref import ByDescription, CatalogItem, ItemCatalog, ItemKind
from site_kernel.exceptions import InvalidQuantityError
from tests.builders import CEMENT, REBAR

AS_OF = date(2025, 3, 31)

CATALOG = ItemCatalog([
    CatalogItem("cement", ItemKind.MATERIAL, "Cemento gris", "Obra gris", "bulto", stock_max=Decimal("100")),
    CatalogItem("rebar-12mm", ItemKind.MATERIAL, "Varilla 1/2", "Acero"),
])


def _line(requested, fulfilled="0", item_ref=CEMENT, status=RequisitionLineStatus.PARTIAL, description=""):
    return RequisitionLine(
        id=uuid4(),
        requisition_id=uuid4(),
        kind=ItemKind.MATERIAL,
        item_ref=item_ref,
        unit="und",
        quantity_requested=Decimal(requested),
        quantity_fulfilled=Decimal(fulfilled),
        status=status,
        description=description,
    )


def _requisition(request_date, specialty, requester, *lines):
    return Requisition(
        id=uuid4(),
        number=1,
        work_site_id=None,
        front_id=None,
        specialty=specialty,
        requester=requester,
        request_date=request_date,
        lines=lines,
    )


@pytest.fixture
def requisitions():
    return [
        _requisition(
            date(2025, 3, 20), "Estructuras", "Ana Rojas",
            _line("50", "40"),
            _line("20", "5", item_ref=REBAR),
        ),
        _requisition(
            date(2025, 1, 15), "Acabados", "Luis Pardo",
            _line("30", "30", status=RequisitionLineStatus.FULFILLED),
            _line("10", "10", item_ref=ByDescription("cemento  gris", "obra gris")),
        ),
        _requisition(
            date(2025, 3, 25), "", "",
            _line("10", item_ref=REBAR, status=RequisitionLineStatus.PENDING),
            _line("100", status=RequisitionLineStatus.CANCELLED),
        ),
    ]


class TestTotals:
    def test_ratio_excludes_cancelled_lines(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        assert (stats.requested, stats.fulfilled) == (Decimal("120"), Decimal("85"))
        assert stats.consumption_ratio == Decimal("70.83")

    def test_nothing_requested_gives_zero_ratio(self):
        stats = consumption_statistics([], CATALOG, AS_OF)

        assert stats.consumption_ratio == Decimal("0")
        assert stats.top_consumed == ()
        assert stats.forecast == ()

    def test_non_positive_window_rejected(self, requisitions):
        with pytest.raises(InvalidQuantityError):
            consumption_statistics(requisitions, CATALOG, AS_OF, window_days=0)


class TestRankings:
    def test_legacy_descriptions_count_towards_catalog_item(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        assert stats.top_consumed == (
            ConsumptionFigure("Cemento gris", Decimal("80")),
            ConsumptionFigure("Varilla 1/2", Decimal("5")),
        )

    def test_by_specialty_and_requester(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        assert [(f.name, f.quantity) for f in stats.by_specialty] == [
            ("Estructuras", Decimal("45")),
            ("Acabados", Decimal("40")),
            (NO_SPECIALTY, Decimal("0")),
        ]
        assert [f.name for f in stats.by_requester] == ["Ana Rojas", "Luis Pardo", UNKNOWN_REQUESTER]

    def test_ties_ordered_by_name(self):
        reqs = [
            _requisition(AS_OF, "B", "Zoe", _line("5", "5")),
            _requisition(AS_OF, "A", "Abel", _line("5", "5")),
        ]

        stats = consumption_statistics(reqs, CATALOG, AS_OF)

        assert [f.name for f in stats.by_specialty] == ["A", "B"]
        assert [f.name for f in stats.by_requester] == ["Abel", "Zoe"]

    def test_line_without_item_grouped_by_description(self):
        reqs = [_requisition(AS_OF, "Obra", "Ana", _line("4", "3", item_ref=None, description="Clavos 2in"))]

        stats = consumption_statistics(reqs, CATALOG, AS_OF)

        assert stats.top_consumed == (ConsumptionFigure("Clavos 2in", Decimal("3")),)
        assert stats.stock_vs_consumed == ()


class TestStockComparison:
    def test_consumed_against_stock_max(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        cement, rebar = stats.stock_vs_consumed
        assert (cement.name, cement.consumed, cement.stock_max) == ("Cemento gris", Decimal("80"), Decimal("100"))
        assert cement.ratio == Decimal("0.8")
        assert rebar.ratio is None

    def test_unconsumed_items_left_out(self):
        reqs = [_requisition(AS_OF, "Obra", "Ana", _line("10", item_ref=REBAR))]

        stats = consumption_statistics(reqs, CATALOG, AS_OF)

        assert stats.stock_vs_consumed == ()


class TestTrendAndForecast:
    def test_daily_trend_by_request_date(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        assert stats.daily_trend == (
            DailyConsumption(date(2025, 1, 15), Decimal("40")),
            DailyConsumption(date(2025, 3, 20), Decimal("45")),
            DailyConsumption(date(2025, 3, 25), Decimal("0")),
        )

    def test_forecast_from_trailing_window(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF)

        cement, rebar = stats.forecast
        assert cement.name == "Cemento gris"
        assert (cement.average_daily, cement.next_15_days, cement.next_30_days) == (
            Decimal("1.33"), Decimal("20.0"), Decimal("40.0"),
        )
        assert (rebar.average_daily, rebar.next_30_days) == (Decimal("0.17"), Decimal("5.0"))

    def test_requisitions_after_as_of_not_forecast(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, date(2025, 3, 1))

        assert stats.forecast == ()


class TestFilters:
    def test_date_range_bounds_requisition_date(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF, start_date=date(2025, 3, 1))

        assert (stats.requested, stats.fulfilled) == (Decimal("80"), Decimal("45"))

    def test_end_date_is_inclusive(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF, end_date=date(2025, 1, 15))

        assert stats.fulfilled == Decimal("40")

    def test_category_filter_uses_catalog_category(self, requisitions):
        stats = consumption_statistics(requisitions, CATALOG, AS_OF, category="acero")

        assert (stats.requested, stats.fulfilled) == (Decimal("30"), Decimal("5"))
        assert stats.consumption_ratio == Decimal("16.67")
        assert [f.name for f in stats.top_consumed] == ["Varilla 1/2"]
