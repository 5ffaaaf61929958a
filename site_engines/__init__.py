"""
Module: site_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for higher
    layers (site_services, site_modules).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import site_kernel (and sibling engine modules).
    MUST NOT import site_services, site_modules, site_config or sqlalchemy.

Invariants enforced:
    - Purity: engines never read the clock; callers pass timestamps in.
    - Decimal-only arithmetic for quantities.
    - Determinism: identical snapshots always produce identical outputs.

Usage:
    from site_engines import AllocationResolver, compute_free_to_purchase
    from site_engines import check_budget, plan_receipt
    from site_engines import consumption_statistics
"""

from site_kernel.logging_config import get_logger

logger = get_logger("engines")

from site_engines.allocation import (
    AllocationResolver,
    AllocationResult,
    OrderLineAllocation,
    OrderLineSlot,
    compute_pending_for_order_line,
)
from site_engines.budget import (
    BudgetCheck,
    BudgetStatus,
    BudgetSummaryRow,
    accumulate_utilization,
    check_budget,
    summarize_budget,
)
from site_engines.consumption import (
    ConsumptionFigure,
    ConsumptionForecast,
    ConsumptionStatistics,
    DailyConsumption,
    StockComparison,
    consumption_statistics,
)
from site_engines.reconciliation import (
    FulfilledDrift,
    LineBalance,
    OrderableLine,
    ReceiptPlan,
    audit_fulfilled_cache,
    compute_free_to_purchase,
    derive_status,
    fulfilled_from_ledger,
    list_active_purchase_orders,
    list_orderable_request_lines,
    plan_receipt,
    reconcile_line,
    requisition_pool,
    unordered_quantity,
)
from site_engines.tracer import traced_engine

__all__ = [
    "AllocationResolver",
    "AllocationResult",
    "OrderLineAllocation",
    "OrderLineSlot",
    "compute_pending_for_order_line",
    "BudgetCheck",
    "BudgetStatus",
    "BudgetSummaryRow",
    "accumulate_utilization",
    "check_budget",
    "summarize_budget",
    "ConsumptionFigure",
    "ConsumptionForecast",
    "ConsumptionStatistics",
    "DailyConsumption",
    "StockComparison",
    "consumption_statistics",
    "FulfilledDrift",
    "LineBalance",
    "OrderableLine",
    "ReceiptPlan",
    "audit_fulfilled_cache",
    "compute_free_to_purchase",
    "derive_status",
    "fulfilled_from_ledger",
    "list_active_purchase_orders",
    "list_orderable_request_lines",
    "plan_receipt",
    "reconcile_line",
    "requisition_pool",
    "unordered_quantity",
    "traced_engine",
]
