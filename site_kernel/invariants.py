"""
Core Invariants Contract.

These are the reconciliation guarantees every release must keep. They are
not configurable; configuration only decides *policy* (for example whether
an over-budget requisition is blocked or merely warned about).

Enforcement lives in the engines (``site_engines.allocation``,
``site_engines.reconciliation``) and the append-only ledger listeners in
``site_modules.inventory.orm``; this module names them so tests and
reviews can refer to them.
"""

from enum import Enum, unique


@unique
class CoreInvariant(str, Enum):
    """Non-configurable invariants of the reconciliation core."""

    ALLOCATION_CONSERVATION = "allocation_conservation"
    """sum(allocated) + remaining_consumed == consumed, and no order line is
    credited more than its own ordered quantity."""

    PETTY_CASH_ISOLATION = "petty_cash_isolation"
    """Petty-cash receipts consume only the requisition line's raw balance,
    never purchase-order pipeline quantity."""

    LEDGER_IS_SOURCE_OF_TRUTH = "ledger_is_source_of_truth"
    """A requisition line's fulfilled quantity equals the sum of matched IN
    ledger entries; the stored figure is a cache."""

    LEDGER_APPEND_ONLY = "ledger_append_only"
    """Ledger entries are never edited or deleted; corrections are new
    entries."""

    NON_NEGATIVE_BALANCES = "non_negative_balances"
    """Pending and free-to-purchase quantities are clamped at zero."""

    VALIDATE_BEFORE_WRITE = "validate_before_write"
    """A rejected receipt leaves no partial write behind."""


ALL_CORE_INVARIANTS: frozenset[CoreInvariant] = frozenset(CoreInvariant)

# Engines are the pure calculation layer and may not import these packages.
# Enforced by tests/architecture/test_layer_boundaries.py.
FORBIDDEN_ENGINE_IMPORTS: tuple[str, ...] = (
    "sqlalchemy",
    "psycopg2",
    "yaml",
    "site_kernel.db",
    "site_modules",
    "site_services",
    "site_config",
)

# The kernel never depends upward.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "site_engines",
    "site_services",
    "site_modules",
    "site_config",
)
