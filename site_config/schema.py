"""
Site configuration schema.

Typed, frozen view of the YAML configuration file.  The loader parses
YAML into these types; nothing downstream reads YAML or environment
variables directly.

Configuration decides *policy* only (for example whether over-budget
requisitions are blocked).  The reconciliation invariants in
``site_kernel.invariants`` are not configurable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class OverBudgetPolicy(str, Enum):
    """What happens when a requisition line would exceed its budget."""

    WARN = "warn"  # Allowed; the caller shows a warning
    BLOCK = "block"  # Refused unless the caller confirms


@dataclass(frozen=True)
class ReconciliationPolicy:
    """Budget gate policy applied when requisitions are created."""

    near_budget_threshold: Decimal = Decimal("0.90")
    over_budget_policy: OverBudgetPolicy = OverBudgetPolicy.WARN
    allow_unbudgeted: bool = True


@dataclass(frozen=True)
class CacheSettings:
    """Inventory cache used by stock reports."""

    inventory_ttl_seconds: float = 300.0
    max_entries: int = 256


@dataclass(frozen=True)
class ChangeFeedSettings:
    """Batching of realtime change notifications."""

    debounce_seconds: float = 0.5
    max_batch_size: int = 500


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5


@dataclass(frozen=True)
class SiteConfiguration:
    """The full configuration of one deployment."""

    config_id: str = "default"
    version: int = 1
    reconciliation: ReconciliationPolicy = field(default_factory=ReconciliationPolicy)
    cache: CacheSettings = field(default_factory=CacheSettings)
    change_feed: ChangeFeedSettings = field(default_factory=ChangeFeedSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
    source: str = "<defaults>"
