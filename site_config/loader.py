"""
Configuration Loader (``site_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the typed
``site_config.schema`` dataclasses.  Runtime callers go through
``site_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Malformed values raise ``ConfigurationError`` naming the source file
  and the offending key; there are no silent fallbacks for bad values.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates from ``load_yaml_file``.
* Malformed YAML  -> ``ConfigurationError``.
* Unknown section or key  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from site_config.schema import (
    CacheSettings,
    ChangeFeedSettings,
    DatabaseSettings,
    OverBudgetPolicy,
    ReconciliationPolicy,
    SiteConfiguration,
)
from site_kernel.exceptions import ConfigurationError

_SECTIONS = ("config_id", "version", "reconciliation", "cache", "change_feed", "database")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def _section(data: dict[str, Any], name: str, source: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(source, f"'{name}' must be a mapping")
    return value


def _reject_unknown(section: dict[str, Any], allowed: tuple[str, ...], where: str, source: str) -> None:
    unknown = sorted(set(section) - set(allowed))
    if unknown:
        raise ConfigurationError(source, f"unknown keys in {where}: {', '.join(unknown)}")


def _number(value: Any, key: str, source: str, *, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(source, f"'{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigurationError(source, f"'{key}' must be >= {minimum}, got {value}")
    return value


def parse_reconciliation(data: dict[str, Any], source: str) -> ReconciliationPolicy:
    _reject_unknown(
        data,
        ("near_budget_threshold", "over_budget_policy", "allow_unbudgeted"),
        "reconciliation",
        source,
    )
    defaults = ReconciliationPolicy()
    raw_threshold = data.get("near_budget_threshold", defaults.near_budget_threshold)
    try:
        threshold = Decimal(str(raw_threshold))
    except InvalidOperation:
        raise ConfigurationError(
            source, f"'near_budget_threshold' is not a number: {raw_threshold!r}"
        ) from None
    if not (Decimal("0") < threshold <= Decimal("1")):
        raise ConfigurationError(
            source, f"'near_budget_threshold' must be in (0, 1], got {threshold}"
        )

    raw_policy = data.get("over_budget_policy", defaults.over_budget_policy.value)
    try:
        policy = OverBudgetPolicy(str(raw_policy).lower())
    except ValueError:
        raise ConfigurationError(
            source, f"'over_budget_policy' must be one of warn/block, got {raw_policy!r}"
        ) from None

    return ReconciliationPolicy(
        near_budget_threshold=threshold,
        over_budget_policy=policy,
        allow_unbudgeted=bool(data.get("allow_unbudgeted", defaults.allow_unbudgeted)),
    )


def parse_cache(data: dict[str, Any], source: str) -> CacheSettings:
    _reject_unknown(data, ("inventory_ttl_seconds", "max_entries"), "cache", source)
    defaults = CacheSettings()
    return CacheSettings(
        inventory_ttl_seconds=float(
            _number(data.get("inventory_ttl_seconds", defaults.inventory_ttl_seconds),
                    "inventory_ttl_seconds", source)
        ),
        max_entries=int(
            _number(data.get("max_entries", defaults.max_entries), "max_entries", source, minimum=1)
        ),
    )


def parse_change_feed(data: dict[str, Any], source: str) -> ChangeFeedSettings:
    _reject_unknown(data, ("debounce_seconds", "max_batch_size"), "change_feed", source)
    defaults = ChangeFeedSettings()
    return ChangeFeedSettings(
        debounce_seconds=float(
            _number(data.get("debounce_seconds", defaults.debounce_seconds),
                    "debounce_seconds", source)
        ),
        max_batch_size=int(
            _number(data.get("max_batch_size", defaults.max_batch_size),
                    "max_batch_size", source, minimum=1)
        ),
    )


def parse_database(data: dict[str, Any], source: str) -> DatabaseSettings:
    _reject_unknown(data, ("url", "echo", "pool_size", "max_overflow"), "database", source)
    defaults = DatabaseSettings()
    url = data.get("url", defaults.url)
    if not isinstance(url, str) or not url:
        raise ConfigurationError(source, "'database.url' must be a non-empty string")
    return DatabaseSettings(
        url=url,
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(_number(data.get("pool_size", defaults.pool_size), "pool_size", source, minimum=1)),
        max_overflow=int(_number(data.get("max_overflow", defaults.max_overflow), "max_overflow", source)),
    )


def parse_configuration(data: dict[str, Any], source: str = "<memory>") -> SiteConfiguration:
    """Parse a configuration mapping into ``SiteConfiguration``."""
    _reject_unknown(data, _SECTIONS, "configuration", source)
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ConfigurationError(source, f"'version' must be an integer, got {version!r}")
    return SiteConfiguration(
        config_id=str(data.get("config_id", "default")),
        version=version,
        reconciliation=parse_reconciliation(_section(data, "reconciliation", source), source),
        cache=parse_cache(_section(data, "cache", source), source),
        change_feed=parse_change_feed(_section(data, "change_feed", source), source),
        database=parse_database(_section(data, "database", source), source),
        checksum=compute_checksum(data),
        source=source,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
