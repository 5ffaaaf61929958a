"""
Site configuration.

``get_active_config()`` is the single entry point: it resolves the
configuration file, parses it and emits a ``SITE_CONFIG_TRACE`` record.
The file is taken from, in order, the ``path`` argument, the
``SITE_CONFIG_PATH`` environment variable, and the bundled
``site_config/site.yaml``.  When no file exists the defaults of
``site_config.schema`` apply.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from site_config.loader import load_yaml_file, parse_configuration
from site_config.schema import (
    CacheSettings,
    ChangeFeedSettings,
    DatabaseSettings,
    OverBudgetPolicy,
    ReconciliationPolicy,
    SiteConfiguration,
)

_logger = logging.getLogger("site_kernel.config")

CONFIG_PATH_ENV = "SITE_CONFIG_PATH"
DEFAULT_CONFIG_FILE = Path(__file__).parent / "site.yaml"


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def get_active_config(path: str | Path | None = None) -> SiteConfiguration:
    """
    Load the active site configuration.

    Raises:
        ConfigurationError: if the file exists but is malformed.
    """
    config_path = resolve_config_path(path)
    if config_path.is_file():
        config = parse_configuration(load_yaml_file(config_path), str(config_path))
    else:
        _logger.warning("config_file_missing", extra={"path": str(config_path)})
        config = parse_configuration({}, "<defaults>")

    _logger.info(
        "SITE_CONFIG_TRACE",
        extra={
            "trace_type": "SITE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": config.source,
            "over_budget_policy": config.reconciliation.over_budget_policy.value,
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "CacheSettings",
    "ChangeFeedSettings",
    "DatabaseSettings",
    "OverBudgetPolicy",
    "ReconciliationPolicy",
    "SiteConfiguration",
    "get_active_config",
    "resolve_config_path",
]
