"""
Tests for site configuration loading.

Validates:
- The bundled site.yaml parses to the schema defaults
- SITE_CONFIG_PATH and explicit paths take precedence
- Missing files fall back to defaults; malformed files raise
- Unknown sections and keys are rejected
- Checksums are deterministic
"""

from decimal import Decimal

import pytest

from site_config import (
    CONFIG_PATH_ENV,
    OverBudgetPolicy,
    ReconciliationPolicy,
    get_active_config,
    resolve_config_path,
)
from site_config.loader import compute_checksum, parse_configuration
from site_kernel.exceptions import ConfigurationError


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str):
        path = tmp_path / "site.yaml"
        path.write_text(text)
        return path

    return _write


class TestBundledConfiguration:
    def test_bundled_file_matches_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        config = get_active_config()

        assert config.reconciliation == ReconciliationPolicy()
        assert config.cache.inventory_ttl_seconds == 300.0
        assert config.change_feed.max_batch_size == 500
        assert config.database.url == "sqlite://"
        assert config.source.endswith("site.yaml")

    def test_config_trace_logged(self, monkeypatch, captured_logs):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        config = get_active_config()

        (trace,) = [r for r in captured_logs() if r["message"] == "SITE_CONFIG_TRACE"]
        assert trace["checksum"] == config.checksum
        assert trace["over_budget_policy"] == "warn"


class TestPathResolution:
    def test_explicit_path_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CONFIG_PATH_ENV, "/from/env.yaml")

        assert resolve_config_path(tmp_path / "x.yaml") == tmp_path / "x.yaml"

    def test_environment_variable(self, monkeypatch, write_config):
        path = write_config("reconciliation:\n  over_budget_policy: BLOCK\n")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        config = get_active_config()

        assert config.reconciliation.over_budget_policy is OverBudgetPolicy.BLOCK
        assert config.source == str(path)

    def test_missing_file_uses_defaults(self, tmp_path, captured_logs):
        config = get_active_config(tmp_path / "absent.yaml")

        assert config.source == "<defaults>"
        assert config.reconciliation.near_budget_threshold == Decimal("0.90")
        assert any(r["message"] == "config_file_missing" for r in captured_logs())

    def test_empty_file_uses_defaults(self, write_config):
        config = get_active_config(write_config(""))

        assert config.change_feed.debounce_seconds == 0.5


class TestParsing:
    def test_overrides(self):
        config = parse_configuration({
            "config_id": "obra-norte",
            "version": 3,
            "reconciliation": {"near_budget_threshold": 0.8, "allow_unbudgeted": False},
            "cache": {"inventory_ttl_seconds": 30, "max_entries": 8},
            "change_feed": {"debounce_seconds": 1, "max_batch_size": 50},
            "database": {"url": "postgresql://site@db/site", "pool_size": 4},
        })

        assert config.config_id == "obra-norte"
        assert config.reconciliation.near_budget_threshold == Decimal("0.8")
        assert config.reconciliation.allow_unbudgeted is False
        assert config.cache.max_entries == 8
        assert config.change_feed.debounce_seconds == 1.0
        assert config.database.pool_size == 4

    @pytest.mark.parametrize(
        "data",
        [
            {"unknown_section": {}},
            {"reconciliation": {"threshold": 0.9}},
            {"reconciliation": {"near_budget_threshold": 0}},
            {"reconciliation": {"near_budget_threshold": 1.5}},
            {"reconciliation": {"near_budget_threshold": "abc"}},
            {"reconciliation": {"over_budget_policy": "ignore"}},
            {"reconciliation": ["warn"]},
            {"cache": {"max_entries": 0}},
            {"cache": {"inventory_ttl_seconds": "long"}},
            {"change_feed": {"max_batch_size": True}},
            {"database": {"url": ""}},
            {"version": "one"},
        ],
    )
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ConfigurationError):
            parse_configuration(data, "test.yaml")

    def test_malformed_yaml_rejected(self, write_config):
        path = write_config("reconciliation: [unclosed\n")

        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(path)

        assert exc_info.value.source == str(path)

    def test_top_level_must_be_mapping(self, write_config):
        with pytest.raises(ConfigurationError):
            get_active_config(write_config("- a\n- b\n"))


class TestChecksum:
    def test_deterministic_and_order_independent(self):
        a = compute_checksum({"version": 1, "cache": {"max_entries": 2}})
        b = compute_checksum({"cache": {"max_entries": 2}, "version": 1})

        assert a == b
        assert len(a) == 64

    def test_changes_with_content(self):
        assert compute_checksum({"version": 1}) != compute_checksum({"version": 2})
