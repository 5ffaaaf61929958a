"""
Tests for @traced_engine and input fingerprints.
"""

from decimal import Decimal
from uuid import UUID

from site_engines.budget import check_budget
from site_engines.tracer import compute_input_fingerprint, traced_engine
from site_kernel.domain.documents import BudgetEntry

FRONT = UUID("00000000-0000-4000-a000-000000000001")
CEMENT = UUID("00000000-0000-4000-a000-000000000002")


class TestFingerprint:
    def test_deterministic(self):
        args = {"material_id": CEMENT, "requested_qty": Decimal("10")}

        first = compute_input_fingerprint(("material_id", "requested_qty"), args)
        second = compute_input_fingerprint(("material_id", "requested_qty"), dict(args))

        assert first == second
        assert len(first) == 16

    def test_decimal_scale_ignored(self):
        a = compute_input_fingerprint(("q",), {"q": Decimal("10")})
        b = compute_input_fingerprint(("q",), {"q": Decimal("10.000")})

        assert a == b

    def test_missing_field_recorded_as_null(self):
        assert compute_input_fingerprint(("q",), {}) == compute_input_fingerprint(("q",), {"q": None})

    def test_different_inputs_differ(self):
        a = compute_input_fingerprint(("q",), {"q": Decimal("1")})
        b = compute_input_fingerprint(("q",), {"q": Decimal("2")})

        assert a != b


class TestTracedEngine:
    def test_positional_and_keyword_calls_fingerprint_alike(self, captured_logs):
        @traced_engine("sample", "1.0", fingerprint_fields=("quantity",))
        def double(quantity, factor=2):
            return quantity * factor

        assert double(Decimal("3")) == Decimal("6")
        assert double(quantity=Decimal("3")) == Decimal("6")

        traces = [r for r in captured_logs() if r["message"] == "SITE_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert traces[0]["engine_name"] == "sample"

    def test_engine_call_emits_trace(self, captured_logs):
        entries = [BudgetEntry(CEMENT, FRONT, CEMENT, Decimal("100"))]

        check_budget(entries, CEMENT, FRONT, Decimal("10"))

        traces = [r for r in captured_logs() if r["message"] == "SITE_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "budget"
        assert traces[-1]["engine_version"] == "1.0"
        assert "duration_ms" in traces[-1]
