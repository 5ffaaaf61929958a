"""
Data-integrity findings.

Some stored data breaks an invariant without making the computation
impossible: a requisition line whose fulfilled quantity is above what was
requested, or a purchase-request line with no item data. These are logged
and issued as ``DataIntegrityWarning`` so callers can surface them, and the
computation continues with clamped values.
"""

import warnings
from typing import Any

from site_kernel.exceptions import DataIntegrityWarning
from site_kernel.logging_config import get_logger

logger = get_logger("integrity")

FULFILLED_EXCEEDS_REQUESTED = "FULFILLED_EXCEEDS_REQUESTED"
REQUEST_LINE_WITHOUT_ITEM = "REQUEST_LINE_WITHOUT_ITEM"
FULFILLED_CACHE_DRIFT = "FULFILLED_CACHE_DRIFT"


def warn_data_integrity(code: str, message: str, **fields: Any) -> DataIntegrityWarning:
    """Log and issue a ``DataIntegrityWarning``; returns the warning."""
    warning = DataIntegrityWarning(code, message, **fields)
    logger.warning(
        "data_integrity_warning",
        extra={
            "integrity_code": code,
            "detail": message,
            **{k: str(v) for k, v in fields.items()},
        },
    )
    warnings.warn(warning, stacklevel=3)
    return warning
