"""
Typed Exception Hierarchy for the Site Materials Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A warehouse clerk registering a receipt needs to know *why* it was refused:
the quantity is above what is still open on the purchase order, the order
was cancelled, or the item is not on the requisition at all. Parsing
message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.apply_receipt(line_id, Decimal("12"), ReceiptSource.PETTY_CASH)
    except ReceiptExceedsBalanceError as e:
        show(f"Only {e.available} can still be received")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SiteKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- ReceiptExceedsBalanceError
    |   +-- MissingLinkageError
    |   +-- CancelledOrderError
    |   +-- InsufficientStockError
    |
    +-- NotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- RequisitionLineNotFoundError
    |   +-- PurchaseRequestNotFoundError
    |   +-- PurchaseRequestLineNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- PurchaseOrderLineNotFoundError
    |   +-- BudgetEntryNotFoundError
    |
    +-- BudgetError
    |   +-- OverBudgetError
    |   +-- UnbudgetedMaterialError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

    DataIntegrityWarning (UserWarning) -- surfaced, never raised as an error

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                     | When Raised
--------------|--------------------------|----------------------------------------
Validation    | INVALID_QUANTITY         | Zero/negative quantity
              | RECEIPT_EXCEEDS_BALANCE  | Receipt above pending/free balance
              | MISSING_LINKAGE          | OC item not linked to requisition line
              | ORDER_CANCELLED          | Receipt against a cancelled OC
              | INSUFFICIENT_STOCK       | Exit above current stock
--------------|--------------------------|----------------------------------------
Not found     | *_NOT_FOUND              | Entity absent from the snapshot
--------------|--------------------------|----------------------------------------
Budget        | OVER_BUDGET              | Blocking policy and projected > budget
              | UNBUDGETED_MATERIAL      | Unbudgeted material, policy refuses it
--------------|--------------------------|----------------------------------------
Immutability  | IMMUTABILITY_VIOLATION   | UPDATE/DELETE of a ledger entry
--------------|--------------------------|----------------------------------------
Configuration | CONFIGURATION_INVALID    | Malformed configuration file

Validation errors are always raised before any entry is appended, so a
rejected receipt never leaves a partial write behind. Not-found errors are
propagated as-is; the core never retries.
"""

from decimal import Decimal
from typing import Any


class SiteKernelError(Exception):
    """
    Base exception for all site kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "SITE_KERNEL_ERROR"


# Validation


class ValidationError(SiteKernelError):
    """Base exception for input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """A quantity that must be strictly positive was zero or negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, quantity: Decimal, entity_id: Any = None):
        self.field = field
        self.quantity = quantity
        self.entity_id = entity_id
        target = f" on {entity_id}" if entity_id is not None else ""
        super().__init__(
            f"{field} must be greater than zero{target}, got {quantity}"
        )


class ReceiptExceedsBalanceError(ValidationError):
    """Receipt quantity is above the balance open on the chosen path."""

    code: str = "RECEIPT_EXCEEDS_BALANCE"

    def __init__(
        self,
        requisition_line_id: Any,
        requested: Decimal,
        available: Decimal,
        allocation_path: str,
    ):
        self.requisition_line_id = requisition_line_id
        self.requested = requested
        self.available = available
        self.allocation_path = allocation_path
        super().__init__(
            f"Receipt of {requested} exceeds the {allocation_path} balance "
            f"of {available} for requisition line {requisition_line_id}"
        )


class MissingLinkageError(ValidationError):
    """A document cannot be tied back to the requisition line it serves."""

    code: str = "MISSING_LINKAGE"

    def __init__(self, entity_type: str, entity_id: Any, detail: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(f"{entity_type} {entity_id}: {detail}")


class CancelledOrderError(ValidationError):
    """Receipts cannot be registered against a cancelled purchase order."""

    code: str = "ORDER_CANCELLED"

    def __init__(self, purchase_order_id: Any):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order {purchase_order_id} is cancelled")


class InsufficientStockError(ValidationError):
    """Warehouse exit above the quantity currently in stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item: str, requested: Decimal, available: Decimal):
        self.item = item
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot issue {requested} of {item}: only {available} in stock"
        )


# Not found


class NotFoundError(SiteKernelError):
    """Referenced entity is absent from the supplied snapshot."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class RequisitionNotFoundError(NotFoundError):
    code: str = "REQUISITION_NOT_FOUND"
    entity_type = "Requisition"


class RequisitionLineNotFoundError(NotFoundError):
    code: str = "REQUISITION_LINE_NOT_FOUND"
    entity_type = "Requisition line"


class PurchaseRequestNotFoundError(NotFoundError):
    code: str = "PURCHASE_REQUEST_NOT_FOUND"
    entity_type = "Purchase request"


class PurchaseRequestLineNotFoundError(NotFoundError):
    code: str = "PURCHASE_REQUEST_LINE_NOT_FOUND"
    entity_type = "Purchase request line"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type = "Purchase order"


class PurchaseOrderLineNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_LINE_NOT_FOUND"
    entity_type = "Purchase order line"


class BudgetEntryNotFoundError(NotFoundError):
    code: str = "BUDGET_ENTRY_NOT_FOUND"
    entity_type = "Budget entry"


# Budget


class BudgetError(SiteKernelError):
    """Base exception for budget gate errors."""

    code: str = "BUDGET_ERROR"


class OverBudgetError(BudgetError):
    """Projected consumption exceeds the budget under a blocking policy."""

    code: str = "OVER_BUDGET"

    def __init__(
        self,
        material_id: Any,
        front_specialty_id: Any,
        projected: Decimal,
        budgeted: Decimal,
    ):
        self.material_id = material_id
        self.front_specialty_id = front_specialty_id
        self.projected = projected
        self.budgeted = budgeted
        super().__init__(
            f"Material {material_id} would reach {projected} against a "
            f"budget of {budgeted} (front specialty {front_specialty_id})"
        )


class UnbudgetedMaterialError(BudgetError):
    """Material has no budget row and unbudgeted requisitions are refused."""

    code: str = "UNBUDGETED_MATERIAL"

    def __init__(self, material_id: Any, front_specialty_id: Any):
        self.material_id = material_id
        self.front_specialty_id = front_specialty_id
        super().__init__(
            f"Material {material_id} is not budgeted for front specialty "
            f"{front_specialty_id}"
        )


# Immutability


class ImmutabilityError(SiteKernelError):
    """Base exception for writes to append-only records."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Ledger entries are never edited or deleted; post a correction."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id}: "
            "record is append-only"
        )


# Configuration


class ConfigurationError(SiteKernelError):
    """Configuration file or value could not be parsed."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Invalid configuration in {source}: {detail}")


# Warnings


class DataIntegrityWarning(UserWarning):
    """
    Stored data contradicts an invariant but computation can proceed.

    Raised through ``warnings.warn`` (see ``site_kernel.integrity``), never
    as an exception: results are clamped and the caller keeps going.
    """

    code: str = "DATA_INTEGRITY"

    def __init__(self, code: str, message: str, **fields: Any):
        self.code = code
        self.fields = fields
        super().__init__(message)
