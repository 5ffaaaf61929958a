"""
Procurement Module (``site_modules.procurement``).

Responsibility
--------------
Material catalog, requisitions with the budget soft gate, purchase
requests (SC) and purchase orders (OC).  The service facade lives in
``site_modules.procurement.service``.

Invariants enforced
-------------------
* Transaction boundary owned by ``ProcurementService``.
* Every OC line references exactly one SC line.
"""

from site_modules.procurement.models import (
    PurchaseOrderItem,
    PurchaseRequestItem,
    PurchaseRequestResult,
    RequisitionHeader,
    RequisitionLineInput,
    RequisitionResult,
    SkippedItem,
)

__all__ = [
    "PurchaseOrderItem",
    "PurchaseRequestItem",
    "PurchaseRequestResult",
    "RequisitionHeader",
    "RequisitionLineInput",
    "RequisitionResult",
    "SkippedItem",
]
