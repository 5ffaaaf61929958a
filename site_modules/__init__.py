"""
Site Modules.

Thin ERP glue over the site kernel and engines.  Each module contains:
- ORM models (persistence, ``to_dto`` into kernel documents)
- Inputs and results (frozen dataclasses)
- A service facade owning the transaction boundary

Modules:
- Procurement: catalog, requisitions, purchase requests, purchase orders
- Inventory: movement ledger, stock levels, stock report
- Budget: budget rows, utilisation, spreadsheet import

Reconciliation logic lives in ``site_engines``; cross-module orchestration
in ``site_services``.
"""
