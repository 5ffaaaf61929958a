"""
Budget Module (``site_modules.budget``).

Responsibility
--------------
Budget rows per (front specialty, material): utilisation accumulation,
spreadsheet import and the consumption summary.
"""

from site_modules.budget.models import BudgetImportResult, BudgetImportRow
from site_modules.budget.service import BudgetService

__all__ = [
    "BudgetImportResult",
    "BudgetImportRow",
    "BudgetService",
]
