"""
Shared fixtures for module tests.

Every fixture is opt-in.  Each test declares the services and catalog
rows it depends on in its signature.
"""

from decimal import Decimal

import pytest

from site_modules.budget.models import BudgetImportRow
from site_modules.budget.service import BudgetService
from site_modules.inventory.service import InventoryService
from tests.builders import FRONT_SPECIALTY_ID


@pytest.fixture
def budget_service(session):
    return BudgetService(session)


@pytest.fixture
def inventory_service(session, deterministic_clock):
    return InventoryService(session, clock=deterministic_clock)


@pytest.fixture
def cement_budget(budget_service, materials, test_actor_id):
    """A budget of 100 bags of cement for the test front specialty."""
    cement = materials["cement"]
    budget_service.import_rows(
        FRONT_SPECIALTY_ID,
        [BudgetImportRow(Decimal("100"), material_id=cement.item_id, description=cement.description)],
        test_actor_id,
    )
    return budget_service.get_entry(FRONT_SPECIALTY_ID, cement.item_id)
