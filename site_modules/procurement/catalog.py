"""Load the item catalog from ``catalog_items``."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from site_kernel.domain.item_ref import ItemCatalog
from site_modules.procurement.orm import MaterialModel


def load_catalog(session: Session) -> ItemCatalog:
    rows = session.scalars(select(MaterialModel).order_by(MaterialModel.description))
    return ItemCatalog(row.to_catalog_item() for row in rows)
