"""
Module ORM Registry (``site_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` contains its table definition before tables are
created.  ``create_all_tables()`` is the one entry point scripts and
``tests/conftest.py`` use to get a complete schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``site_modules`` packages
and ``site_kernel.db.engine`` (allowed: modules -> kernel).  MUST NOT be
imported by ``site_kernel``.
"""


def import_all_orm_models() -> None:
    """Import every ``site_modules.*.orm`` module.  Idempotent."""
    import site_modules.budget.orm  # noqa: F401
    import site_modules.inventory.orm  # noqa: F401
    import site_modules.procurement.orm  # noqa: F401


def create_all_tables() -> None:
    """Register all module ORM models and create every table."""
    from site_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
