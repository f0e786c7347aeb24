"""
Module ORM Registry (``settlement_modules._orm_registry``).

Responsibility
--------------
Ensure kernel and module SQLAlchemy ORM models are imported so that
``Base.metadata`` contains every table before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``settlement_kernel.db.engine.create_tables``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every module ``orm`` module (idempotent)."""
    import settlement_kernel.models  # noqa: F401
    import settlement_modules.inventory.orm  # noqa: F401
