"""
Module ORM Registry (``landreg_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
contains its table before tables are created.  Kernel models first, since
module tables are referenced by kernel-owned workflow rows only by id.

Usage
-----
``landreg_kernel.db.engine.create_tables()`` calls ``import_all_orm_models()``
before ``Base.metadata.create_all``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``landreg_modules.*.orm`` module.

    This function is idempotent -- repeated calls are harmless.
    """
    import landreg_kernel.models  # noqa: F401
    import landreg_modules.registry.orm  # noqa: F401
    import landreg_modules.lease.orm  # noqa: F401
