# backend/shopdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- String relationship targets ("Supplier", "WorkOrder", ...) resolve no
  matter which app is imported first.

The actual model classes are kept in shopdb/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models          # operators + request keys
from .apps.audit import models as audit_models                # audit trail
from .apps.purchasing import models as purchasing_models      # suppliers, POs, parts requests
from .apps.inventory import models as inventory_models        # parts + stock ledger
from .apps.work import models as work_models                  # work orders + billing lines
from .apps.sales import models as sales_models                # counter sales

__all__ = [
    "accounts_models",
    "audit_models",
    "purchasing_models",
    "inventory_models",
    "work_models",
    "sales_models",
]
