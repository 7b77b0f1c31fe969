"""
Audit module.

Append-only record of catalog edits and status transitions. Stock movements
are not duplicated here; the inventory ledger is their audit trail.
"""

from . import models  # noqa: F401
