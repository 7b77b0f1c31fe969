"""
Accounts module.

Operator records and request idempotency keys. Sign-in and sessions are
handled outside this service; requests arrive carrying an operator id.
"""

from . import models  # noqa: F401
