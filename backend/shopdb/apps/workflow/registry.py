from __future__ import annotations

from .guards import (
    guard_purchase_order_has_items,
    guard_purchase_order_has_supplier,
    guard_work_order_parts_billed,
)

# States are the lower-case wire values of the status enums.
# `received` is reachable only through the receipt gateway, which writes the
# ledger in the same unit of work as the status change.
WORKFLOWS = {
    "purchase_order": {
        "transitions": {
            "draft": {
                "sent": [guard_purchase_order_has_items, guard_purchase_order_has_supplier],
                "cancelled": [],
            },
            "sent": {
                "confirmed": [],
                "received": [],
                "cancelled": [],
            },
            "confirmed": {
                "shipped": [],
                "received": [],
                "cancelled": [],
            },
            "shipped": {
                "received": [],
                "cancelled": [],
            },
            "received": {},
            "cancelled": {},
        }
    },
    "work_order": {
        "transitions": {
            "pending": {
                "in_progress": [],
                "waiting_on_parts": [],
                "cancelled": [],
            },
            "in_progress": {
                "waiting_on_parts": [],
                "completed": [],
                "cancelled": [],
            },
            "waiting_on_parts": {
                "in_progress": [],
                "cancelled": [],
            },
            "completed": {
                "invoiced": [guard_work_order_parts_billed],
                "in_progress": [],
            },
            "invoiced": {},
            "cancelled": {},
        }
    },
}
