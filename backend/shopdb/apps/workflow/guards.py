from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_purchase_order_has_items(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    items = _get_value(obj, "items") or []
    if not items:
        return [{"field": "items", "reason": "purchase order has no items"}]
    return []


def guard_purchase_order_has_supplier(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(obj, "supplier_id"):
        return [{"field": "supplier_id", "reason": "supplier required before sending"}]
    return []


def guard_work_order_parts_billed(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    for line in _get_value(obj, "part_lines") or []:
        if _get_value(line, "unit_price") is None:
            return [{"field": "part_lines", "reason": f"part {_get_value(line, 'part_id')} has no unit price"}]
    return []
