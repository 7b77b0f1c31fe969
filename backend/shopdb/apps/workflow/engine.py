from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shopdb.apps.audit import services as audit_services

from .registry import WORKFLOWS


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]

    def __str__(self) -> str:
        reasons = "; ".join(item.get("reason", "") for item in self.detail)
        return f"{self.code}: {reasons}" if reasons else self.code


def _state_value(state: Any) -> str:
    return getattr(state, "value", state)


def allowed_targets(entity_type: str, from_state: Any) -> List[str]:
    workflow = WORKFLOWS.get(entity_type) or {}
    return sorted(workflow.get("transitions", {}).get(_state_value(from_state), {}).keys())


def check_transition(
    db: Session,
    *,
    entity_type: str,
    from_state: Any,
    to_state: Any,
    obj: Any,
) -> None:
    """Raise TransitionError unless the edge exists and its guards pass."""
    from_state = _state_value(from_state)
    to_state = _state_value(to_state)

    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_state, {})
    guards = allowed.get(to_state)

    if guards is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_state} to {to_state}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                obj=obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    obj: Any,
    extra: Optional[Dict[str, Any]] = None,
    critical: bool = True,
) -> None:
    """
    Validate a status change and record it in the audit trail.

    The caller owns the actual write of the new status; this only checks the
    edge and its guards and logs the transition.
    """
    check_transition(db, entity_type=entity_type, from_state=from_state, to_state=to_state, obj=obj)

    before_payload: Dict[str, Any] = {"status": _state_value(from_state)}
    after_payload: Dict[str, Any] = {"status": _state_value(to_state)}
    if extra:
        after_payload.update(extra)

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action="transition",
        summary=f"{from_state} -> {to_state}",
        before=before_payload,
        after=after_payload,
        metadata={"workflow": entity_type},
        critical=critical,
    )
