"""Directive status reporting."""

from __future__ import annotations

from datetime import datetime, timezone

from duplicator.core.models import Outcome, OutcomeKind
from duplicator.kinds import UnsupportedKind

_SYNCED_ACTIONS = frozenset({"created", "updated", "unchanged"})
_REASONS = {
    OutcomeKind.DONE: "Synced",
    OutcomeKind.RETRY: "Pending",
    OutcomeKind.FATAL: "Failed",
}


def ready_condition(outcome: Outcome) -> dict:
    reason = _REASONS[outcome.kind]
    if isinstance(outcome.error, UnsupportedKind):
        reason = "UnsupportedKind"
    elif outcome.error is not None:
        reason = getattr(outcome.error, "condition_reason", reason)
    if outcome.kind is OutcomeKind.DONE:
        synced = sum(1 for r in outcome.results if r.get("action") in _SYNCED_ACTIONS)
        message = f"{synced} replica(s) in sync"
    else:
        message = str(outcome.error) if outcome.error is not None else reason
    return {
        "type": "Ready",
        "status": "True" if outcome.kind is OutcomeKind.DONE else "False",
        "reason": reason,
        "message": message,
    }


def build_status(outcome: Outcome, generation: int | None) -> dict:
    status: dict = {"conditions": [ready_condition(outcome)]}
    if generation is not None:
        status["observedGeneration"] = generation
    return status


def _comparable(status: object) -> object:
    if not isinstance(status, dict):
        return {}
    conditions = status.get("conditions")
    if isinstance(conditions, list):
        conditions = [
            {k: v for k, v in c.items() if k != "lastTransitionTime"} if isinstance(c, dict) else c
            for c in conditions
        ]
    return {**status, "conditions": conditions} if conditions is not None else dict(status)


def status_changed(current: object, desired: dict) -> bool:
    return _comparable(current) != _comparable(desired)


def stamp(status: dict) -> dict:
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    for condition in status.get("conditions", []):
        condition["lastTransitionTime"] = now
    return status
