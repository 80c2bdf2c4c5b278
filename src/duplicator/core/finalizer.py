from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum

from duplicator.core.models import FINALIZER, Directive
from duplicator.store.base import ObjectStore


class LifecycleState(str, Enum):
    ACTIVE = "ACTIVE"
    PROTECTED = "PROTECTED"
    DELETING = "DELETING"
    RELEASED = "RELEASED"


class InvalidTransition(ValueError):
    pass


_ALLOWED = {
    (LifecycleState.ACTIVE, LifecycleState.PROTECTED),
    (LifecycleState.PROTECTED, LifecycleState.DELETING),
    (LifecycleState.DELETING, LifecycleState.RELEASED),
}


def lifecycle_state(directive: Directive) -> LifecycleState:
    if directive.deletion_requested:
        return LifecycleState.DELETING if directive.finalizer_present else LifecycleState.RELEASED
    return LifecycleState.PROTECTED if directive.finalizer_present else LifecycleState.ACTIVE


def check_transition(current: LifecycleState, target: LifecycleState) -> None:
    if (current, target) not in _ALLOWED:
        raise InvalidTransition(f"Invalid transition: {current.value} -> {target.value}")


def _with_finalizers(directive: Directive, finalizers: list[str]) -> dict:
    body = copy.deepcopy(directive.body)
    body.setdefault("metadata", {})["finalizers"] = finalizers
    return body


@dataclass
class FinalizerLifecycle:
    """Owns the directive's finalizer.

    The finalizer goes on before any replica is written and comes off only
    once cleanup has finished; PROTECTED -> DELETING is the store's move.
    """

    store: ObjectStore
    finalizer: str = FINALIZER

    def ensure_protected(self, directive: Directive) -> Directive:
        current = lifecycle_state(directive)
        if current is LifecycleState.PROTECTED:
            return directive
        check_transition(current, LifecycleState.PROTECTED)
        updated = self.store.update(_with_finalizers(directive, [*directive.finalizers, self.finalizer]))
        return Directive.from_object(updated)

    def release(self, directive: Directive) -> Directive:
        check_transition(lifecycle_state(directive), LifecycleState.RELEASED)
        remaining = [f for f in directive.finalizers if f != self.finalizer]
        updated = self.store.update(_with_finalizers(directive, remaining))
        return Directive.from_object(updated)
