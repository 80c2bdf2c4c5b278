import pytest

from duplicator.core.finalizer import (
    FinalizerLifecycle,
    InvalidTransition,
    LifecycleState,
    check_transition,
    lifecycle_state,
)
from duplicator.core.models import DIRECTIVE_KIND, FINALIZER, Directive, build_directive
from duplicator.store.memory import MemoryStore


def _directive(finalizers: list[str] | None = None, deleting: bool = False) -> Directive:
    body = build_directive("ops", "D1")
    if finalizers is not None:
        body["metadata"]["finalizers"] = finalizers
    if deleting:
        body["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return Directive.from_object(body)


@pytest.mark.parametrize(
    ("finalizers", "deleting", "expected"),
    [
        (None, False, LifecycleState.ACTIVE),
        ([FINALIZER], False, LifecycleState.PROTECTED),
        ([FINALIZER, "example.com/other"], True, LifecycleState.DELETING),
        (["example.com/other"], True, LifecycleState.RELEASED),
    ],
)
def test_lifecycle_state_from_observation(finalizers, deleting, expected) -> None:
    assert lifecycle_state(_directive(finalizers, deleting)) is expected


def test_only_forward_transitions_are_allowed() -> None:
    check_transition(LifecycleState.ACTIVE, LifecycleState.PROTECTED)
    check_transition(LifecycleState.PROTECTED, LifecycleState.DELETING)
    check_transition(LifecycleState.DELETING, LifecycleState.RELEASED)
    with pytest.raises(InvalidTransition):
        check_transition(LifecycleState.ACTIVE, LifecycleState.RELEASED)
    with pytest.raises(InvalidTransition):
        check_transition(LifecycleState.RELEASED, LifecycleState.PROTECTED)


def test_ensure_protected_adds_finalizer_once() -> None:
    store = MemoryStore()
    store.create(build_directive("ops", "D1"))
    lifecycle = FinalizerLifecycle(store)

    directive = lifecycle.ensure_protected(Directive.from_object(store.get(DIRECTIVE_KIND, "ops", "D1")))
    again = lifecycle.ensure_protected(directive)

    assert directive.finalizers == [FINALIZER]
    assert again is directive
    assert store.writes == [("create", DIRECTIVE_KIND, "ops", "D1"), ("update", DIRECTIVE_KIND, "ops", "D1")]


def test_release_keeps_foreign_finalizers() -> None:
    store = MemoryStore()
    body = build_directive("ops", "D1")
    body["metadata"]["finalizers"] = ["example.com/other", FINALIZER]
    store.create(body)
    store.delete(DIRECTIVE_KIND, "ops", "D1")

    released = FinalizerLifecycle(store).release(Directive.from_object(store.get(DIRECTIVE_KIND, "ops", "D1")))

    assert released.finalizers == ["example.com/other"]
    assert lifecycle_state(released) is LifecycleState.RELEASED


def test_release_requires_deleting_state() -> None:
    store = MemoryStore()
    store.create(build_directive("ops", "D1"))

    with pytest.raises(InvalidTransition):
        FinalizerLifecycle(store).release(Directive.from_object(store.get(DIRECTIVE_KIND, "ops", "D1")))
