"""Reconciliation of one Duplicator directive."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Callable

from duplicator.audit.events import NullEventLog
from duplicator.core.conditions import build_status, stamp, status_changed
from duplicator.core.duplicate import duplicate_object
from duplicator.core.finalizer import FinalizerLifecycle, LifecycleState, lifecycle_state
from duplicator.core.models import (
    ANNOTATION_REPLICATED_KINDS,
    DIRECTIVE_API_VERSION,
    DIRECTIVE_KIND,
    NAMESPACE_KIND,
    Directive,
    Namespace,
    ObjectKey,
    Outcome,
    OutcomeKind,
    TargetRef,
    format_replicated_kinds,
    is_owned_by,
    ownership_labels,
)
from duplicator.core.selector import matches
from duplicator.core.upsert import upsert
from duplicator.kinds import (
    InvalidObject,
    KindRegistry,
    KindStrategy,
    UnsupportedKind,
    default_registry,
    generic_resource,
)
from duplicator.store.base import NotFound, ObjectStore, StoreError, describe_store_error, object_ref


class ReconcileCancelled(Exception):
    pass


class SourceMissing(Exception):
    def __init__(self, target: TargetRef) -> None:
        self.target = target
        super().__init__(f"source {target.kind} {target.namespace}/{target.name} not found")


class InvalidSource(Exception):
    condition_reason = "InvalidSource"

    def __init__(self, target: TargetRef, reason: str) -> None:
        self.target = target
        super().__init__(f"source {target.kind} {target.namespace}/{target.name} is invalid: {reason}")


def _never() -> bool:
    return False


@dataclass
class _Pass:
    cancelled: Callable[[], bool]
    directive: Directive | None = None
    results: list[dict] = field(default_factory=list)

    def check(self) -> None:
        if self.cancelled():
            raise ReconcileCancelled("reconcile cancelled")

    def record(self, entry: dict) -> dict:
        self.results.append(entry)
        return entry


@dataclass
class Reconciler:
    store: ObjectStore
    registry: KindRegistry = field(default_factory=default_registry)
    events: object = field(default_factory=NullEventLog)
    prune: bool = True
    report_status: bool = True

    def __post_init__(self) -> None:
        self.lifecycle = FinalizerLifecycle(self.store)

    def reconcile(self, key: ObjectKey, cancelled: Callable[[], bool] | None = None) -> Outcome:
        """Converge the replicas of directive ``key``.

        Returns DONE when every (namespace, target) pair converged or the
        directive is gone, RETRY on store errors, missing sources or
        cancellation, and FATAL when a target kind can never be supported or
        a source object cannot be decoded.
        Pairs handled before a failure are not rolled back.
        """
        run = _Pass(cancelled or _never)
        self.events.emit("reconcile_start", {"directive": str(key)})
        try:
            outcome = self._reconcile(key, run)
        except ReconcileCancelled as exc:
            outcome = Outcome.retry(exc, run.results)
        except StoreError as exc:
            outcome = Outcome.retry(exc, run.results)

        directive = run.directive
        if (
            directive is not None
            and not directive.deletion_requested
            and not isinstance(outcome.error, ReconcileCancelled)
        ):
            self._write_status(directive, outcome)
        self._emit_outcome(key, outcome)
        return outcome

    def _reconcile(self, key: ObjectKey, run: _Pass) -> Outcome:
        run.check()
        try:
            body = self.store.get(DIRECTIVE_KIND, key.namespace, key.name, api_version=DIRECTIVE_API_VERSION)
        except NotFound:
            return Outcome.done()
        run.directive = Directive.from_object(body)

        state = lifecycle_state(run.directive)
        if state is LifecycleState.RELEASED:
            return Outcome.done()
        if state is LifecycleState.ACTIVE:
            run.check()
            run.directive = self.lifecycle.ensure_protected(run.directive)
            self.events.emit("finalizer_added", {"directive": str(key)})

        namespaces = self._matching_namespaces(run)
        if run.directive.deletion_requested:
            return self._teardown(run.directive, namespaces, run)
        return self._sync(run.directive, namespaces, run)

    def _matching_namespaces(self, run: _Pass) -> list[Namespace]:
        run.check()
        selector = run.directive.selector
        listed = self.store.list(NAMESPACE_KIND, selector or None)
        namespaces = [Namespace.from_object(obj) for obj in listed]
        return [ns for ns in namespaces if ns.name and matches(selector, ns.labels)]

    def _sync(self, directive: Directive, namespaces: list[Namespace], run: _Pass) -> Outcome:
        try:
            strategies = {t: self.registry.resolve(t.kind, t.api_version) for t in directive.targets}
        except UnsupportedKind as exc:
            return Outcome.fatal(exc, run.results)

        owner = directive.key
        directive = self._record_kinds(directive, strategies, run)
        for ns in namespaces:
            if ns.deletion_requested:
                continue
            for target in directive.targets:
                if ns.name == target.namespace:
                    run.record({"action": "skipped", "reason": "source_namespace", **target.to_dict()})
                    continue
                strategy = strategies[target]
                run.check()
                try:
                    source = self.store.get(
                        strategy.kind, target.namespace, target.name, api_version=strategy.api_version
                    )
                except NotFound:
                    return Outcome.retry(SourceMissing(target), run.results)
                try:
                    desired = duplicate_object(source, ns.name, owner, strategy)
                except InvalidObject as exc:
                    return Outcome.fatal(InvalidSource(target, str(exc)), run.results)
                run.check()
                result = run.record(upsert(self.store, desired, strategy).to_dict())
                self.events.emit(f"replica_{result['action']}", {"directive": str(owner), **result})

        if self.prune:
            wanted = {
                (strategies[t].kind, ns.name, t.name)
                for ns in namespaces
                for t in directive.targets
                if ns.name != t.namespace
            }
            self._sweep(owner, self._owned_kinds(directive, strategies), wanted, "pruned", run)
        return Outcome.done(run.results)

    def _teardown(self, directive: Directive, namespaces: list[Namespace], run: _Pass) -> Outcome:
        owner = directive.key
        strategies: dict[TargetRef, KindStrategy] = {}
        for target in directive.targets:
            try:
                strategies[target] = self.registry.resolve(target.kind, target.api_version)
            except UnsupportedKind:
                # never replicated, nothing to remove
                continue

        for ns in namespaces:
            for target, strategy in strategies.items():
                if ns.name == target.namespace:
                    continue
                run.check()
                try:
                    existing = self.store.get(strategy.kind, ns.name, target.name, api_version=strategy.api_version)
                except NotFound:
                    continue
                ref = {"kind": strategy.kind, "namespace": ns.name, "name": target.name}
                if not is_owned_by(existing, owner):
                    run.record({"action": "kept", "reason": "foreign_owner", **ref})
                    continue
                run.check()
                if self._delete(strategy, ns.name, target.name):
                    run.record({"action": "deleted", **ref})
                    self.events.emit("replica_deleted", {"directive": str(owner), **ref})

        # Owned replicas outside the current selector or of kinds no longer targeted.
        self._sweep(owner, self._owned_kinds(directive, strategies), set(), "deleted", run)

        run.check()
        self.lifecycle.release(directive)
        self.events.emit("finalizer_removed", {"directive": str(owner)})
        return Outcome.done(run.results)

    def _record_kinds(self, directive: Directive, strategies: dict[TargetRef, KindStrategy], run: _Pass) -> Directive:
        """Persist every kind about to be replicated before any replica is written."""
        recorded = directive.replicated_kinds
        known = {kind for kind, _ in recorded}
        added = [(s.kind, s.api_version) for s in strategies.values() if s.kind not in known]
        if not added:
            return directive
        run.check()
        body = copy.deepcopy(directive.body)
        annotations = body.setdefault("metadata", {}).get("annotations")
        annotations = dict(annotations) if isinstance(annotations, dict) else {}
        annotations[ANNOTATION_REPLICATED_KINDS] = format_replicated_kinds([*recorded, *added])
        body["metadata"]["annotations"] = annotations
        run.directive = Directive.from_object(self.store.update(body))
        return run.directive

    def _owned_kinds(self, directive: Directive, strategies: dict[TargetRef, KindStrategy]) -> list[KindStrategy]:
        owned = {kind: self.registry.resolve(kind) for kind in self.registry.list_kinds()}
        for strategy in strategies.values():
            owned.setdefault(strategy.kind, strategy)
        for kind, api_version in directive.replicated_kinds:
            if kind in owned:
                continue
            # delete-only; the registry may no longer resolve these kinds
            owned[kind] = self.registry.get(kind) or KindStrategy(
                kind=kind,
                api_version=api_version or "v1",
                resource=generic_resource(kind, api_version),
            )
        return list(owned.values())

    def _sweep(
        self,
        owner: ObjectKey,
        strategies: list[KindStrategy],
        keep: set[tuple[str, str, str]],
        action: str,
        run: _Pass,
    ) -> None:
        for strategy in strategies:
            run.check()
            for obj in self.store.list(strategy.kind, ownership_labels(owner), api_version=strategy.api_version):
                _, namespace, name = object_ref(obj)
                if (strategy.kind, namespace, name) in keep or not is_owned_by(obj, owner):
                    continue
                run.check()
                if self._delete(strategy, namespace, name):
                    entry = run.record({"action": action, "kind": strategy.kind, "namespace": namespace, "name": name})
                    self.events.emit(f"replica_{action}", {"directive": str(owner), **entry})

    def _delete(self, strategy: KindStrategy, namespace: str, name: str) -> bool:
        try:
            self.store.delete(strategy.kind, namespace, name, api_version=strategy.api_version)
        except NotFound:
            return False
        return True

    def _write_status(self, directive: Directive, outcome: Outcome) -> None:
        if not self.report_status:
            return
        desired = build_status(outcome, directive.generation)
        if not status_changed(directive.body.get("status"), desired):
            return
        body = copy.deepcopy(directive.body)
        body["status"] = stamp(desired)
        try:
            self.store.update_status(body)
        except StoreError as exc:
            self.events.emit(
                "status_error",
                {"directive": str(directive.key), "error": describe_store_error(exc)},
            )

    def _emit_outcome(self, key: ObjectKey, outcome: Outcome) -> None:
        payload = {"directive": str(key), **outcome.to_dict()}
        if isinstance(outcome.error, StoreError):
            payload["store_error"] = describe_store_error(outcome.error)
        event = {
            OutcomeKind.DONE: "reconcile_done",
            OutcomeKind.RETRY: "reconcile_retry",
            OutcomeKind.FATAL: "reconcile_fatal",
        }[outcome.kind]
        self.events.emit(event, payload)
