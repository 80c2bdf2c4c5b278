from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from duplicator.audit.events import NullEventLog
from duplicator.core.models import DIRECTIVE_API_VERSION, DIRECTIVE_KIND, NAMESPACE_KIND, Directive, ObjectKey, Outcome
from duplicator.core.reconciler import Reconciler
from duplicator.core.router import route_namespace_event
from duplicator.runtime.workqueue import WorkQueue
from duplicator.store.base import ChangeEvent, StoreError, describe_store_error


def _never() -> bool:
    return False


def _directive_changed(event: ChangeEvent) -> bool:
    """False for updates that only touched status or other bookkeeping."""
    if event.type == "DELETED":
        return False
    if event.type != "MODIFIED" or event.old_object is None:
        return True
    new_meta = event.object.get("metadata") or {}
    old_meta = event.old_object.get("metadata") or {}
    return any(new_meta.get(f) != old_meta.get(f) for f in ("generation", "deletionTimestamp"))


@dataclass
class Controller:
    """Polling controller loop: watch, route, reconcile.

    Directive changes enqueue the directive itself; namespace changes go
    through the router. Every iteration after the first also resyncs all
    directives, then drains every key whose backoff has expired.
    """

    reconciler: Reconciler
    queue: WorkQueue = field(default_factory=WorkQueue)
    events: object = field(default_factory=NullEventLog)

    @property
    def store(self):
        return self.reconciler.store

    def poll(self) -> int:
        added = 0
        try:
            directive_events = self.store.watch(DIRECTIVE_KIND, api_version=DIRECTIVE_API_VERSION)
            namespace_events = self.store.watch(NAMESPACE_KIND)
        except StoreError as exc:
            self.events.emit("watch_error", {"error": describe_store_error(exc)})
            return 0
        for event in directive_events:
            if not _directive_changed(event):
                continue
            self.queue.add(Directive.from_object(event.object).key)
            added += 1
        for event in namespace_events:
            for key in route_namespace_event(self.store, event, self.events):
                self.queue.add(key)
                added += 1
        return added

    def resync(self) -> int:
        """Enqueue every directive, picking up source changes no watch reports."""
        try:
            directives = self.store.list(DIRECTIVE_KIND, api_version=DIRECTIVE_API_VERSION)
        except StoreError as exc:
            self.events.emit("resync_error", {"error": describe_store_error(exc)})
            return 0
        added = 0
        for body in directives:
            key = Directive.from_object(body).key
            # keys backing off keep their delay
            if self.queue.attempts(key):
                continue
            self.queue.add(key)
            added += 1
        return added

    def drain(self, stop: Callable[[], bool] = _never) -> list[tuple[ObjectKey, Outcome]]:
        handled: list[tuple[ObjectKey, Outcome]] = []
        while not stop():
            key = self.queue.pop_due()
            if key is None:
                break
            outcome = self.reconciler.reconcile(key, cancelled=stop)
            self.queue.done(key, outcome)
            handled.append((key, outcome))
        return handled

    def run_once(self, stop: Callable[[], bool] = _never) -> list[tuple[ObjectKey, Outcome]]:
        handled: list[tuple[ObjectKey, Outcome]] = []
        # Reconciles write directives; keep polling until the watches are quiet.
        while not stop():
            self.poll()
            batch = self.drain(stop)
            if not batch:
                break
            handled.extend(batch)
        return handled

    def run(
        self,
        *,
        interval_s: float,
        max_iterations: int | None = None,
        stop: Callable[[], bool] = _never,
        on_iteration: Callable[[int, list[tuple[ObjectKey, Outcome]]], None] | None = None,
    ) -> int:
        iterations = 0
        while not stop():
            if max_iterations is not None and iterations >= max_iterations:
                break
            if iterations:
                self.resync()
            handled = self.run_once(stop)
            iterations += 1
            if on_iteration is not None:
                on_iteration(iterations, handled)
            if max_iterations is not None and iterations >= max_iterations:
                break
            if stop():
                break
            wait_s = interval_s
            next_due = self.queue.next_due_in()
            if next_due is not None:
                wait_s = min(wait_s, next_due)
            if wait_s > 0:
                time.sleep(wait_s)
        return iterations
