"""In-process object store with Kubernetes-like write semantics."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone

from duplicator.core.selector import matches
from duplicator.store.base import ChangeEvent, Conflict, NotFound, ObjectStore, StoreError, object_ref

_CONTENT_EXCLUDED = frozenset({"metadata", "status"})


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _content(obj: dict) -> dict:
    return {k: v for k, v in obj.items() if k not in _CONTENT_EXCLUDED}


class MemoryStore(ObjectStore):
    """Dict-backed store.

    Objects are keyed by (kind, namespace, name); cluster-scoped objects use
    an empty namespace. Deleting an object that still carries finalizers only
    sets ``deletionTimestamp``; the object disappears once an update clears
    its finalizers. ``writes`` records every mutating call for inspection.
    Change events are kept only for kinds being watched and are dropped once
    every watch has consumed them.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], dict] = {}
        self._revision = 0
        self._events: list[tuple[str, ChangeEvent]] = []
        # absolute position of self._events[0]
        self._offset = 0
        self._cursors: dict[str, int] = {}
        self._faults: dict[str, list[StoreError]] = {}
        self.writes: list[tuple[str, str, str, str]] = []

    def fail_next(self, operation: str, error: StoreError) -> None:
        self._faults.setdefault(operation, []).append(error)

    def _maybe_fail(self, operation: str) -> None:
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    def _next_version(self) -> str:
        self._revision += 1
        return str(self._revision)

    @property
    def backlog(self) -> int:
        """Change events retained for watches that have not consumed them yet."""
        return len(self._events)

    def _record(self, kind: str, event: ChangeEvent) -> None:
        if kind in self._cursors:
            self._events.append((kind, event))

    def _trim(self) -> None:
        drop = min(self._cursors.values()) - self._offset
        if drop > 0:
            del self._events[:drop]
            self._offset += drop

    def get(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> dict:
        self._maybe_fail("get")
        obj = self._objects.get((kind, namespace or "", name))
        if obj is None:
            raise NotFound(f"{kind} {namespace or ''}/{name} not found", kind=kind, namespace=namespace, name=name)
        return copy.deepcopy(obj)

    def list(
        self,
        kind: str,
        label_selector: dict[str, str] | None = None,
        *,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> list[dict]:
        self._maybe_fail("list")
        items: list[dict] = []
        for (obj_kind, obj_ns, _), obj in self._objects.items():
            if obj_kind != kind:
                continue
            if namespace is not None and obj_ns != namespace:
                continue
            labels = obj.get("metadata", {}).get("labels") or {}
            if label_selector and not matches(label_selector, labels):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, obj: dict) -> dict:
        self._maybe_fail("create")
        kind, namespace, name = object_ref(obj)
        key = (kind, namespace, name)
        if key in self._objects:
            raise Conflict(f"{kind} {namespace}/{name} already exists", kind=kind, namespace=namespace, name=name)
        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        meta["resourceVersion"] = self._next_version()
        meta["uid"] = str(uuid.uuid4())
        meta["creationTimestamp"] = _now()
        meta["generation"] = 1
        self._objects[key] = stored
        self.writes.append(("create", kind, namespace, name))
        self._record(kind, ChangeEvent("ADDED", copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    def _current(self, obj: dict) -> tuple[tuple[str, str, str], dict]:
        kind, namespace, name = object_ref(obj)
        key = (kind, namespace, name)
        current = self._objects.get(key)
        if current is None:
            raise NotFound(f"{kind} {namespace}/{name} not found", kind=kind, namespace=namespace, name=name)
        sent_version = (obj.get("metadata") or {}).get("resourceVersion")
        if sent_version and sent_version != current["metadata"].get("resourceVersion"):
            raise Conflict(
                f"{kind} {namespace}/{name}: the object has been modified",
                kind=kind,
                namespace=namespace,
                name=name,
            )
        return key, current

    def update(self, obj: dict) -> dict:
        self._maybe_fail("update")
        key, current = self._current(obj)
        kind, namespace, name = key
        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        for field_name in ("uid", "creationTimestamp", "deletionTimestamp"):
            if field_name in current["metadata"]:
                meta[field_name] = current["metadata"][field_name]
            else:
                meta.pop(field_name, None)
        generation = current["metadata"].get("generation", 1)
        if _content(stored) != _content(current):
            generation += 1
        meta["generation"] = generation
        if "status" in current:
            stored["status"] = copy.deepcopy(current["status"])
        else:
            stored.pop("status", None)
        meta["resourceVersion"] = self._next_version()
        self.writes.append(("update", kind, namespace, name))
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            del self._objects[key]
            self._record(kind, ChangeEvent("DELETED", copy.deepcopy(stored), copy.deepcopy(current)))
            return copy.deepcopy(stored)
        self._objects[key] = stored
        self._record(kind, ChangeEvent("MODIFIED", copy.deepcopy(stored), copy.deepcopy(current)))
        return copy.deepcopy(stored)

    def update_status(self, obj: dict) -> dict:
        self._maybe_fail("update_status")
        key, current = self._current(obj)
        kind, namespace, name = key
        stored = copy.deepcopy(current)
        stored["status"] = copy.deepcopy(obj.get("status") or {})
        stored["metadata"]["resourceVersion"] = self._next_version()
        self._objects[key] = stored
        self.writes.append(("update_status", kind, namespace, name))
        self._record(kind, ChangeEvent("MODIFIED", copy.deepcopy(stored), copy.deepcopy(current)))
        return copy.deepcopy(stored)

    def delete(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> None:
        self._maybe_fail("delete")
        key = (kind, namespace or "", name)
        current = self._objects.get(key)
        if current is None:
            raise NotFound(f"{kind} {namespace or ''}/{name} not found", kind=kind, namespace=namespace, name=name)
        self.writes.append(("delete", kind, namespace or "", name))
        if current["metadata"].get("finalizers"):
            if current["metadata"].get("deletionTimestamp"):
                return
            previous = copy.deepcopy(current)
            current["metadata"]["deletionTimestamp"] = _now()
            current["metadata"]["resourceVersion"] = self._next_version()
            self._record(kind, ChangeEvent("MODIFIED", copy.deepcopy(current), previous))
            return
        del self._objects[key]
        self._record(kind, ChangeEvent("DELETED", copy.deepcopy(current)))

    def watch(self, kind: str, *, api_version: str | None = None) -> list[ChangeEvent]:
        end = self._offset + len(self._events)
        if kind not in self._cursors:
            self._cursors[kind] = end
            self._trim()
            return [
                ChangeEvent("ADDED", copy.deepcopy(obj))
                for (obj_kind, _, _), obj in self._objects.items()
                if obj_kind == kind
            ]
        start = self._cursors[kind] - self._offset
        self._cursors[kind] = end
        changes = [event for event_kind, event in self._events[start:] if event_kind == kind]
        self._trim()
        return changes
