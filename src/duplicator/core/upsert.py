from __future__ import annotations

import copy
from dataclasses import dataclass

from duplicator.core.models import LABEL_MANAGED, LABEL_MANAGED_BY_NAME, LABEL_MANAGED_BY_NAMESPACE
from duplicator.kinds import KindStrategy
from duplicator.store.base import NotFound, ObjectStore, object_ref


@dataclass
class UpsertResult:
    action: str
    kind: str
    namespace: str
    name: str
    reason: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "action": self.action,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload


def _labels(obj: dict) -> dict:
    labels = (obj.get("metadata") or {}).get("labels")
    return labels if isinstance(labels, dict) else {}


def managed_by_other(existing: dict, desired: dict) -> bool:
    """True when ``existing`` is a replica that a different directive manages."""
    current = _labels(existing)
    if current.get(LABEL_MANAGED) != "true":
        return False
    wanted = _labels(desired)
    return any(current.get(k) != wanted.get(k) for k in (LABEL_MANAGED_BY_NAME, LABEL_MANAGED_BY_NAMESPACE))


def merge_replica(existing: dict, desired: dict, strategy: KindStrategy) -> dict:
    """Overlay ``desired`` onto ``existing``.

    Content fields follow the desired object exactly; labels are merged so
    labels added by others survive; every other metadata field and the
    existing version token are kept.
    """
    merged = copy.deepcopy(existing)
    for key in strategy.content_keys(existing) | strategy.content_keys(desired):
        if key in desired:
            merged[key] = copy.deepcopy(desired[key])
        else:
            merged.pop(key, None)

    meta = merged.setdefault("metadata", {})
    labels = dict(meta.get("labels") or {})
    labels.update((desired.get("metadata") or {}).get("labels") or {})
    meta["labels"] = labels
    return merged


def upsert(store: ObjectStore, desired: dict, strategy: KindStrategy) -> UpsertResult:
    """Create ``desired`` if absent, otherwise update it in place.

    An update is only sent when the merge changes something, so repeating
    the call on a converged replica performs no write. A replica another
    directive manages is left untouched and reported as ``kept``. Store
    errors propagate.
    """
    kind, namespace, name = object_ref(desired)
    try:
        existing = store.get(kind, namespace, name, api_version=strategy.api_version)
    except NotFound:
        store.create(desired)
        return UpsertResult("created", kind, namespace, name)

    if managed_by_other(existing, desired):
        return UpsertResult("kept", kind, namespace, name, reason="foreign_owner")
    merged = merge_replica(existing, desired, strategy)
    if merged == existing:
        return UpsertResult("unchanged", kind, namespace, name)
    store.update(merged)
    return UpsertResult("updated", kind, namespace, name)
