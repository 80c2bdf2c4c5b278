from __future__ import annotations

from duplicator.core.models import ObjectKey, ownership_labels
from duplicator.kinds import KindStrategy


def duplicate_object(source: dict, namespace: str, owner: ObjectKey, strategy: KindStrategy) -> dict:
    """Build the replica of ``source`` that should exist in ``namespace``.

    Identity fields are stripped so the store treats the result as a fresh
    write target; ownership labels override any source label of the same key.
    No I/O happens here.
    """
    replica = strategy.clear_identity(strategy.decode(source))
    replica.setdefault("apiVersion", strategy.api_version)
    replica["kind"] = strategy.kind

    meta = replica.get("metadata")
    if not isinstance(meta, dict):
        meta = {}
    meta["namespace"] = namespace
    labels = dict(meta.get("labels") or {})
    labels.update(ownership_labels(owner))
    meta["labels"] = labels
    replica["metadata"] = meta
    return strategy.encode(replica)
