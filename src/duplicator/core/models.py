from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

GROUP = "syoze.syoze.fr"
VERSION = "v1"
DIRECTIVE_KIND = "Duplicator"
DIRECTIVE_API_VERSION = f"{GROUP}/{VERSION}"
NAMESPACE_KIND = "Namespace"

FINALIZER = f"{GROUP}/duplicator-finalizer"

LABEL_MANAGED = f"{GROUP}/managed"
LABEL_MANAGED_BY_NAME = f"{GROUP}/managed-by-name"
LABEL_MANAGED_BY_NAMESPACE = f"{GROUP}/managed-by-namespace"

ANNOTATION_REPLICATED_KINDS = f"{GROUP}/replicated-kinds"


def _str_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def parse_replicated_kinds(raw: object) -> list[tuple[str, str | None]]:
    """Decode the replicated-kinds annotation; malformed entries are skipped."""
    if not isinstance(raw, str) or not raw.strip():
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(items, list):
        return []
    kinds: list[tuple[str, str | None]] = []
    for item in items:
        if isinstance(item, dict) and item.get("kind"):
            api_version = item.get("apiVersion")
            kinds.append((str(item["kind"]), str(api_version) if api_version else None))
    return kinds


def format_replicated_kinds(kinds: list[tuple[str, str | None]]) -> str:
    entries = sorted(set(kinds), key=lambda k: (k[0], k[1] or ""))
    return json.dumps([{"kind": kind, "apiVersion": api_version} for kind, api_version in entries])


def _metadata(obj: object) -> dict:
    if not isinstance(obj, dict):
        return {}
    meta = obj.get("metadata")
    return meta if isinstance(meta, dict) else {}


@dataclass(frozen=True)
class ObjectKey:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, text: str) -> ObjectKey:
        namespace, sep, name = text.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"invalid object key: '{text}' (use namespace/name)")
        return cls(namespace=namespace, name=name)


def ownership_labels(owner: ObjectKey) -> dict[str, str]:
    return {
        LABEL_MANAGED: "true",
        LABEL_MANAGED_BY_NAME: owner.name,
        LABEL_MANAGED_BY_NAMESPACE: owner.namespace,
    }


def is_owned_by(obj: dict, owner: ObjectKey) -> bool:
    labels = _str_map(_metadata(obj).get("labels"))
    return all(labels.get(k) == v for k, v in ownership_labels(owner).items())


@dataclass(frozen=True)
class TargetRef:
    kind: str
    namespace: str
    name: str
    api_version: str | None = None

    @classmethod
    def from_dict(cls, raw: object) -> TargetRef:
        if not isinstance(raw, dict):
            return cls(kind="", namespace="", name="")
        api_version = raw.get("apiVersion")
        return cls(
            kind=str(raw.get("kind") or ""),
            namespace=str(raw.get("namespace") or ""),
            name=str(raw.get("name") or ""),
            api_version=str(api_version) if api_version else None,
        )

    def to_dict(self) -> dict:
        payload = {"kind": self.kind, "namespace": self.namespace, "name": self.name}
        if self.api_version:
            payload["apiVersion"] = self.api_version
        return payload


@dataclass
class Directive:
    """A Duplicator object as read from the store.

    ``body`` keeps the stored representation, including the version token
    that makes finalizer and status writes optimistic.
    """

    namespace: str
    name: str
    selector: dict[str, str]
    targets: list[TargetRef]
    finalizers: list[str]
    deletion_requested: bool
    generation: int | None = None
    body: dict = field(default_factory=dict, repr=False)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    @property
    def finalizer_present(self) -> bool:
        return FINALIZER in self.finalizers

    @property
    def replicated_kinds(self) -> list[tuple[str, str | None]]:
        """Kinds this directive has written replicas of, as (kind, apiVersion)."""
        annotations = _metadata(self.body).get("annotations")
        if not isinstance(annotations, dict):
            return []
        return parse_replicated_kinds(annotations.get(ANNOTATION_REPLICATED_KINDS))

    @classmethod
    def from_object(cls, obj: dict) -> Directive:
        meta = _metadata(obj)
        spec = obj.get("spec") if isinstance(obj.get("spec"), dict) else {}
        selector = spec.get("namespaceSelector")
        match_labels = selector.get("matchLabels") if isinstance(selector, dict) else None
        raw_targets = spec.get("targetResources")
        targets = [TargetRef.from_dict(item) for item in raw_targets] if isinstance(raw_targets, list) else []
        finalizers = meta.get("finalizers")
        generation = meta.get("generation")
        return cls(
            namespace=str(meta.get("namespace") or ""),
            name=str(meta.get("name") or ""),
            selector=_str_map(match_labels),
            targets=targets,
            finalizers=[str(f) for f in finalizers] if isinstance(finalizers, list) else [],
            deletion_requested=bool(meta.get("deletionTimestamp")),
            generation=generation if isinstance(generation, int) else None,
            body=obj,
        )


def build_directive(
    namespace: str,
    name: str,
    *,
    selector: dict[str, str] | None = None,
    targets: list[TargetRef] | None = None,
) -> dict:
    return {
        "apiVersion": DIRECTIVE_API_VERSION,
        "kind": DIRECTIVE_KIND,
        "metadata": {"namespace": namespace, "name": name},
        "spec": {
            "namespaceSelector": {"matchLabels": dict(selector or {})},
            "targetResources": [t.to_dict() for t in targets or []],
        },
        "status": {},
    }


@dataclass(frozen=True)
class Namespace:
    name: str
    labels: dict[str, str]
    deletion_requested: bool = False

    @classmethod
    def from_object(cls, obj: dict) -> Namespace:
        meta = _metadata(obj)
        return cls(
            name=str(meta.get("name") or ""),
            labels=_str_map(meta.get("labels")),
            deletion_requested=bool(meta.get("deletionTimestamp")),
        )


def build_namespace(name: str, labels: dict[str, str] | None = None) -> dict:
    return {
        "apiVersion": "v1",
        "kind": NAMESPACE_KIND,
        "metadata": {"name": name, "labels": dict(labels or {})},
    }


class OutcomeKind(str, Enum):
    DONE = "done"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass
class Outcome:
    kind: OutcomeKind
    error: Exception | None = None
    results: list[dict] = field(default_factory=list)

    @classmethod
    def done(cls, results: list[dict] | None = None) -> Outcome:
        return cls(OutcomeKind.DONE, None, list(results or []))

    @classmethod
    def retry(cls, error: Exception, results: list[dict] | None = None) -> Outcome:
        return cls(OutcomeKind.RETRY, error, list(results or []))

    @classmethod
    def fatal(cls, error: Exception, results: list[dict] | None = None) -> Outcome:
        return cls(OutcomeKind.FATAL, error, list(results or []))

    def to_dict(self) -> dict:
        return {
            "outcome": self.kind.value,
            "error": str(self.error) if self.error is not None else None,
            "error_type": type(self.error).__name__ if self.error is not None else None,
            "results": self.results,
        }
