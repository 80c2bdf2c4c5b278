from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Callable

IDENTITY_FIELDS = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "ownerReferences",
    "finalizers",
)
_ENVELOPE_FIELDS = frozenset({"apiVersion", "kind", "metadata", "status"})


class UnsupportedKind(Exception):
    def __init__(self, kind: str, supported: list[str]) -> None:
        self.kind = kind
        self.supported = supported
        listed = ", ".join(supported) if supported else "none"
        super().__init__(f"kind '{kind}' is not supported (supported: {listed})")


class InvalidObject(ValueError):
    """A source object whose shape the kind strategy cannot decode."""


def _copy(obj: dict) -> dict:
    return copy.deepcopy(obj)


def clear_identity(obj: dict) -> dict:
    out = copy.deepcopy(obj)
    meta = out.get("metadata")
    if isinstance(meta, dict):
        for key in IDENTITY_FIELDS:
            meta.pop(key, None)
    out.pop("status", None)
    return out


def _decode_string_map_kind(obj: dict) -> dict:
    out = copy.deepcopy(obj)
    for key in ("data", "binaryData", "stringData"):
        if key in out and out[key] is None:
            del out[key]
        elif key in out and not isinstance(out[key], dict):
            raise InvalidObject(f"{obj.get('kind')}.{key} must be an object")
    return out


def generic_resource(kind: str, api_version: str | None) -> str:
    """kubectl resource argument for a kind without a registered strategy."""
    version = api_version or "v1"
    if "/" in version:
        group, ver = version.split("/", 1)
        return f"{kind}.{ver}.{group}"
    return kind


@dataclass(frozen=True)
class KindStrategy:
    kind: str
    api_version: str
    resource: str
    namespaced: bool = True
    # None mirrors every top-level field outside the object envelope.
    content_fields: tuple[str, ...] | None = None
    decode: Callable[[dict], dict] = field(default=_copy, compare=False)
    encode: Callable[[dict], dict] = field(default=_copy, compare=False)
    clear_identity: Callable[[dict], dict] = field(default=clear_identity, compare=False)

    def content_keys(self, obj: dict) -> set[str]:
        if self.content_fields is not None:
            return set(self.content_fields)
        return {k for k in obj.keys() if k not in _ENVELOPE_FIELDS}


class KindRegistry:
    """Maps a kind to the strategy that decodes, encodes and strips it.

    With ``allow_generic`` any kind resolves to an untyped strategy; otherwise
    only registered kinds are supported. ``freeze`` makes the registry
    read-only once a controller starts using it.
    """

    def __init__(self, strategies: list[KindStrategy] | None = None, *, allow_generic: bool = False) -> None:
        self._strategies: dict[str, KindStrategy] = {}
        self._frozen = False
        self.allow_generic = allow_generic
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: KindStrategy) -> None:
        if self._frozen:
            raise RuntimeError("kind registry is frozen")
        self._strategies[strategy.kind] = strategy

    def freeze(self) -> KindRegistry:
        self._frozen = True
        return self

    def get(self, kind: str) -> KindStrategy | None:
        return self._strategies.get(kind)

    def supports(self, kind: str) -> bool:
        return bool(kind) and (kind in self._strategies or self.allow_generic)

    def resolve(self, kind: str, api_version: str | None = None) -> KindStrategy:
        strategy = self._strategies.get(kind)
        if strategy is not None:
            return strategy
        if not kind or not self.allow_generic:
            raise UnsupportedKind(kind, self.list_kinds())
        return KindStrategy(
            kind=kind,
            api_version=api_version or "v1",
            resource=generic_resource(kind, api_version),
        )

    def list_kinds(self) -> list[str]:
        return list(self._strategies.keys())


CONFIGMAP = KindStrategy(
    kind="ConfigMap",
    api_version="v1",
    resource="configmaps",
    content_fields=("data", "binaryData", "immutable"),
    decode=_decode_string_map_kind,
)
SECRET = KindStrategy(
    kind="Secret",
    api_version="v1",
    resource="secrets",
    content_fields=("data", "stringData", "type", "immutable"),
    decode=_decode_string_map_kind,
)


def default_registry(*, allow_generic: bool = False) -> KindRegistry:
    return KindRegistry([CONFIGMAP, SECRET], allow_generic=allow_generic).freeze()
