from __future__ import annotations

from dataclasses import dataclass


class StoreError(Exception):
    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.detail = detail


class NotFound(StoreError):
    pass


class Conflict(StoreError):
    pass


class Forbidden(StoreError):
    def __init__(self, message: str, *, diagnostics: dict | None = None, **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.diagnostics = diagnostics


class StoreUnavailable(StoreError):
    pass


def object_ref(obj: dict) -> tuple[str, str, str]:
    meta = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    return (
        str(obj.get("kind") or ""),
        str(meta.get("namespace") or ""),
        str(meta.get("name") or ""),
    )


@dataclass
class ChangeEvent:
    type: str
    object: dict
    old_object: dict | None = None

    @property
    def deletion_requested(self) -> bool:
        meta = self.object.get("metadata")
        return isinstance(meta, dict) and bool(meta.get("deletionTimestamp"))


class ObjectStore:
    """Generic object store used by the reconciler.

    Every call is synchronous. Implementations raise ``NotFound``,
    ``Conflict``, ``Forbidden`` or ``StoreUnavailable`` and never retry.
    ``watch`` returns the changes observed since the previous call for that
    kind; the first call reports every existing object as ``ADDED``.
    """

    def get(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> dict:
        raise NotImplementedError

    def list(
        self,
        kind: str,
        label_selector: dict[str, str] | None = None,
        *,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> list[dict]:
        raise NotImplementedError

    def create(self, obj: dict) -> dict:
        raise NotImplementedError

    def update(self, obj: dict) -> dict:
        raise NotImplementedError

    def update_status(self, obj: dict) -> dict:
        raise NotImplementedError

    def delete(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> None:
        raise NotImplementedError

    def watch(self, kind: str, *, api_version: str | None = None) -> list[ChangeEvent]:
        raise NotImplementedError


def describe_store_error(exc: StoreError) -> dict:
    payload = {
        "type": type(exc).__name__,
        "message": str(exc),
        "kind": exc.kind,
        "namespace": exc.namespace,
        "name": exc.name,
        "detail": exc.detail,
    }
    diagnostics = getattr(exc, "diagnostics", None)
    if diagnostics:
        payload["rbac"] = diagnostics
    return payload
