"""Object store backed by the kubectl binary."""

from __future__ import annotations

import json
import subprocess

from duplicator.core.models import DIRECTIVE_KIND, NAMESPACE_KIND
from duplicator.core.selector import format_label_selector
from duplicator.kinds import KindRegistry, default_registry, generic_resource
from duplicator.store.base import (
    ChangeEvent,
    Conflict,
    Forbidden,
    NotFound,
    ObjectStore,
    StoreUnavailable,
    object_ref,
)
from duplicator.store.rbac import parse_forbidden

_BUILTIN_RESOURCES = {
    NAMESPACE_KIND: ("namespaces", False),
    DIRECTIVE_KIND: ("duplicators.v1.syoze.syoze.fr", True),
}


def run_cmd(argv: list[str], *, stdin: str | None = None, timeout_s: float = 20.0) -> dict:
    """Run command capturing stdout/stderr. Never raises; returns a dict."""
    try:
        cp = subprocess.run(argv, input=stdin, capture_output=True, text=True, timeout=timeout_s)
        return {
            "argv": argv,
            "ok": cp.returncode == 0,
            "rc": cp.returncode,
            "stdout": cp.stdout,
            "stderr": cp.stderr,
            "error": None,
        }
    except FileNotFoundError as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 127,
            "stdout": "",
            "stderr": str(e),
            "error": "not_found",
        }
    except subprocess.TimeoutExpired as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 124,
            "stdout": e.stdout or "",
            "stderr": e.stderr or "",
            "error": "timeout",
        }


def _snip(text: str | None, limit: int = 160) -> str | None:
    if not text:
        return None
    text = text.strip()
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def classify_kubectl_failure(result: dict) -> str:
    if result.get("error") == "not_found":
        return "kubectl_missing"
    if result.get("error") == "timeout":
        return "timeout"
    text = (result.get("stderr") or "").strip()
    lower = text.lower()
    if "(forbidden)" in lower or ("forbidden" in lower and "cannot" in lower):
        return "forbidden"
    if "(conflict)" in lower or "the object has been modified" in lower or "(alreadyexists)" in lower:
        return "conflict"
    if "(notfound)" in lower or "not found" in lower:
        return "not_found"
    return "unavailable"


class KubectlStore(ObjectStore):
    def __init__(
        self,
        kubectl: str = "kubectl",
        *,
        registry: KindRegistry | None = None,
        context: str | None = None,
        timeout_s: float = 20.0,
    ) -> None:
        self.kubectl = kubectl
        self.registry = registry or default_registry()
        self.context = context
        self.timeout_s = timeout_s
        self._snapshots: dict[str, dict[tuple[str, str], dict]] = {}

    def _resource(self, kind: str, api_version: str | None) -> tuple[str, bool]:
        if kind in _BUILTIN_RESOURCES:
            return _BUILTIN_RESOURCES[kind]
        strategy = self.registry.get(kind)
        if strategy is not None:
            return strategy.resource, strategy.namespaced
        return generic_resource(kind, api_version), True

    def _kubectl(self, args: list[str], *, stdin: str | None = None) -> dict:
        prefix = [self.kubectl]
        if self.context:
            prefix += ["--context", self.context]
        return run_cmd([*prefix, *args], stdin=stdin, timeout_s=self.timeout_s)

    def _raise_for(self, result: dict, *, kind: str, namespace: str | None, name: str | None) -> None:
        if result["ok"]:
            return
        stderr = result.get("stderr") or ""
        detail = f"rc={result.get('rc')}; stderr={_snip(stderr)}"
        ref = f"{kind} {namespace or ''}/{name or ''}"
        reason = classify_kubectl_failure(result)
        ctx = {"kind": kind, "namespace": namespace, "name": name, "detail": detail}
        if reason == "forbidden":
            raise Forbidden(f"{ref}: forbidden", diagnostics=parse_forbidden(stderr), **ctx)
        if reason == "conflict":
            raise Conflict(f"{ref}: conflict", **ctx)
        if reason == "not_found":
            raise NotFound(f"{ref}: not found", **ctx)
        raise StoreUnavailable(f"{ref}: kubectl failed ({reason})", **ctx)

    def _parse(self, result: dict, *, kind: str, namespace: str | None, name: str | None) -> dict:
        try:
            payload = json.loads(result.get("stdout") or "{}")
        except json.JSONDecodeError as exc:
            raise StoreUnavailable(
                f"{kind} {namespace or ''}/{name or ''}: invalid kubectl JSON output",
                kind=kind,
                namespace=namespace,
                name=name,
                detail=str(exc),
            ) from exc
        if not isinstance(payload, dict):
            raise StoreUnavailable(
                f"{kind} {namespace or ''}/{name or ''}: kubectl output is not an object",
                kind=kind,
                namespace=namespace,
                name=name,
            )
        return payload

    def get(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> dict:
        resource, namespaced = self._resource(kind, api_version)
        args = ["get", resource, name, "-o", "json"]
        if namespaced and namespace:
            args += ["-n", namespace]
        result = self._kubectl(args)
        self._raise_for(result, kind=kind, namespace=namespace, name=name)
        return self._parse(result, kind=kind, namespace=namespace, name=name)

    def list(
        self,
        kind: str,
        label_selector: dict[str, str] | None = None,
        *,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> list[dict]:
        resource, namespaced = self._resource(kind, api_version)
        args = ["get", resource, "-o", "json"]
        if namespaced:
            args += ["-n", namespace] if namespace else ["-A"]
        selector = format_label_selector(label_selector)
        if selector:
            args += ["-l", selector]
        result = self._kubectl(args)
        self._raise_for(result, kind=kind, namespace=namespace, name=None)
        payload = self._parse(result, kind=kind, namespace=namespace, name=None)
        items = payload.get("items")
        if not isinstance(items, list):
            return []
        out: list[dict] = []
        for item in items:
            if isinstance(item, dict):
                item.setdefault("kind", kind)
                out.append(item)
        return out

    def _write(self, verb: list[str], obj: dict) -> dict:
        kind, namespace, name = object_ref(obj)
        result = self._kubectl([*verb, "-f", "-", "-o", "json"], stdin=json.dumps(obj))
        self._raise_for(result, kind=kind, namespace=namespace, name=name)
        return self._parse(result, kind=kind, namespace=namespace, name=name)

    def create(self, obj: dict) -> dict:
        return self._write(["create"], obj)

    def update(self, obj: dict) -> dict:
        return self._write(["replace"], obj)

    def update_status(self, obj: dict) -> dict:
        return self._write(["replace", "--subresource=status"], obj)

    def delete(self, kind: str, namespace: str | None, name: str, *, api_version: str | None = None) -> None:
        resource, namespaced = self._resource(kind, api_version)
        args = ["delete", resource, name, "--wait=false"]
        if namespaced and namespace:
            args += ["-n", namespace]
        result = self._kubectl(args)
        self._raise_for(result, kind=kind, namespace=namespace, name=name)

    def watch(self, kind: str, *, api_version: str | None = None) -> list[ChangeEvent]:
        """Poll-based watch: diff the current listing against the previous one."""
        items = self.list(kind, api_version=api_version)
        current: dict[tuple[str, str], dict] = {}
        for item in items:
            _, namespace, name = object_ref(item)
            current[(namespace, name)] = item

        previous = self._snapshots.get(kind, {})
        events: list[ChangeEvent] = []
        for ref, item in current.items():
            old = previous.get(ref)
            if old is None:
                events.append(ChangeEvent("ADDED", item))
            elif old.get("metadata", {}).get("resourceVersion") != item.get("metadata", {}).get("resourceVersion"):
                events.append(ChangeEvent("MODIFIED", item, old))
        for ref, old in previous.items():
            if ref not in current:
                events.append(ChangeEvent("DELETED", old))
        self._snapshots[kind] = current
        return events
