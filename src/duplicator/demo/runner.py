from __future__ import annotations

from duplicator.core.models import (
    DIRECTIVE_KIND,
    NAMESPACE_KIND,
    ObjectKey,
    TargetRef,
    build_directive,
    build_namespace,
)
from duplicator.core.reconciler import Reconciler
from duplicator.runtime.controller import Controller
from duplicator.store.memory import MemoryStore


def _configmap(namespace: str, name: str, data: dict[str, str]) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"namespace": namespace, "name": name},
        "data": dict(data),
    }


def _replicas(store: MemoryStore, name: str) -> dict[str, dict]:
    out: dict[str, dict] = {}
    for obj in store.list("ConfigMap"):
        meta = obj["metadata"]
        if meta["name"] == name and meta["namespace"] != "source":
            out[meta["namespace"]] = {"data": obj.get("data"), "labels": meta.get("labels")}
    return out


def _step(controller: Controller, store: MemoryStore, label: str, *, resync: bool = False) -> dict:
    if resync:
        controller.resync()
    handled = controller.run_once()
    return {
        "step": label,
        "reconciles": [{"directive": str(key), "outcome": outcome.kind.value} for key, outcome in handled],
        "replicas": _replicas(store, "app-config"),
    }


def run_demo(events: object) -> dict:
    store = MemoryStore()
    store.create(build_namespace("ops"))
    store.create(build_namespace("source"))
    store.create(build_namespace("ns-a", {"env": "staging"}))
    store.create(build_namespace("ns-b", {"env": "prod"}))
    store.create(_configmap("source", "app-config", {"k": "v"}))
    store.create(
        build_directive(
            "ops",
            "d1",
            selector={"env": "staging"},
            targets=[TargetRef(kind="ConfigMap", namespace="source", name="app-config")],
        )
    )

    controller = Controller(reconciler=Reconciler(store, events=events), events=events)
    timeline = [_step(controller, store, "initial_sync")]

    source = store.get("ConfigMap", "source", "app-config")
    source["data"] = {"k": "v2"}
    store.update(source)
    timeline.append(_step(controller, store, "source_updated", resync=True))

    ns_b = store.get(NAMESPACE_KIND, None, "ns-b")
    ns_b["metadata"]["labels"] = {"env": "staging"}
    store.update(ns_b)
    timeline.append(_step(controller, store, "namespace_relabelled"))

    store.delete(DIRECTIVE_KIND, "ops", "d1")
    timeline.append(_step(controller, store, "directive_deleted"))

    directive_left = bool(store.list(DIRECTIVE_KIND))
    return {
        "schema_version": "duplicator_demo.v0",
        "directive": str(ObjectKey("ops", "d1")),
        "timeline": timeline,
        "directive_present_after_delete": directive_left,
        "writes": len(store.writes),
    }
