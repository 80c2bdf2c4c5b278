import pytest

from duplicator.core.models import NAMESPACE_KIND, build_namespace
from duplicator.store.base import Conflict, NotFound, StoreUnavailable
from duplicator.store.memory import MemoryStore
from k8s_objects import configmap


def test_create_assigns_identity_and_rejects_duplicates() -> None:
    store = MemoryStore()

    created = store.create(configmap("ns-a", "cfg", {"k": "v"}))

    meta = created["metadata"]
    assert meta["resourceVersion"] == "1"
    assert meta["generation"] == 1
    assert meta["uid"]
    with pytest.raises(Conflict):
        store.create(configmap("ns-a", "cfg", {"k": "v"}))


def test_update_with_stale_version_conflicts() -> None:
    store = MemoryStore()
    first = store.create(configmap("ns-a", "cfg", {"k": "v"}))
    store.update({**first, "data": {"k": "v2"}})

    with pytest.raises(Conflict):
        store.update({**first, "data": {"k": "v3"}})


def test_generation_only_moves_on_content_change() -> None:
    store = MemoryStore()
    obj = store.create(configmap("ns-a", "cfg", {"k": "v"}))
    obj["metadata"]["labels"] = {"a": "b"}
    obj = store.update(obj)
    assert obj["metadata"]["generation"] == 1

    obj["data"] = {"k": "v2"}
    obj = store.update(obj)
    assert obj["metadata"]["generation"] == 2


def test_update_status_leaves_spec_alone() -> None:
    store = MemoryStore()
    obj = store.create({"kind": "Widget", "metadata": {"namespace": "ns", "name": "w"}, "spec": {"size": 1}})

    obj["spec"] = {"size": 2}
    obj["status"] = {"ready": True}
    store.update_status(obj)

    stored = store.get("Widget", "ns", "w")
    assert stored["spec"] == {"size": 1}
    assert stored["status"] == {"ready": True}


def test_delete_with_finalizer_waits_for_release() -> None:
    store = MemoryStore()
    body = configmap("ns-a", "cfg", {"k": "v"})
    body["metadata"]["finalizers"] = ["example.com/hold"]
    store.create(body)

    store.delete("ConfigMap", "ns-a", "cfg")
    pending = store.get("ConfigMap", "ns-a", "cfg")
    assert pending["metadata"]["deletionTimestamp"]

    pending["metadata"]["finalizers"] = []
    store.update(pending)
    with pytest.raises(NotFound):
        store.get("ConfigMap", "ns-a", "cfg")


def test_list_filters_by_label_and_namespace() -> None:
    store = MemoryStore()
    store.create(configmap("ns-a", "one", {}, labels={"app": "web"}))
    store.create(configmap("ns-b", "two", {}, labels={"app": "web"}))
    store.create(configmap("ns-b", "three", {}, labels={"app": "db"}))

    names = sorted(o["metadata"]["name"] for o in store.list("ConfigMap", {"app": "web"}))
    assert names == ["one", "two"]
    assert [o["metadata"]["name"] for o in store.list("ConfigMap", namespace="ns-b", label_selector={"app": "db"})] == ["three"]


def test_watch_reports_existing_then_changes() -> None:
    store = MemoryStore()
    store.create(build_namespace("ns-a"))

    first = store.watch(NAMESPACE_KIND)
    assert [(e.type, e.object["metadata"]["name"]) for e in first] == [("ADDED", "ns-a")]

    ns = store.get(NAMESPACE_KIND, None, "ns-a")
    ns["metadata"]["labels"] = {"env": "prod"}
    store.update(ns)
    store.delete(NAMESPACE_KIND, None, "ns-a")

    second = store.watch(NAMESPACE_KIND)
    assert [e.type for e in second] == ["MODIFIED", "DELETED"]
    assert second[0].old_object["metadata"]["labels"] == {}
    assert store.watch(NAMESPACE_KIND) == []


def test_fail_next_raises_once() -> None:
    store = MemoryStore()
    store.fail_next("get", StoreUnavailable("down"))

    with pytest.raises(StoreUnavailable):
        store.get("ConfigMap", "ns-a", "cfg")
    with pytest.raises(NotFound):
        store.get("ConfigMap", "ns-a", "cfg")


def test_events_are_dropped_once_every_watch_consumed_them() -> None:
    store = MemoryStore()
    store.create(configmap("ns-a", "unwatched", {}))
    assert store.backlog == 0

    store.watch(NAMESPACE_KIND)
    store.watch("ConfigMap")
    store.create(build_namespace("ns-a"))
    store.create(configmap("ns-a", "cfg", {}))
    assert store.backlog == 2

    assert [e.type for e in store.watch(NAMESPACE_KIND)] == ["ADDED"]
    assert store.backlog == 2
    assert [e.object["metadata"]["name"] for e in store.watch("ConfigMap")] == ["cfg"]
    assert store.backlog == 0

    store.create(build_namespace("ns-b"))
    assert [e.object["metadata"]["name"] for e in store.watch(NAMESPACE_KIND)] == ["ns-b"]
    assert store.watch("ConfigMap") == []
    assert store.backlog == 0
