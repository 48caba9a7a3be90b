"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from kubemigrate.common.exceptions import AlreadyExistsException, ConflictException, NotFoundException
from kubemigrate.common.kube import Kind
from kubemigrate.common.kube.memory import MemoryKubeClient

import pytest
import typing


def _config_map(name: str, labels: dict[str, str] | None = None) -> dict:
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": name, "labels": labels or {}}, "data": {}}


def test_create_get_update() -> None:
    kube = MemoryKubeClient("ns")
    created = kube.create(Kind.config_map, _config_map("a"))
    assert created["metadata"]["namespace"] == "ns"
    assert created["metadata"]["resourceVersion"] == "1"
    created["data"]["key"] = "value"
    updated = kube.update(Kind.config_map, created)
    assert updated["metadata"]["resourceVersion"] == "2"
    assert kube.get(Kind.config_map, "a")["data"] == {"key": "value"}


def test_returned_objects_are_copies() -> None:
    kube = MemoryKubeClient()
    kube.create(Kind.config_map, _config_map("a"))
    kube.get(Kind.config_map, "a")["data"]["key"] = "value"
    assert kube.get(Kind.config_map, "a")["data"] == {}


def test_errors() -> None:
    kube = MemoryKubeClient()
    with pytest.raises(NotFoundException):
        kube.get(Kind.pod, "missing")
    with pytest.raises(NotFoundException):
        kube.update(Kind.config_map, _config_map("missing"))
    assert kube.get_or_none(Kind.pod, "missing") is None
    kube.create(Kind.config_map, _config_map("a"))
    with pytest.raises(AlreadyExistsException):
        kube.create(Kind.config_map, _config_map("a"))


def test_stale_update_conflicts() -> None:
    kube = MemoryKubeClient()
    first = kube.create(Kind.config_map, _config_map("a"))
    second = kube.get(Kind.config_map, "a")
    kube.update(Kind.config_map, first)
    with pytest.raises(ConflictException):
        kube.update(Kind.config_map, second)


def test_create_if_absent() -> None:
    kube = MemoryKubeClient()
    assert kube.create_if_absent(Kind.config_map, _config_map("a"))
    assert not kube.create_if_absent(Kind.config_map, _config_map("a"))
    assert kube.mutations() == [("create", Kind.config_map, "a"), ("create", Kind.config_map, "a")]


def test_cluster_scoped_objects_have_no_namespace() -> None:
    kube = MemoryKubeClient()
    volume = kube.create(Kind.persistent_volume, {"metadata": {"name": "pv"}, "spec": {}})
    assert "namespace" not in volume["metadata"]


def test_list_by_labels() -> None:
    kube = MemoryKubeClient()
    kube.create(Kind.config_map, _config_map("a", {"app": "x", "tier": "db"}))
    kube.create(Kind.config_map, _config_map("b", {"app": "x"}))
    kube.create(Kind.config_map, _config_map("c", {"app": "y"}))
    kube.create(Kind.service, {"metadata": {"name": "d", "labels": {"app": "x"}}})
    assert [o["metadata"]["name"] for o in kube.list(Kind.config_map)] == ["a", "b", "c"]
    assert [o["metadata"]["name"] for o in kube.list(Kind.config_map, labels={"app": "x"})] == ["a", "b"]
    assert [o["metadata"]["name"] for o in kube.list(Kind.config_map, labels={"app": "x", "tier": "db"})] == ["a"]


def test_mutations_skip_reads() -> None:
    kube = MemoryKubeClient()
    created = kube.create(Kind.config_map, _config_map("a"))
    kube.get(Kind.config_map, "a")
    kube.list(Kind.config_map)
    kube.update(Kind.config_map, created)
    assert kube.mutations() == [("create", Kind.config_map, "a"), ("update", Kind.config_map, "a")]
    # The list method must not shadow the builtin in annotations evaluated later in the class body
    assert typing.get_type_hints(MemoryKubeClient.mutations)["return"] == list[tuple[str, Kind, str]]
