"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""

# Used in tests.
from .base import CLUSTER_SCOPED_KINDS, Kind, KubeClient, Manifest, object_name
from collections.abc import Mapping
from kubemigrate.common.exceptions import AlreadyExistsException, ConflictException, NotFoundException

import copy
import threading
import uuid


class MemoryKubeClient(KubeClient):
    def __init__(self, namespace: str = "migrate", objects: dict[tuple[Kind, str], Manifest] | None = None) -> None:
        self.namespace = namespace
        self.objects = {} if objects is None else objects
        self.lock = threading.Lock()
        self.calls: list[tuple[str, Kind, str]] = []

    def add(self, kind: Kind, body: Manifest) -> Manifest:
        """Place an object without going through create (e.g. Nodes, or state set up by other actors)."""
        return self.create(kind, body)

    def get(self, kind: Kind, name: str) -> Manifest:
        with self.lock:
            self.calls.append(("get", kind, name))
            try:
                return copy.deepcopy(self.objects[(kind, name)])
            except KeyError as e:
                raise NotFoundException(f"{kind} {name} not found") from e

    def create(self, kind: Kind, body: Manifest) -> Manifest:
        name = object_name(body)
        with self.lock:
            self.calls.append(("create", kind, name))
            if (kind, name) in self.objects:
                raise AlreadyExistsException(f"{kind} {name} already exists")
            stored = copy.deepcopy(body)
            metadata = stored["metadata"]
            if kind not in CLUSTER_SCOPED_KINDS:
                metadata["namespace"] = self.namespace
            metadata["uid"] = str(uuid.uuid4())
            metadata["resourceVersion"] = "1"
            self.objects[(kind, name)] = stored
            return copy.deepcopy(stored)

    def update(self, kind: Kind, body: Manifest) -> Manifest:
        name = object_name(body)
        with self.lock:
            self.calls.append(("update", kind, name))
            try:
                current = self.objects[(kind, name)]
            except KeyError as e:
                raise NotFoundException(f"{kind} {name} not found") from e
            version = body["metadata"].get("resourceVersion")
            if version is not None and version != current["metadata"]["resourceVersion"]:
                raise ConflictException(f"{kind} {name} has been modified")
            stored = copy.deepcopy(body)
            stored["metadata"]["resourceVersion"] = str(int(current["metadata"]["resourceVersion"]) + 1)
            stored["metadata"]["uid"] = current["metadata"]["uid"]
            if kind not in CLUSTER_SCOPED_KINDS:
                stored["metadata"]["namespace"] = self.namespace
            self.objects[(kind, name)] = stored
            return copy.deepcopy(stored)

    def mutations(self) -> list[tuple[str, Kind, str]]:
        return [call for call in self.calls if call[0] in {"create", "update"}]

    def list(self, kind: Kind, *, labels: Mapping[str, str] | None = None) -> list[Manifest]:
        with self.lock:
            self.calls.append(("list", kind, ""))
            return [
                copy.deepcopy(body)
                for (object_kind, _), body in sorted(self.objects.items())
                if object_kind == kind and _matches(body, labels or {})
            ]


def _matches(body: Manifest, labels: Mapping[str, str]) -> bool:
    object_labels = body["metadata"].get("labels") or {}
    return all(object_labels.get(key) == value for key, value in labels.items())
