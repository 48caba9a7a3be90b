"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Minimal Kubernetes access layer.

Objects are passed around as plain manifests (dicts with the camelCase
keys of the Kubernetes API) regardless of the implementation, so that
the synthesized objects can be compared against what the reconciler
would produce without caring about client model classes.

"""
from collections.abc import Mapping
from kubemigrate.common.exceptions import AlreadyExistsException, NotFoundException
from kubemigrate.common.magic import StrEnum
from typing import Any, TypeAlias

import abc
import logging

logger = logging.getLogger(__name__)

Manifest: TypeAlias = dict[str, Any]


class Kind(StrEnum):
    config_map = "ConfigMap"
    service = "Service"
    endpoints = "Endpoints"
    persistent_volume = "PersistentVolume"
    persistent_volume_claim = "PersistentVolumeClaim"
    pod = "Pod"
    node = "Node"
    lease = "Lease"
    cassandra_datacenter = "CassandraDatacenter"


CLUSTER_SCOPED_KINDS = frozenset({Kind.persistent_volume, Kind.node})


def label_selector(labels: Mapping[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def object_name(body: Manifest) -> str:
    return body["metadata"]["name"]


class KubeClient(abc.ABC):
    namespace: str

    @abc.abstractmethod
    def get(self, kind: Kind, name: str) -> Manifest:
        """Raises NotFoundException if the object does not exist"""

    @abc.abstractmethod
    def create(self, kind: Kind, body: Manifest) -> Manifest:
        """Raises AlreadyExistsException if the object exists already"""

    @abc.abstractmethod
    def update(self, kind: Kind, body: Manifest) -> Manifest:
        """Replace the object.

        If body carries metadata.resourceVersion and it is stale,
        ConflictException is raised.
        """

    @abc.abstractmethod
    def list(self, kind: Kind, *, labels: Mapping[str, str] | None = None) -> list[Manifest]: ...

    def get_or_none(self, kind: Kind, name: str) -> Manifest | None:
        try:
            return self.get(kind, name)
        except NotFoundException:
            return None

    def create_if_absent(self, kind: Kind, body: Manifest) -> bool:
        """Create the object unless it exists; returns whether it was created."""
        try:
            self.create(kind, body)
        except AlreadyExistsException:
            logger.debug("%s %s already exists, leaving it as-is", kind, object_name(body))
            return False
        logger.info("Created %s %s", kind, object_name(body))
        return True
