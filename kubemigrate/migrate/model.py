"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Data passed between the migration phases

"""
from collections.abc import Iterable, Sequence
from kubemigrate.common import magic
from kubemigrate.common.kube import Manifest
from kubemigrate.common.magic import ServerType
from kubemigrate.common.nodetool import StatusEntry
from kubemigrate.common.utils import MigrateModel

import base64
import logging
import msgspec

logger = logging.getLogger(__name__)


class NodeInfo(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    status: str
    state: str
    address: str
    host_id: str
    rack: str
    # Rack-scoped, like StatefulSet pod ordinals
    ordinal: int


class ClusterTopology(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Cluster identity and node inventory captured once, before any node is migrated."""

    cluster: str
    server_type: ServerType
    server_version: str
    datacenter: str
    node_infos: list[NodeInfo] = msgspec.field(default_factory=list)

    def find_node(self, host_id: str) -> NodeInfo | None:
        for node in self.node_infos:
            if node.host_id == host_id:
                return node
        return None

    def racks(self) -> list[str]:
        """Distinct racks, in the order they first appear"""
        return list(dict.fromkeys(node.rack for node in self.node_infos))

    def encode(self) -> bytes:
        return msgspec.json.encode(self)

    @classmethod
    def decode(cls, data: bytes) -> "ClusterTopology":
        return msgspec.json.decode(data, type=cls)

    def to_config_map(self, name: str) -> Manifest:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": name},
            "binaryData": {magic.CLUSTER_INFO_KEY: base64.b64encode(self.encode()).decode()},
        }

    @classmethod
    def from_config_map(cls, config_map: Manifest) -> "ClusterTopology":
        encoded = config_map["binaryData"][magic.CLUSTER_INFO_KEY]
        return cls.decode(base64.b64decode(encoded))


def assign_ordinals(entries: Iterable[StatusEntry]) -> list[NodeInfo]:
    """Number the nodes within each rack, in the order they are listed."""
    ordinals: dict[str, int] = {}
    nodes = []
    for entry in entries:
        ordinal = ordinals.get(entry.rack, 0)
        ordinals[entry.rack] = ordinal + 1
        nodes.append(
            NodeInfo(
                status=entry.status,
                state=entry.state,
                address=entry.address,
                host_id=entry.host_id,
                rack=entry.rack,
                ordinal=ordinal,
            )
        )
    return nodes


class ClusterIdentity(MigrateModel):
    cluster: str
    datacenter: str
    rack: str
    server_type: ServerType
    server_version: str


class LocalNode(MigrateModel):
    """The node being migrated, as recorded in the topology snapshot"""

    host_id: str
    cluster: str
    datacenter: str
    rack: str
    ordinal: int
    server_type: ServerType
    server_version: str


class StorageLayout(MigrateModel):
    data_directories: Sequence[str]
    # Config key (e.g. commitlog_directory) -> host path
    additional_directories: dict[str, str]
    fs_group: int


class BoundVolume(MigrateModel):
    mount_name: str
    claim_name: str
    volume_name: str
    path: str
