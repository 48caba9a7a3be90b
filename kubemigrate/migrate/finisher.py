"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Commit: once every node runs in Kubernetes, create the
CassandraDatacenter so that cass-operator adopts the migrated pods.

"""
from .base import Step, StepsContext
from .cluster import topology_config_map_name
from .config_parser import load_bundle
from .model import ClusterTopology
from collections.abc import Sequence
from kubemigrate.common import magic, utils
from kubemigrate.common.kube import Kind, KubeClient, Manifest
from kubemigrate.common.utils import cleanup_for_kubernetes, MigrateModel
from kubemigrate.config import MigrateConfig
from typing import Any

import dataclasses
import logging

logger = logging.getLogger(__name__)


class DatacenterPlan(MigrateModel):
    name: str
    cluster: str
    server_type: str
    server_version: str
    size: int
    racks: Sequence[str]


def count_running_pods(kube: KubeClient, cluster: str, datacenter: str) -> int:
    labels = {magic.CLUSTER_LABEL: cleanup_for_kubernetes(cluster), magic.DATACENTER_LABEL: datacenter}
    return sum(1 for pod in kube.list(Kind.pod, labels=labels) if (pod.get("status") or {}).get("phase") == "Running")


def build_datacenter(plan: DatacenterPlan, *, cassandra_yaml: Any, config: MigrateConfig) -> Manifest:
    return {
        "apiVersion": f"{magic.CASSDC_GROUP}/{magic.CASSDC_VERSION}",
        "kind": magic.CASSDC_KIND,
        "metadata": {"name": plan.name},
        "spec": {
            "clusterName": plan.cluster,
            "serverType": plan.server_type,
            "serverVersion": plan.server_version,
            "size": plan.size,
            "racks": [{"name": rack} for rack in plan.racks],
            "storageConfig": {
                "cassandraDataVolumeClaimSpec": {
                    "storageClassName": config.storage.storage_class_name,
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": config.storage.volume_size}},
                }
            },
            "managementApiAuth": {"insecure": {}},
            "networking": {"hostNetwork": True},
            # The operator fills in the rest when it adopts the pods
            "podTemplateSpec": {"spec": {"containers": [{"name": magic.CASSANDRA_CONTAINER_NAME}]}},
            "config": {magic.CASSANDRA_YAML_KEY: cassandra_yaml},
        },
    }


def is_datacenter_ready(datacenter: Manifest) -> bool:
    conditions = (datacenter.get("status") or {}).get("conditions") or []
    return any(condition.get("type") == "Ready" and condition.get("status") == "True" for condition in conditions)


@dataclasses.dataclass
class PlanDatacenterStep(Step[DatacenterPlan]):
    """
    Work out the datacenter size and racks from the topology snapshot and
    the pods that are running.
    """

    datacenter: str

    def run_step(self, kube: KubeClient, context: StepsContext) -> DatacenterPlan:
        topology = ClusterTopology.from_config_map(kube.get(Kind.config_map, topology_config_map_name(self.datacenter)))
        running = count_running_pods(kube, topology.cluster, topology.datacenter)
        expected = len(topology.node_infos)
        if running != expected:
            # The larger value wins, so an incomplete migration is not fatal here
            logger.warning(
                "%d pods running in datacenter %s, but the topology snapshot has %d nodes",
                running,
                self.datacenter,
                expected,
            )
        return DatacenterPlan(
            name=topology.datacenter,
            cluster=topology.cluster,
            server_type=str(topology.server_type),
            server_version=topology.server_version,
            size=max(running, expected),
            racks=topology.racks(),
        )


@dataclasses.dataclass
class CreateDatacenterStep(Step[Manifest]):
    config: MigrateConfig

    def run_step(self, kube: KubeClient, context: StepsContext) -> Manifest:
        plan = context.get_result(PlanDatacenterStep)
        existing = kube.get_or_none(Kind.cassandra_datacenter, plan.name)
        if existing is not None:
            logger.info("CassandraDatacenter %s exists already, not recreating it", plan.name)
            return existing
        bundle = load_bundle(kube, plan.name)
        datacenter = build_datacenter(plan, cassandra_yaml=bundle.cassandra_yaml, config=self.config)
        created = kube.create(Kind.cassandra_datacenter, datacenter)
        logger.info("Created CassandraDatacenter %s of size %d", plan.name, plan.size)
        return created


@dataclasses.dataclass
class WaitDatacenterReadyStep(Step[None]):
    config: MigrateConfig

    def run_step(self, kube: KubeClient, context: StepsContext) -> None:
        name = context.get_result(PlanDatacenterStep).name
        utils.wait_until(
            lambda: is_datacenter_ready(kube.get(Kind.cassandra_datacenter, name)),
            interval=self.config.wait.poll_interval,
            timeout=self.config.wait.datacenter_ready_timeout,
            what=f"CassandraDatacenter {name} is ready",
        )


def get_commit_steps(*, config: MigrateConfig, datacenter: str) -> list[Step[Any]]:
    return [
        PlanDatacenterStep(datacenter=datacenter),
        CreateDatacenterStep(config=config),
        WaitDatacenterReadyStep(config=config),
    ]
