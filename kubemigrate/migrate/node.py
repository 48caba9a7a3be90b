"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Migration of the local node into a pod on the same host. Run once per
node, after the cluster has been initialized.

A failed migration is not resumed: whatever was created (volumes, pod)
stays and has to be cleaned up by hand before trying again.

"""
from .base import Step, StepsContext
from .cluster import (
    additional_seed_service_name,
    parse_local_configuration,
    reconcile_seed_endpoints,
    topology_config_map_name,
)
from .config_parser import bundle_config_map_name, ParsedConfiguration
from .model import BoundVolume, ClusterTopology, LocalNode, StorageLayout
from .pod import build_pod, container_status, pod_name
from .storage import (
    build_persistent_volume,
    build_persistent_volume_claim,
    check_data_directories,
    fix_directory_rights,
    plan_volumes,
    validate_mount_targets,
)
from collections.abc import Callable, Sequence
from kubemigrate.common import magic, utils
from kubemigrate.common.exceptions import (
    KubeNodeNotFoundException,
    NotFoundException,
    NotPartOfInitException,
    VolumeAlreadyExistsException,
)
from kubemigrate.common.kube import Kind, KubeClient, Manifest
from kubemigrate.common.mgmtapi import ManagementApiClient
from kubemigrate.common.netutils import interface_address
from kubemigrate.common.nodetool import Nodetool
from kubemigrate.config import MigrateConfig
from typing import Any

import dataclasses
import datetime
import logging
import time

logger = logging.getLogger(__name__)

UNUSABLE_LISTEN_ADDRESSES = ("", "0.0.0.0", "::")


@dataclasses.dataclass
class ReadLocalConfigurationStep(Step[ParsedConfiguration]):
    """
    Parse the local configuration; it tells where the data is and which
    address the node listens on.
    """

    config: MigrateConfig

    def run_step(self, kube: KubeClient, context: StepsContext) -> ParsedConfiguration:
        return parse_local_configuration(self.config)


@dataclasses.dataclass
class GatherNodeInfoStep(Step[LocalNode]):
    """
    Identify the local node and find it in the topology snapshot taken by init.
    """

    nodetool: Nodetool

    def run_step(self, kube: KubeClient, context: StepsContext) -> LocalNode:
        info = self.nodetool.info()
        name = topology_config_map_name(info.datacenter)
        try:
            topology_config_map = kube.get(Kind.config_map, name)
        except NotFoundException as ex:
            raise NotPartOfInitException(f"datacenter {info.datacenter} has not been initialized ({name} missing)") from ex
        topology = ClusterTopology.from_config_map(topology_config_map)
        node = topology.find_node(info.host_id)
        if node is None:
            raise NotPartOfInitException(f"this node ({info.host_id}) was not part of the init process")
        return LocalNode(
            host_id=info.host_id,
            cluster=topology.cluster,
            datacenter=topology.datacenter,
            rack=node.rack,
            ordinal=node.ordinal,
            server_type=topology.server_type,
            server_version=topology.server_version,
        )


def node_internal_ip(kube_node: Manifest) -> str | None:
    for address in (kube_node.get("status") or {}).get("addresses") or []:
        if address.get("type") == "InternalIP":
            return address.get("address")
    return None


def find_kube_node(kube: KubeClient, target_ip: str) -> str:
    for kube_node in kube.list(Kind.node):
        if node_internal_ip(kube_node) == target_ip:
            return kube_node["metadata"]["name"]
    raise KubeNodeNotFoundException(f"failed to find local Kubernetes node with address {target_ip}")


@dataclasses.dataclass
class ResolveKubeNodeStep(Step[str]):
    """
    Find the Kubernetes node running on this host, by the address the database listens on.
    """

    address_resolver: Callable[[str], str | None] = interface_address

    def run_step(self, kube: KubeClient, context: StepsContext) -> str:
        parsed = context.get_result(ReadLocalConfigurationStep)
        target_ip = None
        if parsed.listen_address not in (None, *UNUSABLE_LISTEN_ADDRESSES):
            target_ip = parsed.listen_address
        elif parsed.listen_interface:
            target_ip = self.address_resolver(parsed.listen_interface)
        if not target_ip:
            raise KubeNodeNotFoundException("failed to find local Kubernetes node, no usable listen address")
        kube_node = find_kube_node(kube, target_ip)
        logger.info("Local node runs on Kubernetes node %s", kube_node)
        return kube_node


@dataclasses.dataclass
class ReconcileNodeSeedsStep(Step[list[str]]):
    """
    Add the seeds this node was configured with to the additional seed endpoints.
    """

    def run_step(self, kube: KubeClient, context: StepsContext) -> list[str]:
        node = context.get_result(GatherNodeInfoStep)
        seeds = context.get_result(ReadLocalConfigurationStep).seeds
        return reconcile_seed_endpoints(kube, additional_seed_service_name(node.cluster, node.datacenter), seeds)


@dataclasses.dataclass
class PlanVolumesStep(Step[Sequence[BoundVolume]]):
    """
    Decide the volumes for the data directories, and refuse to go on if
    a data directory is missing or any of the volumes exists already
    (left over from an earlier attempt).
    """

    def run_step(self, kube: KubeClient, context: StepsContext) -> Sequence[BoundVolume]:
        node = context.get_result(GatherNodeInfoStep)
        bundle = context.get_result(ReadLocalConfigurationStep).bundle
        data_directories = bundle.data_file_directories()
        check_data_directories(data_directories)
        volumes = plan_volumes(node, data_directories, bundle.additional_directories())
        existing = [
            f"{kind} {name}"
            for volume in volumes
            for kind, name in [
                (Kind.persistent_volume, volume.volume_name),
                (Kind.persistent_volume_claim, volume.claim_name),
            ]
            if kube.get_or_none(kind, name) is not None
        ]
        if existing:
            raise VolumeAlreadyExistsException(
                f"volumes from an earlier migration attempt exist, remove them first: {', '.join(existing)}"
            )
        return volumes


@dataclasses.dataclass
class DrainStep(Step[None]):
    """
    Drain and stop the local database process; it is started again inside the pod.
    """

    nodetool: Nodetool

    def run_step(self, kube: KubeClient, context: StepsContext) -> None:
        logger.info("Draining local node")
        self.nodetool.drain()
        logger.info("Stopping local node")
        self.nodetool.stopdaemon()


@dataclasses.dataclass
class ValidateStorageStep(Step[StorageLayout]):
    """
    Check the data directories share one group (used as the pod's fsGroup)
    and give that group read/write access.
    """

    def run_step(self, kube: KubeClient, context: StepsContext) -> StorageLayout:
        bundle = context.get_result(ReadLocalConfigurationStep).bundle
        data_directories = bundle.data_file_directories()
        additional_directories = bundle.additional_directories()
        fs_group = validate_mount_targets(data_directories, additional_directories)
        for volume in context.get_result(PlanVolumesStep):
            fix_directory_rights(volume.path)
        return StorageLayout(
            data_directories=data_directories,
            additional_directories=additional_directories,
            fs_group=fs_group,
        )


@dataclasses.dataclass
class BindVolumesStep(Step[None]):
    """
    Create the PersistentVolumes pointing at the data directories and the
    claims pre-bound to them.
    """

    config: MigrateConfig
    sleep: Callable[[float], None] = time.sleep

    def run_step(self, kube: KubeClient, context: StepsContext) -> None:
        kube_node = context.get_result(ResolveKubeNodeStep)
        storage = self.config.storage
        for volume in context.get_result(PlanVolumesStep):
            kube.create(Kind.persistent_volume, build_persistent_volume(volume, kube_node=kube_node, storage=storage))
            kube.create(
                Kind.persistent_volume_claim, build_persistent_volume_claim(volume, kube_node=kube_node, storage=storage)
            )
            logger.info("Bound %s to %s", volume.path, volume.claim_name)
        # TODO: poll the claims for phase Bound instead of a fixed delay
        self.sleep(storage.settle_delay)


@dataclasses.dataclass
class CreatePodStep(Step[Manifest]):
    config: MigrateConfig

    def run_step(self, kube: KubeClient, context: StepsContext) -> Manifest:
        node = context.get_result(GatherNodeInfoStep)
        bundle_data = kube.get(Kind.config_map, bundle_config_map_name(node.datacenter)).get("data") or {}
        pod = build_pod(
            node,
            kube_node=context.get_result(ResolveKubeNodeStep),
            fs_group=context.get_result(ValidateStorageStep).fs_group,
            volumes=context.get_result(PlanVolumesStep),
            bundle_data=bundle_data,
            config=self.config,
        )
        created = kube.create(Kind.pod, pod)
        logger.info("Created pod %s", pod_name(node))
        return created


def is_mgmt_api_running(pod: Manifest, *, grace: float, now: datetime.datetime) -> bool:
    status = container_status(pod)
    running = ((status or {}).get("state") or {}).get("running")
    if not running or not running.get("startedAt"):
        return False
    return utils.parse_time(running["startedAt"]) < now - datetime.timedelta(seconds=grace)


def is_server_ready(pod: Manifest) -> bool:
    status = container_status(pod)
    return bool(status and status.get("ready"))


@dataclasses.dataclass
class StartPodStep(Step[None]):
    """
    Wait for the management API in the pod, start the database through it
    and wait until it reports ready.
    """

    config: MigrateConfig
    mgmt_api: ManagementApiClient
    sleep: Callable[[float], None] = time.sleep

    def run_step(self, kube: KubeClient, context: StepsContext) -> None:
        name = pod_name(context.get_result(GatherNodeInfoStep))
        wait = self.config.wait
        utils.wait_until(
            lambda: is_mgmt_api_running(kube.get(Kind.pod, name), grace=wait.mgmt_api_grace, now=utils.now()),
            interval=wait.poll_interval,
            timeout=wait.pod_start_timeout,
            what=f"management API of {name} is running",
        )
        self.sleep(wait.start_delay)
        self.mgmt_api.call_lifecycle_start(kube.get(Kind.pod, name))
        utils.wait_until(
            lambda: is_server_ready(kube.get(Kind.pod, name)),
            interval=wait.poll_interval,
            timeout=wait.pod_start_timeout,
            what=f"{name} is ready",
        )
        pod = kube.get(Kind.pod, name)
        pod["metadata"].setdefault("labels", {})[magic.NODE_STATE_LABEL] = magic.NODE_STATE_STARTED
        kube.update(Kind.pod, pod)
        logger.info("Pod %s has started", name)


def get_node_steps(
    *,
    config: MigrateConfig,
    nodetool: Nodetool,
    mgmt_api: ManagementApiClient | None = None,
    address_resolver: Callable[[str], str | None] = interface_address,
    sleep: Callable[[float], None] = time.sleep,
) -> list[Step[Any]]:
    if mgmt_api is None:
        mgmt_api = ManagementApiClient(port=config.management_api.port, timeout=config.management_api.timeout)
    return [
        ReadLocalConfigurationStep(config=config),
        GatherNodeInfoStep(nodetool=nodetool),
        ResolveKubeNodeStep(address_resolver=address_resolver),
        ReconcileNodeSeedsStep(),
        PlanVolumesStep(),
        DrainStep(nodetool=nodetool),
        ValidateStorageStep(),
        BindVolumesStep(config=config, sleep=sleep),
        CreatePodStep(config=config),
        StartPodStep(config=config, mgmt_api=mgmt_api, sleep=sleep),
    ]
