"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Cluster level initialization: capture the cluster identity and
topology, store the shared configuration and set up the seed discovery
services. Run once per cluster (re-running is harmless).

"""
from .base import Step, StepsContext
from .config_parser import (
    candidate_directories,
    ConfigParser,
    detect_config_directories,
    JvmOptionMatcher,
    ParsedConfiguration,
    store_bundle,
)
from .model import assign_ordinals, ClusterIdentity, ClusterTopology
from collections.abc import Callable, Mapping, Sequence
from kubemigrate.common import magic
from kubemigrate.common.exceptions import AlreadyExistsException, NodetoolException
from kubemigrate.common.kube import Kind, KubeClient, Manifest
from kubemigrate.common.nodetool import Nodetool
from kubemigrate.common.utils import cleanup_for_kubernetes
from kubemigrate.config import MigrateConfig
from tabulate import tabulate
from typing import Any

import dataclasses
import ipaddress
import logging

logger = logging.getLogger(__name__)


def topology_config_map_name(datacenter: str) -> str:
    return f"{cleanup_for_kubernetes(datacenter)}-migrate-config"


def seed_service_name(cluster: str) -> str:
    return f"{cleanup_for_kubernetes(cluster)}-seed-service"


def additional_seed_service_name(cluster: str, datacenter: str) -> str:
    return f"{cleanup_for_kubernetes(cluster)}-{datacenter}-additional-seed-service"


def headless_service(name: str, selector: Mapping[str, str] | None = None) -> Manifest:
    spec: dict[str, Any] = {"type": "ClusterIP", "clusterIP": "None", "publishNotReadyAddresses": True}
    if selector:
        spec["selector"] = dict(selector)
    return {"apiVersion": "v1", "kind": "Service", "metadata": {"name": name}, "spec": spec}


def _endpoint_address(seed: str) -> str | None:
    try:
        address = ipaddress.ip_address(seed)
    except ValueError:
        return None
    # Loopback is not a valid endpoint address in Kubernetes
    return None if address.is_loopback else str(address)


def reconcile_seed_endpoints(kube: KubeClient, name: str, seeds: Sequence[str]) -> list[str]:
    """Make sure the Endpoints object lists every seed; returns the listed addresses.

    Addresses are only ever added, never removed.
    """
    addresses = []
    for seed in seeds:
        address = _endpoint_address(seed)
        if address is None:
            logger.debug("Ignoring seed %r, not usable as an endpoint address", seed)
        elif address not in addresses:
            addresses.append(address)
    endpoints = kube.get_or_none(Kind.endpoints, name)
    if endpoints is None:
        if not addresses:
            return []
        kube.create(
            Kind.endpoints,
            {
                "apiVersion": "v1",
                "kind": "Endpoints",
                "metadata": {"name": name},
                "subsets": [{"addresses": [{"ip": address} for address in addresses]}],
            },
        )
        logger.info("Created endpoints %s with %r", name, addresses)
        return addresses
    subsets = endpoints.get("subsets") or [{}]
    current = [entry["ip"] for subset in subsets for entry in subset.get("addresses") or []]
    missing = [address for address in addresses if address not in current]
    if not missing:
        return current
    subsets[0]["addresses"] = (subsets[0].get("addresses") or []) + [{"ip": address} for address in missing]
    endpoints["subsets"] = subsets
    kube.update(Kind.endpoints, endpoints)
    logger.info("Added %r to endpoints %s", missing, name)
    return current + missing


@dataclasses.dataclass
class ClusterIdentityStep(Step[ClusterIdentity]):
    """
    Find out which cluster and datacenter the local node belongs to, and what it runs.
    """

    nodetool: Nodetool

    def run_step(self, kube: KubeClient, context: StepsContext) -> ClusterIdentity:
        info = self.nodetool.info()
        gossip = self.nodetool.gossipinfo(info.host_id)
        if (gossip.datacenter, gossip.rack) != (info.datacenter, info.rack):
            raise NodetoolException(
                f"gossip reports datacenter {gossip.datacenter} rack {gossip.rack} for the local node, "
                f"nodetool info datacenter {info.datacenter} rack {info.rack}"
            )
        cluster = self.nodetool.describecluster()
        return ClusterIdentity(
            cluster=cluster,
            datacenter=gossip.datacenter,
            rack=gossip.rack,
            server_type=gossip.server_type,
            server_version=gossip.server_version,
        )


@dataclasses.dataclass
class CreateTopologySnapshotStep(Step[ClusterTopology]):
    """
    Store the node inventory of the datacenter. The snapshot is written only
    once; later runs return the stored one without touching it.
    """

    nodetool: Nodetool

    def run_step(self, kube: KubeClient, context: StepsContext) -> ClusterTopology:
        identity = context.get_result(ClusterIdentityStep)
        name = topology_config_map_name(identity.datacenter)
        existing = kube.get_or_none(Kind.config_map, name)
        if existing is not None:
            logger.info("Topology snapshot %s exists already, keeping it", name)
            return ClusterTopology.from_config_map(existing)
        entries = [
            entry
            for entry in self.nodetool.status()
            if entry.datacenter is None or entry.datacenter == identity.datacenter
        ]
        topology = ClusterTopology(
            cluster=identity.cluster,
            server_type=identity.server_type,
            server_version=identity.server_version,
            datacenter=identity.datacenter,
            node_infos=assign_ordinals(entries),
        )
        try:
            kube.create(Kind.config_map, topology.to_config_map(name))
        except AlreadyExistsException:
            logger.info("Topology snapshot %s was created concurrently, using it", name)
            return ClusterTopology.from_config_map(kube.get(Kind.config_map, name))
        logger.info("Stored topology of %d nodes to %s", len(topology.node_infos), name)
        return topology


@dataclasses.dataclass
class ParseConfigurationStep(Step[ParsedConfiguration]):
    """
    Parse the local node's configuration files and merge them into the
    datacenter's configuration ConfigMap.
    """

    config: MigrateConfig
    matcher_factory: Callable[[str], JvmOptionMatcher] | None = None

    def run_step(self, kube: KubeClient, context: StepsContext) -> ParsedConfiguration:
        parsed = parse_local_configuration(self.config, matcher_factory=self.matcher_factory)
        identity = context.get_result(ClusterIdentityStep)
        store_bundle(kube, identity.datacenter, parsed.bundle)
        return parsed


@dataclasses.dataclass
class CreateSeedServicesStep(Step[None]):
    def run_step(self, kube: KubeClient, context: StepsContext) -> None:
        identity = context.get_result(ClusterIdentityStep)
        additional_service = headless_service(additional_seed_service_name(identity.cluster, identity.datacenter))
        kube.create_if_absent(Kind.service, additional_service)
        kube.create_if_absent(
            Kind.service,
            headless_service(
                seed_service_name(identity.cluster),
                selector={
                    magic.CLUSTER_LABEL: cleanup_for_kubernetes(identity.cluster),
                    magic.SEED_NODE_LABEL: "true",
                },
            ),
        )


@dataclasses.dataclass
class ReconcileSeedEndpointsStep(Step[list[str]]):
    """
    List the configured seeds as endpoints of the additional seed service.
    Falls back to what the running node knows when the configuration has
    no usable seed.
    """

    nodetool: Nodetool

    def run_step(self, kube: KubeClient, context: StepsContext) -> list[str]:
        identity = context.get_result(ClusterIdentityStep)
        seeds = list(context.get_result(ParseConfigurationStep).seeds)
        if not seeds:
            seeds = self.nodetool.getseeds()
            logger.info("No seeds in configuration, using %r from nodetool getseeds", seeds)
        name = additional_seed_service_name(identity.cluster, identity.datacenter)
        return reconcile_seed_endpoints(kube, name, seeds)


def parse_local_configuration(
    config: MigrateConfig, *, matcher_factory: Callable[[str], JvmOptionMatcher] | None = None
) -> ParsedConfiguration:
    candidates = candidate_directories(
        cass_config_dir=config.cass_config_dir,
        dse_config_dir=config.dse_config_dir,
        cassandra_home=config.cassandra_home,
    )
    directories = detect_config_directories(candidates)
    if matcher_factory is None:
        return ConfigParser(directories).parse()
    return ConfigParser(directories, matcher_factory=matcher_factory).parse()


def get_init_steps(*, config: MigrateConfig, nodetool: Nodetool) -> list[Step[Any]]:
    return [
        ClusterIdentityStep(nodetool=nodetool),
        CreateTopologySnapshotStep(nodetool=nodetool),
        ParseConfigurationStep(config=config),
        CreateSeedServicesStep(),
        ReconcileSeedEndpointsStep(nodetool=nodetool),
    ]


def format_topology(topology: ClusterTopology) -> str:
    headers = {
        "address": "Address",
        "host_id": "Host ID",
        "rack": "Rack",
        "ordinal": "Ordinal",
        "status": "Status",
        "state": "State",
    }
    table = [{key: getattr(node, key) for key in headers} for node in topology.node_infos]
    title = (
        f"Cluster {topology.cluster!r}, datacenter {topology.datacenter!r}: "
        f"{topology.server_type} {topology.server_version}"
    )
    return title + "\n" + tabulate(table, headers=headers)
