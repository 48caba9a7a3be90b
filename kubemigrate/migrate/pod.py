"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Pod for a migrated node.

The pod has to look like one created by cass-operator's StatefulSet
(names, labels, containers, config builder input), otherwise the
operator would not adopt it once the CassandraDatacenter is created.

"""
from .cluster import additional_seed_service_name, seed_service_name
from .model import BoundVolume, LocalNode
from collections.abc import Mapping, Sequence
from kubemigrate.common import magic
from kubemigrate.common.kube import Manifest
from kubemigrate.common.utils import cleanup_for_kubernetes
from kubemigrate.config import MigrateConfig
from typing import Any

import json
import yaml


def pod_name(node: LocalNode) -> str:
    return f"{cleanup_for_kubernetes(node.cluster)}-{node.datacenter}-{node.rack}-sts-{node.ordinal}"


def all_pods_service_name(node: LocalNode) -> str:
    return f"{cleanup_for_kubernetes(node.cluster)}-{node.datacenter}-all-pods-service"


def get_model_values(node: LocalNode) -> dict[str, Any]:
    """Config builder model for the node; the same cass-operator computes for its pods"""
    seeds = [seed_service_name(node.cluster), additional_seed_service_name(node.cluster, node.datacenter)]
    return {
        "cluster-info": {"name": node.cluster, "seeds": ",".join(seeds)},
        "datacenter-info": {
            "name": node.datacenter,
            "graph-enabled": 0,
            "solr-enabled": 0,
            "spark-enabled": 0,
        },
    }


def config_file_data(node: LocalNode, bundle_data: Mapping[str, str]) -> str:
    model = get_model_values(node)
    for key, value in bundle_data.items():
        model[key] = yaml.safe_load(value)
    return json.dumps(model)


def pod_labels(node: LocalNode) -> dict[str, str]:
    return {
        magic.STS_POD_NAME_LABEL: pod_name(node),
        # Every migrated node acts as a seed until the operator takes over
        magic.SEED_NODE_LABEL: "true",
        magic.RACK_LABEL: node.rack,
        magic.CLUSTER_LABEL: cleanup_for_kubernetes(node.cluster),
        magic.DATACENTER_LABEL: node.datacenter,
    }


def pod_affinity(kube_node: str) -> Manifest:
    return {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [
                    {"matchExpressions": [{"key": magic.HOSTNAME_LABEL, "operator": "In", "values": [kube_node]}]}
                ]
            }
        },
        "podAntiAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": [
                {
                    "labelSelector": {
                        "matchExpressions": [
                            {"key": label, "operator": "Exists"}
                            for label in [magic.CLUSTER_LABEL, magic.DATACENTER_LABEL, magic.RACK_LABEL]
                        ]
                    },
                    "topologyKey": magic.HOSTNAME_LABEL,
                }
            ]
        },
    }


def _http_check(port: int, path: str, initial_delay: int, period: int) -> Manifest:
    return {
        "httpGet": {"port": port, "path": path},
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
    }


def _field_ref(field_path: str) -> Manifest:
    return {"fieldRef": {"fieldPath": field_path}}


def build_init_containers(node: LocalNode, bundle_data: Mapping[str, str], config: MigrateConfig) -> list[Manifest]:
    env = [
        {"name": "POD_IP", "valueFrom": _field_ref("status.podIP")},
        {"name": "HOST_IP", "valueFrom": _field_ref("status.hostIP")},
        {"name": "USE_HOST_IP_FOR_BROADCAST", "value": "true"},
        {"name": "RACK_NAME", "value": node.rack},
        {"name": "PRODUCT_VERSION", "value": node.server_version},
        {"name": "PRODUCT_NAME", "value": node.server_type},
        {"name": magic.CONFIG_FILE_DATA_ENV, "value": config_file_data(node, bundle_data)},
    ]
    return [
        {
            "name": magic.SERVER_CONFIG_CONTAINER_NAME,
            "image": config.images.config_builder,
            "env": env,
            "volumeMounts": [{"name": magic.SERVER_CONFIG_VOLUME, "mountPath": magic.CONFIG_PATH}],
        }
    ]


def build_containers(node: LocalNode, volumes: Sequence[BoundVolume], config: MigrateConfig) -> list[Manifest]:
    logs_mount = {"name": magic.SERVER_LOGS_VOLUME, "mountPath": magic.CASSANDRA_LOG_PATH}
    volume_mounts = [{"name": magic.SERVER_CONFIG_VOLUME, "mountPath": magic.CONFIG_PATH}, logs_mount]
    # The migrated configuration refers to the host paths, so the data is mounted at the same place
    volume_mounts.extend({"name": volume.mount_name, "mountPath": volume.path} for volume in volumes)
    mgmt_port = config.management_api.port
    cassandra = {
        "name": magic.CASSANDRA_CONTAINER_NAME,
        "image": config.images.server_image(node.server_type, node.server_version),
        "livenessProbe": _http_check(mgmt_port, magic.LIVENESS_PATH, 15, 15),
        "readinessProbe": _http_check(mgmt_port, magic.READINESS_PATH, 20, 10),
        "env": [
            {"name": "DS_LICENSE", "value": "accept"},
            {"name": "DSE_AUTO_CONF_OFF", "value": "all"},
            {"name": "USE_MGMT_API", "value": "true"},
            {"name": "MGMT_API_EXPLICIT_START", "value": "true"},
            {"name": "DSE_MGMT_EXPLICIT_START", "value": "true"},
        ],
        "ports": [{"name": name, "containerPort": port} for name, port in magic.CONTAINER_PORTS],
        "volumeMounts": volume_mounts,
    }
    system_logger = {
        "name": magic.SYSTEM_LOGGER_CONTAINER_NAME,
        "image": config.images.system_logger,
        "volumeMounts": [logs_mount],
    }
    return [cassandra, system_logger]


def build_volumes(volumes: Sequence[BoundVolume]) -> list[Manifest]:
    pod_volumes: list[Manifest] = [
        {"name": volume.mount_name, "persistentVolumeClaim": {"claimName": volume.claim_name}} for volume in volumes
    ]
    pod_volumes.append({"name": magic.SERVER_CONFIG_VOLUME, "emptyDir": {}})
    pod_volumes.append({"name": magic.SERVER_LOGS_VOLUME, "emptyDir": {}})
    return pod_volumes


def build_pod(
    node: LocalNode,
    *,
    kube_node: str,
    fs_group: int,
    volumes: Sequence[BoundVolume],
    bundle_data: Mapping[str, str],
    config: MigrateConfig,
) -> Manifest:
    name = pod_name(node)
    security = config.security
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "labels": pod_labels(node)},
        "spec": {
            "hostNetwork": True,
            "affinity": pod_affinity(kube_node),
            "containers": build_containers(node, volumes, config),
            "initContainers": build_init_containers(node, bundle_data, config),
            "dnsPolicy": "ClusterFirstWithHostNet",
            "enableServiceLinks": True,
            "hostname": name,
            "subdomain": all_pods_service_name(node),
            "nodeName": kube_node,
            "securityContext": {
                "runAsUser": security.run_as_user,
                "runAsGroup": security.run_as_group,
                "fsGroup": fs_group if security.fs_group is None else security.fs_group,
            },
            "terminationGracePeriodSeconds": magic.TERMINATION_GRACE_PERIOD_SECONDS,
            "tolerations": [],
            "volumes": build_volumes(volumes),
        },
    }


def container_status(pod: Manifest, container_name: str = magic.CASSANDRA_CONTAINER_NAME) -> Manifest | None:
    for status in (pod.get("status") or {}).get("containerStatuses") or []:
        if status.get("name") == container_name:
            return status
    return None
