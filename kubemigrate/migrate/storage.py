"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Local data directory checks and the volumes that hand those directories
over to Kubernetes as they are.

The volumes are bound manually (PV + pre-bound PVC) instead of being
dynamically provisioned, so that the pod gets the existing data.

"""
from .model import BoundVolume, LocalNode
from collections.abc import Iterator, Mapping, Sequence
from kubemigrate.common import magic
from kubemigrate.common.exceptions import StorageValidationException
from kubemigrate.common.kube import Manifest
from kubemigrate.common.utils import cleanup_for_kubernetes
from kubemigrate.config import StorageConfig

import logging
import os
import stat

logger = logging.getLogger(__name__)

GROUP_READ_WRITE = stat.S_IRGRP | stat.S_IWGRP


def _raise(ex: OSError) -> None:
    raise ex


def walk_entries(path: str) -> Iterator[str]:
    """Path itself and everything below it"""
    yield path
    for root, dirs, files in os.walk(path, onerror=_raise):
        for name in dirs + files:
            yield os.path.join(root, name)


def get_fs_group(path: str) -> int:
    """Group id of everything under path; all entries must share it"""
    try:
        entries = walk_entries(path)
        gid = os.stat(next(entries)).st_gid
        for entry in entries:
            if os.stat(entry).st_gid != gid:
                raise StorageValidationException(f"found multiple groups in {entry}")
    except OSError as ex:
        raise StorageValidationException(f"unable to read {path}: {ex}") from ex
    return gid


def check_data_directories(data_directories: Sequence[str]) -> None:
    if not data_directories:
        raise StorageValidationException("no data_file_directories found")
    missing = [path for path in data_directories if not os.path.isdir(path)]
    if missing:
        raise StorageValidationException(f"data directories do not exist: {', '.join(missing)}")


def existing_additional_directories(additional_directories: Mapping[str, str]) -> dict[str, str]:
    existing = {}
    for key, path in additional_directories.items():
        if os.path.exists(path):
            existing[key] = path
        else:
            logger.warning("%s %s does not exist, not migrating it", key, path)
    return existing


def validate_mount_targets(data_directories: Sequence[str], additional_directories: Mapping[str, str]) -> int:
    """Return the group id shared by all the directories.

    Additional directories which do not exist are ignored.
    """
    check_data_directories(data_directories)
    first, *others = [*data_directories, *existing_additional_directories(additional_directories).values()]
    target_gid = get_fs_group(first)
    for path in others:
        gid = get_fs_group(path)
        if gid != target_gid:
            raise StorageValidationException(f"found multiple group ids in target directories ({target_gid}, {gid})")
    return target_gid


def fix_directory_rights(path: str) -> int:
    """Add group read and write to everything under path that lacks them.

    Returns the number of changed entries.
    """
    changed = 0
    try:
        for entry in walk_entries(path):
            mode = stat.S_IMODE(os.stat(entry).st_mode)
            if mode & GROUP_READ_WRITE != GROUP_READ_WRITE:
                os.chmod(entry, mode | GROUP_READ_WRITE)
                changed += 1
    except OSError as ex:
        raise StorageValidationException(f"unable to fix rights of {path}: {ex}") from ex
    if changed:
        logger.info("Added group read/write rights to %d entries in %s", changed, path)
    return changed


def data_mount_name(index: int) -> str:
    return magic.SERVER_DATA_MOUNT if index == 0 else f"{magic.SERVER_DATA_MOUNT}-{index}"


def additional_mount_name(key: str) -> str:
    # commitlog_directory -> commitlog-directory; underscores are not valid in object names
    return key.replace("_", "-")


def claim_name(mount_name: str, node: LocalNode) -> str:
    # Same naming as the StatefulSet volume claim templates of cass-operator
    return f"{mount_name}-{cleanup_for_kubernetes(node.cluster)}-{node.datacenter}-{node.rack}-sts-{node.ordinal}"


def volume_name(mount_name: str, node: LocalNode) -> str:
    return f"pvc-{claim_name(mount_name, node)}"


def plan_volumes(
    node: LocalNode, data_directories: Sequence[str], additional_directories: Mapping[str, str]
) -> list[BoundVolume]:
    mounts = [(data_mount_name(i), path) for i, path in enumerate(data_directories)]
    mounts.extend(
        (additional_mount_name(key), path) for key, path in existing_additional_directories(additional_directories).items()
    )
    return [
        BoundVolume(
            mount_name=mount_name,
            claim_name=claim_name(mount_name, node),
            volume_name=volume_name(mount_name, node),
            path=path,
        )
        for mount_name, path in mounts
    ]


def _hostname_node_selector(kube_node: str) -> Manifest:
    return {
        "nodeSelectorTerms": [
            {"matchExpressions": [{"key": magic.HOSTNAME_LABEL, "operator": "In", "values": [kube_node]}]}
        ]
    }


def build_persistent_volume(volume: BoundVolume, *, kube_node: str, storage: StorageConfig) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {
            "name": volume.volume_name,
            "annotations": {"pv.kubernetes.io/provisioned-by": storage.provisioner},
        },
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "capacity": {"storage": storage.volume_size},
            "storageClassName": storage.storage_class_name,
            "hostPath": {"type": "Directory", "path": volume.path},
            "persistentVolumeReclaimPolicy": "Retain",
            "volumeMode": "Filesystem",
            "nodeAffinity": {"required": _hostname_node_selector(kube_node)},
        },
    }


def build_persistent_volume_claim(volume: BoundVolume, *, kube_node: str, storage: StorageConfig) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": volume.claim_name,
            "annotations": {
                "volume.beta.kubernetes.io/storage-provisioner": storage.provisioner,
                "volume.kubernetes.io/selected-node": kube_node,
            },
        },
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": storage.volume_size}},
            "storageClassName": storage.storage_class_name,
            "volumeMode": "Filesystem",
            "volumeName": volume.volume_name,
        },
    }
