"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from kubemigrate.common.exceptions import (
    KubeNodeNotFoundException,
    NotPartOfInitException,
    StorageValidationException,
    VolumeAlreadyExistsException,
    WaitTimeoutException,
)
from kubemigrate.common.kube import Kind
from kubemigrate.common.mgmtapi import ManagementApiClient
from kubemigrate.config import MigrateConfig, WaitConfig
from kubemigrate.migrate import node
from kubemigrate.migrate.base import run_steps, StepsContext
from kubemigrate.migrate.cluster import get_init_steps
from kubemigrate.migrate.config_parser import ConfigurationBundle, ParsedConfiguration
from kubemigrate.migrate.node import get_node_steps, is_mgmt_api_running, ReadLocalConfigurationStep, ResolveKubeNodeStep
from pathlib import Path
from pytest_mock import MockerFixture
from tests.unit.fakes import FakeNodetool, FOREIGN_HOST_ID, RunningKubeClient, write_node_configuration
from unittest import mock

import datetime
import json
import msgspec
import os
import pytest
import shutil


def _migrate_node(kube: RunningKubeClient, config: MigrateConfig, nodetool: FakeNodetool) -> mock.Mock:
    mgmt_api = mock.Mock(spec=ManagementApiClient)
    run_steps(get_node_steps(config=config, nodetool=nodetool, mgmt_api=mgmt_api, sleep=mock.Mock()), kube)
    return mgmt_api


def test_migrate_node(kube: RunningKubeClient, nodetool: FakeNodetool, config: MigrateConfig) -> None:
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    mgmt_api = _migrate_node(kube, config, nodetool)

    assert nodetool.commands()[-2:] == ["drain", "stopdaemon"]
    mgmt_api.call_lifecycle_start.assert_called_once()

    assert config.cass_config_dir is not None
    data_directory = Path(config.cass_config_dir).parent.parent / "data" / "data0"
    pod = kube.get(Kind.pod, "testcluster-dc1-rack1-sts-0")
    assert pod["metadata"]["labels"]["cassandra.datastax.com/node-state"] == "Started"
    assert pod["spec"]["nodeName"] == "worker-1"
    assert pod["spec"]["securityContext"]["fsGroup"] == os.stat(data_directory).st_gid

    volume = kube.get(Kind.persistent_volume, "pvc-server-data-testcluster-dc1-rack1-sts-0")
    assert volume["spec"]["hostPath"]["path"] == str(data_directory)
    claim = kube.get(Kind.persistent_volume_claim, "server-data-testcluster-dc1-rack1-sts-0")
    assert claim["spec"]["volumeName"] == "pvc-server-data-testcluster-dc1-rack1-sts-0"
    assert kube.get_or_none(Kind.persistent_volume_claim, "commitlog-directory-testcluster-dc1-rack1-sts-0") is not None
    # hints_directory does not exist on disk
    assert kube.get_or_none(Kind.persistent_volume_claim, "hints-directory-testcluster-dc1-rack1-sts-0") is None
    assert os.stat(data_directory / "system" / "peers-1.db").st_mode & 0o060 == 0o060


def test_migrate_node_without_init(kube: RunningKubeClient, nodetool: FakeNodetool, config: MigrateConfig) -> None:
    with pytest.raises(NotPartOfInitException, match="has not been initialized"):
        _migrate_node(kube, config, nodetool)
    assert "drain" not in nodetool.commands()


def test_migrate_unknown_node(kube: RunningKubeClient, nodetool: FakeNodetool, config: MigrateConfig) -> None:
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    with pytest.raises(NotPartOfInitException, match="was not part of the init process"):
        _migrate_node(kube, config, FakeNodetool(host_id=FOREIGN_HOST_ID))


def test_existing_volumes_stop_before_drain(kube: RunningKubeClient, nodetool: FakeNodetool, config: MigrateConfig) -> None:
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    kube.create(Kind.persistent_volume, {"metadata": {"name": "pvc-server-data-testcluster-dc1-rack1-sts-0"}, "spec": {}})
    with pytest.raises(VolumeAlreadyExistsException, match="pvc-server-data-testcluster-dc1-rack1-sts-0"):
        _migrate_node(kube, config, nodetool)
    assert "drain" not in nodetool.commands()


def test_no_data_directories_stop_before_drain(kube: RunningKubeClient, nodetool: FakeNodetool, tmp_path: Path) -> None:
    config = write_node_configuration(tmp_path / "node", data_directory_count=0)
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    with pytest.raises(StorageValidationException):
        _migrate_node(kube, config, nodetool)
    assert "drain" not in nodetool.commands()


def test_missing_data_directory_stops_before_drain(kube: RunningKubeClient, nodetool: FakeNodetool, tmp_path: Path) -> None:
    config = write_node_configuration(tmp_path / "node", data_directory_count=2)
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    shutil.rmtree(tmp_path / "node" / "data" / "data0")
    with pytest.raises(StorageValidationException, match="data0"):
        _migrate_node(kube, config, nodetool)
    assert "drain" not in nodetool.commands()
    assert kube.list(Kind.persistent_volume) == []


def test_configured_directories_are_mounted_in_place(
    kube: RunningKubeClient, nodetool: FakeNodetool, tmp_path: Path
) -> None:
    config = write_node_configuration(tmp_path / "node", data_directory_count=2)
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    _migrate_node(kube, config, nodetool)

    pod = kube.get(Kind.pod, "testcluster-dc1-rack1-sts-0")
    mounts = {mount["mountPath"]: mount["name"] for mount in pod["spec"]["containers"][0]["volumeMounts"]}
    claims = {
        volume["name"]: volume["persistentVolumeClaim"]["claimName"]
        for volume in pod["spec"]["volumes"]
        if "persistentVolumeClaim" in volume
    }
    init_env = {env["name"]: env.get("value") for env in pod["spec"]["initContainers"][0]["env"]}
    cassandra_yaml = json.loads(init_env["CONFIG_FILE_DATA"])["cassandra-yaml"]
    configured = [*cassandra_yaml["data_file_directories"], cassandra_yaml["commitlog_directory"]]
    assert len(configured) == 3
    for path in configured:
        claim = kube.get(Kind.persistent_volume_claim, claims[mounts[path]])
        assert kube.get(Kind.persistent_volume, claim["spec"]["volumeName"])["spec"]["hostPath"]["path"] == path
    assert [mounts[path] for path in cassandra_yaml["data_file_directories"]] == ["server-data", "server-data-1"]


def _resolve(kube: RunningKubeClient, parsed: ParsedConfiguration, resolver=lambda name: None) -> str:
    context = StepsContext()
    context.set_result(ReadLocalConfigurationStep, parsed)
    return ResolveKubeNodeStep(address_resolver=resolver).run_step(kube, context)


def test_resolve_kube_node_by_listen_address(kube: RunningKubeClient) -> None:
    assert _resolve(kube, ParsedConfiguration(bundle=ConfigurationBundle(), listen_address="10.0.0.3")) == "worker-3"


def test_resolve_kube_node_by_interface(kube: RunningKubeClient) -> None:
    resolver = mock.Mock(return_value="10.0.0.2")
    parsed = ParsedConfiguration(bundle=ConfigurationBundle(), listen_address="0.0.0.0", listen_interface="eth1")
    assert _resolve(kube, parsed, resolver) == "worker-2"
    resolver.assert_called_once_with("eth1")


def test_resolve_kube_node_failures(kube: RunningKubeClient) -> None:
    with pytest.raises(KubeNodeNotFoundException, match="no usable listen address"):
        _resolve(kube, ParsedConfiguration(bundle=ConfigurationBundle()))
    with pytest.raises(KubeNodeNotFoundException, match="10.9.9.9"):
        _resolve(kube, ParsedConfiguration(bundle=ConfigurationBundle(), listen_address="10.9.9.9"))


def test_is_mgmt_api_running() -> None:
    now = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)

    def pod(state: dict) -> dict:
        return {"status": {"containerStatuses": [{"name": "cassandra", "state": state}]}}

    assert not is_mgmt_api_running({"status": {}}, grace=10, now=now)
    assert not is_mgmt_api_running(pod({"waiting": {"reason": "ContainerCreating"}}), grace=10, now=now)
    assert not is_mgmt_api_running(pod({"running": {"startedAt": "2024-01-01T11:59:55Z"}}), grace=10, now=now)
    assert is_mgmt_api_running(pod({"running": {"startedAt": "2024-01-01T11:59:45Z"}}), grace=10, now=now)


def test_start_pod_waits_for_readiness(
    mocker: MockerFixture, kube: RunningKubeClient, nodetool: FakeNodetool, config: MigrateConfig
) -> None:
    mocker.patch.object(node, "is_server_ready", return_value=False)
    run_steps(get_init_steps(config=config, nodetool=nodetool), kube)
    impatient = msgspec.structs.replace(config, wait=WaitConfig(poll_interval=0.01, pod_start_timeout=0.1, start_delay=0))
    with pytest.raises(WaitTimeoutException, match="testcluster-dc1-rack1-sts-0 is ready"):
        _migrate_node(kube, impatient, nodetool)
    assert "cassandra.datastax.com/node-state" not in kube.get(Kind.pod, "testcluster-dc1-rack1-sts-0")["metadata"]["labels"]
