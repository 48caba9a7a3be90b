"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from kubemigrate.common.kube import Kind
from kubemigrate.config import MigrateConfig
from pathlib import Path
from tests.unit.fakes import FakeNodetool, kube_node, NODE_ADDRESSES, RunningKubeClient, write_node_configuration

import freezegun
import pytest

# kubernetes.client lazily imports pydantic models from module __getattr__; keep freezegun's
# module scan from triggering those imports while datetime is patched
freezegun.configure(extend_ignore_list=["kubernetes"])


@pytest.fixture(name="kube")
def fixture_kube() -> RunningKubeClient:
    kube = RunningKubeClient()
    for i, address in enumerate(NODE_ADDRESSES, 1):
        kube.add(Kind.node, kube_node(f"worker-{i}", address))
    return kube


@pytest.fixture(name="nodetool")
def fixture_nodetool() -> FakeNodetool:
    return FakeNodetool()


@pytest.fixture(name="config")
def fixture_config(tmp_path: Path) -> MigrateConfig:
    return write_node_configuration(tmp_path / "node1")
