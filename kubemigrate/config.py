"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

kubemigrate configuration. Everything has a default, so the
configuration file is optional; it is looked up from --config or the
KUBEMIGRATE_CONFIG environment variable.

"""
from kubemigrate.common import magic
from kubemigrate.common.magic import ServerType
from pathlib import Path

import logging
import msgspec
import msgspec.yaml
import os

logger = logging.getLogger(__name__)


class StorageConfig(msgspec.Struct, kw_only=True, frozen=True):
    # Must match what the CassandraDatacenter will later ask for
    storage_class_name: str = "local-path"
    volume_size: str = "5Gi"
    provisioner: str = "rancher.io/local-path"

    # Seconds to wait after creating the volumes; binding is not polled
    settle_delay: float = 10.0


class ImagesConfig(msgspec.Struct, kw_only=True, frozen=True):
    # "{version}" is replaced with the server version
    cassandra: str = "k8ssandra/cass-management-api:{version}"
    dse: str = "datastax/dse-mgmtapi-6_8:{version}"
    config_builder: str = "datastax/cass-config-builder:1.0-ubi7"
    system_logger: str = "k8ssandra/system-logger:v1.19.0"

    def server_image(self, server_type: str, version: str) -> str:
        template = self.dse if server_type == ServerType.dse else self.cassandra
        return template.format(version=version)


class SecurityConfig(msgspec.Struct, kw_only=True, frozen=True):
    run_as_user: int = 999
    run_as_group: int = 999
    # By default the group owning the data directories
    fs_group: int | None = None


class WaitConfig(msgspec.Struct, kw_only=True, frozen=True):
    poll_interval: float = 5.0
    pod_start_timeout: float = 600.0
    datacenter_ready_timeout: float = 1800.0
    # How long the cassandra container must have been running before
    # the management API is assumed to answer
    mgmt_api_grace: float = 10.0
    start_delay: float = 5.0


class ManagementApiConfig(msgspec.Struct, kw_only=True, frozen=True):
    port: int = magic.MGMT_API_PORT
    timeout: float = 10.0


class MigrateConfig(msgspec.Struct, kw_only=True, frozen=True):
    namespace: str = magic.DEFAULT_NAMESPACE
    kubeconfig: str | None = None
    context: str | None = None

    # Arguments passed as-is to subprocess.run; by default
    # <cassandra_home>/bin/nodetool, or nodetool from PATH
    nodetool_command: list[str] | None = None

    # Installation root; configuration directories are detected from it
    cassandra_home: str | None = None
    cass_config_dir: str | None = None
    dse_config_dir: str | None = None

    storage: StorageConfig = msgspec.field(default_factory=StorageConfig)
    images: ImagesConfig = msgspec.field(default_factory=ImagesConfig)
    security: SecurityConfig = msgspec.field(default_factory=SecurityConfig)
    wait: WaitConfig = msgspec.field(default_factory=WaitConfig)
    management_api: ManagementApiConfig = msgspec.field(default_factory=ManagementApiConfig)

    log_level: str = "INFO"
    sentry_dsn: str = ""

    def get_nodetool_command(self) -> list[str]:
        if self.nodetool_command:
            return list(self.nodetool_command)
        if self.cassandra_home:
            return [os.path.join(self.cassandra_home, "bin", "nodetool")]
        return ["nodetool"]


def load_config(path: str | Path | None = None) -> MigrateConfig:
    if path is None:
        path = os.environ.get(magic.CONFIG_ENV)
    if not path:
        return MigrateConfig()
    logger.debug("Loading configuration from %s", path)
    content = Path(path).read_bytes()
    if not content.strip():
        return MigrateConfig()
    return msgspec.yaml.decode(content, type=MigrateConfig)
