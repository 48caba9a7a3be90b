"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""

from enum import Enum

DEFAULT_NAMESPACE = "migrate"
CONFIG_ENV = "KUBEMIGRATE_CONFIG"


class StrEnum(str, Enum):
    def __str__(self) -> str:
        return str(self.value)


class ServerType(StrEnum):
    cassandra = "cassandra"
    dse = "dse"


# Leader election; these mirror the client-go defaults the reconciler side uses
LEADER_ELECTION_ID = "migrator.k8ssandra.io"
LEASE_DURATION = 10.0
RENEW_DEADLINE = 5.0
RETRY_PERIOD = 2.0

# Labels understood by cass-operator
CLUSTER_LABEL = "cassandra.datastax.com/cluster"
DATACENTER_LABEL = "cassandra.datastax.com/datacenter"
RACK_LABEL = "cassandra.datastax.com/rack"
SEED_NODE_LABEL = "cassandra.datastax.com/seed-node"
NODE_STATE_LABEL = "cassandra.datastax.com/node-state"
STS_POD_NAME_LABEL = "statefulset.kubernetes.io/pod-name"
HOSTNAME_LABEL = "kubernetes.io/hostname"

NODE_STATE_STARTED = "Started"

# ConfigMap contents
CLUSTER_INFO_KEY = "clusterInfo"
CASSANDRA_YAML_KEY = "cassandra-yaml"
ADDITIONAL_JVM_OPTIONS_KEY = "additional-jvm-options"
CASSANDRA_YAML_FILENAME = "cassandra.yaml"
DSE_YAML_FILENAME = "dse.yaml"

# Keys which only make sense on the original host
HOST_SPECIFIC_KEYS = ("seed_provider", "listen_address", "listen_interface")

# Pod layout
CASSANDRA_CONTAINER_NAME = "cassandra"
SERVER_CONFIG_CONTAINER_NAME = "server-config-init"
SYSTEM_LOGGER_CONTAINER_NAME = "server-system-logger"
SERVER_DATA_MOUNT = "server-data"
SERVER_CONFIG_VOLUME = "server-config"
SERVER_LOGS_VOLUME = "server-logs"
CASSANDRA_LOG_PATH = "/var/log/cassandra"
CONFIG_PATH = "/config"
CONFIG_FILE_DATA_ENV = "CONFIG_FILE_DATA"

# Note: port names cannot be longer than 15 characters
CONTAINER_PORTS = (
    ("native", 9042),
    ("tls-native", 9142),
    ("internode", 7000),
    ("tls-internode", 7001),
    ("jmx", 7199),
    ("mgmt-api-http", 8080),
    ("prometheus", 9103),
    ("thrift", 9160),
)
MGMT_API_PORT = 8080
LIVENESS_PATH = "/api/v0/probes/liveness"
READINESS_PATH = "/api/v0/probes/readiness"
LIFECYCLE_START_PATH = "/api/v0/lifecycle/start"
TERMINATION_GRACE_PERIOD_SECONDS = 120

# CassandraDatacenter custom resource
CASSDC_GROUP = "cassandra.datastax.com"
CASSDC_VERSION = "v1beta1"
CASSDC_PLURAL = "cassandradatacenters"
CASSDC_KIND = "CassandraDatacenter"
