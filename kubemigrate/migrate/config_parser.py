"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Parsing of the on-disk Cassandra/DSE configuration into a bundle of
documents that can be stored in Kubernetes and fed to the config
builder of the migrated pods.

The documents are kept untyped (whatever yaml.safe_load produces), only
the handful of keys the migration itself needs have accessors.

"""
from collections.abc import Callable, Iterable, Mapping, MutableMapping, Sequence
from kubemigrate.common import magic
from kubemigrate.common.exceptions import AlreadyExistsException
from kubemigrate.common.kube import Kind, KubeClient, Manifest
from kubemigrate.common.utils import cleanup_for_kubernetes
from pathlib import Path
from typing import Any, Protocol

import dataclasses
import ipaddress
import logging
import os
import re
import yaml

logger = logging.getLogger(__name__)

JVM_SERVER_OPTIONS_RE = re.compile(r"^jvm.*-server\.options$")

PACKAGE_CASS_CONFIG_DIR = "/etc/dse/cassandra"
PACKAGE_DSE_CONFIG_DIR = "/etc/dse"
INSTALLER_DEFAULT_HOME = "/usr/share/dse"
HOME_ENVIRONMENT_VARIABLES = ("DSE_HOME", "CASSANDRA_HOME")

Document = dict[str, Any]


@dataclasses.dataclass(frozen=True)
class ConfigDirectories:
    cassandra: Path
    dse: Path

    @classmethod
    def from_home(cls, home: str | Path) -> "ConfigDirectories":
        root = Path(home) / "resources"
        return cls(cassandra=root / "cassandra" / "conf", dse=root / "dse" / "conf")

    def is_complete(self) -> bool:
        return (self.cassandra / magic.CASSANDRA_YAML_FILENAME).is_file() and (self.dse / magic.DSE_YAML_FILENAME).is_file()


def candidate_directories(
    *,
    cass_config_dir: str | None = None,
    dse_config_dir: str | None = None,
    cassandra_home: str | None = None,
    environ: Mapping[str, str] = os.environ,
) -> list[ConfigDirectories]:
    """Configuration directory candidates, most preferred first.

    Explicit overrides are never mixed with detected locations.
    """
    explicit = cass_config_dir or dse_config_dir
    if explicit:
        return [ConfigDirectories(cassandra=Path(cass_config_dir or explicit), dse=Path(dse_config_dir or explicit))]
    candidates = []
    homes = [cassandra_home] if cassandra_home else [environ.get(name) for name in HOME_ENVIRONMENT_VARIABLES]
    for home in homes:
        if home:
            candidates.append(ConfigDirectories.from_home(home))
    candidates.append(ConfigDirectories(cassandra=Path(PACKAGE_CASS_CONFIG_DIR), dse=Path(PACKAGE_DSE_CONFIG_DIR)))
    candidates.append(ConfigDirectories.from_home(INSTALLER_DEFAULT_HOME))
    return candidates


def detect_config_directories(candidates: Sequence[ConfigDirectories]) -> ConfigDirectories | None:
    for candidate in candidates:
        if candidate.is_complete():
            logger.info("Using configuration from %s and %s", candidate.cassandra, candidate.dse)
            return candidate
        logger.debug("No complete configuration in %s / %s", candidate.cassandra, candidate.dse)
    return None


class JvmOptionMatcher(Protocol):
    def parse(self, line: str) -> tuple[str, str, str]:
        """Return (key, value, default value) for the option; key is empty for unknown options"""


@dataclasses.dataclass(frozen=True)
class JvmOptionDefinition:
    prefix: str
    key: str
    default: str = ""


DEFAULT_JVM_OPTION_DEFINITIONS = (
    JvmOptionDefinition("-Xms", "initial_heap_size"),
    JvmOptionDefinition("-Xmx", "max_heap_size"),
    JvmOptionDefinition("-Dcassandra.available_processors=", "cassandra_available_processors"),
    JvmOptionDefinition("-Dcassandra.ring_delay_ms=", "cassandra_ring_delay_ms"),
    JvmOptionDefinition("-Dcassandra.join_ring=", "cassandra_join_ring", "true"),
    JvmOptionDefinition("-Dcassandra.load_ring_state=", "cassandra_load_ring_state", "true"),
    JvmOptionDefinition("-Dcassandra.write_survey=", "cassandra_write_survey", "false"),
    JvmOptionDefinition("-Dcassandra.consistent.rangemovement=", "cassandra_consistent_rangemovement", "true"),
    JvmOptionDefinition("-Dcassandra.replace_address=", "cassandra_replace_address"),
    JvmOptionDefinition("-Dcassandra.replace_address_first_boot=", "cassandra_replace_address_first_boot"),
)


class DefaultJvmOptionMatcher:
    """Table based matcher covering heap sizing and common system properties"""

    def __init__(self, filename: str, definitions: Sequence[JvmOptionDefinition] = DEFAULT_JVM_OPTION_DEFINITIONS) -> None:
        self.filename = filename
        self.definitions = definitions

    def parse(self, line: str) -> tuple[str, str, str]:
        for definition in self.definitions:
            if line.startswith(definition.prefix):
                return definition.key, line[len(definition.prefix) :], definition.default
        return "", "", ""


def parse_jvm_options(lines: Iterable[str], matcher: JvmOptionMatcher) -> Document:
    parsed: Document = {}
    additional_jvm_options = []
    for line in lines:
        line = line.strip()
        if line.startswith("#") or not line.startswith(("-X", "-D")):
            continue
        key, value, default = matcher.parse(line)
        if not key:
            additional_jvm_options.append(line)
        elif value != default:
            parsed[key] = value
    if additional_jvm_options:
        parsed[magic.ADDITIONAL_JVM_OPTIONS_KEY] = additional_jvm_options
    return parsed


def document_key(filename: str) -> str:
    # Config builder naming: cassandra.yaml -> cassandra-yaml
    return filename.replace(".", "-")


def _seed_host(seed: str) -> str:
    seed = seed.strip()
    if seed.startswith("["):
        return seed[1:].partition("]")[0]
    if seed.count(":") == 1:
        return seed.partition(":")[0]
    return seed


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def extract_seeds(cassandra_yaml: Mapping[str, Any]) -> list[str]:
    """Seed addresses from seed_provider, without ports and loopback addresses"""
    seeds = set()
    for provider in cassandra_yaml.get("seed_provider") or []:
        if not isinstance(provider, Mapping):
            continue
        for parameters in provider.get("parameters") or []:
            if not isinstance(parameters, Mapping) or "seeds" not in parameters:
                continue
            seed_list = parameters["seeds"]
            if not isinstance(seed_list, str):
                raise TypeError(f"seeds should be a comma-delimited string, got {type(seed_list).__name__}")
            for seed in seed_list.split(","):
                host = _seed_host(seed)
                if host and not _is_loopback(host):
                    seeds.add(host)
    return sorted(seeds)


def strip_host_settings(cassandra_yaml: MutableMapping[str, Any]) -> None:
    for key in magic.HOST_SPECIFIC_KEYS:
        cassandra_yaml.pop(key, None)


def parse_data_paths(cassandra_yaml: Mapping[str, Any]) -> tuple[list[str], dict[str, str]]:
    """Return (data_file_directories, {"<name>_directory": path}) of the configuration"""
    data_directories: list[str] = []
    additional_directories: dict[str, str] = {}
    for key, value in cassandra_yaml.items():
        if value is None:
            continue
        if key.endswith("_directory"):
            if not isinstance(value, str):
                raise TypeError(f"{key} should be a string, got {type(value).__name__}")
            additional_directories[key] = value
        elif key.endswith("_directories"):
            if not isinstance(value, list):
                raise TypeError(f"{key} should be a list, got {type(value).__name__}")
            data_directories.extend(str(directory) for directory in value)
    return data_directories, additional_directories


class ConfigurationBundle:
    """Parsed configuration documents keyed by config builder name (e.g. cassandra-yaml)"""

    def __init__(self, documents: Mapping[str, Any] | None = None) -> None:
        self.documents: dict[str, Any] = dict(documents or {})

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ConfigurationBundle) and self.documents == other.documents

    def __repr__(self) -> str:
        return f"ConfigurationBundle({sorted(self.documents)!r})"

    @property
    def cassandra_yaml(self) -> Document:
        return self.documents.get(magic.CASSANDRA_YAML_KEY) or {}

    def data_file_directories(self) -> list[str]:
        return parse_data_paths(self.cassandra_yaml)[0]

    def additional_directories(self) -> dict[str, str]:
        return parse_data_paths(self.cassandra_yaml)[1]

    def to_config_map_data(self) -> dict[str, str]:
        return {key: yaml.safe_dump(document, default_flow_style=False) for key, document in self.documents.items()}

    @classmethod
    def from_config_map_data(cls, data: Mapping[str, str] | None) -> "ConfigurationBundle":
        return cls({key: yaml.safe_load(value) for key, value in (data or {}).items()})


@dataclasses.dataclass(frozen=True)
class ParsedConfiguration:
    bundle: ConfigurationBundle
    seeds: Sequence[str] = ()
    # Host specific values which are removed from the bundle
    listen_address: str | None = None
    listen_interface: str | None = None


class ConfigParser:
    def __init__(
        self,
        directories: ConfigDirectories | None,
        *,
        matcher_factory: Callable[[str], JvmOptionMatcher] = DefaultJvmOptionMatcher,
    ) -> None:
        self.directories = directories
        self.matcher_factory = matcher_factory

    def parse(self) -> ParsedConfiguration:
        if self.directories is None:
            logger.warning("No configuration directories found, configuration is left empty")
            return ParsedConfiguration(bundle=ConfigurationBundle())
        documents: Document = {}
        for directory, filename in [
            (self.directories.cassandra, magic.CASSANDRA_YAML_FILENAME),
            (self.directories.dse, magic.DSE_YAML_FILENAME),
        ]:
            document = self._parse_yaml(directory / filename)
            if document is not None:
                documents[document_key(filename)] = document
        documents.update(self._parse_jvm_options(self.directories.cassandra))

        cassandra_yaml = documents.get(magic.CASSANDRA_YAML_KEY, {})
        seeds = extract_seeds(cassandra_yaml)
        listen_address = cassandra_yaml.get("listen_address")
        listen_interface = cassandra_yaml.get("listen_interface")
        strip_host_settings(cassandra_yaml)
        return ParsedConfiguration(
            bundle=ConfigurationBundle(documents),
            seeds=seeds,
            listen_address=None if listen_address is None else str(listen_address),
            listen_interface=None if listen_interface is None else str(listen_interface),
        )

    def _parse_yaml(self, path: Path) -> Document | None:
        if not path.exists():
            logger.debug("%s does not exist", path)
            return None
        with path.open() as f:
            document = yaml.safe_load(f)
        if document is None:
            return {}
        if not isinstance(document, dict):
            raise TypeError(f"{path} does not contain a mapping")
        return document

    def _parse_jvm_options(self, directory: Path) -> Document:
        documents: Document = {}
        if not directory.is_dir():
            return documents
        for path in sorted(directory.iterdir()):
            if not path.is_file() or not JVM_SERVER_OPTIONS_RE.match(path.name):
                continue
            with path.open() as f:
                documents[document_key(path.name)] = parse_jvm_options(f, self.matcher_factory(path.name))
            logger.debug("Parsed JVM options from %s", path)
        return documents


def bundle_config_map_name(datacenter: str) -> str:
    return f"{cleanup_for_kubernetes(datacenter)}-cass-config"


def store_bundle(kube: KubeClient, datacenter: str, bundle: ConfigurationBundle) -> Manifest:
    """Merge the bundle into the datacenter's configuration ConfigMap, creating it if needed.

    Keys not present in the bundle are kept as they are.
    """
    name = bundle_config_map_name(datacenter)
    try:
        kube.create(Kind.config_map, {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": name}, "data": {}})
    except AlreadyExistsException:
        logger.debug("ConfigMap %s exists already, merging into it", name)
    config_map = kube.get(Kind.config_map, name)
    config_map["data"] = {**(config_map.get("data") or {}), **bundle.to_config_map_data()}
    return kube.update(Kind.config_map, config_map)


def load_bundle(kube: KubeClient, datacenter: str) -> ConfigurationBundle:
    config_map = kube.get(Kind.config_map, bundle_config_map_name(datacenter))
    return ConfigurationBundle.from_config_map_data(config_map.get("data"))
