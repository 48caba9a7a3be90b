"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details

Running nodetool against the local node and parsing its (human
readable) output.

"""
from .exceptions import NodetoolException
from .magic import ServerType
from collections.abc import Sequence

import json
import logging
import msgspec
import re
import subprocess

logger = logging.getLogger(__name__)

HOST_ID_RE = re.compile(r"([0-9a-fA-F]+-){4}[0-9a-fA-F]+")
IPV4_RE = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+")
WHITESPACE_RE = re.compile(r"\s+")

STATUS_CODES = {
    "U": "up",
    "D": "down",
    "N": "normal",
    "L": "leaving",
    "J": "joining",
    "M": "moving",
    "S": "stopped",
}


class NodetoolInfo(msgspec.Struct, kw_only=True, frozen=True):
    host_id: str
    datacenter: str
    rack: str


class GossipDetails(msgspec.Struct, kw_only=True, frozen=True):
    datacenter: str
    rack: str
    server_type: ServerType
    server_version: str


class StatusEntry(msgspec.Struct, kw_only=True, frozen=True):
    status: str
    state: str
    address: str
    host_id: str
    rack: str
    # None when the output had no "Datacenter:" header before the row
    datacenter: str | None = None


def decode_status_code(code: str) -> str:
    return STATUS_CODES.get(code, code)


def parse_info(output: str) -> NodetoolInfo:
    fields: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields[key.strip()] = value.strip()
    try:
        return NodetoolInfo(host_id=fields["ID"], datacenter=fields["Data Center"], rack=fields["Rack"])
    except KeyError as ex:
        raise NodetoolException(f"nodetool info output is missing {ex}") from ex


def _gossip_blocks(output: str) -> list[dict[str, str]]:
    blocks: list[dict[str, str]] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        if not line.startswith(" "):
            blocks.append({})
            continue
        columns = line.strip().split(":", 2)
        if len(columns) == 3 and blocks:
            blocks[-1][columns[0]] = columns[2]
    return blocks


def parse_gossipinfo(output: str, host_id: str | None = None) -> GossipDetails:
    """Parse the local node's block of `nodetool gossipinfo`.

    The local node is the block whose HOST_ID is host_id; without a match
    it is the first block. Application state lines look like
    `  NAME:VERSION:VALUE`; the value itself may contain colons (the DSE
    padding field carries JSON).
    """
    blocks = _gossip_blocks(output)
    if not blocks:
        raise NodetoolException("no endpoints in nodetool gossipinfo output")
    fields = next((block for block in blocks if host_id and block.get("HOST_ID") == host_id), blocks[0])

    server_type, server_version = None, None
    if "X_11_PADDING" in fields:
        # Only DSE gossips the padding field
        try:
            padding = json.loads(fields["X_11_PADDING"])
        except json.JSONDecodeError as ex:
            raise NodetoolException(f"malformed X_11_PADDING in nodetool gossipinfo: {ex}") from ex
        if not isinstance(padding, dict):
            raise NodetoolException("malformed X_11_PADDING in nodetool gossipinfo: not an object")
        server_type, server_version = ServerType.dse, padding.get("dse_version")
    elif "RELEASE_VERSION" in fields:
        server_type, server_version = ServerType.cassandra, fields["RELEASE_VERSION"]
    if server_type is None or not server_version or "DC" not in fields or "RACK" not in fields:
        raise NodetoolException("unable to determine the local node details from nodetool gossipinfo")
    return GossipDetails(
        datacenter=fields["DC"],
        rack=fields["RACK"],
        server_type=server_type,
        server_version=server_version,
    )


def parse_describecluster(output: str) -> str:
    for line in output.splitlines():
        key, sep, value = line.strip().partition(":")
        if sep and key == "Name":
            return value.strip()
    raise NodetoolException("cluster name not found in nodetool describecluster output")


def parse_status(output: str) -> list[StatusEntry]:
    entries: list[StatusEntry] = []
    datacenter = None
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("Datacenter:"):
            datacenter = line.partition(":")[2].strip()
            continue
        if not HOST_ID_RE.search(line):
            continue
        comps = WHITESPACE_RE.split(line)
        code = comps[0]
        entries.append(
            StatusEntry(
                status=decode_status_code(code[0]),
                state=decode_status_code(code[1:2]),
                address=comps[1],
                host_id=comps[-2],
                rack=comps[-1],
                datacenter=datacenter,
            )
        )
    return entries


def parse_getseeds(output: str) -> list[str]:
    return sorted(IPV4_RE.findall(output))


class Nodetool:
    def __init__(self, command: Sequence[str]) -> None:
        self.command = list(command)

    def run(self, *args: str) -> str:
        cmd = self.command + list(args)
        logger.debug("Running %r", cmd)
        try:
            result = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as ex:
            if ex.returncode == 1:
                raise NodetoolException("unable to execute nodetool against localhost") from ex
            raise
        return result.stdout

    def info(self) -> NodetoolInfo:
        return parse_info(self.run("info"))

    def gossipinfo(self, host_id: str | None = None) -> GossipDetails:
        return parse_gossipinfo(self.run("gossipinfo"), host_id)

    def describecluster(self) -> str:
        return parse_describecluster(self.run("describecluster"))

    def status(self) -> list[StatusEntry]:
        return parse_status(self.run("status"))

    def getseeds(self) -> list[str]:
        return parse_getseeds(self.run("getseeds"))

    def drain(self) -> None:
        self.run("drain")

    def stopdaemon(self) -> None:
        self.run("stopdaemon")
