"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
import fcntl
import logging
import socket
import struct

logger = logging.getLogger(__name__)

# From <linux/sockios.h>
SIOCGIFADDR = 0x8915


def interface_address(name: str) -> str | None:
    """Return the IPv4 address of a network interface, or None if it has none."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            packed = fcntl.ioctl(sock.fileno(), SIOCGIFADDR, struct.pack("256s", name[:15].encode()))
        except OSError as ex:
            logger.warning("Unable to resolve address of interface %r: %r", name, ex)
            return None
    return socket.inet_ntoa(packed[20:24])
