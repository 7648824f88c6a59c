import socket
from dataclasses import dataclass, field
from typing import List, Optional

import psutil

from common.config import (
    EXTRA_TARGETS,
    LAN_PREFIXES,
    LIMITED_BROADCAST,
    LOOPBACK,
    VIRTUAL_ADAPTER_PREFIXES,
)
from common.log import log


@dataclass
class NetworkProfile:
    addresses: List[str] = field(default_factory=list)
    broadcasts: List[str] = field(default_factory=list)
    primary: str = LOOPBACK

    def probe_targets(self) -> List[str]:
        """Broadcast addresses first, then every known LAN address, no repeats."""
        targets = []
        for ip in self.broadcasts + self.addresses:
            if ip not in targets:
                targets.append(ip)
        return targets


def _octets(dotted: str) -> Optional[List[int]]:
    if not isinstance(dotted, str):
        return None
    parts = dotted.split(".")
    if len(parts) != 4:
        return None
    try:
        values = [int(p) for p in parts]
    except ValueError:
        return None
    if any(v < 0 or v > 255 for v in values):
        return None
    return values


def compute_broadcast(address: str, netmask: str) -> Optional[str]:
    """(address AND netmask) OR (NOT netmask), octet by octet. None if either side is malformed."""
    a = _octets(address)
    m = _octets(netmask)
    if a is None or m is None:
        return None
    return ".".join(str((a[i] & m[i]) | (~m[i] & 0xFF)) for i in range(4))


def _usable(ip: str, excluded_prefixes, lan_prefixes) -> bool:
    if ip.startswith("127."):
        return False
    if any(ip.startswith(p) for p in excluded_prefixes):
        return False
    return any(ip.startswith(p) for p in lan_prefixes)


def scan(interfaces=None, excluded_prefixes=VIRTUAL_ADAPTER_PREFIXES, lan_prefixes=LAN_PREFIXES,
         extra_targets=EXTRA_TARGETS) -> NetworkProfile:
    """
    Build the NetworkProfile for this host.

    interfaces defaults to psutil.net_if_addrs(): nic name -> list of
    entries with .family / .address / .netmask.
    """
    if interfaces is None:
        interfaces = psutil.net_if_addrs()

    profile = NetworkProfile()

    for nic, addrs in interfaces.items():
        for a in addrs:
            if a.family != socket.AF_INET:
                continue

            ip = a.address
            if not _usable(ip, excluded_prefixes, lan_prefixes):
                log("scan", nic, "SCAN_SKIP", "DEBUG", ip=ip)
                continue

            bcast = compute_broadcast(ip, a.netmask)
            if bcast is None:
                log("scan", nic, "SCAN_BAD_MASK", "WARN", ip=ip, netmask=a.netmask)
                continue

            if ip not in profile.addresses:
                profile.addresses.append(ip)
            if bcast not in profile.broadcasts:
                profile.broadcasts.append(bcast)

            log("scan", nic, "SCAN_IFACE", ip=ip, netmask=a.netmask, broadcast=bcast)

    for target in extra_targets:
        if target not in profile.broadcasts:
            profile.broadcasts.append(target)

    if LIMITED_BROADCAST not in profile.broadcasts:
        profile.broadcasts.append(LIMITED_BROADCAST)

    if profile.addresses:
        profile.primary = profile.addresses[0]
    else:
        log("scan", "-", "SCAN_NO_LAN", "WARN", fallback=LOOPBACK)

    return profile
