"""SSRF guard: a hostname is public only if every address it resolves to is.

The literal hostname is never trusted. Both address families are resolved
independently, every answer is classified, and a single non-public answer
rejects the host. Resolution failure rejects too (fail-closed).

Known residual risk: the check runs once before navigation; a DNS answer
that changes between this check and the browser's own lookup (rebinding) is
not caught here.
"""

import asyncio
import ipaddress
import socket
from enum import Enum
from typing import List, Optional, Tuple, Union

from core.logging import get_logger

logger = get_logger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class AddressScope(str, Enum):
    """Routing scope of a single IP address."""
    PUBLIC = "public"
    UNSPECIFIED = "unspecified"
    LOOPBACK = "loopback"
    PRIVATE = "private"
    LINK_LOCAL = "link_local"
    UNIQUE_LOCAL = "unique_local"
    CARRIER_GRADE_NAT = "carrier_grade_nat"
    MULTICAST = "multicast"
    BROADCAST = "broadcast"
    RESERVED = "reserved"


def _networks(*cidrs: str):
    return tuple(ipaddress.ip_network(c) for c in cidrs)


# Evaluated in order; the first match wins. Anything left over that the
# stdlib does not consider globally routable is RESERVED.
_SCOPE_TABLE: Tuple[Tuple[AddressScope, tuple], ...] = (
    (AddressScope.UNSPECIFIED, _networks("0.0.0.0/8", "::/128")),
    (AddressScope.BROADCAST, _networks("255.255.255.255/32")),
    (AddressScope.LOOPBACK, _networks("127.0.0.0/8", "::1/128")),
    (AddressScope.PRIVATE, _networks("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")),
    (AddressScope.LINK_LOCAL, _networks("169.254.0.0/16", "fe80::/10")),
    (AddressScope.UNIQUE_LOCAL, _networks("fc00::/7")),
    (AddressScope.CARRIER_GRADE_NAT, _networks("100.64.0.0/10")),
    (AddressScope.MULTICAST, _networks("224.0.0.0/4", "ff00::/8")),
    (AddressScope.RESERVED, _networks(
        "192.0.0.0/24",       # IETF protocol assignments
        "192.0.2.0/24",       # TEST-NET-1
        "192.88.99.0/24",     # 6to4 relay anycast
        "198.18.0.0/15",      # benchmarking
        "198.51.100.0/24",    # TEST-NET-2
        "203.0.113.0/24",     # TEST-NET-3
        "240.0.0.0/4",
        "2001:db8::/32",      # documentation
        "64:ff9b:1::/48",     # local-use NAT64
        "100::/64",           # discard-only
        "::/8",               # IPv4-compatible and other IETF-reserved
    )),
)


_NAT64_WELL_KNOWN = ipaddress.ip_network("64:ff9b::/96")


def _unwrap(ip: IPAddress) -> IPAddress:
    """Classify IPv4-mapped, 6to4 and NAT64 IPv6 addresses by their IPv4 payload."""
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped
        if ip.sixtofour is not None:
            return ip.sixtofour
        if ip in _NAT64_WELL_KNOWN:
            return ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF)
    return ip


def classify_address(address: str) -> AddressScope:
    """Classify one textual IP address. Raises ValueError if it does not parse."""
    ip = _unwrap(ipaddress.ip_address(address.split("%", 1)[0]))  # drop IPv6 zone id
    for scope, networks in _SCOPE_TABLE:
        if any(ip.version == net.version and ip in net for net in networks):
            return scope
    if not ip.is_global:
        return AddressScope.RESERVED
    return AddressScope.PUBLIC


class DnsResolver:
    """Forward lookups through the event loop's getaddrinfo."""

    async def resolve(self, hostname: str, family: socket.AddressFamily) -> List[str]:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(hostname, None, family=family, type=socket.SOCK_STREAM)
        return _unique(info[4][0] for info in infos)

    async def lookup_all(self, hostname: str) -> List[str]:
        return await self.resolve(hostname, socket.AF_UNSPEC)


def _unique(addresses) -> List[str]:
    seen = []
    for addr in addresses:
        if addr not in seen:
            seen.append(addr)
    return seen


class SSRFGuard:
    """Decides whether a hostname may be fetched."""

    def __init__(self, resolver: Optional[DnsResolver] = None):
        self.resolver = resolver or DnsResolver()

    async def resolve_addresses(self, hostname: str) -> List[str]:
        """IPv4 and IPv6 answers, falling back to a generic lookup if both are empty."""
        addresses: List[str] = []
        for family in (socket.AF_INET, socket.AF_INET6):
            try:
                addresses.extend(await self.resolver.resolve(hostname, family))
            except (socket.gaierror, OSError) as e:
                logger.debug("DNS family lookup failed", hostname=hostname,
                             family=family.name, error=str(e))

        if not addresses:
            try:
                addresses = await self.resolver.lookup_all(hostname)
            except (socket.gaierror, OSError) as e:
                logger.debug("DNS lookup failed", hostname=hostname, error=str(e))
                return []
        return _unique(addresses)

    async def check_public(self, hostname: Optional[str]) -> bool:
        """True only if the host resolves and every address is public."""
        if not hostname:
            return False

        addresses = await self.resolve_addresses(hostname)
        if not addresses:
            logger.warning("SSRF check rejected unresolvable host", hostname=hostname)
            return False

        for address in addresses:
            try:
                scope = classify_address(address)
            except ValueError:
                logger.warning("SSRF check rejected unparsable address",
                               hostname=hostname, address=address)
                return False
            if scope is not AddressScope.PUBLIC:
                logger.warning("SSRF check rejected non-public address",
                               hostname=hostname, address=address, scope=scope.value)
                return False
        return True
