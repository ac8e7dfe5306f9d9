"""Per-network IPv4 address allocation."""

from __future__ import annotations

import ipaddress
import logging
import threading
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)

_Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class IPAMError(Exception):
    """Raised when an address management operation cannot be carried out."""


def _parse_cidr(cidr: str) -> Tuple[ipaddress.IPv4Address, ipaddress.IPv4Network]:
    addr_text, sep, prefix = cidr.partition("/")
    invalid = IPAMError(f"invalid CIDR address: {cidr}")
    if not sep or not prefix or not (prefix.isascii() and prefix.isdigit()):
        raise invalid
    try:
        ip = ipaddress.ip_address(addr_text)
    except ValueError:
        raise invalid from None
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is None:
            raise invalid
        ip = ip.ipv4_mapped
    prefix_len = int(prefix)
    if prefix_len > 32:
        raise invalid
    return ip, ipaddress.IPv4Network((int(ip), prefix_len), strict=False)


def _parse_ip(text: str) -> Optional[_Address]:
    """Parse an address, folding IPv4-mapped and unspecified IPv6 forms into IPv4."""
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped
        if ip.is_unspecified:
            return ipaddress.IPv4Address(0)
    return ip


def _contains(network: ipaddress.IPv4Network, ip: Optional[_Address]) -> bool:
    return isinstance(ip, ipaddress.IPv4Address) and ip in network


@dataclass
class _Subnet:
    network: ipaddress.IPv4Network
    start: ipaddress.IPv4Address
    end: ipaddress.IPv4Address
    broadcast: ipaddress.IPv4Address
    allocated: Set[ipaddress.IPv4Address] = field(default_factory=set)
    revoked: Set[ipaddress.IPv4Address] = field(default_factory=set)

    def lookup(self, text: str) -> Optional[ipaddress.IPv4Address]:
        """Return the managed address spelled exactly as text, if any."""
        try:
            ip = ipaddress.IPv4Address(text)
        except ValueError:
            return None
        if str(ip) != text:
            return None
        return ip if self.manages(ip) else None

    def manages(self, ip: ipaddress.IPv4Address) -> bool:
        return self.start <= ip <= self.end and ip not in self.revoked

    def addresses(self) -> Iterator[ipaddress.IPv4Address]:
        for value in range(int(self.start), int(self.end) + 1):
            ip = ipaddress.IPv4Address(value)
            if ip not in self.revoked:
                yield ip

    @property
    def total(self) -> int:
        return int(self.end) - int(self.start) + 1 - len(self.revoked)


class IPAllocator:
    """Tracks which addresses of each named subnet are in use.

    Automatic allocation hands out the lowest free address of the range.
    """

    def __init__(self) -> None:
        self._subnets: Dict[str, _Subnet] = {}
        self._lock = threading.RLock()

    def _subnet(self, name: str) -> _Subnet:
        try:
            return self._subnets[name]
        except KeyError:
            raise IPAMError(f"network {name} does not exist") from None

    def new_ip_subnet(self, name: str, cidr: str, start: str, end: str) -> None:
        """Register (or replace) the subnet `name` managing start..end within cidr."""
        _, network = _parse_cidr(cidr)
        broadcast = network.broadcast_address

        start_ip = _parse_ip(start)
        if not _contains(network, start_ip):
            raise IPAMError(f"start ip address {start} is not within subnet {cidr} range")
        end_ip = _parse_ip(end)
        if not _contains(network, end_ip):
            raise IPAMError(f"end ip address {end} is not within subnet {cidr} range")
        if start_ip > end_ip:
            raise IPAMError(f"end ip address {end} is less than start ip address {start}")
        if end_ip == broadcast:
            raise IPAMError(f"end ip address {end} equals broadcast ip address {broadcast}")

        with self._lock:
            self._subnets[name] = _Subnet(network, start_ip, end_ip, broadcast)

    def delete_ip_subnet(self, name: str) -> None:
        """Forget the subnet `name`; unknown names are ignored."""
        with self._lock:
            self._subnets.pop(name, None)

    def is_network_initialized(self, name: str) -> bool:
        with self._lock:
            return name in self._subnets

    def allocate_ip(self, name: str, ip_address: str = "") -> str:
        """Allocate ip_address, or any free address when it is empty or unspecified."""
        with self._lock:
            subnet = self._subnet(name)
            designated = _parse_ip(ip_address or "0.0.0.0")
            shown = "<nil>" if designated is None else str(designated)
            automatic = designated is not None and designated.is_unspecified

            if not automatic:
                if not _contains(subnet.network, designated):
                    raise IPAMError(
                        f"designated ip {shown} is not in subnet "
                        f"{subnet.network.network_address}/{subnet.network.prefixlen}"
                    )
                if designated == subnet.broadcast:
                    raise IPAMError(
                        f"designated ip {shown} equals broadcast ip address {subnet.broadcast}"
                    )
                if subnet.manages(designated):
                    if designated in subnet.allocated:
                        raise IPAMError(f"designated ip {shown} is already allocated")
                    subnet.allocated.add(designated)
                    return str(designated)
            else:
                free = next(
                    (ip for ip in subnet.addresses() if ip not in subnet.allocated), None
                )
                if free is not None:
                    subnet.allocated.add(free)
                    return str(free)

            raise IPAMError(f"no more ip addresses left in network {name} ipam")

    def deallocate_ip(self, name: str, ip_address: str) -> None:
        """Return an allocated address to the pool."""
        with self._lock:
            subnet = self._subnet(name)
            if not ip_address:
                raise IPAMError("designated ip is empty")
            ip = subnet.lookup(ip_address)
            if ip is None:
                raise IPAMError(
                    f"to-be-deallocated ip {ip_address} was not found in network {name} ipam"
                )
            if ip not in subnet.allocated:
                raise IPAMError(f"to-be-deallocated ip {ip_address} was not allocated")
            subnet.allocated.discard(ip)

    def revoke_ip(self, name: str, ip_address: str) -> None:
        """Take an address out of management entirely."""
        with self._lock:
            subnet = self._subnet(name)
            ip = subnet.lookup(ip_address)
            if ip is not None:
                subnet.revoked.add(ip)
                subnet.allocated.discard(ip)

    def is_allocated(self, name: str, ip_address: str) -> bool:
        with self._lock:
            subnet = self._subnet(name)
            ip = subnet.lookup(ip_address)
            if ip is None:
                raise IPAMError(f"ip {ip_address} was not found in network {name} ipam")
            return ip in subnet.allocated

    def get_used(self, name: str) -> int:
        with self._lock:
            return len(self._subnet(name).allocated)

    def get_available(self, name: str) -> int:
        with self._lock:
            subnet = self._subnet(name)
            return subnet.total - len(subnet.allocated)

    def get_usage(self, name: str) -> None:
        """Log the layout and allocations of the subnet `name`."""
        with self._lock:
            subnet = self._subnet(name)
            logger.info(
                "ipam[%s] ipNet=%s/%08x, start=%s, end=%s, broadcast=%s",
                name,
                subnet.network.network_address,
                int(subnet.network.netmask),
                subnet.start,
                subnet.end,
                subnet.broadcast,
            )
            logger.info("ipam[%s] allocatedIPs=", name)
            for ip in sorted(subnet.allocated):
                logger.info("ipam[%s] - %s", name, ip)
            used = len(subnet.allocated)
            logger.info(
                "ipam[%s] total=%d, in-use=%d, available=%d",
                name,
                subnet.total,
                used,
                subnet.total - used,
            )

    def list_all(self, name: str) -> Dict[str, str]:
        """Map every managed address to "true" or "false" by allocation state."""
        with self._lock:
            subnet = self._subnet(name)
            return {
                str(ip): "true" if ip in subnet.allocated else "false"
                for ip in subnet.addresses()
            }


class IPAllocatorBuilder:
    """Fluent set-up of an IPAllocator; failing steps are skipped silently."""

    def __init__(self) -> None:
        self._allocator = IPAllocator()

    def ip_subnet(self, name: str, cidr: str, start: str, end: str) -> "IPAllocatorBuilder":
        with suppress(IPAMError):
            self._allocator.new_ip_subnet(name, cidr, start, end)
        return self

    def revoke(self, name: str, *args: str) -> "IPAllocatorBuilder":
        for ip in args:
            with suppress(IPAMError):
                self._allocator.revoke_ip(name, ip)
        return self

    def allocate(self, name: str, *args: str) -> "IPAllocatorBuilder":
        for ip in args:
            with suppress(IPAMError):
                self._allocator.allocate_ip(name, ip)
        return self

    def build(self) -> IPAllocator:
        return self._allocator