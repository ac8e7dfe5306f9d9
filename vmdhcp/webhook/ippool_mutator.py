"""Mutating webhook that fills in the server address and pool range of new IP pools."""

from __future__ import annotations

import dataclasses
import ipaddress
import logging
from typing import Any, Iterable, Iterator, List, Optional, Tuple

from vmdhcp.resources import IPPool, Pool
from vmdhcp.util import (
    Address,
    AddrParseError,
    GROUP_NAME,
    Network,
    is_ip_addr_in_list,
    load_cidr,
    parse_addr,
)
from vmdhcp.webhook.admission import (
    NAMESPACED_SCOPE,
    Operation,
    PatchOp,
    PatchOperation,
    Resource,
    create_error,
)

logger = logging.getLogger(__name__)

API_VERSION = "v1alpha1"
POOL_PATH = "/spec/ipv4Config/pool"
SERVER_IP_PATH = "/spec/ipv4Config/serverIP"

_INVALID_IP_TEXT = "invalid IP"


def _parse_or_none(text: str) -> Optional[Address]:
    try:
        return parse_addr(text)
    except AddrParseError:
        return None


def _next(addr: Optional[Address]) -> Optional[Address]:
    if addr is None:
        return None
    value = int(addr) + 1
    if value >= 2 ** addr.max_prefixlen:
        return None
    return type(addr)(value)


def _prev(addr: Optional[Address]) -> Optional[Address]:
    if addr is None or int(addr) == 0:
        return None
    return type(addr)(int(addr) - 1)


def _order(addr: Optional[Address]) -> Tuple[int, int]:
    """Ordering key: an absent address sorts before every address."""
    if addr is None:
        return (0, 0)
    return (addr.max_prefixlen, int(addr))


def _text(addr: Optional[Address]) -> str:
    return _INVALID_IP_TEXT if addr is None else str(addr)


def _in_network(network: Network, addr: Optional[Address]) -> bool:
    return addr is not None and addr in network


def _successors(first: Address, network: Network) -> Iterator[Address]:
    """Yield the addresses after `first` for as long as they stay inside network."""
    candidate = _next(first)
    while _in_network(network, candidate):
        yield candidate
        candidate = _next(candidate)


def ensure_server_ip(
    server: str, cidr: str, router: str, excludes: Iterable[str]
) -> Optional[str]:
    """Pick a server address when none is set; None means the given one is kept."""
    ip_net, network_addr, broadcast_addr = load_cidr(cidr)

    masked: List[Address] = []
    router_addr = _parse_or_none(router)
    if router_addr is not None:
        masked.append(router_addr)

    server_addr = _parse_or_none(server)

    for exclude in excludes:
        masked.append(parse_addr(exclude))

    if server_addr is not None:
        return None

    for candidate in _successors(network_addr, ip_net):
        if is_ip_addr_in_list(candidate, masked):
            continue
        if candidate == broadcast_addr:
            break
        server_text = str(candidate)
        logger.info("auto assign serverIP=%s", server_text)
        return server_text

    raise ValueError("fail to assign ip for dhcp server")


def ensure_pool_range(pool: Pool, cidr: str) -> Optional[Pool]:
    """Fill in a missing start or end of the pool; None means nothing changed."""
    start_addr = _parse_or_none(pool.start)
    end_addr = _parse_or_none(pool.end)

    ip_net, network_addr, broadcast_addr = load_cidr(cidr)

    new_pool = dataclasses.replace(pool, exclude=list(pool.exclude))

    if start_addr is None:
        start_addr = _next(network_addr)
        if not _in_network(ip_net, start_addr):
            logger.warning("start ip is out of subnet")
        new_pool.start = _text(start_addr)

    if end_addr is None:
        end_addr = _prev(broadcast_addr)
        if not _in_network(ip_net, end_addr):
            logger.warning("end ip is out of subnet")
        new_pool.end = _text(end_addr)

    if _order(start_addr) > _order(end_addr):
        raise ValueError("invalid pool range")

    if new_pool != pool:
        logger.info(
            "auto assign startIP=%s, endIP=%s", _text(start_addr), _text(end_addr)
        )
        return new_pool

    return None


class Mutator:
    """Completes IP pools on creation."""

    def create(self, request: Any, new_obj: IPPool) -> List[PatchOperation]:
        """Return the JSON patch that fills in the pool range and server address."""
        ip_pool = new_obj
        config = ip_pool.spec.ipv4_config

        try:
            server_ip = ensure_server_ip(
                config.server_ip, config.cidr, config.router, config.pool.exclude
            )
        except ValueError as err:
            raise create_error("IPPool", ip_pool.namespace, ip_pool.name, err) from err

        try:
            pool = ensure_pool_range(config.pool, config.cidr)
        except ValueError as err:
            raise create_error("IPPool", ip_pool.namespace, ip_pool.name, err) from err

        patch: List[PatchOperation] = []
        if pool is not None:
            patch.append(PatchOperation(PatchOp.REPLACE, POOL_PATH, pool))
        if server_ip is not None:
            patch.append(PatchOperation(PatchOp.REPLACE, SERVER_IP_PATH, server_ip))
        return patch

    def resource(self) -> Resource:
        return Resource(
            names=("ippools",),
            api_group=GROUP_NAME,
            api_version=API_VERSION,
            object_type=IPPool,
            operation_types=(Operation.CREATE,),
            scope=NAMESPACED_SCOPE,
        )


__all__ = ["Mutator", "ensure_server_ip", "ensure_pool_range"]

_unused: Tuple[type, ...] = (ipaddress.IPv4Address,)