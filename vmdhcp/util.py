"""Naming, environment, file and address helpers shared by the controller parts."""

from __future__ import annotations

import hashlib
import ipaddress
import json
import os
import stat
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

GROUP_NAME = "network.harvesterhci.io"

EXCLUDED_MARK = "EXCLUDED"
RESERVED_MARK = "RESERVED"

AGENT_SUFFIX_NAME = "agent"
NODE_ARGS_ANNOTATION_KEY = "rke2.io/node-args"
SERVICE_CIDR_FLAG = "--service-cidr"
MANAGEMENT_NODE_LABEL_KEY = "node-role.kubernetes.io/control-plane"
IPPOOL_NAMESPACE_LABEL_KEY = GROUP_NAME + "/ippool-namespace"
IPPOOL_NAME_LABEL_KEY = GROUP_NAME + "/ippool-name"

VMNETCFG_BY_NETWORK_INDEX = "vmnetcfg-by-network"

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class AddrParseError(ValueError):
    """Raised when text is not a valid IP address."""

    def __init__(self, text: str, msg: str, at: str = "") -> None:
        self.text = text
        self.msg = msg
        self.at = at
        message = f"ParseAddr({_quote(text)}): {msg}"
        if at:
            message += f" (at {_quote(at)})"
        super().__init__(message)


def _parse_ipv4(text: str) -> ipaddress.IPv4Address:
    fields: List[int] = []
    value = 0
    digits = 0
    for i, ch in enumerate(text):
        if "0" <= ch <= "9":
            if digits == 1 and value == 0:
                raise AddrParseError(text, "IPv4 field has octet with leading zero")
            value = value * 10 + ord(ch) - ord("0")
            digits += 1
            if value > 255:
                raise AddrParseError(text, "IPv4 field has value >255")
        elif ch == ".":
            if i == 0 or i == len(text) - 1 or text[i - 1] == ".":
                raise AddrParseError(
                    text, "IPv4 field must have at least one digit", text[i:]
                )
            if len(fields) == 3:
                raise AddrParseError(text, "IPv4 address too long")
            fields.append(value)
            value = 0
            digits = 0
        else:
            raise AddrParseError(text, "unexpected character", text[i:])
    if len(fields) < 3:
        raise AddrParseError(text, "IPv4 address too short")
    fields.append(value)
    return ipaddress.IPv4Address(bytes(fields))


def _parse_ipv6(text: str) -> ipaddress.IPv6Address:
    try:
        return ipaddress.IPv6Address(text)
    except ValueError:
        raise AddrParseError(text, "unable to parse IP") from None


def parse_addr(text: str) -> Address:
    """Parse an IPv4 or IPv6 address strictly; IPv4 octets may not carry leading zeros."""
    for ch in text:
        if ch == ".":
            return _parse_ipv4(text)
        if ch == ":":
            return _parse_ipv6(text)
        if ch == "%":
            raise AddrParseError(text, "missing IPv6 address")
    raise AddrParseError(text, "unable to parse IP")


def _addr_key(addr: Address) -> Tuple[int, int, str]:
    return (addr.version, int(addr), getattr(addr, "scope_id", None) or "")


def safe_agent_concat_name(*args: str) -> str:
    """Join name parts into an agent name no longer than a Kubernetes name allows."""
    full_path = "-".join(args)
    raw = full_path.encode("utf-8")
    if len(raw) < 58:
        return f"{full_path}-{AGENT_SUFFIX_NAME}"

    digest = hashlib.sha256(raw).hexdigest()
    cut = raw[50:51].decode("ascii", errors="replace")
    if "a" <= cut <= "z" or "0" <= cut <= "9":
        head, tail = raw[:51], digest[:5]
    else:
        head, tail = raw[:50], digest[:6]
    return "-".join([head.decode("utf-8", errors="replace"), tail, AGENT_SUFFIX_NAME])


def env_get_bool(key: str, default_value: bool) -> bool:
    """Read a boolean environment variable, falling back when unset or unparsable."""
    value = os.environ.get(key, "")
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    return default_value


def file_exists(filename: str) -> bool:
    """Return True when filename exists and is not a directory."""
    try:
        info = os.stat(filename)
    except FileNotFoundError:
        return False
    return not stat.S_ISDIR(info.st_mode)


def get_service_cidr_from_node(node: Any) -> str:
    """Extract the service CIDR from a node's node-args annotation."""
    if node.annotations is None:
        raise ValueError(f"service CIDR not found for node {node.name}")
    try:
        node_args = node.annotations[NODE_ARGS_ANNOTATION_KEY]
    except KeyError:
        raise ValueError(
            f"annotation {NODE_ARGS_ANNOTATION_KEY} not found for node {node.name}"
        ) from None

    try:
        arg_list = json.loads(node_args)
    except json.JSONDecodeError as err:
        raise ValueError(str(err)) from err
    if arg_list is None:
        arg_list = []
    if not isinstance(arg_list, list) or not all(isinstance(a, str) for a in arg_list):
        raise ValueError(f"annotation {NODE_ARGS_ANNOTATION_KEY} is not a list of strings")

    try:
        index = arg_list.index(SERVICE_CIDR_FLAG) + 1
    except ValueError:
        index = 0
    if index == 0 or index >= len(arg_list):
        raise ValueError(f"serviceCIDR not found for node {node.name}")
    return arg_list[index]


def load_cidr(cidr: str) -> Tuple[Network, Address, Address]:
    """Return the network, its network address and its broadcast address."""
    addr_text, sep, prefix = cidr.partition("/")
    invalid = ValueError(f"invalid CIDR address: {cidr}")
    if not sep:
        raise invalid
    try:
        addr = parse_addr(addr_text)
    except AddrParseError:
        raise invalid from None
    if getattr(addr, "scope_id", None):
        raise invalid
    if not (prefix.isascii() and prefix.isdigit()) or int(prefix) > addr.max_prefixlen:
        raise invalid

    if addr.version == 4:
        network: Network = ipaddress.IPv4Network((int(addr), int(prefix)), strict=False)
    else:
        network = ipaddress.IPv6Network((int(addr), int(prefix)), strict=False)
    return network, network.network_address, network.broadcast_address


@dataclass
class PoolInfo:
    """Parsed addresses of an IP pool; unset addresses are None."""

    ip_net: Optional[Network] = None
    network_ip_addr: Optional[Address] = None
    broadcast_ip_addr: Optional[Address] = None
    start_ip_addr: Optional[Address] = None
    end_ip_addr: Optional[Address] = None
    server_ip_addr: Optional[Address] = None
    router_ip_addr: Optional[Address] = None


def load_pool(ip_pool: Any) -> PoolInfo:
    """Parse the CIDR and the optional addresses of an IP pool."""
    config = ip_pool.spec.ipv4_config
    ip_net, network_addr, broadcast_addr = load_cidr(config.cidr)
    info = PoolInfo(ip_net=ip_net, network_ip_addr=network_addr, broadcast_ip_addr=broadcast_addr)
    if config.pool.start:
        info.start_ip_addr = parse_addr(config.pool.start)
    if config.pool.end:
        info.end_ip_addr = parse_addr(config.pool.end)
    if config.server_ip:
        info.server_ip_addr = parse_addr(config.server_ip)
    if config.router:
        info.router_ip_addr = parse_addr(config.router)
    return info


def load_allocated(
    allocated: Mapping[str, str],
) -> Tuple[List[Address], List[Address], List[Address]]:
    """Split an allocation map into allocated, excluded and reserved addresses.

    Keys that are not addresses are skipped.
    """
    allocated_list: List[Address] = []
    excluded_list: List[Address] = []
    reserved_list: List[Address] = []
    for ip, mark in allocated.items():
        try:
            addr = parse_addr(ip)
        except AddrParseError:
            continue
        if mark == EXCLUDED_MARK:
            excluded_list.append(addr)
        elif mark == RESERVED_MARK:
            reserved_list.append(addr)
        else:
            allocated_list.append(addr)
    return allocated_list, excluded_list, reserved_list


def is_ip_addr_in_list(ip_addr: Address, ip_addr_list: Sequence[Address]) -> bool:
    return any(ip_addr == other for other in ip_addr_list)


def is_ip_in_between_of(ip: str, ip1: str, ip2: str) -> bool:
    """Return True when ip lies within ip1..ip2 inclusive; False on any parse error."""
    try:
        addr, low, high = parse_addr(ip), parse_addr(ip1), parse_addr(ip2)
    except AddrParseError:
        return False
    return _addr_key(low) <= _addr_key(addr) <= _addr_key(high)


@dataclass
class VmnetcfgGetter:
    """Looks up network configs through a store indexed by network name."""

    vmnetcfg_cache: Any

    def who_use_ip_pool(self, ip_pool: Any) -> List[Any]:
        """Return the network configs attached to the pool's network.

        The cache must carry an indexer registered under VMNETCFG_BY_NETWORK_INDEX.
        """
        network_name = f"{ip_pool.namespace}/{ip_pool.name}"
        return self.vmnetcfg_cache.get_by_index(VMNETCFG_BY_NETWORK_INDEX, network_name)


__all__: List[str] = [
    "AddrParseError",
    "PoolInfo",
    "VmnetcfgGetter",
    "parse_addr",
    "safe_agent_concat_name",
    "env_get_bool",
    "file_exists",
    "get_service_cidr_from_node",
    "load_cidr",
    "load_pool",
    "load_allocated",
    "is_ip_addr_in_list",
    "is_ip_in_between_of",
]

_: Dict[str, str] = {}