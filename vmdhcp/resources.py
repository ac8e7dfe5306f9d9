"""Resource objects and an in-memory store that serves them by namespace and name."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar


@dataclass
class Pool:
    """Address range handed out by an IP pool."""

    start: str = ""
    end: str = ""
    exclude: List[str] = field(default_factory=list)


@dataclass
class IPv4Config:
    """IPv4 settings of an IP pool."""

    server_ip: str = ""
    cidr: str = ""
    pool: Pool = field(default_factory=Pool)
    router: str = ""


@dataclass
class IPPoolSpec:
    """Desired state of an IP pool."""

    ipv4_config: IPv4Config = field(default_factory=IPv4Config)
    network_name: str = ""


@dataclass
class IPv4Status:
    """Observed IPv4 allocation state of an IP pool."""

    allocated: Dict[str, str] = field(default_factory=dict)
    used: int = 0
    available: int = 0


@dataclass
class IPPoolStatus:
    """Observed state of an IP pool."""

    ipv4: Optional[IPv4Status] = None


@dataclass
class IPPool:
    """An IP pool bound to a network."""

    namespace: str = ""
    name: str = ""
    spec: IPPoolSpec = field(default_factory=IPPoolSpec)
    status: IPPoolStatus = field(default_factory=IPPoolStatus)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    deletion_timestamp: Optional[datetime] = None
    kind: str = "IPPool"


@dataclass
class NetworkConfig:
    """One network interface of a virtual machine."""

    network_name: str = ""
    mac_address: str = ""
    ip_address: str = ""


@dataclass
class VirtualMachineNetworkConfigSpec:
    """Desired network configuration of a virtual machine."""

    vm_name: str = ""
    network_configs: List[NetworkConfig] = field(default_factory=list)


@dataclass
class VirtualMachineNetworkConfig:
    """Network configuration object of a virtual machine."""

    namespace: str = ""
    name: str = ""
    spec: VirtualMachineNetworkConfigSpec = field(default_factory=VirtualMachineNetworkConfigSpec)
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    deletion_timestamp: Optional[datetime] = None
    kind: str = "VirtualMachineNetworkConfig"


@dataclass
class NetworkAttachmentDefinition:
    """A network attachment definition."""

    namespace: str = ""
    name: str = ""
    config: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    kind: str = "NetworkAttachmentDefinition"


@dataclass
class Node:
    """A cluster node; nodes are not namespaced."""

    name: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    namespace: str = ""
    kind: str = "Node"


class NotFoundError(LookupError):
    """Raised when a requested object does not exist."""

    def __init__(self, resource: str, name: str) -> None:
        self.resource = resource
        self.name = name
        super().__init__(f'{resource} "{name}" not found')


T = TypeVar("T")
Indexer = Callable[[T], Iterable[str]]


class ResourceStore(Generic[T]):
    """Thread-safe store of objects keyed by namespace and name.

    Objects are copied on the way in and out, so callers never share
    state with the store.
    """

    def __init__(self, resource: str) -> None:
        self.resource = resource
        self._objects: Dict[Tuple[str, str], T] = {}
        self._indexers: Dict[str, Indexer] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(obj) -> Tuple[str, str]:
        return (obj.namespace, obj.name)

    def add(self, obj: T) -> T:
        """Store a new object; fail if one with the same key exists."""
        key = self._key(obj)
        with self._lock:
            if key in self._objects:
                raise ValueError(f'{self.resource} "{obj.name}" already exists')
            self._objects[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    def update(self, obj: T) -> T:
        """Replace an existing object."""
        key = self._key(obj)
        with self._lock:
            if key not in self._objects:
                raise NotFoundError(self.resource, obj.name)
            self._objects[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    def get(self, namespace: str, name: str) -> T:
        """Return a copy of the object with this namespace and name."""
        with self._lock:
            try:
                return copy.deepcopy(self._objects[(namespace, name)])
            except KeyError:
                raise NotFoundError(self.resource, name) from None

    def delete(self, namespace: str, name: str) -> None:
        """Remove the object with this namespace and name."""
        with self._lock:
            try:
                del self._objects[(namespace, name)]
            except KeyError:
                raise NotFoundError(self.resource, name) from None

    def list(self, namespace: str = "", selector: Optional[Mapping[str, str]] = None) -> List[T]:
        """Return objects in a namespace (all when empty) whose labels match the selector."""
        wanted = dict(selector or {})
        with self._lock:
            matches = [
                obj
                for key, obj in sorted(self._objects.items(), key=lambda item: item[0])
                if (not namespace or key[0] == namespace)
                and all(obj.labels.get(k) == v for k, v in wanted.items())
            ]
            return copy.deepcopy(matches)

    def add_indexer(self, index_name: str, indexer: Indexer) -> None:
        """Register a function that maps an object to its index keys."""
        with self._lock:
            self._indexers[index_name] = indexer

    def get_by_index(self, index_name: str, key: str) -> List[T]:
        """Return objects whose index values under index_name include key."""
        with self._lock:
            try:
                indexer = self._indexers[index_name]
            except KeyError:
                raise KeyError(f"index with name {index_name} does not exist") from None
            matches = [
                obj
                for _, obj in sorted(self._objects.items(), key=lambda item: item[0])
                if key in set(indexer(obj))
            ]
            return copy.deepcopy(matches)