"""Validating webhook for IP pools."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Tuple

from vmdhcp.resources import IPPool
from vmdhcp.util import (
    Address,
    GROUP_NAME,
    PoolInfo,
    VmnetcfgGetter,
    is_ip_addr_in_list,
    load_allocated,
    load_cidr,
    load_pool,
)
from vmdhcp.webhook.admission import (
    NAMESPACED_SCOPE,
    AdmissionError,
    Operation,
    Resource,
    create_error,
    delete_error,
    update_error,
)

logger = logging.getLogger(__name__)

API_VERSION = "v1alpha1"
DEFAULT_NAMESPACE = "default"

_Failure = (ValueError, LookupError)


def _rsplit(text: str, sep: str) -> Tuple[str, str]:
    """Split at the last separator; without one the first part is empty."""
    head, found, tail = text.rpartition(sep)
    if not found:
        return "", text.strip()
    return head.strip(), tail.strip()


def _in_network(network: Any, addr: Address) -> bool:
    return network is not None and addr in network


class Validator:
    """Rejects IP pools whose addresses are inconsistent or still in use."""

    def __init__(self, service_cidr: str, nad_cache: Any, vmnetcfg_cache: Any) -> None:
        self.service_cidr = service_cidr
        self.nad_cache = nad_cache
        self.vmnetcfg_cache = vmnetcfg_cache

    def _run_checks(
        self,
        ip_pool: IPPool,
        wrap: Callable[[str, str, str, object], AdmissionError],
        unallocatables: List[Address],
    ) -> None:
        try:
            pool_info = load_pool(ip_pool)
            self._check_nad(ip_pool.spec.network_name)
            self._check_cidr(ip_pool.spec.ipv4_config.cidr)
            self._check_pool_range(pool_info)
            self._check_server_ip(pool_info, *unallocatables)
            self._check_router(pool_info)
        except _Failure as err:
            raise wrap("IPPool", ip_pool.namespace, ip_pool.name, err) from err

    def create(self, request: Any, new_obj: IPPool) -> None:
        """Validate a new IP pool."""
        ip_pool = new_obj
        logger.info("create ippool %s/%s", ip_pool.namespace, ip_pool.name)
        self._run_checks(ip_pool, create_error, [])

    def update(self, request: Any, old_obj: Any, new_obj: IPPool) -> None:
        """Validate a changed IP pool; pools being deleted are let through."""
        ip_pool = new_obj
        if ip_pool.deletion_timestamp is not None:
            return

        logger.info("update ippool %s/%s", ip_pool.namespace, ip_pool.name)

        unallocatables: List[Address] = []
        if ip_pool.status.ipv4 is not None:
            allocated, excluded, _ = load_allocated(ip_pool.status.ipv4.allocated)
            unallocatables = allocated + excluded

        self._run_checks(ip_pool, update_error, unallocatables)

    def delete(self, request: Any, old_obj: IPPool) -> None:
        """Refuse to delete a pool that network configs still use."""
        ip_pool = old_obj
        logger.info("delete ippool %s/%s", ip_pool.namespace, ip_pool.name)
        try:
            self._check_vm_net_cfgs(ip_pool)
        except _Failure as err:
            raise delete_error(ip_pool.kind, ip_pool.namespace, ip_pool.name, err) from err

    def resource(self) -> Resource:
        return Resource(
            names=("ippools",),
            api_group=GROUP_NAME,
            api_version=API_VERSION,
            object_type=IPPool,
            operation_types=(Operation.CREATE, Operation.UPDATE, Operation.DELETE),
            scope=NAMESPACED_SCOPE,
        )

    def _check_nad(self, namespaced_name: str) -> None:
        namespace, name = _rsplit(namespaced_name, "/")
        self.nad_cache.get(namespace or DEFAULT_NAMESPACE, name)

    def _check_cidr(self, cidr: str) -> None:
        try:
            ip_net, _, _ = load_cidr(cidr)
        except ValueError:
            return
        svc_net, _, _ = load_cidr(self.service_cidr)
        if ip_net.network_address in svc_net or svc_net.network_address in ip_net:
            raise ValueError(f"cidr {cidr} overlaps cluster service cidr {svc_net}")

    @staticmethod
    def _check_endpoint(label: str, pi: PoolInfo, addr: Address) -> None:
        if not _in_network(pi.ip_net, addr):
            raise ValueError(f"{label} ip {addr} is not within subnet")
        if addr == pi.network_ip_addr:
            raise ValueError(f"{label} ip {addr} is the same as network ip")
        if addr == pi.broadcast_ip_addr:
            raise ValueError(f"{label} ip {addr} is the same as broadcast ip")

    def _check_pool_range(self, pi: PoolInfo) -> None:
        if pi.start_ip_addr is not None:
            self._check_endpoint("start", pi, pi.start_ip_addr)
        if pi.end_ip_addr is not None:
            self._check_endpoint("end", pi, pi.end_ip_addr)

    def _check_server_ip(self, pi: PoolInfo, *unallocatables: Address) -> None:
        """Check the server address against the subnet, the router and occupied addresses.

        Reserved addresses are not compared: they can only be the server or
        router address themselves.
        """
        server = pi.server_ip_addr
        if server is None:
            return
        self._check_endpoint("server", pi, server)
        if pi.router_ip_addr is not None and server == pi.router_ip_addr:
            raise ValueError(f"server ip {server} is the same as router ip")
        if is_ip_addr_in_list(server, unallocatables):
            raise ValueError(f"server ip {server} is already occupied")

    def _check_router(self, pi: PoolInfo) -> None:
        if pi.router_ip_addr is not None:
            self._check_endpoint("router", pi, pi.router_ip_addr)

    def _check_vm_net_cfgs(self, ip_pool: IPPool) -> None:
        getter = VmnetcfgGetter(vmnetcfg_cache=self.vmnetcfg_cache)
        vm_net_cfgs = getter.who_use_ip_pool(ip_pool)

        logger.info("%d vmnetcfg(s) associated", len(vm_net_cfgs))

        if vm_net_cfgs:
            names = ", ".join(f"{cfg.namespace}/{cfg.name}" for cfg in vm_net_cfgs)
            raise ValueError(
                f"it's still used by VirtualMachineNetworkConfig(s) {names}, "
                "which must be removed at first"
            )


__all__ = ["Validator"]