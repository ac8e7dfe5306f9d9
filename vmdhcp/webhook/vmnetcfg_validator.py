"""Validating webhook for virtual machine network configs."""

from __future__ import annotations

from typing import Any, Tuple

from vmdhcp.resources import NotFoundError, VirtualMachineNetworkConfig
from vmdhcp.util import GROUP_NAME
from vmdhcp.webhook.admission import NAMESPACED_SCOPE, Operation, Resource, create_error

API_VERSION = "v1alpha1"
DEFAULT_NAMESPACE = "default"


def _split_namespaced(name: str) -> Tuple[str, str]:
    namespace, sep, rest = name.rpartition("/")
    if not sep:
        return "", name
    return namespace, rest


class VmNetCfgValidator:
    """Rejects network configs that refer to IP pools that do not exist."""

    def __init__(self, ippool_cache: Any) -> None:
        self.ippool_cache = ippool_cache

    def create(self, request: Any, new_obj: VirtualMachineNetworkConfig) -> None:
        """Check that every referenced network has an IP pool."""
        vm_net_cfg = new_obj
        for network_config in vm_net_cfg.spec.network_configs:
            pool_namespace, pool_name = _split_namespaced(network_config.network_name)
            if not pool_namespace:
                pool_namespace = DEFAULT_NAMESPACE
            try:
                self.ippool_cache.get(pool_namespace, pool_name)
            except NotFoundError as err:
                raise create_error(
                    vm_net_cfg.kind, vm_net_cfg.namespace, vm_net_cfg.name, err
                ) from err

    def resource(self) -> Resource:
        return Resource(
            names=("virtualmachinenetworkconfigs",),
            api_group=GROUP_NAME,
            api_version=API_VERSION,
            object_type=VirtualMachineNetworkConfig,
            operation_types=(Operation.CREATE,),
            scope=NAMESPACED_SCOPE,
        )


__all__ = ["VmNetCfgValidator"]