import pytest

from vmdhcp.resources import (
    IPPool,
    IPPoolSpec,
    IPv4Config,
    NetworkAttachmentDefinition,
    NetworkConfig,
    Node,
    NotFoundError,
    ResourceStore,
    VirtualMachineNetworkConfig,
    VirtualMachineNetworkConfigSpec,
)

NAD_RESOURCE = "network-attachment-definitions.k8s.cni.cncf.io"


def _pool(namespace, name, cidr="192.168.0.0/24", labels=None):
    return IPPool(
        namespace=namespace,
        name=name,
        spec=IPPoolSpec(ipv4_config=IPv4Config(cidr=cidr), network_name=f"{namespace}/{name}"),
        labels=dict(labels or {}),
    )


def test_add_then_get_round_trip():
    store = ResourceStore("ippools")
    pool = _pool("default", "net-1")
    store.add(pool)
    assert store.get("default", "net-1") == pool


def test_get_missing_reports_resource_and_name():
    store = ResourceStore(NAD_RESOURCE)
    store.add(NetworkAttachmentDefinition(namespace="default", name="net-1"))
    with pytest.raises(NotFoundError) as info:
        store.get("default", "nonexist")
    assert str(info.value) == 'network-attachment-definitions.k8s.cni.cncf.io "nonexist" not found'
    assert info.value.name == "nonexist"


def test_get_returns_independent_copy():
    store = ResourceStore("ippools")
    store.add(_pool("default", "net-1"))
    fetched = store.get("default", "net-1")
    fetched.spec.ipv4_config.cidr = "10.0.0.0/8"
    assert store.get("default", "net-1").spec.ipv4_config.cidr == "192.168.0.0/24"


def test_add_duplicate_rejected():
    store = ResourceStore("ippools")
    store.add(_pool("default", "net-1"))
    with pytest.raises(ValueError):
        store.add(_pool("default", "net-1"))


def test_update_replaces_object():
    store = ResourceStore("ippools")
    store.add(_pool("default", "net-1"))
    store.update(_pool("default", "net-1", cidr="172.16.0.0/16"))
    assert store.get("default", "net-1").spec.ipv4_config.cidr == "172.16.0.0/16"


def test_update_missing_raises():
    store = ResourceStore("ippools")
    with pytest.raises(NotFoundError):
        store.update(_pool("default", "net-1"))


def test_delete_removes_object():
    store = ResourceStore("ippools")
    store.add(_pool("default", "net-1"))
    store.delete("default", "net-1")
    with pytest.raises(NotFoundError):
        store.get("default", "net-1")
    with pytest.raises(NotFoundError):
        store.delete("default", "net-1")


def test_list_filters_namespace_and_labels():
    store = ResourceStore("ippools")
    store.add(_pool("default", "a", labels={"tier": "x"}))
    store.add(_pool("default", "b", labels={"tier": "y"}))
    store.add(_pool("other", "c", labels={"tier": "x"}))
    assert [p.name for p in store.list("default", None)] == ["a", "b"]
    assert [p.name for p in store.list("", {"tier": "x"})] == ["a", "c"]
    assert [p.name for p in store.list("other", {"tier": "y"})] == []


def test_nodes_listed_by_label():
    store = ResourceStore("nodes")
    store.add(Node(name="node-0", labels={"node-role.kubernetes.io/control-plane": "true"}))
    store.add(Node(name="node-1"))
    found = store.list("", {"node-role.kubernetes.io/control-plane": "true"})
    assert [n.name for n in found] == ["node-0"]


def test_get_by_index_uses_registered_indexer():
    store = ResourceStore("virtualmachinenetworkconfigs")
    store.add_indexer(
        "network",
        lambda cfg: [nc.network_name for nc in cfg.spec.network_configs],
    )
    store.add(
        VirtualMachineNetworkConfig(
            namespace="default",
            name="vm-1",
            spec=VirtualMachineNetworkConfigSpec(
                vm_name="vm-1",
                network_configs=[NetworkConfig(network_name="default/net-1")],
            ),
        )
    )
    store.add(VirtualMachineNetworkConfig(namespace="default", name="vm-2"))
    assert [c.name for c in store.get_by_index("network", "default/net-1")] == ["vm-1"]
    assert store.get_by_index("network", "default/net-2") == []


def test_get_by_unknown_index_raises():
    store = ResourceStore("virtualmachinenetworkconfigs")
    with pytest.raises(KeyError):
        store.get_by_index("missing", "key")