import ipaddress
import json
import string

import pytest

from vmdhcp.resources import (
    IPPool,
    IPPoolSpec,
    IPv4Config,
    NetworkConfig,
    Node,
    Pool,
    ResourceStore,
    VirtualMachineNetworkConfig,
    VirtualMachineNetworkConfigSpec,
)
from vmdhcp.util import (
    AGENT_SUFFIX_NAME,
    EXCLUDED_MARK,
    NODE_ARGS_ANNOTATION_KEY,
    RESERVED_MARK,
    SERVICE_CIDR_FLAG,
    VMNETCFG_BY_NETWORK_INDEX,
    AddrParseError,
    VmnetcfgGetter,
    env_get_bool,
    file_exists,
    get_service_cidr_from_node,
    is_ip_addr_in_list,
    is_ip_in_between_of,
    load_allocated,
    load_cidr,
    load_pool,
    parse_addr,
    safe_agent_concat_name,
)


def _pool(cidr, start="", end="", server="", router=""):
    return IPPool(
        namespace="default",
        name="net-1",
        spec=IPPoolSpec(
            ipv4_config=IPv4Config(
                server_ip=server, cidr=cidr, pool=Pool(start=start, end=end), router=router
            )
        ),
    )


def test_parse_addr_round_trip():
    assert str(parse_addr("192.168.0.1")) == "192.168.0.1"
    assert parse_addr("fe80::1") == ipaddress.IPv6Address("fe80::1")


def test_parse_addr_value_too_large_message():
    with pytest.raises(AddrParseError) as info:
        parse_addr("192.168.0.1000")
    assert str(info.value) == 'ParseAddr("192.168.0.1000"): IPv4 field has value >255'


@pytest.mark.parametrize(
    "text", ["", "192.168.01.1", "1.2.3", "1.2.3.4.5", "1..2.3", "1.2.3.x", "%eth0", "zz::1::"]
)
def test_parse_addr_rejects_malformed(text):
    with pytest.raises(AddrParseError):
        parse_addr(text)


def test_safe_agent_concat_name_short():
    assert safe_agent_concat_name("default", "net-1") == "-".join(
        ["default", "net-1", AGENT_SUFFIX_NAME]
    )


def test_safe_agent_concat_name_cut_on_alphanumeric():
    full = "a" * 60
    result = safe_agent_concat_name(full)
    head, digest, suffix = result.rsplit("-", 2)
    assert head == full[:51]
    assert len(digest) == 5
    assert set(digest) <= set(string.hexdigits.lower())
    assert suffix == AGENT_SUFFIX_NAME
    assert len(result) <= 63
    assert safe_agent_concat_name(full) == result


def test_safe_agent_concat_name_drops_trailing_dash():
    full = "a" * 50 + "-" + "b" * 10
    head, digest, suffix = safe_agent_concat_name(full).rsplit("-", 2)
    assert head == full[:50]
    assert len(digest) == 6
    assert suffix == AGENT_SUFFIX_NAME


def test_safe_agent_concat_name_digest_depends_on_input():
    first = safe_agent_concat_name("x" * 70)
    second = safe_agent_concat_name("x" * 71)
    assert first[:51] == second[:51]
    assert first != second


@pytest.mark.parametrize("value,expected", [("true", True), ("T", True), ("0", False), ("False", False)])
def test_env_get_bool_parses(monkeypatch, value, expected):
    monkeypatch.setenv("VMDHCP_TEST_FLAG", value)
    assert env_get_bool("VMDHCP_TEST_FLAG", not expected) is expected


def test_env_get_bool_default(monkeypatch):
    monkeypatch.delenv("VMDHCP_TEST_FLAG", raising=False)
    assert env_get_bool("VMDHCP_TEST_FLAG", True) is True
    monkeypatch.setenv("VMDHCP_TEST_FLAG", "maybe")
    assert env_get_bool("VMDHCP_TEST_FLAG", False) is False


def test_file_exists(tmp_path):
    regular = tmp_path / "file.txt"
    regular.write_text("data")
    assert file_exists(str(regular)) is True
    assert file_exists(str(tmp_path)) is False
    assert file_exists(str(tmp_path / "missing")) is False


def test_get_service_cidr_from_node():
    args = ["--cluster-cidr", "10.52.0.0/16", SERVICE_CIDR_FLAG, "10.53.0.0/16"]
    node = Node(name="node-0", annotations={NODE_ARGS_ANNOTATION_KEY: json.dumps(args)})
    assert get_service_cidr_from_node(node) == "10.53.0.0/16"


@pytest.mark.parametrize(
    "annotations",
    [
        {},
        {NODE_ARGS_ANNOTATION_KEY: json.dumps(["--cluster-cidr", "10.52.0.0/16"])},
        {NODE_ARGS_ANNOTATION_KEY: json.dumps(["--cluster-cidr", SERVICE_CIDR_FLAG])},
        {NODE_ARGS_ANNOTATION_KEY: "not json"},
    ],
)
def test_get_service_cidr_from_node_errors(annotations):
    with pytest.raises(ValueError):
        get_service_cidr_from_node(Node(name="node-0", annotations=annotations))


def test_load_cidr():
    network, network_addr, broadcast = load_cidr("192.168.0.254/24")
    assert network == ipaddress.ip_network("192.168.0.0/24")
    assert str(network_addr) == "192.168.0.0"
    assert str(broadcast) == "192.168.0.255"


@pytest.mark.parametrize("cidr", ["192.168.0.0", "192.168.0.0/33", "192.168.0.0/x", "bogus/24", ""])
def test_load_cidr_invalid(cidr):
    with pytest.raises(ValueError):
        load_cidr(cidr)


def test_load_pool_fills_given_addresses():
    info = load_pool(_pool("192.168.0.0/24", start="192.168.0.10", server="192.168.0.2"))
    assert info.ip_net == ipaddress.ip_network("192.168.0.0/24")
    assert info.start_ip_addr == parse_addr("192.168.0.10")
    assert info.server_ip_addr == parse_addr("192.168.0.2")
    assert info.end_ip_addr is None
    assert info.router_ip_addr is None


def test_load_pool_malformed_router():
    with pytest.raises(AddrParseError) as info:
        load_pool(_pool("192.168.0.0/24", router="192.168.0.1000"))
    assert str(info.value) == 'ParseAddr("192.168.0.1000"): IPv4 field has value >255'


def test_load_pool_invalid_cidr():
    with pytest.raises(ValueError):
        load_pool(_pool("nonsense"))


def test_load_allocated_splits_marks():
    allocated, excluded, reserved = load_allocated(
        {
            "192.168.0.100": EXCLUDED_MARK,
            "192.168.0.2": RESERVED_MARK,
            "192.168.0.3": "00:00:5e:00:53:01",
            "bogus": EXCLUDED_MARK,
        }
    )
    assert allocated == [parse_addr("192.168.0.3")]
    assert excluded == [parse_addr("192.168.0.100")]
    assert reserved == [parse_addr("192.168.0.2")]


def test_is_ip_addr_in_list():
    addrs = [parse_addr("10.0.0.1"), parse_addr("::1")]
    assert is_ip_addr_in_list(parse_addr("::1"), addrs) is True
    assert is_ip_addr_in_list(parse_addr("10.0.0.2"), addrs) is False
    assert is_ip_addr_in_list(parse_addr("10.0.0.1"), []) is False


def test_is_ip_in_between_of():
    assert is_ip_in_between_of("10.0.0.1", "10.0.0.1", "10.0.0.9") is True
    assert is_ip_in_between_of("10.0.0.9", "10.0.0.1", "10.0.0.9") is True
    assert is_ip_in_between_of("10.0.0.10", "10.0.0.1", "10.0.0.9") is False
    assert is_ip_in_between_of("bogus", "10.0.0.1", "10.0.0.9") is False
    assert is_ip_in_between_of("::1", "10.0.0.1", "10.0.0.9") is False
    assert is_ip_in_between_of("10.0.0.5", "::", "::ffff") is False


def _vmnetcfg(name, *networks):
    return VirtualMachineNetworkConfig(
        namespace="default",
        name=name,
        spec=VirtualMachineNetworkConfigSpec(
            network_configs=[NetworkConfig(network_name=n) for n in networks]
        ),
    )


def test_who_use_ip_pool():
    store = ResourceStore("virtualmachinenetworkconfigs")
    store.add_indexer(
        VMNETCFG_BY_NETWORK_INDEX,
        lambda cfg: [nc.network_name for nc in cfg.spec.network_configs],
    )
    store.add(_vmnetcfg("vm-1", "default/net-1"))
    store.add(_vmnetcfg("vm-2", "default/net-2"))
    store.add(_vmnetcfg("vm-3", "default/net-2", "default/net-1"))
    getter = VmnetcfgGetter(store)
    users = getter.who_use_ip_pool(IPPool(namespace="default", name="net-1"))
    assert [cfg.name for cfg in users] == ["vm-1", "vm-3"]


def test_who_use_ip_pool_requires_indexer():
    getter = VmnetcfgGetter(ResourceStore("virtualmachinenetworkconfigs"))
    with pytest.raises(KeyError):
        getter.who_use_ip_pool(IPPool(namespace="default", name="net-1"))