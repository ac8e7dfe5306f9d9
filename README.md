# vmdhcp

Building blocks for handing out IPv4 addresses to virtual machines from
named IP pools. The package uses nothing outside the standard library.

- `vmdhcp.ipam`: per-network subnets. You can allocate a chosen address or
  the lowest free one, release addresses, revoke them and count them.
- `vmdhcp.util`: strict address parsing, CIDR loading (network and
  broadcast address), reading a pool's settings, splitting allocation
  maps, and building length-limited agent names.
- `vmdhcp.resources`: dataclasses for IP pools, VM network configurations,
  network attachment definitions and nodes, plus `ResourceStore`, a
  thread-safe in-memory store with label selectors and named indexers.
- `vmdhcp.metrics`: gauges for pool usage and for the status of VM network
  configurations. They are rendered in the Prometheus text format and
  served through a WSGI callable.
- `vmdhcp.webhook`: admission helpers. There is a mutator that fills in a
  pool's missing server IP and range, and validators for IP pools and VM
  network configurations.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Allocating addresses

```python
from vmdhcp.ipam import IPAllocator, IPAMError

allocator = IPAllocator()
allocator.new_ip_subnet("default/net-1", "192.168.0.0/24", "192.168.0.10", "192.168.0.254")

allocator.allocate_ip("default/net-1", "192.168.0.58")  # a chosen address
ip = allocator.allocate_ip("default/net-1", "")          # lowest free: 192.168.0.10

allocator.get_used("default/net-1")       # 2
allocator.deallocate_ip("default/net-1", ip)

try:
    allocator.allocate_ip("default/net-1", "192.168.1.1")
except IPAMError as err:
    print(err)  # designated ip 192.168.1.1 is not in subnet 192.168.0.0/24
```

Other methods:

- `is_allocated`, `get_available` and `list_all`. `list_all` maps each
  managed address to `"true"` or `"false"`.
- `revoke_ip`, which takes an address out of management.
- `get_usage`, which logs the subnet layout through `logging`.
- `delete_ip_subnet` and `is_network_initialized`.

Every failure raises `IPAMError`.

`IPAllocatorBuilder` sets up an allocator in one expression. It skips steps
that fail:

```python
from vmdhcp.ipam import IPAllocatorBuilder

allocator = (
    IPAllocatorBuilder()
    .ip_subnet("default/net-1", "10.0.0.0/24", "10.0.0.10", "10.0.0.20")
    .allocate("default/net-1", "10.0.0.11", "10.0.0.12")
    .revoke("default/net-1", "10.0.0.20")
    .build()
)
```

## Pool helpers

- `load_cidr("192.168.0.0/24")` returns the network, the network address
  and the broadcast address.
- `load_pool(ip_pool)` returns a `PoolInfo`. Any address that is not set
  is `None`.
- `parse_addr` is strict. An IPv4 octet with a leading zero, or one above
  255, raises `AddrParseError`, for example
  `ParseAddr("192.168.0.1000"): IPv4 field has value >255`.
- `load_allocated` splits a pool's allocation map into three lists:
  allocated, excluded (`EXCLUDED`) and reserved (`RESERVED`) addresses.
- `get_service_cidr_from_node` reads the value after `--service-cidr`
  from a node's `rke2.io/node-args` annotation.
- `safe_agent_concat_name` joins name parts and appends `-agent`. If the
  joined name is too long, it shortens it and adds a hash suffix.
- `env_get_bool` reads a boolean environment variable.
- `file_exists` is true for existing paths that are not directories.

## Filling in and checking IP pools

```python
from vmdhcp.resources import IPPool, NetworkAttachmentDefinition, ResourceStore
from vmdhcp.util import VMNETCFG_BY_NETWORK_INDEX
from vmdhcp.webhook.ippool_mutator import Mutator
from vmdhcp.webhook.ippool_validator import Validator

pool = IPPool(namespace="default", name="net-1")
pool.spec.ipv4_config.cidr = "192.168.0.0/24"
pool.spec.network_name = "default/net-1"

patch = Mutator().create(None, pool)
# replace /spec/ipv4Config/pool     -> Pool(start="192.168.0.1", end="192.168.0.254")
# replace /spec/ipv4Config/serverIP -> "192.168.0.1"

nads = ResourceStore("network-attachment-definitions.k8s.cni.cncf.io")
nads.add(NetworkAttachmentDefinition(namespace="default", name="net-1"))

vmnetcfgs = ResourceStore("virtualmachinenetworkconfigs")
vmnetcfgs.add_indexer(
    VMNETCFG_BY_NETWORK_INDEX,
    lambda cfg: [nc.network_name for nc in cfg.spec.network_configs],
)

validator = Validator("10.53.0.0/16", nads, vmnetcfgs)
validator.create(None, pool)
```

`Validator` raises `AdmissionError` in these cases:

- a start, end, server or router address lies outside the subnet, or is
  the network or broadcast address;
- the server address equals the router address, or is already allocated
  or excluded (checked on update);
- the subnet overlaps the service CIDR;
- the named network attachment definition is missing.

Example message:
`cannot create IPPool default/net-1 because server ip 192.168.100.2 is not within subnet`.

On delete, `Validator` refuses pools that VM network configurations still
use. It finds them through the `VMNETCFG_BY_NETWORK_INDEX` indexer on the
store. `VmNetCfgValidator` rejects configurations whose networks have no IP
pool.

## Metrics

```python
from vmdhcp.metrics import MetricsAllocator

metrics = MetricsAllocator()
metrics.update_ip_pool_used("net-1", "192.168.0.0/24", "default/net-1", 3)
metrics.update_vm_net_cfg_status("vm-1", "default/net-1", "02:00:00:00:00:01", "192.168.0.10", "Allocated")
print(metrics.render())
metrics.samples("vmdhcpcontroller_ippool_used")  # [(labels, 3.0)]
```

`metrics.wsgi_app` is a WSGI application that serves the rendered gauges.

## What this package does not do

It has no command-line program and does not run an HTTP server, a DHCP
server or a controller loop. It does not talk to a cluster API either.
Objects live only in the in-memory `ResourceStore`, and admission checks
are ordinary method calls. To expose metrics or admission endpoints, run
them on a web server of your choice.