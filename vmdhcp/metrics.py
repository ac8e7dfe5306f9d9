"""Gauges describing pool usage and network-config state, served in text exposition format."""

from __future__ import annotations

import math
import threading
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

LABEL_IPPOOL_NAME = "ippool"
LABEL_CIDR = "cidr"
LABEL_NETWORK_NAME = "network"
LABEL_VMNETCFG_NAME = "vmnetcfg"
LABEL_MAC_ADDRESS = "mac"
LABEL_IP_ADDRESS = "ip"
LABEL_STATE = "state"

IPPOOL_USED = "vmdhcpcontroller_ippool_used"
IPPOOL_AVAILABLE = "vmdhcpcontroller_ippool_available"
VMNETCFG_STATUS = "vmdhcpcontroller_vmnetcfg_status"

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

Sample = Tuple[Dict[str, str], float]


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


class _GaugeVec:
    def __init__(self, name: str, help_text: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.help = help_text
        self.label_names = tuple(label_names)
        self._values: Dict[Tuple[str, ...], float] = {}

    def _matches(self, labels: Mapping[str, str]) -> bool:
        return set(labels) == set(self.label_names)

    def set(self, labels: Mapping[str, str], value: float) -> None:
        if not self._matches(labels):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(labels)}"
            )
        self._values[tuple(labels[n] for n in self.label_names)] = float(value)

    def delete(self, labels: Mapping[str, str]) -> bool:
        if not self._matches(labels):
            return False
        key = tuple(labels[n] for n in self.label_names)
        return self._values.pop(key, None) is not None

    def series(self) -> List[Sample]:
        ordered = sorted(self.label_names)
        samples = [(dict(zip(self.label_names, key)), value) for key, value in self._values.items()]
        samples.sort(key=lambda s: tuple(s[0][n] for n in ordered))
        return samples


class MetricsAllocator:
    """Holds the controller's gauges in a private registry."""

    def __init__(self) -> None:
        pool_labels = (LABEL_IPPOOL_NAME, LABEL_CIDR, LABEL_NETWORK_NAME)
        self._ip_pool_used = _GaugeVec(
            IPPOOL_USED, "Amount of IP addresses which are in use", pool_labels
        )
        self._ip_pool_available = _GaugeVec(
            IPPOOL_AVAILABLE, "Amount of IP addresses which are available", pool_labels
        )
        self._vm_net_cfg_status = _GaugeVec(
            VMNETCFG_STATUS,
            "Status of the vmnetcfg objects",
            (
                LABEL_VMNETCFG_NAME,
                LABEL_NETWORK_NAME,
                LABEL_MAC_ADDRESS,
                LABEL_IP_ADDRESS,
                LABEL_STATE,
            ),
        )
        self._registry: Dict[str, _GaugeVec] = {
            vec.name: vec
            for vec in (self._ip_pool_used, self._ip_pool_available, self._vm_net_cfg_status)
        }
        self._lock = threading.RLock()

    @staticmethod
    def _pool_labels(name: str, cidr: str, network_name: str) -> Dict[str, str]:
        return {LABEL_IPPOOL_NAME: name, LABEL_CIDR: cidr, LABEL_NETWORK_NAME: network_name}

    def update_ip_pool_used(self, name: str, cidr: str, network_name: str, used: int) -> None:
        with self._lock:
            self._ip_pool_used.set(self._pool_labels(name, cidr, network_name), used)

    def update_ip_pool_available(
        self, name: str, cidr: str, network_name: str, available: int
    ) -> None:
        with self._lock:
            self._ip_pool_available.set(self._pool_labels(name, cidr, network_name), available)

    def delete_ip_pool(self, name: str, cidr: str, network_name: str) -> None:
        labels = self._pool_labels(name, cidr, network_name)
        with self._lock:
            self._ip_pool_used.delete(labels)
            self._ip_pool_available.delete(labels)

    def update_vm_net_cfg_status(
        self, name: str, network_name: str, mac_address: str, ip_address: str, state: str
    ) -> None:
        with self._lock:
            self._vm_net_cfg_status.set(
                {
                    LABEL_VMNETCFG_NAME: name,
                    LABEL_NETWORK_NAME: network_name,
                    LABEL_MAC_ADDRESS: mac_address,
                    LABEL_IP_ADDRESS: ip_address,
                    LABEL_STATE: state,
                },
                1,
            )

    def delete_vm_net_cfg_status(self, name: str) -> None:
        """Remove every status series that belongs to the named network config."""
        with self._lock:
            for labels, _ in self._vm_net_cfg_status.series():
                if labels.get(LABEL_VMNETCFG_NAME) == name:
                    self._vm_net_cfg_status.delete(labels)

    def samples(self, metric_name: str) -> List[Sample]:
        """Return (labels, value) pairs of a metric, ordered by label values."""
        with self._lock:
            try:
                vec = self._registry[metric_name]
            except KeyError:
                raise KeyError(f"unknown metric {metric_name}") from None
            return vec.series()

    def render(self) -> str:
        """Render all non-empty metrics in the text exposition format."""
        lines: List[str] = []
        with self._lock:
            for name in sorted(self._registry):
                vec = self._registry[name]
                series = vec.series()
                if not series:
                    continue
                lines.append(f"# HELP {name} {_escape_help(vec.help)}")
                lines.append(f"# TYPE {name} gauge")
                for labels, value in series:
                    pairs = ",".join(
                        f'{key}="{_escape_label(labels[key])}"' for key in sorted(labels)
                    )
                    lines.append(f"{name}{{{pairs}}} {_format_value(value)}")
        return "".join(line + "\n" for line in lines)

    def wsgi_app(
        self, environ: Mapping[str, object], start_response: Callable[..., object]
    ) -> Iterable[bytes]:
        """WSGI application serving the rendered metrics."""
        body = self.render().encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", CONTENT_TYPE), ("Content-Length", str(len(body)))],
        )
        return [body]