"""IP address management, pool helpers, metrics and admission checks for VM DHCP pools."""

__version__ = "0.1.0"