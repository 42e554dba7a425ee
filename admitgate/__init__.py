"""Request admission gateway: threat detection, address policy and sliding-window quotas."""

__version__ = "0.1.0"
