"""
Cloud Manager Configuration

Connection and polling settings for the coordination service and the
cluster management API. Override with environment variables or a YAML file.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Optional


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    if value.lower() in ("none", "inf", "infinite"):
        return None
    return float(value)


@dataclass
class ManagerConfig:
    """Settings shared by the ClusterManager, its clients and the poller."""

    # ZooKeeper connection string, including any chroot path
    zk_hosts: str = ""
    zk_timeout: float = 15.0

    # Management API. None means no read timeout: long collection or
    # replica operations are left to finish server-side.
    http_timeout: Optional[float] = None
    http_connect_timeout: float = 10.0
    solr_scheme: str = "http"

    # Seconds between state samples in waitactive
    poll_interval: float = 5.0
    # Seconds between checks while an Action waits for the cluster
    replication_poll_interval: float = 2.0
    # Upper bound for those waits; None waits forever
    replication_timeout: Optional[float] = None

    # Prometheus textfile written when a run ends, for the node exporter
    # textfile collector to pick up. None skips the export.
    metrics_file: Optional[str] = None

    def __post_init__(self):
        self.zk_hosts = os.getenv("CLOUDMANAGER_ZK", self.zk_hosts)
        self.zk_timeout = _env_float("CLOUDMANAGER_ZK_TIMEOUT", self.zk_timeout)
        self.http_timeout = _env_float("CLOUDMANAGER_HTTP_TIMEOUT", self.http_timeout)
        self.poll_interval = _env_float("CLOUDMANAGER_POLL_INTERVAL", self.poll_interval)
        self.solr_scheme = os.getenv("CLOUDMANAGER_SOLR_SCHEME", self.solr_scheme)
        self.metrics_file = os.getenv("CLOUDMANAGER_METRICS_FILE", self.metrics_file)

    @classmethod
    def from_yaml(cls, path: str, **overrides: Any) -> "ManagerConfig":
        """Load configuration from a YAML file; keyword overrides win."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)
