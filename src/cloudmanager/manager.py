"""Connection owner and snapshot source for one management run."""

import logging
from typing import Any, Optional

from cloudmanager.clients import SolrAdminClient, ZookeeperReader
from cloudmanager.config import ManagerConfig
from cloudmanager.errors import ConnectivityError, ManagementApiError
from cloudmanager.state import ClusterState

logger = logging.getLogger(__name__)


class ClusterManager:
    """
    Owns the ZooKeeper session and HTTP client for the duration of a run.

    Use it as a context manager so the session is released on every exit
    path:

        with ClusterManager(config) as manager:
            state = manager.current_state()

    Nothing is cached: every current_state() call reads ZooKeeper again.
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        reader: Optional[ZookeeperReader] = None,
        admin: Optional[SolrAdminClient] = None,
    ):
        self.config = config or ManagerConfig()
        self.reader = reader
        self.admin = admin
        self._closed = False

        if self.reader is None:
            if not self.config.zk_hosts:
                raise ConnectivityError("No ZooKeeper connection string configured")
            self.reader = ZookeeperReader(self.config.zk_hosts, timeout=self.config.zk_timeout)
        try:
            self.reader.start()
            if self.admin is None:
                self.admin = SolrAdminClient(self.config)
        except BaseException:
            self.shutdown()
            raise

    def __enter__(self) -> "ClusterManager":
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Release the ZooKeeper session and HTTP client. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            if self.reader is not None:
                self.reader.stop()
        finally:
            if self.admin is not None:
                self.admin.close()

    def current_state(self) -> ClusterState:
        """Read a fresh topology snapshot."""
        reader = self.reader
        state = ClusterState.from_cluster_data(
            live_nodes=reader.live_nodes(),
            collection_states=reader.collection_states(),
            aliases=reader.aliases(),
            overseer=reader.overseer(),
        )
        logger.debug(
            "Read cluster state: %d live nodes, %d collections, %d replicas",
            len(state.live_nodes),
            len(state.collections),
            len(state.replicas),
        )
        return state

    def canonical_node_name(self, reference: str, allow_offline_references: bool = False) -> str:
        return self.current_state().canonical_node_name(reference, allow_offline_references)

    def config_exists(self, name: str) -> bool:
        return self.reader.config_exists(name)

    def any_live_node(self, state: Optional[ClusterState] = None) -> str:
        """A live node to send cluster-wide API requests to."""
        state = state or self.current_state()
        if not state.live_nodes:
            raise ConnectivityError("No live nodes are registered in ZooKeeper")
        return sorted(state.live_nodes)[0]

    def cluster_version(self) -> Optional[str]:
        """Solr version reported by a live node, None if none answers."""
        state = self.current_state()
        for node in sorted(state.live_nodes):
            try:
                info = self.admin.system_info(node)
            except (ConnectivityError, ManagementApiError) as e:
                logger.debug("No version from %s: %s", node, e)
                continue
            lucene = info.get("lucene") or {}
            return lucene.get("solr-spec-version") or lucene.get("solr-impl-version")
        return None
