"""
Pytest configuration and fixtures for cloud manager tests
"""

import itertools
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

NODE1 = "10.0.0.1:8983_solr"
NODE2 = "10.0.0.2:8983_solr"
NODE3 = "10.0.0.3:8983_solr"
NODE4 = "10.0.0.4:8983_solr"


def collection_doc(name, slices, config_name="conf1", replication_factor=None):
    """
    Build a state.json style document.

    slices maps slice name to a list of (node, state, leader) tuples, or to
    a dict with "state" and "replicas" keys for non-active slices.
    """
    counter = itertools.count(1)
    shards = {}
    for slice_name, entry in slices.items():
        slice_state = "active"
        if isinstance(entry, dict):
            slice_state = entry.get("state", "active")
            entry = entry["replicas"]
        replicas = {}
        for i, (node, state, leader) in enumerate(entry, 1):
            host_port = node.partition("_")[0]
            replicas[f"core_node{next(counter)}"] = {
                "core": f"{name}_{slice_name}_replica{i}",
                "node_name": node,
                "base_url": f"http://{host_port}/solr",
                "state": state,
                "leader": "true" if leader else "false",
            }
        shards[slice_name] = {"state": slice_state, "replicas": replicas}

    doc = {"shards": shards, "configName": config_name}
    if replication_factor is not None:
        doc["replicationFactor"] = str(replication_factor)
    return doc


def build_state(live_nodes, collections, aliases=None, overseer=None):
    """ClusterState from live nodes and {collection: {slice: [(node, state, leader)]}}."""
    from cloudmanager.state import ClusterState

    docs = {name: collection_doc(name, slices) for name, slices in collections.items()}
    return ClusterState.from_cluster_data(live_nodes, docs, aliases or {}, overseer)


@pytest.fixture
def make_state():
    """Factory fixture returning build_state."""
    return build_state


@pytest.fixture
def two_node_state():
    """Collection c1 with slices s1, s2, each replicated on NODE1 and NODE2."""
    return build_state(
        [NODE1, NODE2],
        {
            "c1": {
                "s1": [(NODE1, "active", True), (NODE2, "active", False)],
                "s2": [(NODE1, "active", False), (NODE2, "active", True)],
            }
        },
    )


@pytest.fixture
def manager_config():
    from cloudmanager.config import ManagerConfig

    return ManagerConfig(
        zk_hosts="zk1:2181/solr",
        poll_interval=0.0,
        replication_poll_interval=0.0,
        replication_timeout=None,
    )


@pytest.fixture
def mock_manager(manager_config):
    """
    A ClusterManager stand-in.

    Set manager.current_state.return_value (or side_effect) to drive the
    snapshots actions see; manager.admin records management API calls.
    """
    manager = MagicMock()
    manager.config = manager_config
    manager.admin = MagicMock()
    manager.admin.collections.return_value = {"responseHeader": {"status": 0}}
    manager.admin.replication.return_value = {"responseHeader": {"status": 0}}
    manager.any_live_node.return_value = NODE1
    manager.config_exists.return_value = True
    return manager


# Markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
