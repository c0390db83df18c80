"""
Tests for cloudmanager.state module
"""

import json

import pytest
from unittest.mock import patch

from conftest import NODE1, NODE2, NODE3, build_state


class TestNodeNames:
    """Tests for node name helpers."""

    def test_host_port_and_host(self):
        from cloudmanager.state import node_host, node_host_port

        assert node_host_port("10.0.0.1:8983_solr") == "10.0.0.1:8983"
        assert node_host("10.0.0.1:8983_solr") == "10.0.0.1"
        assert node_host("solr-a") == "solr-a"

    def test_base_url(self):
        from cloudmanager.state import node_base_url

        assert node_base_url("10.0.0.1:8983_solr") == "http://10.0.0.1:8983/solr"
        assert node_base_url("10.0.0.1:8983_solr", "https") == "https://10.0.0.1:8983/solr"


class TestFromClusterData:
    """Tests for building snapshots from ZooKeeper documents."""

    def test_replicas_parsed(self, two_node_state):
        """Every replica is present with its slice, node and leader flag."""
        state = two_node_state

        assert len(state.replicas) == 4
        leaders = [r for r in state.replicas if r.leader]
        assert {(r.slice, r.node) for r in leaders} == {("s1", NODE1), ("s2", NODE2)}
        assert state.find_core("c1_s1_replica2").name == "core_node2"

    def test_active_requires_live_node(self):
        """A replica reporting active on a dead node is not active."""
        state = build_state(
            [NODE1],
            {"c1": {"s1": [(NODE1, "active", True), (NODE2, "active", False)]}},
        )

        by_node = {r.node: r for r in state.replicas}
        assert by_node[NODE1].active is True
        assert by_node[NODE2].active is False
        assert state.inactive_replicas == [by_node[NODE2]]

    def test_unknown_replica_state(self):
        from cloudmanager.state import ReplicaStatus

        state = build_state([NODE1], {"c1": {"s1": [(NODE1, "sleeping", False)]}})

        assert state.replicas[0].status == ReplicaStatus.UNKNOWN
        assert state.replicas[0].active is False

    def test_aliases_split(self):
        """Alias targets are stored comma separated in aliases.json."""
        state = build_state([NODE1], {}, aliases={"live": "c1,c2"})

        assert state.get_alias("live").collections == ("c1", "c2")
        assert state.get_alias("missing") is None

    def test_collection_metadata(self):
        from cloudmanager.state import ClusterState

        state = ClusterState.from_cluster_data(
            [NODE1],
            {
                "c1": {
                    "shards": {"s1": {"state": "active", "replicas": {}}},
                    "configName": "conf1",
                    "replicationFactor": "2",
                    "maxShardsPerNode": "bogus",
                }
            },
        )

        coll = state.get_collection("c1")
        assert coll.config_name == "conf1"
        assert coll.replication_factor == 2
        assert coll.max_shards_per_node is None
        assert coll.slice_names == ["s1"]

    def test_to_json(self, two_node_state):
        data = json.loads(two_node_state.to_json())

        assert data["live_nodes"] == [NODE1, NODE2]
        assert data["collections"]["c1"]["slices"] == ["s1", "s2"]
        assert len(data["replicas"]) == 4


class TestQueries:
    """Tests for derived queries."""

    def test_replicas_on_and_nodes_with_collection(self, two_node_state):
        state = two_node_state

        assert {r.slice for r in state.replicas_on(NODE1)} == {"s1", "s2"}
        assert state.replicas_on(NODE3) == []
        assert state.nodes_with_collection("c1") == {NODE1, NODE2}
        assert state.nodes_with_collection("nope") == set()

    def test_live_replicas_skip_dead_nodes_and_inactive_slices(self):
        state = build_state(
            [NODE1],
            {
                "c1": {
                    "s1": [(NODE1, "active", True), (NODE2, "active", False)],
                    "s2": {"state": "inactive", "replicas": [(NODE1, "active", True)]},
                }
            },
        )

        live = state.live_replicas_for("c1")
        assert [(r.slice, r.node) for r in live] == [("s1", NODE1)]

    def test_leader_for(self, two_node_state):
        assert two_node_state.leader_for("c1", "s2").node == NODE2
        assert two_node_state.leader_for("c1", "s9") is None

    def test_all_nodes_includes_referenced(self):
        state = build_state([NODE1], {"c1": {"s1": [(NODE3, "down", False)]}})

        assert state.all_nodes == frozenset({NODE1, NODE3})


class TestCanonicalNodeName:
    """Tests for resolving node references."""

    @pytest.fixture(autouse=True)
    def no_dns(self):
        with patch("cloudmanager.state._resolve_address", return_value=None):
            yield

    def test_exact_match(self, two_node_state):
        assert two_node_state.canonical_node_name(NODE2) == NODE2

    def test_host_port(self, two_node_state):
        assert two_node_state.canonical_node_name("10.0.0.2:8983") == NODE2

    def test_url(self, two_node_state):
        assert two_node_state.canonical_node_name("http://10.0.0.2:8983/solr") == NODE2

    def test_bare_host(self, two_node_state):
        assert two_node_state.canonical_node_name("10.0.0.1") == NODE1

    def test_unknown_host(self, two_node_state):
        from cloudmanager.errors import NodeNotFoundError

        with pytest.raises(NodeNotFoundError) as exc_info:
            two_node_state.canonical_node_name("unknown-host")
        assert exc_info.value.reference == "unknown-host"

    def test_ambiguous_host(self):
        from cloudmanager.errors import NodeNotFoundError

        state = build_state(["10.0.0.1:8983_solr", "10.0.0.1:7574_solr"], {})

        with pytest.raises(NodeNotFoundError, match="ambiguous"):
            state.canonical_node_name("10.0.0.1")
        assert state.canonical_node_name("10.0.0.1:7574") == "10.0.0.1:7574_solr"

    def test_offline_reference(self):
        """Nodes known only from replica metadata resolve only when allowed."""
        from cloudmanager.errors import NodeNotFoundError

        state = build_state([NODE1], {"c1": {"s1": [(NODE1, "active", True), (NODE3, "down", False)]}})

        with pytest.raises(NodeNotFoundError):
            state.canonical_node_name("10.0.0.3")
        assert state.canonical_node_name("10.0.0.3", allow_offline_references=True) == NODE3


class TestCanonicalNodeNameDns:
    """Tests for resolving node references by address."""

    def test_hostname_resolves_to_node(self, two_node_state):
        addresses = {"solr-b.example.com": "10.0.0.2", "10.0.0.1": "10.0.0.1", "10.0.0.2": "10.0.0.2"}

        with patch("cloudmanager.state._resolve_address", side_effect=addresses.get):
            assert two_node_state.canonical_node_name("solr-b.example.com") == NODE2
            assert two_node_state.canonical_node_name("solr-b.example.com:8983") == NODE2
