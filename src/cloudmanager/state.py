"""Immutable snapshots of SolrCloud topology."""

import json
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

from cloudmanager.errors import NodeNotFoundError


class ReplicaStatus(str, Enum):
    """Replica states published in collection state."""

    ACTIVE = "active"
    DOWN = "down"
    RECOVERING = "recovering"
    RECOVERY_FAILED = "recovery_failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "ReplicaStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def node_host_port(node_name: str) -> str:
    """'10.0.0.1:8983_solr' -> '10.0.0.1:8983'"""
    return node_name.partition("_")[0]


def node_host(node_name: str) -> str:
    """'10.0.0.1:8983_solr' -> '10.0.0.1'"""
    return node_host_port(node_name).rpartition(":")[0] or node_host_port(node_name)


def node_base_url(node_name: str, scheme: str = "http") -> str:
    """'10.0.0.1:8983_solr' -> 'http://10.0.0.1:8983/solr'"""
    host_port, _, context = node_name.partition("_")
    path = "/" + context.replace("_", "/") if context else ""
    return f"{scheme}://{host_port}{path}"


def _resolve_address(host: str) -> str | None:
    try:
        return socket.gethostbyname(host)
    except (socket.gaierror, UnicodeError):
        return None


@dataclass(frozen=True)
class Replica:
    """One physical copy of a slice, hosted by one node."""

    collection: str
    slice: str
    node: str
    core: str
    name: str = ""
    base_url: str = ""
    status: ReplicaStatus = ReplicaStatus.UNKNOWN
    leader: bool = False
    active: bool = False

    @property
    def host(self) -> str:
        """Base URL without its scheme, e.g. '10.0.0.1:8983/solr'."""
        if "://" in self.base_url:
            return self.base_url.split("://", 1)[1]
        return self.base_url

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "slice": self.slice,
            "node": self.node,
            "core": self.core,
            "name": self.name,
            "base_url": self.base_url,
            "status": self.status.value,
            "leader": self.leader,
            "active": self.active,
        }


@dataclass(frozen=True)
class Slice:
    """A partition of a collection."""

    name: str
    state: str = "active"

    @property
    def is_active(self) -> bool:
        return self.state == "active"


@dataclass(frozen=True)
class Collection:
    """A named dataset divided into slices."""

    name: str
    slices: tuple[Slice, ...] = ()
    config_name: str | None = None
    replication_factor: int | None = None
    max_shards_per_node: int | None = None

    @property
    def slice_names(self) -> list[str]:
        return sorted(s.name for s in self.slices)

    def get_slice(self, name: str) -> Slice | None:
        for s in self.slices:
            if s.name == name:
                return s
        return None


@dataclass(frozen=True)
class Alias:
    """A named pointer to one or more collections."""

    name: str
    collections: tuple[str, ...]


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


@dataclass(frozen=True)
class ClusterState:
    """
    Topology of the cluster at one instant.

    Every query is computed from the stored values; nothing here changes the
    cluster. Take a new snapshot from the ClusterManager to observe changes.
    """

    live_nodes: frozenset[str] = frozenset()
    collections: tuple[Collection, ...] = ()
    replicas: tuple[Replica, ...] = ()
    aliases: tuple[Alias, ...] = ()
    overseer: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_cluster_data(
        cls,
        live_nodes: Iterable[str],
        collection_states: Mapping[str, Mapping[str, Any]],
        aliases: Mapping[str, Any] | None = None,
        overseer: str | None = None,
    ) -> "ClusterState":
        """
        Build a snapshot from the documents stored in ZooKeeper.

        Args:
            live_nodes: Children of /live_nodes
            collection_states: Collection name to its state.json document, with
                the collection's "configName" merged in when known
            aliases: The "collection" map of aliases.json, alias to a
                comma separated collection list
            overseer: Node name of the current overseer
        """
        live = frozenset(live_nodes)
        collections = []
        replicas = []

        for coll_name in sorted(collection_states):
            doc = collection_states[coll_name]
            slices = []
            for slice_name, slice_doc in sorted((doc.get("shards") or {}).items()):
                slices.append(Slice(name=slice_name, state=slice_doc.get("state", "active")))
                for replica_name, rdoc in sorted((slice_doc.get("replicas") or {}).items()):
                    node = rdoc.get("node_name", "")
                    status = ReplicaStatus.parse(rdoc.get("state"))
                    replicas.append(
                        Replica(
                            collection=coll_name,
                            slice=slice_name,
                            node=node,
                            core=rdoc.get("core", ""),
                            name=replica_name,
                            base_url=rdoc.get("base_url", ""),
                            status=status,
                            leader=_as_bool(rdoc.get("leader", False)),
                            active=status == ReplicaStatus.ACTIVE and node in live,
                        )
                    )
            collections.append(
                Collection(
                    name=coll_name,
                    slices=tuple(slices),
                    config_name=doc.get("configName"),
                    replication_factor=_as_int(doc.get("replicationFactor")),
                    max_shards_per_node=_as_int(doc.get("maxShardsPerNode")),
                )
            )

        alias_list = []
        for alias_name, targets in sorted((aliases or {}).items()):
            if isinstance(targets, str):
                targets = [t for t in targets.split(",") if t]
            alias_list.append(Alias(name=alias_name, collections=tuple(targets)))

        return cls(
            live_nodes=live,
            collections=tuple(collections),
            replicas=tuple(replicas),
            aliases=tuple(alias_list),
            overseer=overseer,
        )

    # Collections

    def has_collection(self, name: str) -> bool:
        return self.get_collection(name) is not None

    def get_collection(self, name: str) -> Collection | None:
        for collection in self.collections:
            if collection.name == name:
                return collection
        return None

    def get_alias(self, name: str) -> Alias | None:
        for alias in self.aliases:
            if alias.name == name:
                return alias
        return None

    # Replicas

    def replicas_for(self, collection: str) -> list[Replica]:
        return [r for r in self.replicas if r.collection == collection]

    def live_replicas_for(self, collection: str) -> list[Replica]:
        """Replicas on live nodes whose slice is active."""
        coll = self.get_collection(collection)
        active_slices = {s.name for s in coll.slices if s.is_active} if coll else set()
        return [
            r
            for r in self.replicas_for(collection)
            if r.node in self.live_nodes and r.slice in active_slices
        ]

    def replicas_for_slice(self, collection: str, slice_name: str) -> list[Replica]:
        return [r for r in self.replicas_for(collection) if r.slice == slice_name]

    def replicas_on(self, node: str) -> list[Replica]:
        return [r for r in self.replicas if r.node == node]

    @property
    def inactive_replicas(self) -> list[Replica]:
        return [r for r in self.replicas if not r.active]

    def leader_for(self, collection: str, slice_name: str) -> Replica | None:
        for replica in self.replicas_for_slice(collection, slice_name):
            if replica.leader:
                return replica
        return None

    def find_core(self, core: str) -> Replica | None:
        for replica in self.replicas:
            if replica.core == core:
                return replica
        return None

    # Nodes

    def nodes_with_collection(self, collection: str) -> set[str]:
        return {r.node for r in self.replicas_for(collection)}

    @property
    def all_nodes(self) -> frozenset[str]:
        """Live nodes plus any node still named by replica metadata."""
        return self.live_nodes | {r.node for r in self.replicas if r.node}

    def canonical_node_name(self, reference: str, allow_offline_references: bool = False) -> str:
        """
        Resolve a user supplied node reference to a known node name.

        Accepts a full node name ('host:8983_solr'), 'host:port', a bare host,
        a base URL, or anything that resolves to the same address as exactly
        one known node. Only live nodes are considered unless
        allow_offline_references is set.

        Raises:
            NodeNotFoundError: no node, or more than one node, matches
        """
        candidates = sorted(self.all_nodes if allow_offline_references else self.live_nodes)
        reference = reference.strip()

        if reference in candidates:
            return reference

        wanted = reference
        if "://" in reference:
            wanted = urlparse(reference).netloc
        wanted_host_port = node_host_port(wanted)

        matches = [n for n in candidates if node_host_port(n) == wanted_host_port]
        if matches:
            return self._single(reference, matches)

        wanted_host = wanted_host_port.rpartition(":")[0] or wanted_host_port
        wanted_port = wanted_host_port.rpartition(":")[2] if ":" in wanted_host_port else None

        def port_ok(node: str) -> bool:
            return wanted_port is None or node_host_port(node).rpartition(":")[2] == wanted_port

        matches = [n for n in candidates if node_host(n) == wanted_host and port_ok(n)]
        if matches:
            return self._single(reference, matches)

        address = _resolve_address(wanted_host)
        if address:
            matches = [
                n for n in candidates if port_ok(n) and _resolve_address(node_host(n)) == address
            ]
            if matches:
                return self._single(reference, matches)

        raise NodeNotFoundError(reference)

    @staticmethod
    def _single(reference: str, matches: list[str]) -> str:
        if len(matches) > 1:
            raise NodeNotFoundError(
                reference,
                f"Node reference '{reference}' is ambiguous: {', '.join(matches)}",
            )
        return matches[0]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp,
            "overseer": self.overseer,
            "live_nodes": sorted(self.live_nodes),
            "collections": {
                c.name: {
                    "config": c.config_name,
                    "replication_factor": c.replication_factor,
                    "max_shards_per_node": c.max_shards_per_node,
                    "slices": [s.name for s in c.slices],
                }
                for c in self.collections
            },
            "aliases": {a.name: list(a.collections) for a in self.aliases},
            "replicas": [r.to_dict() for r in self.replicas],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
