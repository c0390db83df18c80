"""
Cluster Planning

Functions that turn a ClusterState plus an intent into an Operation. They
only read the snapshot; nothing happens to the cluster until the returned
Operation is executed. A violated precondition raises PlanningError and no
Operation is produced.
"""

import logging
import os
import re
from collections import Counter, defaultdict
from typing import Iterable, Optional

from cloudmanager.actions import AddReplica, BackupIndex, DeleteReplica, FetchIndex, RestoreIndex
from cloudmanager.errors import PlanningError
from cloudmanager.operation import Operation
from cloudmanager.state import ClusterState, Replica

logger = logging.getLogger(__name__)

_REPLICA_SUFFIX = re.compile(r"replica\d+")


def _require_collection(state: ClusterState, collection: str) -> None:
    if not state.has_collection(collection):
        raise PlanningError(f"Could not find collection {collection}")


def populate_cluster(
    state: ClusterState,
    collection: str,
    slices_per_node: int,
    wait_for_replication: bool = True,
) -> Operation:
    """
    Spread a collection built on a single indexer node across the rest of the cluster.

    The expected build is: add an indexer node, create the collection on it
    alone, index, then populate the other nodes from it (this function) and
    finally drop the indexer. Every other live node receives exactly
    slices_per_node distinct slices, and together they hold complete copies
    of the collection.

    Raises:
        PlanningError: if the collection isn't on exactly one live node, or the
            slices and nodes can't be divided into complete copies
    """
    _require_collection(state, collection)
    if slices_per_node < 1:
        raise PlanningError(f"slicesPerNode must be positive, got {slices_per_node}")

    hosting = state.nodes_with_collection(collection) & state.live_nodes
    nodes_without = sorted(state.live_nodes - hosting)
    if len(hosting) != 1:
        raise PlanningError(
            f"Should be expanding from a single node into a cluster of nodes, "
            f"but {collection} is on {len(hosting)} live nodes"
        )

    slice_names = sorted({r.slice for r in state.replicas_for(collection)})
    if len(slice_names) < slices_per_node:
        raise PlanningError(
            f"Can't have more slices per node ({slices_per_node}) than the total "
            f"number of slices ({len(slice_names)})"
        )
    if len(slice_names) % slices_per_node != 0:
        raise PlanningError(
            f"{len(slice_names)} slices can't be divided evenly into groups of {slices_per_node}"
        )

    nodes_per_set = len(slice_names) // slices_per_node
    if len(nodes_without) % nodes_per_set != 0:
        raise PlanningError(
            f"{len(nodes_without)} available nodes can't make complete copies of "
            f"{collection} at {nodes_per_set} nodes per copy"
        )
    replication_factor = len(nodes_without) // nodes_per_set

    logger.info(
        "Populate: available nodes %d, replication factor %d, nodes per set %d",
        len(nodes_without),
        replication_factor,
        nodes_per_set,
    )

    dealt = slice_names * replication_factor
    groups = [dealt[i:i + slices_per_node] for i in range(0, len(dealt), slices_per_node)]

    return Operation(
        AddReplica(collection, slice_name, node, wait_for_replication)
        for node, group in zip(nodes_without, groups)
        for slice_name in group
    )


def fill_cluster(
    state: ClusterState,
    collection: str,
    nodes: Optional[Iterable[str]] = None,
    wait_for_replication: bool = True,
) -> Operation:
    """
    Add as many replicas as the cluster has room for, evenly.

    The busiest node's replica count for the collection is the per-node
    limit. Each new replica goes to the slice with the fewest replicas, on
    the eligible node with the fewest replicas that doesn't already hold that
    slice. Ties go to the lowest name. Slices may end up with unequal counts
    when the nodes don't divide evenly.

    Args:
        nodes: Restrict new replicas to these canonical node names (default:
            all live nodes)
    """
    _require_collection(state, collection)
    current = state.replicas_for(collection)
    if not current:
        raise PlanningError(f"Collection {collection} has no replicas to fill from")

    per_node = Counter(r.node for r in current)
    per_slice = Counter({name: 0 for name in state.get_collection(collection).slice_names})
    per_slice.update(r.slice for r in current)
    hosts_of = defaultdict(set)
    for replica in current:
        hosts_of[replica.slice].add(replica.node)

    max_slices_per_node = max(per_node.values())
    eligible = set(state.live_nodes)
    if nodes is not None:
        eligible &= set(nodes)
    eligible_nodes = sorted(eligible)

    used_slots = sum(per_node[n] for n in eligible_nodes)
    available_slots = max(0, max_slices_per_node * len(eligible_nodes) - used_slots)
    logger.info(
        "Fill: %d eligible nodes at up to %d replicas each, %d slots available",
        len(eligible_nodes),
        max_slices_per_node,
        available_slots,
    )

    actions = []
    for _ in range(available_slots):
        min_slice = min(sorted(per_slice), key=lambda s: per_slice[s])
        candidates = [n for n in eligible_nodes if n not in hosts_of[min_slice]]
        if not candidates:
            raise PlanningError(
                f"No eligible node is missing slice {min_slice} of {collection}"
            )
        min_node = min(candidates, key=lambda n: per_node[n])

        actions.append(AddReplica(collection, min_slice, min_node, wait_for_replication))
        per_slice[min_slice] += 1
        per_node[min_node] += 1
        hosts_of[min_slice].add(min_node)

    return Operation(actions)


def clone_replicas(
    state: ClusterState,
    source: str,
    target: str,
    wait_for_replication: bool = True,
) -> Operation:
    """
    Add a replica on target for every replica currently on source.

    source is left alone; follow with wipe_node to migrate.
    """
    return Operation(
        AddReplica(r.collection, r.slice, target, wait_for_replication)
        for r in state.replicas_on(source)
    )


def clean_cluster(state: ClusterState, collection: str) -> Operation:
    """
    Remove every inactive replica of a collection.

    A replica is inactive when it's in a bad state or its node is down; the
    node doesn't need to be up for the replica to be removed from the
    cluster state.
    """
    return Operation(
        DeleteReplica(collection, r.slice, r.node)
        for r in state.inactive_replicas
        if r.collection == collection
    )


def wipe_node(
    state: ClusterState,
    node: str,
    collection: Optional[str] = None,
    safety_factor: int = 1,
) -> Operation:
    """Delete every replica on a node, optionally only those of one collection."""
    replicas = state.replicas_on(node)
    if collection is not None:
        replicas = [r for r in replicas if r.collection == collection]
    return Operation(DeleteReplica(r.collection, r.slice, r.node, safety_factor) for r in replicas)


def wipe_collection_from_node(state: ClusterState, collection: str, node: str) -> Operation:
    return wipe_node(state, node, collection)


def migrate_node(
    state: ClusterState,
    source: str,
    target: str,
    wait_for_replication: bool = True,
    safety_factor: int = 1,
) -> Operation:
    """Clone source onto target, then drain source."""
    return clone_replicas(state, source, target, wait_for_replication) + wipe_node(
        state, source, safety_factor=safety_factor
    )


def first_core(core: str) -> str:
    """'c_shard1_replica3' -> 'c_shard1_replica1'"""
    return _REPLICA_SUFFIX.sub("replica1", core)


def deploy_from_another_cluster(state: ClusterState, collection: str, source_host: str) -> Operation:
    """
    Copy a collection's index from another cluster.

    For each slice the leader fetches the first replica's core from
    source_host, then each follower fetches from that leader. The target
    collection must exist with the same slices.
    """
    _require_collection(state, collection)

    by_slice: dict[str, list[Replica]] = defaultdict(list)
    for replica in state.replicas_for(collection):
        by_slice[replica.slice].append(replica)
    groups = sorted(by_slice.values(), key=lambda rs: rs[0].core)

    operations = []
    for replicas in groups:
        leaders = [r for r in replicas if r.leader]
        followers = [r for r in replicas if not r.leader]
        actions = []
        for leader in leaders:
            actions.append(FetchIndex(leader.core, first_core(leader.core), source_host))
            actions.extend(FetchIndex(f.core, leader.core, leader.host, "") for f in followers)
        if not leaders:
            logger.warning("Slice %s of %s has no leader; skipping it", replicas[0].slice, collection)
        operations.append(Operation(actions))

    return Operation.concat(operations)


def backup_path(directory: str, collection: str, slice_name: str) -> str:
    return os.path.join(directory, collection, slice_name)


def backup_collection(
    state: ClusterState,
    collection: str,
    directory: str,
    keep: int,
    parallel: bool,
) -> Operation:
    """
    Back up a collection's index, one snapshot per slice taken from its leader.

    directory should be shared by all nodes for restore_collection to work.
    The collection and slice names are appended to it, so keep counts per
    slice. Cluster state in ZooKeeper (collection definition, config) is not
    backed up.

    Args:
        keep: Snapshots to keep per slice, including this one; room for
            keep+1 is needed while the new one is written
        parallel: Send every request without waiting for each backup to finish
    """
    leaders = [r for r in state.live_replicas_for(collection) if r.leader]
    return Operation(
        BackupIndex(r.core, backup_path(directory, r.collection, r.slice), not parallel, keep)
        for r in leaders
    )


def restore_collection(
    state: ClusterState,
    collection: str,
    directory: str,
    source_collection: Optional[str] = None,
    parallel: bool = False,
) -> Operation:
    """
    Restore every live core of a collection from the latest backup_collection snapshot.

    The target should match the backed up collection (schema, slices); only
    its name and replication factor may differ.

    Args:
        directory: The same directory given to backup_collection
        source_collection: Name of the collection that made the backup, if
            different
    """
    return Operation(
        RestoreIndex(
            r.core,
            backup_path(directory, source_collection or r.collection, r.slice),
            not parallel,
        )
        for r in state.live_replicas_for(collection)
    )
