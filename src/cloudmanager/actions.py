"""
Cluster Actions

One class per kind of mutation the management API supports. An Action is
planned against one snapshot but executes against whatever the cluster looks
like when it runs, so each one re-reads state and re-checks its own
preconditions before asking the cluster to change.

execute() returns False when the cluster refuses the change or a check fails;
the cause is logged. Connectivity failures propagate.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Optional

from cloudmanager.errors import ManagementApiError, SafetyViolation
from cloudmanager.state import ClusterState, Replica

if TYPE_CHECKING:
    from cloudmanager.manager import ClusterManager

logger = logging.getLogger(__name__)


class Action(ABC):
    """A single planned mutation."""

    kind: ClassVar[str] = "Action"

    @abstractmethod
    def execute(self, manager: "ClusterManager") -> bool:
        """Apply this mutation to the live cluster."""

    @abstractmethod
    def describe(self) -> str:
        """One line for previews."""

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}

    def __str__(self) -> str:
        return f"{self.kind}: {self.describe()}"

    def _fail(self, cause: Any) -> bool:
        logger.warning("%s failed: %s", self, cause)
        return False


def _request_id() -> str:
    return uuid.uuid4().hex


def _wait_for(
    manager: "ClusterManager",
    check: Callable[[], Optional[bool]],
    what: str,
) -> bool:
    """
    Poll until check() returns True (done) or False (failed).

    None means keep waiting. Gives up after config.replication_timeout
    seconds when one is set.
    """
    interval = manager.config.replication_poll_interval
    timeout = manager.config.replication_timeout
    start = time.monotonic()

    while True:
        result = check()
        if result is not None:
            return result
        if timeout is not None and time.monotonic() - start > timeout:
            logger.warning("Gave up waiting for %s after %.0fs", what, timeout)
            return False
        logger.info("Waiting for %s", what)
        time.sleep(interval)


def _submit(manager: "ClusterManager", state: ClusterState, api_action: str, **params: Any) -> dict:
    node = manager.any_live_node(state)
    return manager.admin.collections(node, api_action, **params)


@dataclass(frozen=True)
class AddReplica(Action):
    """Create a new replica of a slice on a node."""

    kind: ClassVar[str] = "AddReplica"

    collection: str
    slice: str
    node: str
    wait_for_replication: bool = True

    def describe(self) -> str:
        mode = "wait" if self.wait_for_replication else "async"
        return f"{self.collection}/{self.slice} onto {self.node} ({mode})"

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        collection = state.get_collection(self.collection)
        if collection is None:
            return self._fail(f"collection {self.collection} does not exist")
        if collection.get_slice(self.slice) is None:
            return self._fail(f"collection {self.collection} has no slice {self.slice}")
        if self.node not in state.live_nodes:
            return self._fail(f"node {self.node} is not live")

        existing = {
            r.core for r in state.replicas_for_slice(self.collection, self.slice) if r.node == self.node
        }
        params: dict[str, Any] = {
            "collection": self.collection,
            "shard": self.slice,
            "node": self.node,
        }
        if not self.wait_for_replication:
            params["async"] = _request_id()

        try:
            _submit(manager, state, "ADDREPLICA", **params)
        except ManagementApiError as e:
            return self._fail(e)

        if not self.wait_for_replication:
            logger.info("Accepted %s", self)
            return True

        def replica_active() -> Optional[bool]:
            current = manager.current_state()
            for replica in current.replicas_for_slice(self.collection, self.slice):
                if replica.node == self.node and replica.core not in existing and replica.active:
                    logger.info("Replica %s is active on %s", replica.core, self.node)
                    return True
            return None

        return _wait_for(manager, replica_active, f"new replica of {self.collection}/{self.slice} on {self.node}")


@dataclass(frozen=True)
class DeleteReplica(Action):
    """
    Remove a slice's replica from a node.

    safety_factor is the number of replicas of the slice, active or not,
    that must remain afterwards. It is checked against the live cluster when
    the action runs, not when it was planned.
    """

    kind: ClassVar[str] = "DeleteReplica"

    collection: str
    slice: str
    node: str
    safety_factor: int = 1

    def describe(self) -> str:
        return f"{self.collection}/{self.slice} from {self.node} (keep >= {self.safety_factor})"

    def check_safety(self, state: ClusterState) -> Replica:
        """Return the replica to delete, or raise SafetyViolation."""
        slice_replicas = state.replicas_for_slice(self.collection, self.slice)
        on_node = [r for r in slice_replicas if r.node == self.node]
        if not on_node:
            raise SafetyViolation(
                f"no replica of {self.collection}/{self.slice} found on {self.node}"
            )

        remaining = len(slice_replicas) - 1
        if remaining < self.safety_factor:
            raise SafetyViolation(
                f"deleting would leave {remaining} replica(s) of {self.collection}/{self.slice}, "
                f"fewer than the safety factor of {self.safety_factor}"
            )

        # prefer removing a replica that isn't serving
        return sorted(on_node, key=lambda r: (r.active, r.core))[0]

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        try:
            replica = self.check_safety(state)
        except SafetyViolation as e:
            return self._fail(e)

        try:
            _submit(
                manager,
                state,
                "DELETEREPLICA",
                collection=self.collection,
                shard=self.slice,
                replica=replica.name,
            )
        except ManagementApiError as e:
            return self._fail(e)

        logger.info("Deleted %s (%s)", replica.core, replica.name)
        return True


@dataclass(frozen=True)
class CreateCollection(Action):
    """
    Create a collection from an uploaded config.

    With async_request the call returns once the cluster accepts the job, so
    a long creation can't be cut short by a client timeout, at the price of
    not seeing creation errors here.
    """

    kind: ClassVar[str] = "CreateCollection"

    name: str
    num_slices: int
    config_name: str
    max_shards_per_node: Optional[int] = None
    replication_factor: Optional[int] = None
    node_set: Optional[tuple[str, ...]] = None
    async_request: bool = False

    def describe(self) -> str:
        parts = [f"{self.name} with {self.num_slices} slices using config {self.config_name}"]
        if self.replication_factor is not None:
            parts.append(f"replicationFactor={self.replication_factor}")
        if self.max_shards_per_node is not None:
            parts.append(f"maxShardsPerNode={self.max_shards_per_node}")
        if self.node_set:
            parts.append(f"nodes={','.join(self.node_set)}")
        if self.async_request:
            parts.append("async")
        return " ".join(parts)

    def execute(self, manager: "ClusterManager") -> bool:
        if not manager.config_exists(self.config_name):
            return self._fail(f"config {self.config_name} does not exist in ZooKeeper")

        state = manager.current_state()
        try:
            _submit(
                manager,
                state,
                "CREATE",
                **{
                    "name": self.name,
                    "numShards": self.num_slices,
                    "collection.configName": self.config_name,
                    "maxShardsPerNode": self.max_shards_per_node,
                    "replicationFactor": self.replication_factor,
                    "createNodeSet": self.node_set,
                    "async": _request_id() if self.async_request else None,
                },
            )
        except ManagementApiError as e:
            return self._fail(e)

        logger.info("%s %s", "Submitted" if self.async_request else "Created", self)
        return True


@dataclass(frozen=True)
class DeleteCollection(Action):
    kind: ClassVar[str] = "DeleteCollection"

    name: str

    def describe(self) -> str:
        return self.name

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        if not state.has_collection(self.name):
            return self._fail(f"collection {self.name} does not exist")
        try:
            _submit(manager, state, "DELETE", name=self.name)
        except ManagementApiError as e:
            return self._fail(e)
        return True


@dataclass(frozen=True)
class UpdateAlias(Action):
    """Point an alias at collections, creating or moving it in one step."""

    kind: ClassVar[str] = "UpdateAlias"

    alias: str
    collections: tuple[str, ...]

    def describe(self) -> str:
        return f"{self.alias} -> {','.join(self.collections)}"

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        missing = [c for c in self.collections if not state.has_collection(c)]
        if missing:
            return self._fail(f"unknown collection(s): {', '.join(missing)}")
        try:
            _submit(manager, state, "CREATEALIAS", name=self.alias, collections=self.collections)
        except ManagementApiError as e:
            return self._fail(e)
        return True


@dataclass(frozen=True)
class DeleteAlias(Action):
    kind: ClassVar[str] = "DeleteAlias"

    alias: str

    def describe(self) -> str:
        return self.alias

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        try:
            _submit(manager, state, "DELETEALIAS", name=self.alias)
        except ManagementApiError as e:
            return self._fail(e)
        return True


@dataclass(frozen=True)
class FetchIndex(Action):
    """
    Have a core pull its index from another core.

    The source may live in another cluster: it is addressed as
    http://source_host{source_path}/source_core.
    """

    kind: ClassVar[str] = "FetchIndex"

    target_core: str
    source_core: str
    source_host: str
    source_path: str = "/solr"
    wait: bool = True

    def describe(self) -> str:
        return f"{self.target_core} <- {self.source_host}{self.source_path}/{self.source_core}"

    def source_url(self, scheme: str = "http") -> str:
        return f"{scheme}://{self.source_host}{self.source_path}/{self.source_core}"

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        target = state.find_core(self.target_core)
        if target is None:
            return self._fail(f"core {self.target_core} is not part of the cluster")

        admin = manager.admin

        def slave_details() -> dict[str, Any]:
            details = admin.replication(target.base_url, target.core, "details")
            return (details.get("details") or {}).get("slave") or {}

        try:
            failed_before = slave_details().get("replicationFailedAt")
            admin.replication(
                target.base_url,
                target.core,
                "fetchindex",
                masterUrl=self.source_url(manager.config.solr_scheme),
            )
        except ManagementApiError as e:
            return self._fail(e)

        if not self.wait:
            return True

        def fetched() -> Optional[bool]:
            slave = slave_details()
            if str(slave.get("isReplicating", "false")).lower() == "true":
                return None
            failed_at = slave.get("replicationFailedAt")
            if failed_at and failed_at != failed_before:
                logger.warning("Fetch into %s failed at %s", self.target_core, failed_at)
                return False
            return True

        # give the handler a moment to start the fetch before polling
        time.sleep(manager.config.replication_poll_interval)
        try:
            return _wait_for(manager, fetched, f"{self.target_core} to finish fetching")
        except ManagementApiError as e:
            return self._fail(e)


@dataclass(frozen=True)
class BackupIndex(Action):
    """
    Snapshot a core's index into a directory on its node.

    keep bounds the snapshots retained in that directory. The new one is
    written before old ones are pruned, so keep+1 may exist briefly.
    """

    kind: ClassVar[str] = "BackupIndex"

    core: str
    directory: str
    wait: bool = True
    keep: int = 2

    def describe(self) -> str:
        mode = "wait" if self.wait else "async"
        return f"{self.core} into {self.directory} (keep {self.keep}, {mode})"

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        replica = state.find_core(self.core)
        if replica is None:
            return self._fail(f"core {self.core} is not part of the cluster")

        admin = manager.admin

        def backup_details() -> dict[str, Any]:
            details = admin.replication(replica.base_url, replica.core, "details")
            return (details.get("details") or {}).get("backup") or {}

        try:
            completed_before = backup_details().get("snapshotCompletedAt")
            admin.replication(
                replica.base_url,
                replica.core,
                "backup",
                location=self.directory,
                numberToKeep=self.keep,
            )
        except ManagementApiError as e:
            return self._fail(e)

        if not self.wait:
            logger.info("Requested %s", self)
            return True

        def backed_up() -> Optional[bool]:
            backup = backup_details()
            status = str(backup.get("status", "")).lower()
            if status in ("failed", "exception"):
                logger.warning("Backup of %s failed: %s", self.core, backup.get("exception", status))
                return False
            completed = backup.get("snapshotCompletedAt")
            if status == "success" and completed and completed != completed_before:
                logger.info("Backup of %s completed at %s", self.core, completed)
                return True
            return None

        try:
            return _wait_for(manager, backed_up, f"backup of {self.core}")
        except ManagementApiError as e:
            return self._fail(e)


@dataclass(frozen=True)
class RestoreIndex(Action):
    """Load the most recent snapshot found in a directory into a core."""

    kind: ClassVar[str] = "RestoreIndex"

    core: str
    directory: str
    wait: bool = True

    def describe(self) -> str:
        mode = "wait" if self.wait else "async"
        return f"{self.core} from {self.directory} ({mode})"

    def execute(self, manager: "ClusterManager") -> bool:
        state = manager.current_state()
        replica = state.find_core(self.core)
        if replica is None:
            return self._fail(f"core {self.core} is not part of the cluster")

        admin = manager.admin
        try:
            admin.replication(replica.base_url, replica.core, "restore", location=self.directory)
        except ManagementApiError as e:
            return self._fail(e)

        if not self.wait:
            return True

        def restored() -> Optional[bool]:
            body = admin.replication(replica.base_url, replica.core, "restorestatus")
            status = str((body.get("restorestatus") or {}).get("status", "")).lower()
            if status == "success":
                return True
            if status == "failed":
                logger.warning(
                    "Restore of %s failed: %s",
                    self.core,
                    (body.get("restorestatus") or {}).get("exception", status),
                )
                return False
            return None

        try:
            return _wait_for(manager, restored, f"restore of {self.core}")
        except ManagementApiError as e:
            return self._fail(e)
