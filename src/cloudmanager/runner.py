"""
Command Runner

Turns a validated request into an Operation against a fresh snapshot, asks
for confirmation, executes it, and reports an exit status. The ClusterManager
is held in a with-block so its ZooKeeper session is released whether
planning, confirmation or execution fails.
"""

import logging
from typing import Callable, Optional

from prometheus_client import REGISTRY, write_to_textfile

from cloudmanager.actions import AddReplica, CreateCollection, DeleteAlias, DeleteCollection, DeleteReplica, UpdateAlias
from cloudmanager.commands import (
    AddReplicaRequest,
    AliasRequest,
    BackupIndexRequest,
    CleanCollectionRequest,
    CleanNodesRequest,
    CloneRequest,
    ClusterStatusRequest,
    CommandRequest,
    CopyRequest,
    CreateCollectionRequest,
    DeleteAliasRequest,
    DeleteCollectionRequest,
    DeleteReplicaRequest,
    FillRequest,
    MigrateNodeRequest,
    PopulateRequest,
    RestoreIndexRequest,
    WaitActiveRequest,
)
from cloudmanager.config import ManagerConfig
from cloudmanager.errors import ManagerError, PlanningError, root_cause
from cloudmanager.manager import ClusterManager
from cloudmanager.operation import Operation
from cloudmanager import operations
from cloudmanager.state import ClusterState
from cloudmanager.waitactive import wait_for_active

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[Operation], bool]
ReportFn = Callable[[ClusterManager, ClusterState], None]

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def _clean(request: CleanNodesRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return Operation.concat(
        operations.wipe_node(
            state,
            state.canonical_node_name(node, allow_offline_references=True),
            request.collection,
            request.safety_factor,
        )
        for node in request.nodes
    )


def _clone(request: CloneRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return operations.clone_replicas(
        state,
        state.canonical_node_name(request.source, allow_offline_references=True),
        state.canonical_node_name(request.target),
        wait_for_replication=not request.parallel,
    )


def _migrate(request: MigrateNodeRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return operations.migrate_node(
        state,
        state.canonical_node_name(request.source, allow_offline_references=True),
        state.canonical_node_name(request.target),
        safety_factor=request.safety_factor,
    )


def _populate(request: PopulateRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    hosting = state.nodes_with_collection(request.collection)
    if len(hosting) != 1:
        raise PlanningError(
            f"Expected to populate from a single indexer node, but {request.collection} "
            f"is on: {', '.join(sorted(hosting)) or 'no nodes'}"
        )
    (originating_node,) = hosting

    populate = operations.populate_cluster(state, request.collection, request.slices_per_node)
    if not request.wipe:
        return populate
    return populate + operations.wipe_collection_from_node(state, request.collection, originating_node)


def _fill(request: FillRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    nodes = None
    if request.nodes is not None:
        nodes = [state.canonical_node_name(n) for n in request.nodes]
    return operations.fill_cluster(state, request.collection, nodes, wait_for_replication=not request.parallel)


def _add_replica(request: AddReplicaRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return Operation([AddReplica(request.collection, request.slice, state.canonical_node_name(request.node))])


def _delete_replica(request: DeleteReplicaRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    node = state.canonical_node_name(request.node, allow_offline_references=True)
    return Operation([DeleteReplica(request.collection, request.slice, node, request.safety_factor)])


def _alias(request: AliasRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return Operation([UpdateAlias(request.alias, tuple(request.collections))])


def _delete_alias(request: DeleteAliasRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return Operation([DeleteAlias(request.alias)])


def _clean_collection(request: CleanCollectionRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return operations.clean_cluster(state, request.collection)


def _delete_collection(request: DeleteCollectionRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return Operation([DeleteCollection(request.collection)])


def _create_collection(request: CreateCollectionRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    # CreateCollection checks this again when it runs
    if not manager.config_exists(request.config_name):
        raise PlanningError(f"Config {request.config_name} does not exist in ZooKeeper")

    node_set = None
    if request.nodes is not None:
        node_set = tuple(state.canonical_node_name(n) for n in request.nodes)
    return Operation([
        CreateCollection(
            request.collection,
            request.slices,
            request.config_name,
            max_shards_per_node=request.max_slices_per_node,
            replication_factor=request.replication_factor,
            node_set=node_set,
            async_request=request.async_request,
        )
    ])


def _copy(request: CopyRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    if not state.has_collection(request.collection):
        raise PlanningError(f"Can't copy into non-existent target collection {request.collection}")
    return operations.deploy_from_another_cluster(state, request.collection, request.copy_from)


def _backup(request: BackupIndexRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return operations.backup_collection(
        state, request.collection, request.directory, request.keep, request.parallel
    )


def _restore(request: RestoreIndexRequest, manager: ClusterManager, state: ClusterState) -> Operation:
    return operations.restore_collection(
        state, request.collection, request.directory, request.restore_from, request.parallel
    )


_PLANNERS: dict[type, Callable[[CommandRequest, ClusterManager, ClusterState], Operation]] = {
    CleanNodesRequest: _clean,
    CloneRequest: _clone,
    MigrateNodeRequest: _migrate,
    PopulateRequest: _populate,
    FillRequest: _fill,
    AddReplicaRequest: _add_replica,
    DeleteReplicaRequest: _delete_replica,
    AliasRequest: _alias,
    DeleteAliasRequest: _delete_alias,
    CleanCollectionRequest: _clean_collection,
    DeleteCollectionRequest: _delete_collection,
    CreateCollectionRequest: _create_collection,
    CopyRequest: _copy,
    BackupIndexRequest: _backup,
    RestoreIndexRequest: _restore,
}


def plan_request(
    request: CommandRequest,
    manager: ClusterManager,
    state: Optional[ClusterState] = None,
) -> Operation:
    """
    Build the Operation for a mutating request.

    Raises:
        PlanningError: a precondition failed, or the command has no plan
        NodeNotFoundError: a node reference couldn't be resolved
    """
    planner = _PLANNERS.get(type(request))
    if planner is None:
        raise PlanningError(f"Command {getattr(request, 'command', request)} does not produce an operation")
    return planner(request, manager, state or manager.current_state())


def execute_request(
    request: CommandRequest,
    manager: ClusterManager,
    confirm: Optional[ConfirmFn] = None,
    report: Optional[ReportFn] = None,
) -> bool:
    """Run one request against an open manager. True on success."""
    if isinstance(request, ClusterStatusRequest):
        if report is not None:
            report(manager, manager.current_state())
        return True

    if isinstance(request, WaitActiveRequest):
        return wait_for_active(manager, request.nodes, timeout=request.timeout, strict=request.strict)

    operation = plan_request(request, manager)
    if operation.is_empty:
        logger.info("Nothing to do")
        return True

    if confirm is not None and not confirm(operation):
        logger.warning("Aborting.")
        return False

    return operation.execute(manager)


def export_metrics(path: str) -> None:
    """Write the action and operation counters as a Prometheus textfile."""
    try:
        write_to_textfile(path, REGISTRY)
    except OSError as e:
        logger.warning("Could not write metrics to %s: %s", path, e)
    else:
        logger.debug("Wrote metrics to %s", path)


def failure_message(error: BaseException) -> str:
    """What to show a user for a failed run."""
    if isinstance(error, ManagerError):
        return str(error)
    cause = root_cause(error)
    return str(cause) or type(cause).__name__


def run(
    request: CommandRequest,
    config: ManagerConfig,
    confirm: Optional[ConfirmFn] = None,
    report: Optional[ReportFn] = None,
    manager_factory: Callable[[ManagerConfig], ClusterManager] = ClusterManager,
) -> int:
    """
    Run a request from start to finish and return the process exit status.

    Every failure, whether planning, safety, execution or connectivity,
    yields EXIT_FAILURE with its cause logged.
    """
    success = False
    try:
        with manager_factory(config) as manager:
            success = execute_request(request, manager, confirm=confirm, report=report)
    except Exception as e:
        logger.warning("%s", failure_message(e))
        logger.debug("Failure detail", exc_info=True)

    if config.metrics_file:
        export_metrics(config.metrics_file)

    logger.info("SUCCESS" if success else "FAILURE")
    return EXIT_SUCCESS if success else EXIT_FAILURE
