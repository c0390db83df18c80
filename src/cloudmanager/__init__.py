"""SolrCloud cluster management: snapshot, plan, preview and execute."""

from cloudmanager.actions import (
    Action,
    AddReplica,
    BackupIndex,
    CreateCollection,
    DeleteAlias,
    DeleteCollection,
    DeleteReplica,
    FetchIndex,
    RestoreIndex,
    UpdateAlias,
)
from cloudmanager.config import ManagerConfig
from cloudmanager.manager import ClusterManager
from cloudmanager.operation import Operation
from cloudmanager.state import ClusterState, Replica

__all__ = [
    "Action",
    "AddReplica",
    "BackupIndex",
    "ClusterManager",
    "ClusterState",
    "CreateCollection",
    "DeleteAlias",
    "DeleteCollection",
    "DeleteReplica",
    "FetchIndex",
    "ManagerConfig",
    "Operation",
    "Replica",
    "RestoreIndex",
    "UpdateAlias",
]
