"""
Command Requests

One request model per command. Each model carries only the fields its
command uses, and unknown fields are rejected instead of ignored.
"""

from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError

from cloudmanager.errors import InvalidRequest


def _split(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


# Accepts a list or a comma separated string
NameList = Annotated[list[str], BeforeValidator(_split)]


class CommandRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Commands that only read the cluster skip confirmation
    mutates: ClassVar[bool] = True


class ClusterStatusRequest(CommandRequest):
    """Print current cluster status."""

    command: Literal["clusterstatus"] = "clusterstatus"
    mutates: ClassVar[bool] = False


class CleanNodesRequest(CommandRequest):
    """Remove all replicas from the given nodes."""

    command: Literal["clean"] = "clean"
    nodes: NameList = Field(min_length=1)
    collection: Optional[str] = None
    safety_factor: int = Field(default=1, ge=0)


class CloneRequest(CommandRequest):
    """Add every replica on one node to another node."""

    command: Literal["clone"] = "clone"
    source: str
    target: str
    parallel: bool = False


class MigrateNodeRequest(CommandRequest):
    """Clone a node onto another, then remove the replicas from the original."""

    command: Literal["migratenode"] = "migratenode"
    source: str
    target: str
    safety_factor: int = Field(default=1, ge=0)


class PopulateRequest(CommandRequest):
    """Populate the cluster from a single indexer node."""

    command: Literal["populate"] = "populate"
    collection: str
    slices_per_node: int = Field(gt=0)
    wipe: bool = False


class FillRequest(CommandRequest):
    """Use available nodes to add more replicas of a collection."""

    command: Literal["fill"] = "fill"
    collection: str
    nodes: Optional[NameList] = None
    parallel: bool = False


class AddReplicaRequest(CommandRequest):
    command: Literal["addreplica"] = "addreplica"
    collection: str
    slice: str
    node: str


class DeleteReplicaRequest(CommandRequest):
    command: Literal["deletereplica"] = "deletereplica"
    collection: str
    slice: str
    node: str
    safety_factor: int = Field(default=1, ge=0)


class AliasRequest(CommandRequest):
    """Create an alias, or move it if it already exists."""

    command: Literal["alias"] = "alias"
    alias: str
    collections: NameList = Field(min_length=1)


class DeleteAliasRequest(CommandRequest):
    command: Literal["deletealias"] = "deletealias"
    alias: str


class CleanCollectionRequest(CommandRequest):
    """Remove non-active replicas of a collection."""

    command: Literal["cleancollection"] = "cleancollection"
    collection: str


class DeleteCollectionRequest(CommandRequest):
    command: Literal["deletecollection"] = "deletecollection"
    collection: str


class CreateCollectionRequest(CommandRequest):
    command: Literal["createcollection"] = "createcollection"
    collection: str
    slices: int = Field(gt=0)
    config_name: str
    max_slices_per_node: Optional[int] = Field(default=None, gt=0)
    replication_factor: Optional[int] = Field(default=None, gt=0)
    nodes: Optional[NameList] = None
    async_request: bool = False


class CopyRequest(CommandRequest):
    """Copy a collection's index from another cluster into an existing, empty one."""

    command: Literal["copy"] = "copy"
    collection: str
    copy_from: str


class WaitActiveRequest(CommandRequest):
    """Block until the given nodes are fully active."""

    command: Literal["waitactive"] = "waitactive"
    mutates: ClassVar[bool] = False
    nodes: Optional[NameList] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    strict: bool = False


class BackupIndexRequest(CommandRequest):
    command: Literal["backupindex"] = "backupindex"
    collection: str
    directory: str
    keep: int = Field(default=2, gt=0)
    parallel: bool = False


class RestoreIndexRequest(CommandRequest):
    command: Literal["restoreindex"] = "restoreindex"
    collection: str
    directory: str
    restore_from: Optional[str] = None
    parallel: bool = False


Request = Annotated[
    Union[
        ClusterStatusRequest,
        CleanNodesRequest,
        CloneRequest,
        MigrateNodeRequest,
        PopulateRequest,
        FillRequest,
        AddReplicaRequest,
        DeleteReplicaRequest,
        AliasRequest,
        DeleteAliasRequest,
        CleanCollectionRequest,
        DeleteCollectionRequest,
        CreateCollectionRequest,
        CopyRequest,
        WaitActiveRequest,
        BackupIndexRequest,
        RestoreIndexRequest,
    ],
    Field(discriminator="command"),
]

_request_adapter = TypeAdapter(Request)


def parse_request(data: dict[str, Any]) -> CommandRequest:
    """
    Validate a command and its fields.

    Raises:
        InvalidRequest: unknown command, missing field, or a field that
            doesn't belong to the command
    """
    try:
        return _request_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid {data.get('command', 'unknown')} request: {e}") from e
