"""
Cluster Clients

Wire-level access to the two services the manager talks to:
- ZookeeperReader: read-only view of the SolrCloud documents in ZooKeeper
- SolrAdminClient: the Collections and replication HTTP APIs
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx
from kazoo.client import KazooClient
from kazoo.exceptions import KazooException, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError

from cloudmanager.config import ManagerConfig
from cloudmanager.errors import ConnectivityError, ManagementApiError
from cloudmanager.state import node_base_url

logger = logging.getLogger(__name__)

LIVE_NODES_PATH = "/live_nodes"
COLLECTIONS_PATH = "/collections"
LEGACY_CLUSTERSTATE_PATH = "/clusterstate.json"
ALIASES_PATH = "/aliases.json"
OVERSEER_LEADER_PATH = "/overseer_elect/leader"
CONFIGS_PATH = "/configs"


@contextmanager
def _zk_errors(hosts: str) -> Iterator[None]:
    try:
        yield
    except (KazooTimeoutError, KazooException) as e:
        if isinstance(e, NoNodeError):
            raise
        raise ConnectivityError(f"ZooKeeper at {hosts} is unavailable: {e}") from e


def overseer_node_from_id(ident: str) -> str:
    """'72157...-10.0.0.1:8983_solr-n_0000000004' -> '10.0.0.1:8983_solr'"""
    _, _, rest = ident.partition("-")
    return rest.rsplit("-n_", 1)[0] if rest else ident


class ZookeeperReader:
    """Reads SolrCloud topology documents out of ZooKeeper."""

    def __init__(self, hosts: str, timeout: float = 15.0, client: Optional[KazooClient] = None):
        self.hosts = hosts
        self.timeout = timeout
        self._zk = client or KazooClient(hosts=hosts, timeout=timeout, read_only=True)
        self._started = False
        self._closed = False

    def start(self) -> None:
        with _zk_errors(self.hosts):
            self._zk.start(timeout=self.timeout)
        self._started = True
        logger.debug("Connected to ZooKeeper at %s", self.hosts)

    def stop(self) -> None:
        """Close the session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._started:
                self._started = False
                self._zk.stop()
        finally:
            self._zk.close()
        logger.debug("Disconnected from ZooKeeper at %s", self.hosts)

    def _read_json(self, path: str) -> Optional[dict[str, Any]]:
        try:
            with _zk_errors(self.hosts):
                data, _ = self._zk.get(path)
        except NoNodeError:
            return None
        if not data:
            return None
        return json.loads(data.decode("utf-8"))

    def _children(self, path: str) -> list[str]:
        try:
            with _zk_errors(self.hosts):
                return list(self._zk.get_children(path))
        except NoNodeError:
            return []

    def live_nodes(self) -> list[str]:
        return self._children(LIVE_NODES_PATH)

    def collection_states(self) -> dict[str, dict[str, Any]]:
        """
        Collection name to state document.

        Per-collection state.json documents win over the shared legacy
        clusterstate.json. The collection's configName is merged in.
        """
        legacy = self._read_json(LEGACY_CLUSTERSTATE_PATH) or {}
        states: dict[str, dict[str, Any]] = {}

        names = set(self._children(COLLECTIONS_PATH)) | set(legacy)
        for name in sorted(names):
            doc = self._read_json(f"{COLLECTIONS_PATH}/{name}/state.json") or {}
            state = dict(doc.get(name) or legacy.get(name) or {})
            if not state:
                continue
            meta = self._read_json(f"{COLLECTIONS_PATH}/{name}") or {}
            if "configName" in meta:
                state["configName"] = meta["configName"]
            states[name] = state

        return states

    def aliases(self) -> dict[str, str]:
        doc = self._read_json(ALIASES_PATH) or {}
        return doc.get("collection", {})

    def overseer(self) -> Optional[str]:
        doc = self._read_json(OVERSEER_LEADER_PATH)
        if not doc or "id" not in doc:
            return None
        return overseer_node_from_id(doc["id"])

    def config_exists(self, name: str) -> bool:
        with _zk_errors(self.hosts):
            return self._zk.exists(f"{CONFIGS_PATH}/{name}") is not None


def _encode(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(v) for v in value)
    return str(value)


def _error_message(body: dict[str, Any]) -> Optional[str]:
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("msg") or json.dumps(error)
    if error:
        return str(error)
    for key in ("failure", "exception"):
        if body.get(key):
            return f"{key}: {json.dumps(body[key], default=str)}"
    return None


class SolrAdminClient:
    """Synchronous client for the cluster management HTTP APIs."""

    def __init__(self, config: ManagerConfig, client: Optional[httpx.Client] = None):
        self.scheme = config.solr_scheme
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(config.http_timeout, connect=config.http_connect_timeout)
        )

    def close(self) -> None:
        self.client.close()

    def get(self, url: str, **params: Any) -> dict[str, Any]:
        """
        Issue a GET and return the decoded JSON body.

        Raises:
            ConnectivityError: the node could not be reached
            ManagementApiError: the node answered with an error
        """
        query = {k: _encode(v) for k, v in params.items() if v is not None}
        query.setdefault("wt", "json")
        query.setdefault("json.nl", "map")

        logger.debug("GET %s %s", url, query)
        try:
            response = self.client.get(url, params=query)
        except httpx.TransportError as e:
            raise ConnectivityError(f"Could not reach {url}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        message = _error_message(body) if isinstance(body, dict) else None
        status = (body.get("responseHeader") or {}).get("status", 0) if isinstance(body, dict) else 0

        if response.status_code >= 400 or message or status:
            raise ManagementApiError(
                message or f"HTTP {response.status_code} from {url}",
                status=response.status_code,
                response=body if isinstance(body, dict) else {},
            )
        return body

    def node_url(self, node: str) -> str:
        return node_base_url(node, self.scheme)

    def collections(self, node: str, action: str, **params: Any) -> dict[str, Any]:
        return self.get(f"{self.node_url(node)}/admin/collections", action=action, **params)

    def replication(self, base_url: str, core: str, command: str, **params: Any) -> dict[str, Any]:
        return self.get(f"{base_url.rstrip('/')}/{core}/replication", command=command, **params)

    def system_info(self, node: str) -> dict[str, Any]:
        return self.get(f"{self.node_url(node)}/admin/info/system")
