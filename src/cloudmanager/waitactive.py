"""
Wait for nodes to become fully active.

ZooKeeper topology is read by polling, so this samples the cluster state on
an interval until every replica on the target nodes is active or the
deadline passes.
"""

import logging
import socket
import threading
import time
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from cloudmanager.errors import NodeNotFoundError

if TYPE_CHECKING:
    from cloudmanager.manager import ClusterManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


def resolve_nodes(manager: "ClusterManager", references: Iterable[str], strict: bool = False) -> list[str]:
    """
    Canonical names for node references, offline nodes included.

    Unresolvable references are skipped with a warning, or raise
    NodeNotFoundError when strict.
    """
    state = manager.current_state()
    nodes = []
    for reference in references:
        try:
            nodes.append(state.canonical_node_name(reference, allow_offline_references=True))
        except NodeNotFoundError:
            logger.warning("Could not determine node name from %s", reference)
            if strict:
                raise
    return nodes


def wait_for_active(
    manager: "ClusterManager",
    nodes: Optional[Iterable[str]] = None,
    timeout: Optional[float] = None,
    strict: bool = False,
    interval: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Block until every replica on the given nodes is active.

    Args:
        nodes: Node references; defaults to this host's name
        timeout: Seconds to wait before failing; None waits forever
        strict: Fail if any node reference can't be resolved
        interval: Seconds between samples (default: config.poll_interval)
        cancel: Set this event to stop waiting early

    Returns:
        True once all replicas are active, False on timeout or cancellation
    """
    references = list(nodes) if nodes else [socket.gethostname()]
    wait_nodes = set(resolve_nodes(manager, references, strict))
    if interval is None:
        interval = manager.config.poll_interval or DEFAULT_POLL_INTERVAL
    cancel = cancel or threading.Event()

    start = clock()
    while True:
        replicas = [r for r in manager.current_state().replicas if r.node in wait_nodes]
        total = len(replicas)
        active = sum(1 for r in replicas if r.active)
        logger.info("%d of %d replicas are active", active, total)

        if active == total:
            return True
        if timeout is not None and clock() - start > timeout:
            logger.warning("Timed out after %.0fs waiting for replicas to become active", timeout)
            return False
        if cancel.wait(interval):
            logger.warning("Stopped waiting for replicas to become active")
            return False
