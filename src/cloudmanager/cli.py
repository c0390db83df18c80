#!/usr/bin/env python3
"""
Cloud Manager CLI - SolrCloud cluster management

Usage:
    cloudmanager -z zk:2181 clusterstatus
    cloudmanager -z zk:2181 clone --from old-host --to new-host
    cloudmanager -z zk:2181 migratenode --from old-host --to new-host
    cloudmanager -z zk:2181 populate -c logs --slicesPerNode 2 --wipe
    cloudmanager -z zk:2181 waitactive --nodes host1,host2 --timeout 600
"""

import argparse
import sys
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from cloudmanager.commands import parse_request
from cloudmanager.config import ManagerConfig
from cloudmanager.errors import InvalidRequest
from cloudmanager.logging_config import setup_logging
from cloudmanager.manager import ClusterManager
from cloudmanager.operation import Operation
from cloudmanager.runner import EXIT_FAILURE, run
from cloudmanager.state import ClusterState

console = Console()


# === OUTPUT ===

def print_cluster_status(manager: ClusterManager, state: ClusterState) -> None:
    """Render version, overseer, aliases and every replica."""
    summary = [
        f"[bold]Solr version:[/bold] {manager.cluster_version() or 'unknown'}",
        f"[bold]Overseer:[/bold] {state.overseer or 'none'}",
        f"[bold]Live nodes:[/bold] {len(state.live_nodes)}",
    ]
    console.print(Panel("\n".join(summary), title="Cluster Status", box=box.ROUNDED))

    if state.aliases:
        aliases = Table(title="Aliases", box=box.SIMPLE)
        aliases.add_column("Alias", style="cyan")
        aliases.add_column("Collections")
        for alias in state.aliases:
            aliases.add_row(alias.name, ", ".join(alias.collections))
        console.print(aliases)

    replicas = Table(title="Replicas", box=box.ROUNDED)
    replicas.add_column("Collection", style="cyan")
    replicas.add_column("Slice")
    replicas.add_column("Core")
    replicas.add_column("Node")
    replicas.add_column("State")
    replicas.add_column("Leader", justify="center")

    for r in state.replicas:
        if r.active:
            status = "[green]active[/green]"
        else:
            live = r.node in state.live_nodes
            status = f"[red]{r.status.value}{'' if live else ' (node down)'}[/red]"
        replicas.add_row(r.collection, r.slice, r.core, r.node, status, "*" if r.leader else "")

    console.print(replicas)


def confirm_operation(operation: Operation) -> bool:
    """Show the planned actions and ask before running them."""
    console.print(operation.pretty_print())
    return Confirm.ask("Proceed?", console=console, default=False)


# === ARGUMENTS ===

def _nodes(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [n.strip() for n in value.split(",") if n.strip()]


def request_data(args: argparse.Namespace) -> dict[str, Any]:
    """The request fields for the chosen command."""
    cmd = args.command
    data: dict[str, Any] = {"command": cmd}

    if cmd == "clean":
        data.update(nodes=_nodes(args.nodes), safety_factor=args.safety_factor)
        if args.collection:
            data["collection"] = args.collection
    elif cmd == "clone":
        data.update(source=args.source, target=args.target, parallel=args.parallel)
    elif cmd == "migratenode":
        data.update(source=args.source, target=args.target, safety_factor=args.safety_factor)
    elif cmd == "populate":
        data.update(collection=args.collection, slices_per_node=args.slices_per_node, wipe=args.wipe)
    elif cmd == "fill":
        data.update(collection=args.collection, nodes=_nodes(args.nodes), parallel=args.parallel)
    elif cmd == "addreplica":
        data.update(collection=args.collection, slice=args.slice, node=args.node)
    elif cmd == "deletereplica":
        data.update(
            collection=args.collection,
            slice=args.slice,
            node=args.node,
            safety_factor=args.safety_factor,
        )
    elif cmd == "alias":
        data.update(alias=args.alias, collections=_nodes(args.collections))
    elif cmd == "deletealias":
        data.update(alias=args.alias)
    elif cmd in ("cleancollection", "deletecollection"):
        data.update(collection=args.collection)
    elif cmd == "createcollection":
        data.update(
            collection=args.collection,
            slices=args.slices,
            config_name=args.config_name,
            max_slices_per_node=args.max_slices_per_node,
            replication_factor=args.replication_factor,
            nodes=_nodes(args.nodes),
            async_request=args.async_request,
        )
    elif cmd == "copy":
        data.update(collection=args.collection, copy_from=args.copy_from)
    elif cmd == "waitactive":
        data.update(nodes=_nodes(args.nodes), timeout=args.timeout, strict=args.strict)
    elif cmd == "backupindex":
        data.update(
            collection=args.collection,
            directory=args.directory,
            keep=args.keep,
            parallel=args.parallel,
        )
    elif cmd == "restoreindex":
        data.update(
            collection=args.collection,
            directory=args.directory,
            restore_from=args.restore_from,
            parallel=args.parallel,
        )

    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudmanager",
        description="SolrCloud cluster management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cloudmanager -z zk:2181/solr clusterstatus
  cloudmanager -z zk:2181/solr fill -c logs --parallel
  cloudmanager -z zk:2181/solr clean --nodes old1,old2 --safetyFactor 2
  cloudmanager -z zk:2181/solr backupindex -c logs --dir /backups --keep 3
        """,
    )
    parser.add_argument("-z", "--zk", help="ZooKeeper connection string, including any chroot")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("--confirm", action="store_true", help="Don't ask before running actions")
    parser.add_argument("-d", "--debug", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("clusterstatus", help="Print current cluster status")

    # nodes
    p = subparsers.add_parser("clean", help="Remove all replicas from the given nodes")
    p.add_argument("--nodes", required=True, help="Comma separated node list")
    p.add_argument("-c", "--collection", help="Only remove replicas of this collection")
    p.add_argument("--safetyFactor", dest="safety_factor", type=int, default=1,
                   help="Replicas that must remain per slice (default: 1)")

    p = subparsers.add_parser("clone", help="Add every replica on one node to another")
    p.add_argument("--from", dest="source", required=True, help="Node to copy replicas from")
    p.add_argument("--to", "--onto", dest="target", required=True, help="Node to add replicas to")
    p.add_argument("--parallel", action="store_true", help="Don't wait for each replica to recover")

    p = subparsers.add_parser("migratenode", help="Clone a node onto another, then clean the original")
    p.add_argument("--from", dest="source", required=True, help="Node to migrate from")
    p.add_argument("--to", "--onto", dest="target", required=True, help="Node to migrate to")
    p.add_argument("--safetyFactor", dest="safety_factor", type=int, default=1)

    # replicas
    p = subparsers.add_parser("populate", help="Populate the cluster from a single indexer node")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--slicesPerNode", dest="slices_per_node", type=int, required=True)
    p.add_argument("--wipe", action="store_true", help="Remove the collection from the indexer afterwards")

    p = subparsers.add_parser("fill", help="Add replicas of a collection to every node with room")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--nodes", help="Only fill these nodes (comma separated)")
    p.add_argument("--parallel", action="store_true", help="Don't wait for each replica to recover")

    p = subparsers.add_parser("addreplica", help="Add one replica")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--slice", required=True)
    p.add_argument("--node", required=True)

    p = subparsers.add_parser("deletereplica", help="Delete one replica")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--slice", required=True)
    p.add_argument("--node", required=True)
    p.add_argument("--safetyFactor", dest="safety_factor", type=int, default=1)

    # aliases
    p = subparsers.add_parser("alias", help="Create or move an alias")
    p.add_argument("-a", "--alias", required=True)
    p.add_argument("-c", "--collections", "--collection", dest="collections", required=True,
                   help="Comma separated collection list")

    p = subparsers.add_parser("deletealias", help="Delete an alias")
    p.add_argument("-a", "--alias", required=True)

    # collections
    p = subparsers.add_parser("cleancollection", help="Remove non-active replicas of a collection")
    p.add_argument("-c", "--collection", required=True)

    p = subparsers.add_parser("deletecollection", help="Delete a collection")
    p.add_argument("-c", "--collection", required=True)

    p = subparsers.add_parser("createcollection", help="Create a collection")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--slices", type=int, required=True)
    p.add_argument("--config", dest="config_name", required=True, help="Config name in ZooKeeper")
    p.add_argument("--maxSlicesPerNode", dest="max_slices_per_node", type=int)
    p.add_argument("--replicationFactor", dest="replication_factor", type=int)
    p.add_argument("--nodes", help="Create the collection on these nodes only")
    p.add_argument("--async", dest="async_request", action="store_true",
                   help="Return once the cluster accepts the request")

    p = subparsers.add_parser("copy", help="Copy an index from another cluster into an existing collection")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--copyFrom", dest="copy_from", required=True, help="host:port of a node in the source cluster")

    # waiting
    p = subparsers.add_parser("waitactive", help="Wait until every replica on the given nodes is active")
    p.add_argument("-n", "--nodes", "--node", dest="nodes", help="Comma separated node list (default: this host)")
    p.add_argument("--timeout", type=float, help="Seconds to wait before failing")
    p.add_argument("--strict", action="store_true", help="Fail if a node can't be resolved")

    # backups
    p = subparsers.add_parser("backupindex", help="Back up a collection's index")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--dir", dest="directory", required=True, help="Directory shared by every node")
    p.add_argument("--keep", type=int, default=2, help="Backups to keep per slice (default: 2)")
    p.add_argument("--parallel", action="store_true", help="Don't wait for each backup to finish")

    p = subparsers.add_parser("restoreindex", help="Restore a collection's index from a backup")
    p.add_argument("-c", "--collection", required=True)
    p.add_argument("--dir", dest="directory", required=True)
    p.add_argument("--restoreFrom", dest="restore_from", help="Collection the backup was taken from")
    p.add_argument("--parallel", action="store_true", help="Don't wait for each restore to finish")

    return parser


def load_config(args: argparse.Namespace) -> ManagerConfig:
    config = ManagerConfig.from_yaml(args.config) if args.config else ManagerConfig()
    # -z beats both the file and CLOUDMANAGER_ZK
    if args.zk:
        config.zk_hosts = args.zk
    return config


# === MAIN ===

def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.debug else "WARNING" if args.quiet else "INFO"
    setup_logging(level=level, json_format=args.json_logs)

    try:
        request = parse_request(request_data(args))
    except InvalidRequest as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return EXIT_FAILURE

    try:
        config = load_config(args)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not load configuration: {escape(str(e))}[/red]")
        return EXIT_FAILURE

    confirm = None if args.confirm or not request.mutates else confirm_operation
    return run(request, config, confirm=confirm, report=print_cluster_status)


if __name__ == "__main__":
    sys.exit(main())
