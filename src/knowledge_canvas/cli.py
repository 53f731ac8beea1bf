"""Command-line tools for inspecting view blobs and graphs.

Usage:
    knowledge-canvas view decode <blob>
    knowledge-canvas view encode <json-file | ->
    knowledge-canvas fetch <container-id> [--config canvas.yaml]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .backend.graphql import GraphQLBackend
from .config import load_config
from .exceptions import CanvasError
from .graph.projector import project
from .view.codec import decode_view_state, encode_view_state
from .view.state import ViewState


def decode_command(args: argparse.Namespace) -> None:
    state = decode_view_state(args.blob)
    print(json.dumps(state.to_dict(), indent=2, sort_keys=True))


def encode_command(args: argparse.Namespace) -> None:
    if args.file == "-":
        raw = json.load(sys.stdin)
    else:
        with open(args.file) as f:
            raw = json.load(f)
    print(encode_view_state(ViewState.from_dict(raw)))


async def fetch_command(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    async with GraphQLBackend(config.backend) as backend:
        graph = await backend.fetch_domain_graph(args.container_id, config.fetch)

    projected = project(graph)
    summary = {
        "container_id": graph.container_id,
        "mode": "container" if graph.is_container else "entity",
        "nodes": len(projected.nodes),
        "links": len(projected.links),
        "relations": len(projected.relation_ids),
        "view": decode_view_state(graph.view_blob).to_dict() if graph.view_blob else {},
    }
    print(json.dumps(summary, indent=2))


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="knowledge-canvas",
        description="Knowledge Canvas - inspect graph view blobs and graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Decode a persisted view blob
  knowledge-canvas view decode eyJ6b29tIjoxLjV9

  # Encode a view state JSON file
  knowledge-canvas view encode view.json

  # Summarize a workspace graph
  knowledge-canvas fetch workspace--1234 --config canvas.yaml
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # View commands
    view_parser = subparsers.add_parser("view", help="View blob tools")
    view_sub = view_parser.add_subparsers(dest="view_command", help="View command")
    decode_parser = view_sub.add_parser("decode", help="Decode a view blob to JSON")
    decode_parser.add_argument("blob", help="Base64 view blob")
    encode_parser = view_sub.add_parser("encode", help="Encode view state JSON to a blob")
    encode_parser.add_argument("file", help="JSON file ('-' for stdin)")

    # Fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch and summarize a graph")
    fetch_parser.add_argument("container_id", help="Workspace or entity id")
    fetch_parser.add_argument("--config", help="Config file (default: search for canvas.yaml)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command or (args.command == "view" and not args.view_command):
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "view" and args.view_command == "decode":
            decode_command(args)
        elif args.command == "view" and args.view_command == "encode":
            encode_command(args)
        elif args.command == "fetch":
            asyncio.run(fetch_command(args))
    except (CanvasError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
