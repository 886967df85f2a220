"""LoomGraph entry point — command-line ingestion and the HTTP server.

This module is the standalone CLI for testing and development. When
LoomGraph is used as a library, callers use the async API in loomgraph.api
instead of running this module.

    loomgraph ingest data.csv --mapping '[{"header_column": ...}]' --save-mapping
    loomgraph analyze data.csv
    loomgraph serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import uvicorn

from loomgraph import __version__
from loomgraph.api import LoomGraph
from loomgraph.config import LoomGraphConfig
from loomgraph.logging import configure_logging, get_logger
from loomgraph.server.app import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loomgraph",
        description="Ingest CSV rows or free text into a schemaless graph.",
    )
    parser.add_argument("--version", action="version", version=f"loomgraph {__version__}")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="extract a file into the graph")
    ingest.add_argument("file", type=Path)
    ingest.add_argument("--mapping", default=None, help="approved mapping as a JSON list")
    ingest.add_argument("--save-mapping", action="store_true", help="remember the mapping")
    ingest.add_argument("--no-split", action="store_true", help="extract the file as one text")

    analyze = sub.add_parser("analyze", help="propose a column mapping for a CSV file")
    analyze.add_argument("file", type=Path)

    sub.add_parser("serve", help="run the HTTP server")
    return parser


def _load_mapping(raw: str | None) -> list[dict[str, Any]] | None:
    if raw is None:
        return None
    mapping = json.loads(raw)
    if not isinstance(mapping, list):
        raise ValueError("--mapping must be a JSON list")
    return mapping


async def run_ingest(lg: LoomGraph, args: argparse.Namespace) -> dict[str, Any]:
    """Ingest one file, bounded by the configured run timeout."""
    payload = {
        "textContent": args.file.read_text(encoding="utf-8"),
        "fileName": args.file.name,
        "approvedMapping": _load_mapping(args.mapping),
        "saveToMemory": args.save_mapping,
        "splitRows": not args.no_split,
    }
    return await asyncio.wait_for(lg.ingest(payload), timeout=lg.config.ingest_timeout_seconds)


async def async_main(args: argparse.Namespace, config: LoomGraphConfig) -> int:
    async with LoomGraph(config=config) as lg:
        if args.command == "ingest":
            result = await run_ingest(lg, args)
        else:
            result = await lg.analyze(args.file.name, args.file.read_text(encoding="utf-8"))
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


def serve(config: LoomGraphConfig) -> None:
    configure_logging(config)
    log = get_logger("main")
    app = create_app(LoomGraph(config=config))
    log.info("loomgraph.serving", host=config.server_host, port=config.server_port)
    uvicorn.run(
        app,
        host=config.server_host,
        port=config.server_port,
        log_level="warning",
        access_log=False,
    )


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point for the CLI."""
    args = build_parser().parse_args(argv)
    config = LoomGraphConfig.load(args.config)
    if args.command == "serve":
        serve(config)
        return
    sys.exit(asyncio.run(async_main(args, config)))


if __name__ == "__main__":
    main()
