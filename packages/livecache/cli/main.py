"""Command-line interface for livecache.

Commands:
- key: print the canonical form and cache key of a descriptor
- query: read an operation through a client scope (optionally watching pushes)
"""

from __future__ import annotations

import argparse
import asyncio
from contextlib import aclosing
import json
import logging
from pathlib import Path
import sys
from typing import Any

from rich.console import Console
from rich.markup import escape

from livecache.core.backend.protocols import Backend
from livecache.core.config.loader import load_app_config
from livecache.core.config.models import LiveCacheConfig
from livecache.core.context import ContextPropagator
from livecache.core.errors import LiveCacheError
from livecache.core.keys import Descriptor, KeyCodec
from livecache.core.utils.logging import configure_logging, configure_logging_from_config

console = Console()
logger = logging.getLogger(__name__)


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    """Parse the --args JSON object.

    Raises:
        ValueError: If raw is not a JSON object
    """
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--args is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValueError("--args must be a JSON object")
    return value


def _print_json(value: Any) -> None:
    console.print_json(json.dumps(value, default=str))


def show_key(args: argparse.Namespace) -> int:
    """Print the canonical form and cache key of a descriptor."""
    try:
        descriptor = Descriptor(args.operation, _parse_arguments(args.args))
    except (ValueError, LiveCacheError) as e:
        console.print(f"[red]ERROR: {e}[/red]")
        return 1

    key = KeyCodec().canonicalize(descriptor)
    console.print(f"[bold]Operation:[/bold] {key.operation_name}")
    console.print(f"[bold]Canonical:[/bold] {escape(descriptor.canonical)}")
    console.print(f"[bold]Key:[/bold] {key.digest}")
    return 0


async def run_query_async(
    config: LiveCacheConfig,
    descriptor: Descriptor,
    *,
    watch: bool = False,
    limit: int | None = None,
    backend: Backend | None = None,
) -> int:
    """Read one query through a client scope.

    Args:
        config: Application configuration (backend_url required unless backend given)
        descriptor: Query to read
        watch: Keep printing pushed values until interrupted
        limit: Stop watching after this many values
        backend: Backend to use instead of an HttpBackend built from config

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    async with ContextPropagator(config, backend=backend) as propagator:
        try:
            scope = propagator.client_scope()
            with scope.activate():
                if not watch:
                    _print_json(await scope.read(descriptor))
                    return 0

                seen = 0
                async with aclosing(scope.watch(descriptor)) as updates:
                    async for value in updates:
                        seen += 1
                        console.print(f"[dim]update {seen}[/dim]")
                        _print_json(value)
                        if limit is not None and seen >= limit:
                            break
                return 0
        except LiveCacheError as e:
            console.print(f"[red]ERROR: {e}[/red]")
            return 1


def run_query(args: argparse.Namespace) -> int:
    """Load config, then run a query."""
    try:
        config = load_app_config(Path(args.config) if args.config else None)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]ERROR: Could not load config: {e}[/red]")
        return 1

    if args.url:
        config = config.model_copy(update={"backend_url": args.url})
    if args.verbose:
        configure_logging(level="DEBUG")
    else:
        configure_logging_from_config(config.logging)

    try:
        descriptor = Descriptor(args.operation, _parse_arguments(args.args))
    except (ValueError, LiveCacheError) as e:
        console.print(f"[red]ERROR: {e}[/red]")
        return 1

    try:
        logger.debug(f"Querying {descriptor!r} (watch={args.watch})")
        return asyncio.run(
            run_query_async(config, descriptor, watch=args.watch, limit=args.limit)
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
        return 0


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    p = argparse.ArgumentParser(
        prog="livecache",
        description="livecache - live query cache over a reactive backend",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    key = sub.add_parser("key", help="Show the cache key of a query")
    key.add_argument("operation", help="Operation name (e.g. todos:list)")
    key.add_argument("--args", default=None, help="Arguments as a JSON object")

    query = sub.add_parser("query", help="Read a query from the backend")
    query.add_argument("operation", help="Operation name (e.g. todos:list)")
    query.add_argument("--args", default=None, help="Arguments as a JSON object")
    query.add_argument(
        "--watch", action="store_true", help="Print pushed updates until interrupted"
    )
    query.add_argument("--limit", type=int, default=None, help="Stop after N values when watching")
    query.add_argument(
        "--config",
        default=None,
        help="Path to config JSON/YAML (default: livecache.json if present)",
    )
    query.add_argument("--url", default=None, help="Backend URL (overrides config)")
    query.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    return p


def main(argv: list[str] | None = None) -> None:
    """Main entry point for CLI."""
    p = build_arg_parser()
    args = p.parse_args(argv)

    if args.cmd == "key":
        sys.exit(show_key(args))
    elif args.cmd == "query":
        sys.exit(run_query(args))


if __name__ == "__main__":
    main()
