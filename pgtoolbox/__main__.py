"""Module entrypoint to run `python -m pgtoolbox`."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .config import load_config
from .errors import ConfigError
from .toolbox import Toolbox


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="pgtoolbox", description="Inspect or call SQL tools from a TOML catalog.")
    parser.add_argument("config", nargs="?", default="tools.toml", help="path to the TOML catalog")
    parser.add_argument("--list", action="store_true", help="print tool descriptions as JSON")
    parser.add_argument("--call", metavar="TOOL", help="invoke TOOL once and print its result")
    parser.add_argument("--arg", metavar="NAME=VALUE", action="append", default=[], help="argument for --call")
    parser.add_argument("--env-file", type=Path, help="load a dotenv file into the environment first")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def load_env_file(path: Path) -> None:
    """Export the dotenv file at ``path``; its values replace existing variables."""

    load_dotenv(path, override=True)


def _parse_arguments(pairs: Sequence[str]) -> dict[str, str]:
    arguments: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise SystemExit(f"Invalid --arg '{pair}', expected NAME=VALUE")
        arguments[name] = value
    return arguments


async def _call(toolbox: Toolbox, name: str, arguments: dict[str, str]) -> int:
    async with toolbox:
        result = await toolbox.call_tool(name, arguments)
    print(result.text)
    return 1 if result.is_error else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.env_file is not None:
        if not args.env_file.exists():
            print(f"Env file not found at {args.env_file}", file=sys.stderr)
            return 1
        load_env_file(args.env_file)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    toolbox = Toolbox(config)
    toolbox.load_plugins()
    if args.call:
        return asyncio.run(_call(toolbox, args.call, _parse_arguments(args.arg)))
    if args.list:
        print(json.dumps(toolbox.list_tools(), indent=2))
        return 0
    print(f"{len(toolbox.tools)} tools loaded from {args.config}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
