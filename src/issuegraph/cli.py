"""issuegraph CLI.

Subcommands:
  layout     -> load project items, lay the graph out and print nodes/edges JSON
  positions  -> print the saved node position map for a project
  invalidate -> drop the cached raw items for a project
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, cast

from issuegraph.assembly import GraphAssembly
from issuegraph.config import DEFAULT_CONFIG_FILE, ConfigError, GraphConfig, create_store, load_config
from issuegraph.errors import IssueGraphError, redact
from issuegraph.github_client import GitHubAPIError, GitHubClient
from issuegraph.logging import configure_logging
from issuegraph.models import positions_to_dict
from issuegraph.parser import derive_issues
from issuegraph.position_store import PositionCache
from issuegraph.project_issues import ProjectIssuesLoader

PROJECT_HELP = "Projects v2 node id (PVT_...); defaults to project.id from the config"

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="issuegraph", description="Lay out GitHub issue dependency graphs"
    )
    p.add_argument("--config", default=DEFAULT_CONFIG_FILE)
    p.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    p.add_argument("--log-level", help="Override logging.level from the config")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pl = sub.add_parser("layout", help="Lay out a project's issue graph and print JSON")
    pl.add_argument("--project", help=PROJECT_HELP)
    pl.add_argument("--items", help="Read raw project items from a JSON file instead of GitHub")
    pl.add_argument("--direction", choices=["vertical", "horizontal"])
    pl.add_argument("--state", choices=["open", "closed", "all"])
    pl.add_argument(
        "--field",
        action="append",
        default=[],
        metavar="FIELD_ID=VALUE",
        help="Only keep items whose project field matches (repeatable)",
    )
    pl.add_argument("--refresh", action="store_true", help="Skip cached items and fetch from GitHub")
    pl.add_argument("--output", help="Write JSON to this file instead of stdout")
    pl.add_argument("--pretty", action="store_true")

    pp = sub.add_parser("positions", help="Print saved node positions for a project")
    pp.add_argument("--project", help=PROJECT_HELP)
    pp.add_argument("--pretty", action="store_true")

    pi = sub.add_parser("invalidate", help="Delete cached raw items for a project")
    pi.add_argument("--project", help=PROJECT_HELP)
    return p


def _load_cfg(args: argparse.Namespace) -> GraphConfig:
    path = Path(args.config)
    if path.exists():
        return load_config(path)
    if args.config != DEFAULT_CONFIG_FILE:
        raise ConfigError(f"Configuration file not found: {path}")
    return GraphConfig.defaults()


def _project_id(cfg: GraphConfig, args: argparse.Namespace, *, required: bool = True) -> str:
    project = getattr(args, "project", None) or cfg.project_id
    if not project:
        if required:
            raise ConfigError("No project id given; pass --project or set project.id")
        return "local"
    return str(project)


def _parse_fields(pairs: list[str], base: dict[str, str]) -> dict[str, str]:
    filters = dict(base)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"--field expects FIELD_ID=VALUE, got {pair!r}")
        filters[key] = value
    return filters


def _read_items(path: str) -> list[dict[str, Any]]:
    data: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise IssueGraphError(f"{path} must contain a list of items or an object with 'items'")
    return [cast(dict[str, Any], item) for item in data if isinstance(item, dict)]


def _dump(payload: Any, args: argparse.Namespace) -> None:
    text = json.dumps(payload, indent=2 if getattr(args, "pretty", False) else None)
    output = getattr(args, "output", None)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


async def _run_layout(cfg: GraphConfig, args: argparse.Namespace) -> int:
    cache = PositionCache(create_store(cfg))
    state = args.state or cfg.project_state
    filters = _parse_fields(args.field, cfg.project_field_filters)
    if args.items:
        graph_id = _project_id(cfg, args, required=False)
        issues, deps = derive_issues(_read_items(args.items), state=state, field_filters=filters)
    else:
        graph_id = _project_id(cfg, args)
        client = GitHubClient(
            token=cfg.github_token,
            base_url=cfg.github_api_url,
            graphql_url=cfg.github_graphql_url,
        )
        loader = ProjectIssuesLoader(client, cache, state=state, field_filters=filters)
        snapshot = await loader.load(graph_id, force=args.refresh)
        if snapshot.error is not None:
            print(f"Failed to load project {graph_id}: {snapshot.error}", file=sys.stderr)
            return 1
        issues, deps = snapshot.issues, snapshot.dependencies

    assembly = GraphAssembly(
        graph_id,
        cache,
        direction=args.direction or cfg.layout_direction,
        options=cfg.layout_options,
        save_delay=cfg.save_delay,
    )
    try:
        view = await assembly.update(issues, deps)
    finally:
        await assembly.close()
    _dump(view.to_dict(), args)
    return 0


async def _run_positions(cfg: GraphConfig, args: argparse.Namespace) -> int:
    cache = PositionCache(create_store(cfg))
    positions = await cache.get_node_positions(_project_id(cfg, args)) or {}
    _dump(positions_to_dict(positions), args)
    return 0


async def _run_invalidate(cfg: GraphConfig, args: argparse.Namespace) -> int:
    graph_id = _project_id(cfg, args)
    cache = PositionCache(create_store(cfg))
    await cache.invalidate(graph_id)
    await cache.flush()
    print(f"Invalidated cached items for {graph_id}")
    return 0


def _build_handlers(args: argparse.Namespace, cfg: GraphConfig) -> dict[str, Any]:
    return {
        "layout": lambda: asyncio.run(_run_layout(cfg, args)),
        "positions": lambda: asyncio.run(_run_positions(cfg, args)),
        "invalidate": lambda: asyncio.run(_run_invalidate(cfg, args)),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = _load_cfg(args)
        configure_logging(
            json_logging=args.json_logs or cfg.logging_json_enabled,
            level=args.log_level or cfg.logging_level,
            stream=sys.stderr,
        )
        handler = _build_handlers(args, cfg).get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return 1
        return int(handler())
    except (ConfigError, GitHubAPIError, IssueGraphError, OSError, ValueError) as exc:
        print(f"issuegraph {args.cmd} failed: {redact(str(exc))}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
