#!/usr/bin/env python3
"""
tagq command line interface.

Runs queries and aggregations against a workspace database and prints
results as rich tables, JSON or CSV.
"""
import sys
import argparse
import json
import csv
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from tagq.aggregate import AggregationEngine, PERIODS
from tagq.config import TagqConfig, load_config, user_config_path
from tagq.db import Database
from tagq.errors import TagqError
from tagq.query import QueryExecutor, QueryRegistry, SavedQuery, parse_query
from tagq.query.results import AggregateResult, EntityItem, QueryResult
from tagq.schema import SchemaResolver, SchemaSnapshot

logger = logging.getLogger(__name__)

console = Console()


def format_timestamp(ms: Optional[int]) -> str:
    if ms is None:
        return ""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def open_db(args) -> Database:
    config: TagqConfig = args.settings
    return Database(config=config)


# =============================================================================
# Output
# =============================================================================

def output_items(result: QueryResult[EntityItem], format: str = "table",
                 select: Optional[List[str]] = None, title: str = "Results"):
    """Output query results in the specified format."""
    if format == "json":
        if select:
            data: Any = result.project(select)
        else:
            data = result.to_dict()
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return

    field_names = select or result.metadata.get("fields") or sorted(
        {name for item in result for name in item.fields}
    )

    if format == "csv":
        writer = csv.writer(sys.stdout)
        columns = list(select) if select else ["id", "name"] + list(field_names)
        writer.writerow(columns)
        for item in result:
            row = item.flat(columns)
            writer.writerow(["" if row[c] is None else row[c] for c in columns])
        return

    table = Table(title=title)
    if not select:
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Created", style="magenta")
    for name in field_names:
        table.add_column(name, style="yellow")

    for item in result:
        cells = [] if select else [item.id, (item.name or "")[:60], format_timestamp(item.created)]
        cells += [str(item.get(name) or "")[:40] for name in field_names]
        table.add_row(*cells)

    console.print(table)
    shown = len(result)
    if result.has_more:
        console.print(f"[dim]{shown} of {result.total_count} results[/dim]")
    else:
        console.print(f"[dim]{shown} results[/dim]")


def output_aggregate(result: AggregateResult, format: str = "table", title: str = "Aggregate"):
    if format == "json":
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    if format == "csv":
        writer = csv.writer(sys.stdout)
        header = ["group", "count"] + (["percent"] if result.percentages is not None else [])
        writer.writerow(header)
        for key, count in result.groups.items():
            row = [key, count]
            if result.percentages is not None:
                row.append(result.percentages[key])
            writer.writerow(row)
        return

    if result.groups:
        table = Table(title=title)
        table.add_column("Group", style="cyan")
        table.add_column("Count", style="green", justify="right")
        if result.percentages is not None:
            table.add_column("%", style="yellow", justify="right")
        for key, count in result.groups.items():
            row = [key, str(count)]
            if result.percentages is not None:
                row.append(f"{result.percentages[key]:.1f}")
            table.add_row(*row)
        console.print(table)
    if result.warning:
        console.print(f"[yellow]{result.warning}[/yellow]")
    console.print(f"Total: [bold]{result.total}[/bold]")


# =============================================================================
# Commands
# =============================================================================

def cmd_query(args):
    """Run a query."""
    db = open_db(args)
    executor = QueryExecutor(db, args.settings)

    if args.explain:
        print(executor.explain(args.query))
        return

    query = parse_query(args.query)
    result = executor.execute(query)
    output_items(result, args.settings.output_format, query.select, title=query.target)


def load_registry(config: TagqConfig) -> QueryRegistry:
    registry = QueryRegistry()
    path = Path(config.queries_file)
    if path.exists():
        registry.load_file(path)
    return registry


def cmd_run(args):
    """Run a saved query."""
    registry = load_registry(args.settings)
    try:
        saved = registry.get(args.name)
    except KeyError:
        console.print(f"[red]Unknown saved query: {args.name}[/red]")
        sys.exit(1)

    db = open_db(args)
    result = QueryExecutor(db, args.settings).execute(saved.query)
    output_items(result, args.settings.output_format, saved.query.select, title=saved.name)


def cmd_queries(args):
    """List or add saved queries."""
    config: TagqConfig = args.settings
    registry = load_registry(config)

    if args.queries_command == "add":
        registry.register(SavedQuery(
            name=args.name,
            text=args.query,
            query=parse_query(args.query),
            description=args.description,
        ))
        registry.save(config.queries_file)
        console.print(f"[green]Saved query '{args.name}'[/green]")
        return

    names = registry.list()
    if config.output_format == "json":
        print(json.dumps({name: registry.get(name).text for name in names}, indent=2))
        return

    table = Table(title="Saved Queries")
    table.add_column("Name", style="cyan")
    table.add_column("Query", style="green")
    table.add_column("Description", style="yellow")
    for name in names:
        saved = registry.get(name)
        table.add_row(name, saved.text, saved.description or "")
    console.print(table)


def cmd_aggregate(args):
    """Count tagged nodes, optionally grouped."""
    db = open_db(args)
    engine = AggregationEngine(db, args.settings)
    result = engine.aggregate(
        args.tag,
        group_by=args.group_by,
        filter=args.where,
        period=args.period,
        top=args.top,
        show_percent=args.percent,
    )
    title = f"{args.tag} by {args.group_by or args.period}" if (args.group_by or args.period) else args.tag
    output_aggregate(result, args.settings.output_format, title=title)


def cmd_tags(args):
    """List tags or show one tag's fields."""
    db = open_db(args)
    with db.session() as session:
        resolver = SchemaResolver(SchemaSnapshot.load(session))

    fmt = args.settings.output_format

    if args.tags_command == "list":
        stats = resolver.tag_stats()
        if fmt == "json":
            print(json.dumps(stats, indent=2, ensure_ascii=False))
            return
        table = Table(title="Tags")
        table.add_column("Name", style="cyan")
        table.add_column("Own", style="green", justify="right")
        table.add_column("Inherited", style="yellow", justify="right")
        table.add_column("Extends", style="magenta")
        for row in stats:
            table.add_row(row["name"], str(row["own_fields"]),
                          str(row["inherited_fields"]), ", ".join(row["parents"]))
        console.print(table)
        return

    tag = resolver.resolve_tag(args.tag, inherited_only=args.inherited_only)
    if fmt == "json":
        data = {
            "tag_id": tag.tag_id,
            "name": tag.name,
            "fields": [
                {
                    "name": f.original_name,
                    "normalized_name": f.normalized_name,
                    "type": f.inferred_type.value,
                    "inherited_from": f.inherited_from_tag_id,
                }
                for f in tag.fields
            ],
        }
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return

    tags = resolver.snapshot.tags
    table = Table(title=f"Fields of {tag.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("From", style="yellow")
    for f in tag.fields:
        source = tags[f.inherited_from_tag_id].name if f.is_inherited and f.inherited_from_tag_id in tags \
            else (f.inherited_from_tag_id or "")
        table.add_row(f.original_name, f.inferred_type.value, source)
    console.print(table)


def cmd_search(args):
    """Full-text search over field values."""
    db = open_db(args)
    if db.fts is None:
        console.print("[red]Full-text search needs a database file[/red]")
        sys.exit(1)

    results = db.fts.search(args.text, field_name=args.field, limit=args.limit)
    if args.settings.output_format == "json":
        print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
        return

    table = Table(title=f"Search: {args.text}")
    table.add_column("Node", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Field", style="yellow")
    table.add_column("Match", style="white")
    for r in results:
        table.add_row(r.node_id, (r.node_name or "")[:40], r.field_name,
                      r.snippet or r.value_text[:60])
    console.print(table)


def cmd_db(args):
    """Database information and maintenance."""
    db = open_db(args)

    if args.db_command == "reindex":
        if db.fts is None:
            console.print("[red]Full-text search needs a database file[/red]")
            sys.exit(1)
        count = db.fts.rebuild_index()
        console.print(f"[green]✓ Indexed {count} field values[/green]")
        return

    info: Dict[str, Any] = db.stats()
    if db.fts is not None:
        info["fts_documents"] = db.fts.get_stats().get("documents", 0)

    if args.settings.output_format == "json":
        print(json.dumps(info, indent=2))
        return

    table = Table(title="Database Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in info.items():
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)


def cmd_config(args):
    """Show or initialize configuration."""
    config: TagqConfig = args.settings

    if args.config_command == "show":
        if args.key:
            if not hasattr(config, args.key):
                console.print(f"[red]Unknown config key: {args.key}[/red]")
                sys.exit(1)
            print(getattr(config, args.key))
        else:
            print(json.dumps(asdict(config), indent=2))

    elif args.config_command == "init":
        path = Path(args.path) if args.path else user_config_path()
        TagqConfig().save(path)
        console.print(f"[green]Created config at {path}[/green]")


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tagq",
        description="tagq - query tagged workspace exports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tagq query "find task where Status = Done order by -created limit 10"
  tagq query "find * where Email ~ example.com" -o json
  tagq query "find task where Due < 7d" --explain
  tagq query "find todo where parent.name ~ Inbox and Notes is empty"
  tagq aggregate todo --group-by Status --percent
  tagq aggregate meeting --period month
  tagq tags list
  tagq tags show manager --inherited-only
  tagq search "quarterly review" --field Notes
  tagq queries add open "find task where not Status = Done"
  tagq run open

Configuration:
  Default database: ./tagq.db or from config
  Config file: ~/.config/tagq/config.toml
  Environment: TAGQ_DATABASE, TAGQ_OUTPUT_FORMAT, TAGQ_FUZZY_MATCH
        """
    )

    parser.add_argument("--db", help="Database file (default: tagq.db)")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("-o", "--output", choices=["table", "json", "csv"],
                        help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # query
    query_parser = subparsers.add_parser("query", help="Run a query")
    query_parser.add_argument("query", help='Query text, e.g. "find task where Status = Done"')
    query_parser.add_argument("--explain", action="store_true", help="Print the SQL instead of running it")
    query_parser.add_argument("--fts", action="store_true", help="Use the full-text index for '~'")
    query_parser.set_defaults(func=cmd_query)

    # run
    run_parser = subparsers.add_parser("run", help="Run a saved query")
    run_parser.add_argument("name", help="Saved query name")
    run_parser.set_defaults(func=cmd_run)

    # queries
    queries_parser = subparsers.add_parser("queries", help="Saved queries")
    queries_subparsers = queries_parser.add_subparsers(dest="queries_command", required=True)
    queries_subparsers.add_parser("list", help="List saved queries").set_defaults(func=cmd_queries)
    queries_add = queries_subparsers.add_parser("add", help="Save a query")
    queries_add.add_argument("name", help="Query name")
    queries_add.add_argument("query", help="Query text")
    queries_add.add_argument("--description", help="Description")
    queries_add.set_defaults(func=cmd_queries)

    # aggregate
    agg_parser = subparsers.add_parser("aggregate", help="Count tagged nodes")
    agg_parser.add_argument("tag", help="Tag name ('*' for all nodes)")
    agg_parser.add_argument("--group-by", "-g", help="Field to group by")
    agg_parser.add_argument("--where", "-w", help='Filter, e.g. "Priority > 2"')
    agg_parser.add_argument("--period", choices=PERIODS, help="Group by creation period")
    agg_parser.add_argument("--top", type=int, help="Keep only the N largest groups")
    agg_parser.add_argument("--percent", action="store_true", help="Show percentages")
    agg_parser.set_defaults(func=cmd_aggregate)

    # tags
    tags_parser = subparsers.add_parser("tags", help="Tag schema")
    tags_subparsers = tags_parser.add_subparsers(dest="tags_command", required=True)
    tags_subparsers.add_parser("list", help="List tags").set_defaults(func=cmd_tags)
    tags_show = tags_subparsers.add_parser("show", help="Show a tag's fields")
    tags_show.add_argument("tag", help="Tag name")
    tags_show.add_argument("--inherited-only", action="store_true", help="Only inherited fields")
    tags_show.set_defaults(func=cmd_tags)

    # search
    search_parser = subparsers.add_parser("search", help="Full-text search over field values")
    search_parser.add_argument("text", help="Search text (FTS5 syntax)")
    search_parser.add_argument("--field", help="Restrict to one field")
    search_parser.add_argument("--limit", type=int, default=50, help="Maximum results")
    search_parser.set_defaults(func=cmd_search)

    # db
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_subparsers.add_parser("info", help="Row counts and file size").set_defaults(func=cmd_db)
    db_subparsers.add_parser("reindex", help="Rebuild the full-text index").set_defaults(func=cmd_db)

    # config
    config_parser = subparsers.add_parser("config", help="Configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_show = config_subparsers.add_parser("show", help="Show configuration")
    config_show.add_argument("key", nargs="?", help="Single key to show")
    config_show.set_defaults(func=cmd_config)
    config_init = config_subparsers.add_parser("init", help="Write a default config file")
    config_init.add_argument("--path", help="Where to write (default: user config)")
    config_init.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        args.settings = load_config(
            Path(args.config) if args.config else None,
            database=args.db,
            output_format=args.output,
            fuzzy_match="fts" if getattr(args, "fts", False) else None,
            log_level="DEBUG" if args.verbose else None,
        )
    except (OSError, ValueError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)

    if not args.settings.color_output:
        console.no_color = True

    logging.basicConfig(
        level=getattr(logging, args.settings.log_level.upper(), logging.WARNING),
        format='%(levelname)s: %(message)s'
    )

    try:
        args.func(args)
    except TagqError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
