# SPDX-License-Identifier: MIT
"""
mdstore CLI

Command-line interface over the document store: validation against a
schema, document outlines, and relation queries.

Usage:
    mdstore validate <schema> <files...> [--users users.yaml] [--json]
    mdstore inspect <file>
    mdstore refs <schema> <file> <files...>
    mdstore graph <schema> <files...> [--missing-inverses | --check]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .document import Document, outline, read_document
from .errors import ConfigError, SchemaError
from .graph import Edge, build_graph
from .loader import DEFAULT_MAX_WORKERS, load_documents
from .refs import normalize_path
from .schema import SchemaModel, load_schema
from .users import UserDirectory, load_users
from .validator import Report, validate_documents


def _load_schema(path: str) -> Optional[SchemaModel]:
    try:
        return load_schema(path)
    except FileNotFoundError:
        print(f"Error: Schema file not found: {path}", file=sys.stderr)
    except SchemaError as e:
        print(f"Error: Invalid schema {path}: {e}", file=sys.stderr)
    return None


def _load(paths: List[str], workers: int) -> Optional[List[Document]]:
    try:
        return load_documents(paths, max_workers=workers)
    except OSError as e:
        print(f"Error: Cannot read file: {e}", file=sys.stderr)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
    return None


def format_report(report: Report) -> str:
    """
    Format a validation report for display.

    Args:
        report: The report to format

    Returns:
        Formatted string for display
    """
    lines: List[str] = []
    for file_report in report.files:
        if not file_report.errors and not file_report.warnings:
            continue
        lines.append(file_report.path)
        for finding in file_report.errors + file_report.warnings:
            lines.append(f"  {finding.severity}[{finding.code}] {finding.location}: {finding.message}")
            if finding.hint:
                lines.append(f"    hint: {finding.hint}")

    status = "OK" if report.ok else "INVALID"
    lines.append(
        f"{status}: {len(report.files)} file(s), {report.errors} error(s), "
        f"{report.warnings} warning(s) (users: {report.user_mode})"
    )
    return "\n".join(lines)


def _edge_dict(edge: Edge) -> Dict[str, str]:
    return {"source": edge.source, "relation": edge.relation, "target": edge.target}


def _sorted_edges(edges: Any) -> List[Edge]:
    return sorted(edges, key=lambda e: (e.relation, e.source, e.target))


def cmd_validate(args: argparse.Namespace) -> int:
    """
    Validate documents against a schema.

    Returns:
        Exit code (0 when no errors, 1 otherwise)
    """
    schema = _load_schema(args.schema)
    if schema is None:
        return 1

    users: Optional[UserDirectory] = None
    if args.users:
        try:
            users = load_users(args.users)
        except FileNotFoundError:
            print(f"Error: Users file not found: {args.users}", file=sys.stderr)
            return 1
        except ConfigError as e:
            print(f"Error: Invalid users config: {e}", file=sys.stderr)
            return 1

    documents = _load(args.files, args.workers)
    if documents is None:
        return 1

    report = validate_documents(documents, schema, users)
    if args.json:
        print(report.to_json())
    else:
        print(format_report(report))
    return 0 if report.ok else 1


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print a document's header and section outline as JSON."""
    try:
        doc = read_document(args.file)
    except FileNotFoundError:
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: Cannot read file: {e}", file=sys.stderr)
        return 1

    output = {
        "path": doc.path,
        "header": doc.header,
        "header_error": str(doc.header_error) if doc.header_error else None,
        "sections": outline(doc),
    }
    print(json.dumps(output, indent=2, default=str))
    return 0


def cmd_refs(args: argparse.Namespace) -> int:
    """Print outgoing and incoming edges of one document."""
    schema = _load_schema(args.schema)
    if schema is None:
        return 1

    paths = list(args.files)
    if normalize_path(args.file) not in {normalize_path(p) for p in paths}:
        paths.insert(0, args.file)
    documents = _load(paths, args.workers)
    if documents is None:
        return 1

    graph = build_graph(documents, schema)
    output = {
        "path": normalize_path(args.file),
        "outgoing": [_edge_dict(e) for e in _sorted_edges(graph.outgoing(args.file))],
        "incoming": [_edge_dict(e) for e in _sorted_edges(graph.incoming(args.file))],
    }
    print(json.dumps(output, indent=2))
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    """Print relation edges, health diagnostics, or the inverse declarations that are missing."""
    schema = _load_schema(args.schema)
    if schema is None:
        return 1
    documents = _load(args.files, args.workers)
    if documents is None:
        return 1

    graph = build_graph(documents, schema)
    if args.check:
        diagnostics = graph.check_health()
        output: Dict[str, Any] = {
            "diagnostics": [d.to_dict() for d in diagnostics],
            "count": len(diagnostics),
        }
        print(json.dumps(output, indent=2))
        return 1 if any(d.severity == "error" for d in diagnostics) else 0

    if args.missing_inverses:
        missing = graph.missing_inverses()
        output = {
            "missing_inverses": [
                {"path": e.source, "field": e.relation, "target": e.target} for e in missing
            ]
        }
    else:
        output = {
            "edges": [_edge_dict(e) for e in _sorted_edges(graph.edges)],
            "cycles": [{"relation": r, "path": p} for r, p in graph.cycles()],
        }
    print(json.dumps(output, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser for the CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="mdstore",
        description="Schema validation and relation queries for Markdown document stores",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate documents against a schema",
    )
    validate_parser.add_argument("schema", help="Path to the schema file")
    validate_parser.add_argument("files", nargs="+", help="Documents to validate")
    validate_parser.add_argument(
        "--users",
        help="Path to a users/teams YAML file; enables unknown user checks",
    )
    validate_parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )
    validate_parser.set_defaults(func=cmd_validate)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Show a document's header and section outline",
    )
    inspect_parser.add_argument("file", help="Path to the document")
    inspect_parser.set_defaults(func=cmd_inspect)

    # refs command
    refs_parser = subparsers.add_parser(
        "refs",
        help="Show outgoing and incoming relations of a document",
    )
    refs_parser.add_argument("schema", help="Path to the schema file")
    refs_parser.add_argument("file", help="Document to query")
    refs_parser.add_argument("files", nargs="+", help="Documents forming the working set")
    refs_parser.set_defaults(func=cmd_refs)

    # graph command
    graph_parser = subparsers.add_parser(
        "graph",
        help="Show relation edges across documents",
    )
    graph_parser.add_argument("schema", help="Path to the schema file")
    graph_parser.add_argument("files", nargs="+", help="Documents forming the working set")
    graph_parser.add_argument(
        "--missing-inverses",
        action="store_true",
        help="List inverse declarations that should be added",
    )
    graph_parser.add_argument(
        "--check",
        action="store_true",
        help="Run health checks (cycles, self-references, orphans, components)",
    )
    graph_parser.set_defaults(func=cmd_graph)

    for sub in (validate_parser, refs_parser, graph_parser):
        sub.add_argument(
            "--workers",
            type=int,
            default=DEFAULT_MAX_WORKERS,
            help="Maximum parallel file reads",
        )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if hasattr(args, "func"):
        return args.func(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
