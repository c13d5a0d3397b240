# SPDX-License-Identifier: MIT
"""
mdstore

A schema-validated, cross-referenced store of Markdown documents with YAML
headers, heading trees and pipe tables.

Usage:
    from mdstore import compile_schema, load_documents, validate_documents, build_graph

    schema = compile_schema(schema_source)
    docs = load_documents(paths)

    # Validate the set
    report = validate_documents(docs, schema)

    # Query relations
    graph = build_graph(docs, schema, report.resolved_refs)
    graph.transitive(docs[0], max_depth=2)
"""

from .errors import ConfigError, MdStoreError, ParseError, SchemaError

from .document import (
    MISSING,
    Document,
    Section,
    Table,
    get_field,
    get_section,
    get_table,
    outline,
    parse_document,
    read_document,
    remove_field,
    section_text,
    set_field,
    splice,
    table_text,
)

from .schema import (
    FieldKind,
    RefFormatRule,
    RelationDef,
    SchemaModel,
    TypeDef,
    compile_schema,
    load_schema,
)

from .users import UserDirectory, compile_users, load_users, users_from_yaml

from .refs import ResolvedRef, WorkingSet, resolve_ref

from .validator import (
    ErrorCode,
    Report,
    ValidationError,
    validate_document,
    validate_documents,
)

from .graph import Edge, GraphDiagnostic, RelationGraph, build_graph

from .loader import load_documents

__version__ = "0.1.0"
__all__ = [
    # Errors
    "MdStoreError",
    "ParseError",
    "SchemaError",
    "ConfigError",
    # Document exports
    "MISSING",
    "Document",
    "Section",
    "Table",
    "parse_document",
    "read_document",
    "get_section",
    "get_table",
    "section_text",
    "table_text",
    "splice",
    "get_field",
    "set_field",
    "remove_field",
    "outline",
    # Schema exports
    "FieldKind",
    "RefFormatRule",
    "RelationDef",
    "SchemaModel",
    "TypeDef",
    "compile_schema",
    "load_schema",
    # Users and references
    "UserDirectory",
    "compile_users",
    "load_users",
    "users_from_yaml",
    "ResolvedRef",
    "WorkingSet",
    "resolve_ref",
    # Validation and graph
    "ErrorCode",
    "Report",
    "ValidationError",
    "validate_document",
    "validate_documents",
    "Edge",
    "GraphDiagnostic",
    "RelationGraph",
    "build_graph",
    "load_documents",
    # Version
    "__version__",
]
