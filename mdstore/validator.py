# SPDX-License-Identifier: MIT
"""
mdstore Validation Engine

Applies a compiled schema (and optionally a user directory) to a set of
parsed documents and collects coded findings into a Report. Content
problems never raise: every finding is a ValidationError record.

Codes are stable:

    F000-F030   header and field errors
    S010-S032   structural errors (sections, tables, content)
    T010        type count over max_count
    R001-R011   reference warnings
    U010-U011   user/team warnings
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .document import MISSING, Document, Section, get_section, get_table, section_blocks
from .refs import ResolvedRef, WorkingSet, resolve_ref
from .schema import ColumnDef, FieldDef, FieldKind, SchemaModel, SectionDef, TypeDef
from .users import UserDirectory, is_valid_syntax

logger = logging.getLogger(__name__)

FORMAT_ONLY = "format-only"
DIRECTORY = "directory"

# Fence info strings accepted as diagrams when a section names no language
DIAGRAM_LANGUAGES = ("mermaid", "d2", "plantuml", "graphviz", "dot")


class ErrorCode(str, Enum):
    F000 = "F000"  # header missing or undecodable
    F001 = "F001"  # no type field
    F002 = "F002"  # unknown type
    F010 = "F010"  # missing required field
    F020 = "F020"  # kind mismatch
    F021 = "F021"  # value not in enum
    F030 = "F030"  # pattern mismatch
    S010 = "S010"  # missing section
    S020 = "S020"  # missing table
    S021 = "S021"  # missing column
    S022 = "S022"  # empty required cell
    S030 = "S030"  # too few paragraphs
    S031 = "S031"  # list missing or too short
    S032 = "S032"  # diagram missing
    T010 = "T010"  # too many documents of a type
    R001 = "R001"  # ref matches no ref-format
    R010 = "R010"  # broken relative path
    R011 = "R011"  # unresolved string id
    U010 = "U010"  # invalid handle syntax
    U011 = "U011"  # unknown user or team

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value


def severity_for(code: str) -> Severity:
    """Reference and user codes are warnings; everything else is an error."""
    return Severity.WARNING if str(code)[0] in ("R", "U") else Severity.ERROR


# =============================================================================
# Report Structures
# =============================================================================


@dataclass
class ValidationError:
    """A single finding against one document."""

    code: ErrorCode
    severity: Severity
    path: str
    location: str
    message: str
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": str(self.code),
            "location": self.location,
            "message": self.message,
            "hint": self.hint,
        }


@dataclass
class FieldRef:
    """A header reference value and how it resolved."""

    source: str
    field: str
    index: Optional[int]
    location: str
    ref: ResolvedRef


@dataclass
class FileReport:
    path: str
    doc_type: Optional[str] = None
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)
    refs: List[FieldRef] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, code: ErrorCode, location: str, message: str, hint: Optional[str] = None) -> None:
        severity = severity_for(code)
        error = ValidationError(
            code=code,
            severity=severity,
            path=self.path,
            location=location,
            message=message,
            hint=hint,
        )
        if severity is Severity.ERROR:
            self.errors.append(error)
        else:
            self.warnings.append(error)

    def codes(self) -> List[str]:
        return [str(e.code) for e in self.errors + self.warnings]

    def sort(self) -> None:
        # list.sort is stable, so findings with equal codes keep discovery order
        self.errors.sort(key=lambda e: str(e.code))
        self.warnings.sort(key=lambda e: str(e.code))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class Report:
    """Validation result for a document set, files in input order."""

    files: List[FileReport] = field(default_factory=list)
    user_mode: str = FORMAT_ONLY

    @property
    def errors(self) -> int:
        return sum(len(f.errors) for f in self.files)

    @property
    def warnings(self) -> int:
        return sum(len(f.warnings) for f in self.files)

    @property
    def ok(self) -> bool:
        return self.errors == 0

    @property
    def resolved_refs(self) -> Dict[str, List[FieldRef]]:
        return {f.path: list(f.refs) for f in self.files}

    def get_file(self, path: str) -> Optional[FileReport]:
        for file_report in self.files:
            if file_report.path == path:
                return file_report
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "errors": self.errors,
            "warnings": self.warnings,
            "ok": self.ok,
            "files": [f.to_dict() for f in self.files],
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


# =============================================================================
# Value Checks
# =============================================================================


def yaml_type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "sequence"
    if isinstance(value, dict):
        return "mapping"
    return type(value).__name__


class _Checker:
    """Per-document validation state shared by the field and section passes."""

    def __init__(
        self,
        doc: Document,
        report: FileReport,
        schema: SchemaModel,
        working_set: WorkingSet,
        users: Optional[UserDirectory],
    ) -> None:
        self.doc = doc
        self.report = report
        self.schema = schema
        self.working_set = working_set
        self.users = users

    def mismatch(self, name: str, expected: str, value: Any) -> None:
        self.report.add(
            ErrorCode.F020,
            f"header.{name}",
            f'field "{name}" expected {expected}, got {yaml_type_name(value)}',
        )

    def check_pattern(self, name: str, value: str, rule: Any) -> None:
        if rule.regex is not None and not rule.regex.search(value):
            self.report.add(
                ErrorCode.F030,
                f"header.{name}",
                f'field "{name}" value "{value}" doesn\'t match pattern',
                hint=f"expected pattern: {rule.pattern}",
            )

    def check_ref(self, name: str, value: str, location: str, index: Optional[int] = None) -> ResolvedRef:
        resolved = resolve_ref(value, self.doc.path, self.working_set, self.schema)
        if resolved.code == ErrorCode.R001:
            patterns = ", ".join(rule.pattern for rule in self.schema.ref_formats)
            self.report.add(
                ErrorCode.R001,
                location,
                f'ref "{value}" in "{name}" doesn\'t match any ref-format',
                hint=f"expected patterns: {patterns}" if patterns else "schema declares no ref-format rules",
            )
        elif resolved.code == ErrorCode.R010:
            self.report.add(
                ErrorCode.R010,
                location,
                f'broken file reference "{value}" in "{name}"',
                hint="the target is not among the validated documents",
            )
        elif resolved.code == ErrorCode.R011:
            self.report.add(
                ErrorCode.R011,
                location,
                f'unresolved reference "{value}" in "{name}"',
                hint="no document with a matching id in scope",
            )
        return resolved

    def check_user(self, name: str, value: str, location: str) -> None:
        if not is_valid_syntax(value):
            self.report.add(
                ErrorCode.U010,
                location,
                f'"{name}" value "{value}" is not a valid user reference',
                hint="user references look like @handle or @team/name",
            )
            return
        if self.users is not None and self.users.resolve(value) is None:
            known = self.users.all_handles()
            self.report.add(
                ErrorCode.U011,
                location,
                f'"{name}" references unknown user/team "{value}"',
                hint=f"known: {', '.join(known)}" if known else None,
            )

    # ------------------------------------------------------------------
    # Field pass
    # ------------------------------------------------------------------

    def check_fields(self, type_def: TypeDef) -> None:
        for field_def in type_def.fields:
            value = self.doc.header.get(field_def.name, MISSING)
            if value is MISSING or value is None:
                if field_def.required:
                    hint = f"add '{field_def.name}: <{field_def.kind}>' to the header"
                    if field_def.description:
                        hint += f" ({field_def.description})"
                    self.report.add(
                        ErrorCode.F010,
                        f"header.{field_def.name}",
                        f'missing required field "{field_def.name}"',
                        hint=hint,
                    )
                continue
            self.check_value(field_def, value)

    def check_value(self, field_def: FieldDef, value: Any) -> None:
        name = field_def.name
        kind = field_def.kind

        if kind is FieldKind.STRING:
            if not isinstance(value, str):
                self.mismatch(name, "string", value)
            else:
                self.check_pattern(name, value, field_def)

        elif kind is FieldKind.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                self.mismatch(name, "number", value)

        elif kind is FieldKind.BOOL:
            if not isinstance(value, bool):
                self.mismatch(name, "bool", value)

        elif kind is FieldKind.ENUM:
            if not isinstance(value, str):
                self.mismatch(name, "enum (string)", value)
            elif value not in field_def.values:
                self.report.add(
                    ErrorCode.F021,
                    f"header.{name}",
                    f'field "{name}" has invalid value "{value}"',
                    hint=f"allowed values: {', '.join(field_def.values)}",
                )

        elif kind is FieldKind.REF or kind is FieldKind.USER:
            expected = "ref (string)" if kind is FieldKind.REF else "user (@handle)"
            if not isinstance(value, str):
                self.mismatch(name, expected, value)
                return
            self.check_pattern(name, value, field_def)
            if kind is FieldKind.REF:
                self.record(name, None, f"header.{name}", self.check_ref(name, value, f"header.{name}"))
            else:
                self.check_user(name, value, f"header.{name}")

        else:
            self.check_array(field_def, value)

    def check_array(self, field_def: FieldDef, value: Any) -> None:
        name = field_def.name
        kind = field_def.kind
        expected = {
            FieldKind.REF_ARRAY: "ref (string)",
            FieldKind.STRING_ARRAY: "string",
            FieldKind.USER_ARRAY: "user (@handle)",
        }[kind]

        if not isinstance(value, list):
            self.mismatch(name, str(kind), value)
            return

        for i, item in enumerate(value):
            item_name = f"{name}[{i}]"
            location = f"header.{item_name}"
            if not isinstance(item, str):
                self.report.add(
                    ErrorCode.F020,
                    location,
                    f'field "{item_name}" expected {expected}, got {yaml_type_name(item)}',
                )
                continue
            self.check_pattern(item_name, item, field_def)
            if kind is FieldKind.REF_ARRAY:
                self.record(name, i, location, self.check_ref(item_name, item, location))
            elif kind is FieldKind.USER_ARRAY:
                self.check_user(item_name, item, location)

    def record(self, name: str, index: Optional[int], location: str, resolved: ResolvedRef) -> None:
        self.report.refs.append(
            FieldRef(source=self.report.path, field=name, index=index, location=location, ref=resolved)
        )

    # ------------------------------------------------------------------
    # Section pass
    # ------------------------------------------------------------------

    def check_sections(self, defs: Sequence[SectionDef], parent: Sequence[str] = ()) -> None:
        for sec_def in defs:
            path = list(parent) + [sec_def.name]
            label = " > ".join(path)
            section = get_section(self.doc, path)
            if section is None:
                if sec_def.required:
                    hint = f'add heading "# {sec_def.name}" or "## {sec_def.name}"'
                    if sec_def.description:
                        hint += f" ({sec_def.description})"
                    self.report.add(
                        ErrorCode.S010,
                        f'section "{label}"',
                        f'missing required section "{label}"',
                        hint=hint,
                    )
                continue

            for index, table_def in enumerate(sec_def.tables):
                table = get_table(self.doc, section, index)
                location = f'section "{label}" > table[{index}]'
                if table is None:
                    if table_def.required:
                        self.report.add(
                            ErrorCode.S020,
                            location,
                            f'section "{label}" requires a table but none found',
                            hint="add a markdown table to this section",
                        )
                    continue
                for column in table_def.columns:
                    cells = table.column(column.name)
                    if cells is None:
                        if column.required:
                            self.report.add(
                                ErrorCode.S021,
                                location,
                                f'table in "{label}" missing required column "{column.name}"',
                                hint=f"columns found: {', '.join(table.columns)}",
                            )
                        continue
                    for row, cell in enumerate(cells):
                        self.check_cell(column, cell.strip(), f"{location} > {column.name}[{row}]", label)

            if sec_def.content is not None:
                self.check_content(section, sec_def, label)
            if sec_def.list_rule is not None:
                self.check_list(section, sec_def, label)
            if sec_def.diagram is not None:
                self.check_diagram(section, sec_def, label)

            self.check_sections(sec_def.children, path)

    def check_cell(self, column: ColumnDef, cell: str, location: str, label: str) -> None:
        name = f"{label}.{column.name}"
        if not cell:
            if column.required:
                self.report.add(
                    ErrorCode.S022,
                    location,
                    f'table in "{label}" column "{column.name}" has an empty required cell',
                )
            return

        if column.kind is FieldKind.NUMBER:
            try:
                float(cell)
            except ValueError:
                self.report.add(ErrorCode.F020, location, f'cell "{cell}" in "{name}" expected number')
        elif column.kind is FieldKind.BOOL:
            if cell.lower() not in ("true", "false"):
                self.report.add(ErrorCode.F020, location, f'cell "{cell}" in "{name}" expected bool')
        elif column.kind is FieldKind.USER:
            self.check_user(name, cell, location)
        elif column.kind is FieldKind.REF:
            self.check_ref(name, cell, location)

        if column.regex is not None:
            if not column.regex.search(cell):
                self.report.add(
                    ErrorCode.F030,
                    location,
                    f'cell "{cell}" in "{name}" doesn\'t match pattern',
                    hint=f"expected pattern: {column.pattern}",
                )

    def check_content(self, section: Section, sec_def: SectionDef, label: str) -> None:
        minimum = sec_def.content.min_paragraphs
        if minimum is None:
            return
        found = len(section_blocks(self.doc, section, "paragraph"))
        if found < minimum:
            self.report.add(
                ErrorCode.S030,
                f'section "{label}"',
                f'section "{label}" requires at least {minimum} paragraph(s), found {found}',
                hint="add prose content to this section",
            )

    def check_list(self, section: Section, sec_def: SectionDef, label: str) -> None:
        rule = sec_def.list_rule
        items = section_blocks(self.doc, section, "list_item")
        if not items:
            if rule.required:
                self.report.add(
                    ErrorCode.S031,
                    f'section "{label}"',
                    f'section "{label}" requires a list but none found',
                    hint="add a markdown list (- item) to this section",
                )
            return
        if rule.min_items is not None and len(items) < rule.min_items:
            self.report.add(
                ErrorCode.S031,
                f'section "{label}"',
                f'section "{label}" requires at least {rule.min_items} list item(s), found {len(items)}',
                hint=f"add at least {rule.min_items} list items",
            )

    def check_diagram(self, section: Section, sec_def: SectionDef, label: str) -> None:
        rule = sec_def.diagram
        infos = [
            (b.info.split()[0].lower() if b.info.strip() else "")
            for b in section_blocks(self.doc, section, "code")
        ]
        if rule.language:
            found = rule.language.lower() in infos
            hint = f"add a ```{rule.language} code block to this section"
        else:
            found = any(info in DIAGRAM_LANGUAGES for info in infos)
            hint = f"add a fenced code block with a diagram language ({', '.join(DIAGRAM_LANGUAGES)})"
        if not found and rule.required:
            self.report.add(
                ErrorCode.S032,
                f'section "{label}"',
                f'section "{label}" requires a diagram but none found',
                hint=hint,
            )


# =============================================================================
# Validation Functions
# =============================================================================


def resolve_type(doc: Document, schema: SchemaModel, report: FileReport) -> Optional[TypeDef]:
    """
    Determine the document's type, recording F000/F001/F002 as needed.

    A document whose header is missing or undecodable falls back to the
    type whose folder contains it, so its sections are still checked.
    """
    if doc.header_error is not None or not doc.has_header:
        if doc.header_error is not None:
            report.add(
                ErrorCode.F000,
                "header",
                f"header could not be decoded: {doc.header_error.message}",
                hint="fix the YAML between the --- markers",
            )
        else:
            report.add(
                ErrorCode.F000,
                "header",
                "document has no header",
                hint="add a YAML header between --- markers",
            )
        inferred = schema.type_for_path(doc.path) if doc.path else None
        if inferred is not None:
            logger.debug("inferred type %s for %s from folder", inferred.name, report.path)
        return inferred

    type_name = doc.header.get("type")
    if type_name is None:
        report.add(
            ErrorCode.F001,
            "header",
            'missing required field "type"',
            hint="add 'type: <typename>' to the header",
        )
        return None

    type_def = schema.get_type(type_name) if isinstance(type_name, str) else None
    if type_def is None:
        report.add(
            ErrorCode.F002,
            "header.type",
            f'unknown document type "{type_name}"',
            hint=f"known types: {', '.join(schema.types)}",
        )
    return type_def


def validate_document(
    doc: Document,
    schema: SchemaModel,
    working_set: WorkingSet,
    users: Optional[UserDirectory] = None,
) -> FileReport:
    """
    Validate a single document.

    Field checks run only when the header decoded. Section checks run
    whenever a type could be determined, including by folder inference.

    Args:
        doc: Parsed document
        schema: Compiled schema
        working_set: Documents that references may resolve to
        users: Optional user directory; without it user values are only
            checked for syntax

    Returns:
        FileReport with errors and warnings sorted by code
    """
    report = FileReport(path=doc.path or "<string>")
    type_def = resolve_type(doc, schema, report)
    if type_def is not None:
        report.doc_type = type_def.name
        checker = _Checker(doc, report, schema, working_set, users)
        if doc.header_error is None and doc.has_header:
            checker.check_fields(type_def)
        checker.check_sections(type_def.sections)
    report.sort()
    return report


def check_type_counts(reports: List[FileReport], schema: SchemaModel) -> None:
    """Attach T010 to the first document past a type's max_count."""
    by_type: Dict[str, List[FileReport]] = defaultdict(list)
    for report in reports:
        if report.doc_type is not None:
            by_type[report.doc_type].append(report)

    for type_def in schema.types.values():
        members = by_type.get(type_def.name, [])
        if type_def.max_count is None or len(members) <= type_def.max_count:
            continue
        members[type_def.max_count].add(
            ErrorCode.T010,
            f'type "{type_def.name}"',
            f'type "{type_def.name}" has {len(members)} document(s) but max_count is {type_def.max_count}',
            hint=f"files: {', '.join(m.path for m in members)}",
        )


def validate_documents(
    documents: Sequence[Document],
    schema: SchemaModel,
    users: Optional[UserDirectory] = None,
) -> Report:
    """
    Validate a document set.

    The working set for reference resolution is the set of input paths.

    Args:
        documents: Parsed documents, in the order the report should list them
        schema: Compiled schema
        users: Optional user directory

    Returns:
        Report over all documents
    """
    working_set = WorkingSet(d.path for d in documents if d.path)
    reports = [validate_document(doc, schema, working_set, users) for doc in documents]
    check_type_counts(reports, schema)
    for report in reports:
        report.sort()

    result = Report(files=reports, user_mode=DIRECTORY if users is not None else FORMAT_ONLY)
    logger.debug(
        "validated %d document(s): %d error(s), %d warning(s), user mode %s",
        len(reports),
        result.errors,
        result.warnings,
        result.user_mode,
    )
    return result
