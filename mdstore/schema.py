# SPDX-License-Identifier: MIT
"""
mdstore Schema Model

Parses schema source (a KDL-style node language) and compiles it into type
definitions, relation definitions and reference-format rules.

Example:

    relation "supersedes" inverse="superseded_by" cardinality="one"

    type "adr" folder="docs/adr" {
        field "title" type="string" required=#true
        field "status" type="enum" required=#true {
            values "proposed" "accepted" "superseded"
        }
        section "Decision" required=#true {
            table {
                column "Option" type="string" required=#true
                column "Owner" type="user"
            }
        }
    }

    ref-format {
        string-id pattern="^(ADR|OPP)-\\d+$"
        relative-path pattern="\\.md$"
    }
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional, Pattern, Tuple, Union

from .errors import SchemaError

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


class FieldKind(Enum):
    """The closed set of value kinds a field or column can declare."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    ENUM = "enum"
    REF = "ref"
    REF_ARRAY = "ref[]"
    STRING_ARRAY = "string[]"
    USER = "user"
    USER_ARRAY = "user[]"

    def __str__(self) -> str:
        return self.value

    @property
    def is_array(self) -> bool:
        return self in (FieldKind.REF_ARRAY, FieldKind.STRING_ARRAY, FieldKind.USER_ARRAY)

    @property
    def is_ref(self) -> bool:
        return self in (FieldKind.REF, FieldKind.REF_ARRAY)

    @property
    def is_user(self) -> bool:
        return self in (FieldKind.USER, FieldKind.USER_ARRAY)


FIELD_KIND_NAMES: Dict[str, FieldKind] = {kind.value: kind for kind in FieldKind}
FIELD_KIND_NAMES.update(
    {
        "ref-array": FieldKind.REF_ARRAY,
        "string-array": FieldKind.STRING_ARRAY,
        "user-array": FieldKind.USER_ARRAY,
    }
)

COLUMN_KINDS = {FieldKind.STRING, FieldKind.NUMBER, FieldKind.BOOL, FieldKind.REF, FieldKind.USER}


class Cardinality(Enum):
    ONE = "one"
    MANY = "many"

    def __str__(self) -> str:
        return self.value


STRING_ID = "string-id"
RELATIVE_PATH = "relative-path"
REF_STRATEGIES = (STRING_ID, RELATIVE_PATH)


@dataclass
class FieldDef:
    """A header field declared on a type, or injected from a relation."""

    name: str
    kind: FieldKind
    required: bool = False
    pattern: Optional[str] = None
    regex: Optional[Pattern[str]] = None
    values: Tuple[str, ...] = ()
    description: Optional[str] = None
    default: Optional[str] = None
    relation: Optional[str] = None
    inverse: bool = False


@dataclass
class ColumnDef:
    name: str
    kind: FieldKind
    required: bool = False
    pattern: Optional[str] = None
    regex: Optional[Pattern[str]] = None
    description: Optional[str] = None


@dataclass
class TableDef:
    required: bool = False
    description: Optional[str] = None
    columns: List[ColumnDef] = field(default_factory=list)


@dataclass
class ContentRule:
    min_paragraphs: Optional[int] = None


@dataclass
class ListRule:
    required: bool = True
    min_items: Optional[int] = None


@dataclass
class DiagramRule:
    required: bool = True
    language: Optional[str] = None


@dataclass
class SectionDef:
    name: str
    required: bool = False
    description: Optional[str] = None
    children: List["SectionDef"] = field(default_factory=list)
    tables: List[TableDef] = field(default_factory=list)
    content: Optional[ContentRule] = None
    list_rule: Optional[ListRule] = None
    diagram: Optional[DiagramRule] = None


@dataclass
class TypeDef:
    name: str
    description: Optional[str] = None
    folder: Optional[str] = None
    max_count: Optional[int] = None
    fields: List[FieldDef] = field(default_factory=list)
    sections: List[SectionDef] = field(default_factory=list)

    def get_field(self, name: str) -> Optional[FieldDef]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass
class RelationDef:
    """A named link usable as a header field on every type."""

    name: str
    inverse: Optional[str] = None
    cardinality: Cardinality = Cardinality.MANY
    description: Optional[str] = None
    acyclic: bool = False

    @property
    def field_kind(self) -> FieldKind:
        return FieldKind.REF if self.cardinality is Cardinality.ONE else FieldKind.REF_ARRAY


@dataclass
class RefFormatRule:
    name: str
    strategy: str  # STRING_ID or RELATIVE_PATH
    pattern: str
    regex: Pattern[str]


@dataclass
class SchemaModel:
    """A compiled schema. Read-only once built."""

    types: Dict[str, TypeDef] = field(default_factory=dict)
    relations: List[RelationDef] = field(default_factory=list)
    ref_formats: List[RefFormatRule] = field(default_factory=list)

    def get_type(self, name: str) -> Optional[TypeDef]:
        return self.types.get(name)

    def find_relation(self, field_name: str) -> Optional[Tuple[RelationDef, bool]]:
        """Return (relation, is_inverse) for a relation or inverse field name."""
        for relation in self.relations:
            if relation.name == field_name:
                return relation, False
            if relation.inverse == field_name:
                return relation, True
        return None

    def relation_field_names(self) -> List[str]:
        names: List[str] = []
        for relation in self.relations:
            names.append(relation.name)
            if relation.inverse:
                names.append(relation.inverse)
        return names

    def classify_ref(self, raw: str) -> Optional[RefFormatRule]:
        """First rule, in declaration order, whose pattern matches."""
        for rule in self.ref_formats:
            if rule.regex.search(raw):
                return rule
        return None

    def type_for_path(self, path: Union[str, Path]) -> Optional[TypeDef]:
        """Infer a type from the deepest declared folder containing the path."""
        parent = PurePath(path).parent.as_posix()
        best: Optional[TypeDef] = None
        best_len = -1
        for type_def in self.types.values():
            if type_def.folder is None:
                continue
            folder = PurePath(type_def.folder).as_posix()
            if folder == ".":
                matched = parent in (".", "")
            else:
                matched = parent == folder or parent.endswith("/" + folder)
            if matched and len(folder) > best_len:
                best, best_len = type_def, len(folder)
        return best


# =============================================================================
# Lexer
# =============================================================================


@dataclass
class Token:
    kind: str  # "string", "ident", "number", "bool", "null", "=", "{", "}", ";", "newline", "eof"
    value: Any
    line: int


@dataclass
class Node:
    """One node of schema source: name, positional args, properties, children."""

    name: str
    line: int
    args: List[Any] = field(default_factory=list)
    props: Dict[str, Any] = field(default_factory=dict)
    children: List["Node"] = field(default_factory=list)


NUMBER_RE = re.compile(r"[+-]?\d[\d_]*(?:\.\d[\d_]*)?")
IDENT_RE = re.compile(r"[^\s{}()\[\]/\\\"#;=]+")
RAW_STRING_RE = re.compile(r"r?(#+)\"|r\"")

STRING_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "\\": "\\",
    '"': '"',
    "/": "/",
}

KEYWORDS = {
    "#true": ("bool", True),
    "#false": ("bool", False),
    "#null": ("null", None),
    "true": ("bool", True),
    "false": ("bool", False),
    "null": ("null", None),
}


class _Lexer:
    def __init__(self, source: str) -> None:
        self.src = source
        self.pos = 0
        self.line = 1
        self.tokens: List[Token] = []

    def _emit(self, kind: str, value: Any = None) -> None:
        self.tokens.append(Token(kind, value, self.line))

    def _string(self) -> str:
        start_line = self.line
        self.pos += 1
        out: List[str] = []
        while self.pos < len(self.src):
            ch = self.src[self.pos]
            if ch == '"':
                self.pos += 1
                return "".join(out)
            if ch == "\n":
                self.line += 1
            if ch == "\\":
                esc = self.src[self.pos + 1 : self.pos + 2]
                if esc not in STRING_ESCAPES:
                    raise SchemaError(f"invalid escape '\\{esc}' in string", line=self.line)
                out.append(STRING_ESCAPES[esc])
                self.pos += 2
                continue
            out.append(ch)
            self.pos += 1
        raise SchemaError("unterminated string", line=start_line)

    def _raw_string(self, hashes: int) -> str:
        start_line = self.line
        terminator = '"' + "#" * hashes
        end = self.src.find(terminator, self.pos)
        if end < 0:
            raise SchemaError("unterminated raw string", line=start_line)
        value = self.src[self.pos:end]
        self.line += value.count("\n")
        self.pos = end + len(terminator)
        return value

    def tokenize(self) -> List[Token]:
        src = self.src
        while self.pos < len(src):
            ch = src[self.pos]

            if ch in " \t\r\ufeff":
                self.pos += 1
            elif ch == "\n":
                self._emit("newline")
                self.line += 1
                self.pos += 1
            elif ch == "\\" and src[self.pos + 1 : self.pos + 2] in ("\n", "\r"):
                # line continuation
                self.pos = src.index("\n", self.pos) + 1
                self.line += 1
            elif src.startswith("//", self.pos):
                end = src.find("\n", self.pos)
                self.pos = len(src) if end < 0 else end
            elif src.startswith("/*", self.pos):
                end = src.find("*/", self.pos + 2)
                if end < 0:
                    raise SchemaError("unterminated block comment", line=self.line)
                self.line += src.count("\n", self.pos, end)
                self.pos = end + 2
            elif ch in "{};=":
                self._emit(ch)
                self.pos += 1
            elif ch == '"':
                self._emit("string", self._string())
            elif RAW_STRING_RE.match(src, self.pos):
                match = RAW_STRING_RE.match(src, self.pos)
                self.pos = match.end()
                self._emit("string", self._raw_string(len(match.group(1) or "")))
            elif ch == "#":
                match = IDENT_RE.match(src, self.pos + 1)
                word = "#" + (match.group(0) if match else "")
                if word not in KEYWORDS:
                    raise SchemaError(f"unknown keyword '{word}'", line=self.line)
                kind, value = KEYWORDS[word]
                self._emit(kind, value)
                self.pos += len(word)
            elif NUMBER_RE.match(src, self.pos) and (ch.isdigit() or src[self.pos + 1 : self.pos + 2].isdigit()):
                text = NUMBER_RE.match(src, self.pos).group(0)
                clean = text.replace("_", "")
                self._emit("number", float(clean) if "." in clean else int(clean))
                self.pos += len(text)
            else:
                match = IDENT_RE.match(src, self.pos)
                if not match:
                    raise SchemaError(f"unexpected character {ch!r}", line=self.line)
                word = match.group(0)
                if word in KEYWORDS:
                    self._emit(*KEYWORDS[word])
                else:
                    self._emit("ident", word)
                self.pos += len(word)

        self._emit("eof")
        return self.tokens


# =============================================================================
# Parser
# =============================================================================

VALUE_KINDS = ("string", "ident", "number", "bool", "null")


class _Parser:
    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def parse_nodes(self, depth: int = 0) -> List[Node]:
        nodes: List[Node] = []
        while True:
            tok = self.peek()
            if tok.kind in ("newline", ";"):
                self.advance()
            elif tok.kind == "eof":
                if depth:
                    raise SchemaError("unclosed '{'", line=tok.line)
                return nodes
            elif tok.kind == "}":
                if not depth:
                    raise SchemaError("unexpected '}'", line=tok.line)
                return nodes
            else:
                nodes.append(self.parse_node(depth))

    def parse_node(self, depth: int) -> Node:
        tok = self.advance()
        if tok.kind not in ("ident", "string"):
            raise SchemaError(f"expected node name, found {tok.kind!r}", line=tok.line)
        node = Node(name=tok.value, line=tok.line)

        while True:
            tok = self.peek()
            if tok.kind in ("newline", ";", "eof", "}"):
                return node
            if tok.kind == "{":
                self.advance()
                node.children = self.parse_nodes(depth + 1)
                self.advance()  # the closing brace
                return node
            if tok.kind in ("ident", "string") and self.peek(1).kind == "=":
                self.advance()
                self.advance()
                node.props[tok.value] = self.parse_value()
                continue
            node.args.append(self.parse_value())

    def parse_value(self) -> Any:
        tok = self.advance()
        if tok.kind not in VALUE_KINDS:
            raise SchemaError(f"expected a value, found {tok.kind!r}", line=tok.line)
        return tok.value


def parse_schema_source(source: str) -> List[Node]:
    """
    Parse schema source into a node tree.

    Raises:
        SchemaError: On lexical or syntactic errors
    """
    return _Parser(_Lexer(source).tokenize()).parse_nodes()


# =============================================================================
# Compiler
# =============================================================================


def _name_arg(node: Node, what: str) -> str:
    if not node.args or not isinstance(node.args[0], str):
        raise SchemaError(f"{what} node missing name", line=node.line)
    return node.args[0]


def _str_prop(node: Node, key: str, default: Optional[str] = None) -> Optional[str]:
    value = node.props.get(key, default)
    if value is not None and not isinstance(value, str):
        raise SchemaError(f"property '{key}' on '{node.name}' must be a string", line=node.line)
    return value


def _bool_prop(node: Node, key: str, default: bool) -> bool:
    value = node.props.get(key, default)
    if not isinstance(value, bool):
        raise SchemaError(f"property '{key}' on '{node.name}' must be #true or #false", line=node.line)
    return value


def _int_prop(node: Node, key: str) -> Optional[int]:
    value = node.props.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SchemaError(f"property '{key}' on '{node.name}' must be a non-negative integer", line=node.line)
    return value


def _compile_regex(pattern: Optional[str], node: Node) -> Optional[Pattern[str]]:
    if pattern is None:
        return None
    try:
        return re.compile(pattern)
    except re.error as e:
        raise SchemaError(f"invalid pattern {pattern!r}: {e}", line=node.line)


def _field_kind(node: Node, allowed: Optional[set] = None) -> FieldKind:
    type_name = _str_prop(node, "type", "string")
    kind = FIELD_KIND_NAMES.get(type_name)
    if kind is None or (allowed is not None and kind not in allowed):
        raise SchemaError(f"unknown {node.name} type: '{type_name}'", line=node.line)
    return kind


def compile_field(node: Node) -> FieldDef:
    name = _name_arg(node, "field")
    kind = _field_kind(node)
    pattern = _str_prop(node, "pattern")
    if pattern is not None and kind in (FieldKind.NUMBER, FieldKind.BOOL, FieldKind.ENUM):
        raise SchemaError(f"field '{name}' of type {kind} cannot have a pattern", line=node.line)

    values: Tuple[str, ...] = ()
    if kind is FieldKind.ENUM:
        for child in node.children:
            if child.name == "values":
                values += tuple(str(v) for v in child.args)
        if not values:
            raise SchemaError(f"enum field '{name}' has no values defined", line=node.line)

    default = node.props.get("default")
    return FieldDef(
        name=name,
        kind=kind,
        required=_bool_prop(node, "required", False),
        pattern=pattern,
        regex=_compile_regex(pattern, node),
        values=values,
        description=_str_prop(node, "description"),
        default=None if default is None else str(default),
    )


def compile_table(node: Node) -> TableDef:
    table = TableDef(
        required=_bool_prop(node, "required", False),
        description=_str_prop(node, "description"),
    )
    seen = set()
    for child in node.children:
        if child.name != "column":
            raise SchemaError(f"unknown node in table: '{child.name}'", line=child.line)
        name = _name_arg(child, "column")
        if name in seen:
            raise SchemaError(f"duplicate column '{name}' in table", line=child.line)
        seen.add(name)
        pattern = _str_prop(child, "pattern")
        kind = _field_kind(child, COLUMN_KINDS)
        if pattern is not None and kind in (FieldKind.NUMBER, FieldKind.BOOL):
            raise SchemaError(f"column '{name}' of type {kind} cannot have a pattern", line=child.line)
        table.columns.append(
            ColumnDef(
                name=name,
                kind=kind,
                required=_bool_prop(child, "required", False),
                pattern=pattern,
                regex=_compile_regex(pattern, child),
                description=_str_prop(child, "description"),
            )
        )
    return table


def compile_section(node: Node) -> SectionDef:
    section = SectionDef(
        name=_name_arg(node, "section"),
        required=_bool_prop(node, "required", False),
        description=_str_prop(node, "description"),
    )
    for child in node.children:
        if child.name == "section":
            section.children.append(compile_section(child))
        elif child.name == "table":
            section.tables.append(compile_table(child))
        elif child.name == "content":
            section.content = ContentRule(min_paragraphs=_int_prop(child, "min-paragraphs"))
        elif child.name == "list":
            section.list_rule = ListRule(
                required=_bool_prop(child, "required", True),
                min_items=_int_prop(child, "min-items"),
            )
        elif child.name == "diagram":
            section.diagram = DiagramRule(
                required=_bool_prop(child, "required", True),
                language=_str_prop(child, "type"),
            )
        else:
            raise SchemaError(
                f"unknown node in section '{section.name}': '{child.name}'", line=child.line
            )
    _check_sibling_sections(section.children, node.line)
    return section


def _check_sibling_sections(sections: List[SectionDef], line: int) -> None:
    seen = set()
    for section in sections:
        if section.name in seen:
            raise SchemaError(f"duplicate section '{section.name}' among siblings", line=line)
        seen.add(section.name)


def compile_type(node: Node) -> TypeDef:
    type_def = TypeDef(
        name=_name_arg(node, "type"),
        description=_str_prop(node, "description"),
        folder=_str_prop(node, "folder"),
        max_count=_int_prop(node, "max_count"),
    )
    seen_fields = set()
    for child in node.children:
        if child.name == "field":
            field_def = compile_field(child)
            if field_def.name in seen_fields:
                raise SchemaError(
                    f"duplicate field '{field_def.name}' in type '{type_def.name}'", line=child.line
                )
            seen_fields.add(field_def.name)
            type_def.fields.append(field_def)
        elif child.name == "section":
            type_def.sections.append(compile_section(child))
        else:
            raise SchemaError(
                f"unknown node in type '{type_def.name}': '{child.name}'", line=child.line
            )
    _check_sibling_sections(type_def.sections, node.line)
    return type_def


def compile_relation(node: Node) -> RelationDef:
    name = _name_arg(node, "relation")
    cardinality = _str_prop(node, "cardinality", "many")
    try:
        card = Cardinality(cardinality)
    except ValueError:
        raise SchemaError(
            f"unknown cardinality '{cardinality}' for relation '{name}', expected 'one' or 'many'",
            line=node.line,
        )
    return RelationDef(
        name=name,
        inverse=_str_prop(node, "inverse"),
        cardinality=card,
        description=_str_prop(node, "description"),
        acyclic=_bool_prop(node, "acyclic", False),
    )


def compile_ref_formats(node: Node) -> List[RefFormatRule]:
    rules: List[RefFormatRule] = []
    for child in node.children:
        pattern = _str_prop(child, "pattern")
        if pattern is None:
            raise SchemaError(f"ref-format '{child.name}' missing pattern", line=child.line)
        strategy = _str_prop(child, "strategy", child.name)
        if strategy not in REF_STRATEGIES:
            raise SchemaError(
                f"ref-format '{child.name}' has unknown strategy '{strategy}', "
                f"expected one of {', '.join(REF_STRATEGIES)}",
                line=child.line,
            )
        rules.append(
            RefFormatRule(
                name=child.name,
                strategy=strategy,
                pattern=pattern,
                regex=_compile_regex(pattern, child),
            )
        )
    return rules


def inject_relation_fields(type_def: TypeDef, relations: List[RelationDef]) -> None:
    """Append one optional field per relation name and inverse name."""
    explicit = {f.name for f in type_def.fields}
    for relation in relations:
        names = [(relation.name, False)]
        if relation.inverse:
            names.append((relation.inverse, True))
        for name, inverse in names:
            if name in explicit:
                continue
            type_def.fields.append(
                FieldDef(
                    name=name,
                    kind=relation.field_kind,
                    description=relation.description,
                    relation=relation.name,
                    inverse=inverse,
                )
            )


def compile_schema(source: str) -> SchemaModel:
    """
    Compile schema source into a SchemaModel.

    Args:
        source: Schema source text

    Returns:
        The compiled schema

    Raises:
        SchemaError: If the source is malformed or violates a compile rule
    """
    schema = SchemaModel()
    relation_names: Dict[str, int] = {}

    for node in parse_schema_source(source):
        if node.name == "relation":
            relation = compile_relation(node)
            for name in filter(None, (relation.name, relation.inverse)):
                if name in relation_names:
                    raise SchemaError(f"duplicate relation name '{name}'", line=node.line)
                relation_names[name] = node.line
            schema.relations.append(relation)
        elif node.name == "type":
            type_def = compile_type(node)
            if type_def.name in schema.types:
                raise SchemaError(f"duplicate type '{type_def.name}'", line=node.line)
            schema.types[type_def.name] = type_def
        elif node.name == "ref-format":
            schema.ref_formats.extend(compile_ref_formats(node))
        else:
            raise SchemaError(f"unknown top-level node: '{node.name}'", line=node.line)

    for type_def in schema.types.values():
        inject_relation_fields(type_def, schema.relations)

    logger.debug(
        "compiled schema: %d type(s), %d relation(s), %d ref-format rule(s)",
        len(schema.types),
        len(schema.relations),
        len(schema.ref_formats),
    )
    return schema


def load_schema(path: Union[str, Path]) -> SchemaModel:
    """
    Read and compile a schema file.

    Raises:
        FileNotFoundError: If the file does not exist
        SchemaError: If the source does not compile
    """
    with open(path, "r", encoding="utf-8") as f:
        return compile_schema(f.read())
