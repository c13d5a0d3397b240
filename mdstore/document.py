# SPDX-License-Identifier: MIT
"""
mdstore Document Model

Parses Markdown documents with an optional YAML header into an arena of
sections, tables and blocks. Every node records a half-open byte range into
the body buffer, so extraction and edits are slices of the original bytes
rather than re-rendered text.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml

from .errors import ParseError

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for header lookups that found nothing."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Section:
    """A heading and the body range it governs."""

    heading: str
    level: int  # 1-6
    heading_start: int  # start of the heading line
    start: int  # first byte after the heading line
    end: int
    index: int
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    tables: List[int] = field(default_factory=list)


@dataclass
class Table:
    """A pipe table; every row carries a value for every column."""

    columns: List[str]
    rows: List[Dict[str, str]]
    start: int
    end: int
    section: Optional[int] = None

    def column(self, name: str) -> Optional[List[str]]:
        if name not in self.columns:
            return None
        return [row[name] for row in self.rows]


@dataclass
class Block:
    """A leaf block of body content: paragraph, list item, code or table."""

    kind: str  # "paragraph", "list_item", "code", "table"
    start: int
    end: int
    section: Optional[int] = None
    info: str = ""  # fence info string for code blocks
    list_start: bool = False  # first item of a list


@dataclass(frozen=True)
class Document:
    """
    A parsed document.

    Instances are never mutated. ``splice``, ``set_field`` and
    ``remove_field`` build a new Document from edited bytes.
    """

    path: Optional[str]
    raw: bytes
    header: Dict[str, Any]
    body: bytes
    body_offset: int
    has_header: bool
    header_error: Optional[ParseError]
    sections: Tuple[Section, ...]
    tables: Tuple[Table, ...]
    blocks: Tuple[Block, ...]

    @property
    def roots(self) -> List[Section]:
        return [s for s in self.sections if s.parent is None]

    @property
    def doc_type(self) -> Optional[str]:
        value = self.header.get("type")
        return value if isinstance(value, str) else None


# =============================================================================
# Regex Patterns
# =============================================================================

HEADER_MARKER = "---"
HEADER_END_MARKERS = ("---", "...")

HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")

FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")

TABLE_SEP_CELL_RE = re.compile(r"^:?-+:?$")

LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d{1,9}[.)])(?:\s+|$)")

INDENTED_RE = re.compile(r"^(?: {2,}|\t)")

UTF8_BOM = b"\xef\xbb\xbf"


# =============================================================================
# Header Handling
# =============================================================================


class HeaderLoader(yaml.SafeLoader):
    """SafeLoader that keeps dates as plain strings and rejects duplicate keys."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> Dict[Any, Any]:
        seen = set()
        for key_node, _value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode):
                continue
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


HeaderLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _decode_line(chunk: bytes) -> str:
    return chunk.decode("utf-8", errors="replace").rstrip("\r\n")


def split_header(raw: bytes) -> Tuple[Optional[bytes], int, Optional[ParseError]]:
    """
    Locate the header block.

    Returns:
        (header bytes or None, byte offset where the body starts, error)
    """
    offset = len(UTF8_BOM) if raw.startswith(UTF8_BOM) else 0
    chunks = raw[offset:].splitlines(keepends=True)
    if not chunks or _decode_line(chunks[0]).rstrip() != HEADER_MARKER:
        return None, offset, None

    pos = offset + len(chunks[0])
    header_start = pos
    for chunk in chunks[1:]:
        if _decode_line(chunk).rstrip() in HEADER_END_MARKERS:
            return raw[header_start:pos], pos + len(chunk), None
        pos += len(chunk)

    return None, offset, ParseError("header block is not terminated", line=1)


def decode_header(text: bytes) -> Dict[str, Any]:
    """
    Decode header bytes as a YAML mapping.

    Raises:
        ParseError: If the YAML is invalid, has duplicate keys, or is not a mapping
    """
    try:
        data = yaml.load(text.decode("utf-8", errors="replace"), Loader=HeaderLoader)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        problem = getattr(e, "problem", None) or str(e)
        # +2: one for 1-based lines, one for the opening marker
        raise ParseError(f"header is not valid YAML: {problem}", line=mark.line + 2 if mark else 0)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(f"header must be a mapping, got {type(data).__name__}", line=2)
    return data


def render_header(header: Dict[str, Any]) -> bytes:
    """Render a header mapping as a delimited YAML block."""
    text = ""
    if header:
        text = yaml.safe_dump(
            header, sort_keys=False, allow_unicode=True, default_flow_style=False
        )
    return f"{HEADER_MARKER}\n{text}{HEADER_MARKER}\n".encode("utf-8")


# =============================================================================
# Body Scanning
# =============================================================================


def unescape_cell(raw: str) -> str:
    """Unescape pipes inside a table cell."""
    return raw.replace("\\|", "|")


def split_table_row(line: str) -> List[str]:
    """Split a table row by unescaped pipes, dropping the outer pipes."""
    stripped = line.strip()
    cells: List[str] = []
    current: List[str] = []
    escaped = False

    for ch in stripped:
        if escaped:
            current.append(ch)
            escaped = False
            continue
        if ch == "\\":
            current.append(ch)
            escaped = True
            continue
        if ch == "|":
            cells.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    cells.append("".join(current).strip())

    if stripped.startswith("|"):
        cells = cells[1:]
    if stripped.endswith("|") and not stripped.endswith("\\|") and cells:
        cells = cells[:-1]

    return [unescape_cell(c) for c in cells]


def is_table_separator(line: str) -> bool:
    if "-" not in line:
        return False
    cells = split_table_row(line)
    return bool(cells) and all(TABLE_SEP_CELL_RE.match(c) for c in cells)


def _line_table(lines: List[Tuple[int, int, str]], i: int) -> Optional[int]:
    """Return the index past the last row if a table starts at line i."""
    text = lines[i][2]
    if "|" not in text or i + 1 >= len(lines):
        return None
    sep = lines[i + 1][2]
    if not is_table_separator(sep):
        return None
    if len(split_table_row(text)) != len(split_table_row(sep)):
        return None

    j = i + 2
    while j < len(lines):
        row = lines[j][2]
        if not row.strip() or "|" not in row or HEADING_RE.match(row) or FENCE_RE.match(row):
            break
        j += 1
    return j


class _BodyScanner:
    """Single pass over body lines that fills the section/table/block arenas."""

    def __init__(self, body: bytes) -> None:
        self.body = body
        self.lines: List[Tuple[int, int, str]] = []
        pos = 0
        for chunk in body.splitlines(keepends=True):
            self.lines.append((pos, pos + len(chunk), _decode_line(chunk)))
            pos += len(chunk)

        self.sections: List[Section] = []
        self.tables: List[Table] = []
        self.blocks: List[Block] = []
        self.stack: List[Section] = []
        self.open_block: Optional[Block] = None

    @property
    def owner(self) -> Optional[int]:
        return self.stack[-1].index if self.stack else None

    def _add_block(self, kind: str, start: int, end: int, **kwargs: Any) -> Block:
        block = Block(kind=kind, start=start, end=end, section=self.owner, **kwargs)
        self.blocks.append(block)
        return block

    def _open_heading(self, level: int, text: str, start: int, end: int) -> None:
        while self.stack and self.stack[-1].level >= level:
            self.stack.pop().end = start

        section = Section(
            heading=text,
            level=level,
            heading_start=start,
            start=end,
            end=len(self.body),
            index=len(self.sections),
            parent=self.owner,
        )
        if section.parent is not None:
            self.sections[section.parent].children.append(section.index)
        self.sections.append(section)
        self.stack.append(section)

    def _read_table(self, i: int, stop: int) -> None:
        columns = split_table_row(self.lines[i][2])
        rows: List[Dict[str, str]] = []
        for _start, _end, text in self.lines[i + 2:stop]:
            cells = split_table_row(text)
            cells = (cells + [""] * len(columns))[: len(columns)]
            rows.append(dict(zip(columns, cells)))

        table = Table(
            columns=columns,
            rows=rows,
            start=self.lines[i][0],
            end=self.lines[stop - 1][1],
            section=self.owner,
        )
        if table.section is not None:
            self.sections[table.section].tables.append(len(self.tables))
        self.tables.append(table)
        self._add_block("table", table.start, table.end)

    def scan(self) -> None:
        lines = self.lines
        i = 0
        while i < len(lines):
            start, end, text = lines[i]

            if not text.strip():
                self.open_block = None
                i += 1
                continue

            fence = FENCE_RE.match(text)
            if fence:
                marker = fence.group(1)
                j = i + 1
                while j < len(lines):
                    closing = lines[j][2].strip()
                    if closing.startswith(marker[0] * len(marker)) and not closing.strip(marker[0]):
                        break
                    j += 1
                close_end = lines[j][1] if j < len(lines) else len(self.body)
                self._add_block("code", start, close_end, info=fence.group(2).strip())
                self.open_block = None
                i = j + 1
                continue

            heading = HEADING_RE.match(text)
            if heading:
                self._open_heading(len(heading.group(1)), (heading.group(2) or "").strip(), start, end)
                self.open_block = None
                i += 1
                continue

            stop = _line_table(lines, i)
            if stop is not None:
                self._read_table(i, stop)
                self.open_block = None
                i = stop
                continue

            if LIST_ITEM_RE.match(text):
                previous = self.blocks[-1] if self.blocks else None
                continues_list = (
                    previous is not None
                    and previous.kind == "list_item"
                    and previous.section == self.owner
                )
                self.open_block = self._add_block(
                    "list_item", start, end, list_start=not continues_list
                )
                i += 1
                continue

            if self.open_block is not None or (
                INDENTED_RE.match(text) and self.blocks and self.blocks[-1].kind == "list_item"
            ):
                target = self.open_block or self.blocks[-1]
                target.end = end
                self.open_block = target
                i += 1
                continue

            self.open_block = self._add_block("paragraph", start, end)
            i += 1


# =============================================================================
# Document Parser
# =============================================================================


def parse_document(
    raw: Union[bytes, str],
    path: Optional[Union[str, Path]] = None,
    strict: bool = False,
) -> Document:
    """
    Parse a complete document.

    The header is decoded first; if it is malformed the error is kept on
    ``Document.header_error`` and the body is parsed anyway, so section and
    table access still work.

    Args:
        raw: The document bytes (str is encoded as UTF-8)
        path: Optional file path the document was read from
        strict: Raise the header error instead of recording it

    Returns:
        Document with its section, table and block arenas

    Raises:
        ParseError: Only when strict is set and the header is malformed
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    header_bytes, body_offset, error = split_header(raw)
    header: Dict[str, Any] = {}
    if header_bytes is not None:
        try:
            header = decode_header(header_bytes)
        except ParseError as e:
            error = e

    if error is not None:
        logger.debug("header error in %s: %s", path or "<memory>", error)
        if strict:
            raise error

    body = raw[body_offset:]
    scanner = _BodyScanner(body)
    scanner.scan()

    return Document(
        path=str(path) if path is not None else None,
        raw=raw,
        header=header,
        body=body,
        body_offset=body_offset,
        has_header=header_bytes is not None,
        header_error=error,
        sections=tuple(scanner.sections),
        tables=tuple(scanner.tables),
        blocks=tuple(scanner.blocks),
    )


def read_document(path: Union[str, Path], strict: bool = False) -> Document:
    """Read and parse a document from disk."""
    with open(path, "rb") as f:
        raw = f.read()
    return parse_document(raw, path=path, strict=strict)


# =============================================================================
# Section and Table Access
# =============================================================================


def _first_named(sections: Iterable[Section], name: str) -> Optional[Section]:
    for section in sections:
        if section.heading == name:
            return section
    return None


def get_section(doc: Document, path: Union[str, Sequence[str]]) -> Optional[Section]:
    """
    Find a section by its path of heading texts.

    The first element matches a root section; when no root carries that
    heading, the first heading anywhere in the document with that text is
    used. Later elements match direct children. Matching is exact and
    case-sensitive, and the first occurrence wins.
    """
    if isinstance(path, str):
        path = [path]
    if not path:
        return None

    current = _first_named(doc.roots, path[0]) or _first_named(doc.sections, path[0])
    for name in path[1:]:
        if current is None:
            return None
        current = _first_named((doc.sections[i] for i in current.children), name)
    return current


def child_sections(doc: Document, section: Section) -> List[Section]:
    return [doc.sections[i] for i in section.children]


def section_path(doc: Document, section: Section) -> List[str]:
    """Heading texts from the root down to this section."""
    names = [section.heading]
    parent = section.parent
    while parent is not None:
        names.append(doc.sections[parent].heading)
        parent = doc.sections[parent].parent
    return list(reversed(names))


def get_table(doc: Document, section: Section, index: int = 0) -> Optional[Table]:
    """The nth table owned by the section itself, not by its children."""
    if index < 0 or index >= len(section.tables):
        return None
    return doc.tables[section.tables[index]]


def section_blocks(doc: Document, section: Section, kind: Optional[str] = None) -> List[Block]:
    """Blocks inside the section range, including those under child headings."""
    return [
        b
        for b in doc.blocks
        if section.start <= b.start < section.end and (kind is None or b.kind == kind)
    ]


def slice_body(doc: Document, start: int, end: int) -> bytes:
    return doc.body[start:end]


def section_text(doc: Document, section: Section) -> str:
    return slice_body(doc, section.start, section.end).decode("utf-8", errors="replace")


def table_text(doc: Document, table: Table) -> str:
    return slice_body(doc, table.start, table.end).decode("utf-8", errors="replace")


# =============================================================================
# Edits
# =============================================================================


def splice(doc: Document, start: int, end: int, new: Union[bytes, str]) -> Document:
    """
    Replace exactly ``body[start:end]`` and re-parse.

    Raises:
        ValueError: If the range falls outside the body
    """
    if not 0 <= start <= end <= len(doc.body):
        raise ValueError(f"range {start}:{end} is outside the body (length {len(doc.body)})")
    if isinstance(new, str):
        new = new.encode("utf-8")
    body = doc.body[:start] + new + doc.body[end:]
    return parse_document(doc.raw[: doc.body_offset] + body, path=doc.path)


def get_field(doc: Document, dotted: str) -> Any:
    """
    Look up a header value by dotted path (``links.superseded_by``).

    Returns:
        The value, or MISSING when any path segment is absent
    """
    current: Any = doc.header
    for part in dotted.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return MISSING
    return current


def _rewrite_header(doc: Document, header: Dict[str, Any]) -> Document:
    if doc.header_error is not None:
        raise ParseError(f"cannot rewrite a malformed header: {doc.header_error.message}")
    return parse_document(render_header(header) + doc.body, path=doc.path)


def set_field(doc: Document, dotted: str, value: Any) -> Document:
    """
    Set a header value by dotted path, creating intermediate mappings.

    Only the header block is rewritten; the body bytes are carried over
    untouched. A document without a header gains one.

    Raises:
        ParseError: If the existing header is malformed
        ValueError: If an intermediate path segment is not a mapping
    """
    header = copy.deepcopy(doc.header)
    parts = dotted.split(".")
    current = header
    for part in parts[:-1]:
        nxt = current.setdefault(part, {})
        if not isinstance(nxt, dict):
            raise ValueError(f"header field {part!r} is not a mapping")
        current = nxt
    current[parts[-1]] = value
    return _rewrite_header(doc, header)


def remove_field(doc: Document, dotted: str) -> Document:
    """Remove a header value by dotted path; a missing path is a no-op."""
    if get_field(doc, dotted) is MISSING:
        return doc
    header = copy.deepcopy(doc.header)
    parts = dotted.split(".")
    current = header
    for part in parts[:-1]:
        current = current[part]
    del current[parts[-1]]
    return _rewrite_header(doc, header)


# =============================================================================
# Plain Views
# =============================================================================


def outline(doc: Document) -> List[Dict[str, Any]]:
    """Nested plain-data view of the section tree, without byte ranges."""

    def build(section: Section) -> Dict[str, Any]:
        return {
            "heading": section.heading,
            "level": section.level,
            "tables": [
                {"columns": list(t.columns), "rows": [dict(r) for r in t.rows]}
                for t in (doc.tables[i] for i in section.tables)
            ],
            "children": [build(c) for c in child_sections(doc, section)],
        }

    return [build(s) for s in doc.roots]
