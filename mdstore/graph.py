# SPDX-License-Identifier: MIT
"""
mdstore Relation Graph

Typed edges between documents, built from header fields that name a
relation or its inverse. An inverse declaration is stored as the forward
relation with its endpoints swapped, so ``superseded_by: ADR-001`` on
ADR-002 and ``supersedes: ADR-002`` on ADR-001 produce the same edge.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .document import Document
from .refs import WorkingSet, normalize_path, resolve_ref
from .schema import SchemaModel
from .validator import FieldRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    source: str
    relation: str
    target: str


@dataclass(frozen=True)
class DeclaredEdge:
    """An edge as written: the header field it came from is kept."""

    source: str
    field: str
    target: str


@dataclass(frozen=True)
class GraphDiagnostic:
    """A structural finding over the whole graph."""

    code: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "severity": self.severity, "message": self.message}


DocRef = Union[Document, str]

OUTGOING = "outgoing"
INCOMING = "incoming"


def _key(doc: DocRef) -> str:
    if isinstance(doc, Document):
        return normalize_path(doc.path or "<string>")
    return normalize_path(doc)


def _header_refs(doc: Document, schema: SchemaModel, working_set: WorkingSet) -> Iterable[Tuple[str, str]]:
    """(field, target) pairs for resolvable relation values in one header."""
    if doc.header_error is not None:
        return
    for name in schema.relation_field_names():
        value = doc.header.get(name)
        values = value if isinstance(value, list) else [value]
        for raw in values:
            if not isinstance(raw, str):
                continue
            resolved = resolve_ref(raw, doc.path, working_set, schema)
            if resolved.target is not None:
                yield name, resolved.target


class RelationGraph:
    """Normalized edges plus the declarations they came from."""

    def __init__(
        self,
        schema: SchemaModel,
        declared: Sequence[DeclaredEdge],
        nodes: Iterable[str] = (),
    ) -> None:
        self.schema = schema
        self.declared: Tuple[DeclaredEdge, ...] = tuple(declared)
        # dict keeps first-seen order
        self.nodes: Tuple[str, ...] = tuple(dict.fromkeys(normalize_path(n) for n in nodes))

        edges: List[Edge] = []
        seen: Set[Edge] = set()
        for decl in self.declared:
            found = schema.find_relation(decl.field)
            if found is None:
                continue
            relation, is_inverse = found
            if is_inverse:
                edge = Edge(source=decl.target, relation=relation.name, target=decl.source)
            else:
                edge = Edge(source=decl.source, relation=relation.name, target=decl.target)
            if edge not in seen:
                seen.add(edge)
                edges.append(edge)
        self.edges: Tuple[Edge, ...] = tuple(edges)

        self._out: Dict[str, List[Edge]] = {}
        self._in: Dict[str, List[Edge]] = {}
        for edge in self.edges:
            self._out.setdefault(edge.source, []).append(edge)
            self._in.setdefault(edge.target, []).append(edge)

    def outgoing(self, doc: DocRef) -> Set[Edge]:
        return set(self._out.get(_key(doc), ()))

    def incoming(self, doc: DocRef) -> Set[Edge]:
        """Backlinks: every edge pointing at the document."""
        return set(self._in.get(_key(doc), ()))

    def transitive(self, doc: DocRef, max_depth: int, direction: str = OUTGOING) -> Set[str]:
        """
        Documents reachable within ``max_depth`` hops.

        Each document is reported once however many paths reach it. The
        start document is not part of the result.

        Args:
            doc: Start document or path
            max_depth: Maximum number of hops
            direction: ``"outgoing"`` follows edges forward; ``"incoming"``
                follows backlinks to the documents that point here

        Raises:
            ValueError: If direction is not outgoing or incoming
        """
        if direction == OUTGOING:
            index, far_end = self._out, "target"
        elif direction == INCOMING:
            index, far_end = self._in, "source"
        else:
            raise ValueError(f"unknown direction {direction!r}, expected outgoing or incoming")

        start = _key(doc)
        reached: Set[str] = set()
        visited = {start}
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                continue
            for edge in index.get(current, ()):
                nxt = getattr(edge, far_end)
                if nxt in visited:
                    continue
                visited.add(nxt)
                reached.add(nxt)
                queue.append((nxt, depth + 1))
        return reached

    def orphans(self) -> List[str]:
        """Documents with no incoming and no outgoing edges, in input order."""
        return [n for n in self.nodes if n not in self._out and n not in self._in]

    def components(self) -> List[List[str]]:
        """
        Connected components over the document set, edges taken as undirected.

        Components are listed in the order of their first document; members
        in breadth-first order from it.
        """
        adjacency: Dict[str, List[str]] = {}
        for edge in self.edges:
            adjacency.setdefault(edge.source, []).append(edge.target)
            adjacency.setdefault(edge.target, []).append(edge.source)

        known = set(self.nodes)
        visited: Set[str] = set()
        components: List[List[str]] = []
        for node in self.nodes:
            if node in visited:
                continue
            visited.add(node)
            component: List[str] = []
            queue = deque([node])
            while queue:
                current = queue.popleft()
                component.append(current)
                for neighbor in adjacency.get(current, ()):
                    if neighbor in known and neighbor not in visited:
                        visited.add(neighbor)
                        queue.append(neighbor)
            components.append(component)
        return components

    def missing_inverses(self) -> List[Edge]:
        """
        Declarations lacking their companion on the other document.

        For ``A --field--> B`` where ``field`` has a companion name (the
        inverse of a relation, or the relation of an inverse), the result
        holds ``Edge(B, companion, A)`` when B does not declare it. The
        ``relation`` attribute carries the header field name to add.
        """
        declared = set(self.declared)
        missing: List[Edge] = []
        seen: Set[Edge] = set()
        for decl in self.declared:
            found = self.schema.find_relation(decl.field)
            if found is None:
                continue
            relation, is_inverse = found
            companion = relation.name if is_inverse else relation.inverse
            if companion is None:
                continue
            if DeclaredEdge(source=decl.target, field=companion, target=decl.source) in declared:
                continue
            candidate = Edge(source=decl.target, relation=companion, target=decl.source)
            if candidate not in seen:
                seen.add(candidate)
                missing.append(candidate)
        return missing

    def self_references(self) -> List[Edge]:
        return [e for e in self.edges if e.source == e.target]

    def cycles(self) -> List[Tuple[str, List[str]]]:
        """
        Cycles along relations declared acyclic.

        Returns:
            (relation name, document paths around the cycle) pairs
        """
        found: List[Tuple[str, List[str]]] = []
        for relation in self.schema.relations:
            if not relation.acyclic:
                continue
            adjacency: Dict[str, List[str]] = {}
            for edge in self.edges:
                if edge.relation == relation.name:
                    adjacency.setdefault(edge.source, []).append(edge.target)
            for cycle in _find_cycles(adjacency):
                found.append((relation.name, cycle))
        return found

    def check_health(self) -> List[GraphDiagnostic]:
        """
        Structural checks over the whole graph.

        Codes:
            G010  cycle along an acyclic relation (error)
            G011  self-reference (warning)
            G020  orphan document (info)
            G021  more than one connected component (warning)
        """
        diagnostics: List[GraphDiagnostic] = []
        for edge in self.self_references():
            diagnostics.append(
                GraphDiagnostic("G011", "warning", f"{edge.source} has self-reference via '{edge.relation}'")
            )
        for relation, path in self.cycles():
            diagnostics.append(
                GraphDiagnostic(
                    "G010", "error", f"cycle detected in acyclic relation '{relation}': {' -> '.join(path)}"
                )
            )
        for node in self.orphans():
            diagnostics.append(
                GraphDiagnostic("G020", "info", f"{node} is an orphan (no incoming or outgoing edges)")
            )
        components = self.components()
        if len(components) > 1:
            summary = "] [".join(
                ", ".join(c) if len(c) <= 3 else f"{', '.join(c[:2])}, ... ({len(c)} nodes)"
                for c in components
            )
            diagnostics.append(
                GraphDiagnostic(
                    "G021", "warning", f"graph has {len(components)} disconnected components: [{summary}]"
                )
            )
        return diagnostics


def _find_cycles(adjacency: Mapping[str, List[str]]) -> List[List[str]]:
    """One cycle per back edge found by depth-first search."""
    cycles: List[List[str]] = []
    done: Set[str] = set()
    for root in adjacency:
        if root in done:
            continue
        path: List[str] = [root]
        on_path = {root}
        stack = [iter(adjacency.get(root, ()))]
        while stack:
            nxt: Optional[str] = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                node = path.pop()
                on_path.discard(node)
                done.add(node)
                continue
            if nxt in on_path:
                cycles.append(path[path.index(nxt):] + [nxt])
            elif nxt not in done:
                path.append(nxt)
                on_path.add(nxt)
                stack.append(iter(adjacency.get(nxt, ())))
    return cycles


def build_graph(
    documents: Sequence[Document],
    schema: SchemaModel,
    resolved_refs: Optional[Mapping[str, Sequence[FieldRef]]] = None,
) -> RelationGraph:
    """
    Build the relation graph for a document set.

    Args:
        documents: Parsed documents
        schema: Compiled schema declaring the relations
        resolved_refs: ``Report.resolved_refs`` from a validation run. Relation
            fields it holds no entry for (documents of unknown type, values
            of the wrong kind) are resolved from the header, so the result
            matches a build without it

    Returns:
        RelationGraph over the resolved edges
    """
    declared: List[DeclaredEdge] = []
    relation_names = set(schema.relation_field_names())
    working_set = WorkingSet(d.path for d in documents if d.path)

    for doc in documents:
        recorded: Set[str] = set()
        if resolved_refs is not None:
            for ref in resolved_refs.get(doc.path or "<string>", ()):
                if ref.field not in relation_names:
                    continue
                recorded.add(ref.field)
                if ref.ref.target is not None:
                    declared.append(DeclaredEdge(_key(doc), ref.field, ref.ref.target))
        for name, target in _header_refs(doc, schema, working_set):
            if name not in recorded:
                declared.append(DeclaredEdge(_key(doc), name, target))

    graph = RelationGraph(schema, declared, nodes=(_key(d) for d in documents))
    logger.debug(
        "built relation graph: %d declared, %d normalized edge(s)", len(graph.declared), len(graph.edges)
    )
    return graph
