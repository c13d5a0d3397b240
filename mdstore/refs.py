# SPDX-License-Identifier: MIT
"""
mdstore Reference Resolver

Resolves raw reference strings from document headers against a snapshot
of the documents being processed. A reference is first classified by the
schema's ref-format rules, then resolved by that rule's strategy:

    string-id       ADR-001 matches adr-001.md (stems compare uppercase)
    relative-path   ../adr/adr-001.md, relative to the referencing document
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Tuple, Union

from .schema import RELATIVE_PATH, STRING_ID, SchemaModel

# Leading PREFIX-NNN of a file stem, e.g. ADR-001 from ADR-001-USE-POSTGRES
STEM_ID_RE = re.compile(r"^([A-Z]+-\d+)(?:-|$)")

R001 = "R001"
R010 = "R010"
R011 = "R011"


def normalize_path(path: Union[str, Path]) -> str:
    return os.path.normpath(str(path))


def path_to_id(path: Union[str, Path]) -> str:
    """Uppercase document id for a path: ``docs/adr_001-intro.md`` gives ``ADR-001``."""
    stem = Path(str(path)).stem.upper().replace("_", "-")
    match = STEM_ID_RE.match(stem)
    return match.group(1) if match else stem


class WorkingSet:
    """
    An immutable snapshot of document paths.

    Paths are normalized. The stem index maps both the uppercase file stem
    and its leading ``PREFIX-NNN`` id to a path; the first path wins.
    """

    def __init__(self, paths: Iterable[Union[str, Path]]) -> None:
        ordered = []
        seen = set()
        stems: Dict[str, str] = {}
        for path in paths:
            norm = normalize_path(path)
            if norm in seen:
                continue
            seen.add(norm)
            ordered.append(norm)
            for key in (Path(norm).stem.upper(), path_to_id(norm)):
                stems.setdefault(key, norm)
        self.paths: Tuple[str, ...] = tuple(ordered)
        self._members: FrozenSet[str] = frozenset(ordered)
        self._stems = stems

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and normalize_path(path) in self._members

    def __len__(self) -> int:
        return len(self.paths)

    def by_stem(self, key: str) -> Optional[str]:
        return self._stems.get(key.upper())


@dataclass(frozen=True)
class ResolvedRef:
    raw: str
    rule: Optional[str]  # matched ref-format rule name
    strategy: Optional[str]
    target: Optional[str]  # set iff resolved inside the working set
    code: Optional[str] = None  # R001, R010 or R011 when unresolved

    @property
    def resolved(self) -> bool:
        return self.target is not None


def resolve_ref(
    raw: str,
    source_path: Optional[Union[str, Path]],
    working_set: WorkingSet,
    schema: SchemaModel,
) -> ResolvedRef:
    """
    Resolve one reference string.

    Args:
        raw: The reference as written in the header
        source_path: Path of the referencing document, for relative paths
        working_set: The documents references may point at
        schema: Compiled schema providing the ref-format rules

    Returns:
        ResolvedRef with ``target`` set, or with an R-code explaining why not
    """
    rule = schema.classify_ref(raw)
    if rule is None:
        return ResolvedRef(raw=raw, rule=None, strategy=None, target=None, code=R001)

    if rule.strategy == STRING_ID:
        target = working_set.by_stem(raw)
        return ResolvedRef(
            raw=raw,
            rule=rule.name,
            strategy=STRING_ID,
            target=target,
            code=None if target else R011,
        )

    base = os.path.dirname(str(source_path)) if source_path is not None else ""
    candidate = normalize_path(os.path.join(base, raw))
    target = candidate if candidate in working_set else None
    return ResolvedRef(
        raw=raw,
        rule=rule.name,
        strategy=RELATIVE_PATH,
        target=target,
        code=None if target else R010,
    )
