# SPDX-License-Identifier: MIT
"""Tests for the mdstore reference resolver."""

import os
import unittest

from mdstore.refs import R001, R010, R011, WorkingSet, path_to_id, resolve_ref
from mdstore.schema import RELATIVE_PATH, STRING_ID, compile_schema


SCHEMA = r'''
ref-format {
    string-id pattern=#"^(ADR|OPP|GOV|INC)-\d+$"#
    relative-path pattern=#"\.md$"#
}
'''

PATHS = [
    "docs/adr/adr-001.md",
    "docs/adr/ADR-002-use-postgres.md",
    "docs/opp/opp_001.md",
    "docs/adr/./adr-003.md",
]


class TestWorkingSet(unittest.TestCase):
    """Test the working set snapshot."""

    def setUp(self) -> None:
        """Build the sample working set."""
        self.working_set = WorkingSet(PATHS)

    def test_paths_normalized(self) -> None:
        """Test normalization and membership."""
        self.assertIn(os.path.normpath("docs/adr/adr-003.md"), self.working_set.paths)
        self.assertIn("docs/adr/./adr-001.md", self.working_set)
        self.assertNotIn("docs/adr/adr-009.md", self.working_set)
        self.assertEqual(len(self.working_set), 4)

    def test_stem_index(self) -> None:
        """Test uppercase stem and id lookups."""
        self.assertEqual(self.working_set.by_stem("adr-001"), os.path.normpath("docs/adr/adr-001.md"))
        self.assertEqual(self.working_set.by_stem("ADR-002"), os.path.normpath("docs/adr/ADR-002-use-postgres.md"))
        self.assertEqual(self.working_set.by_stem("OPP-001"), os.path.normpath("docs/opp/opp_001.md"))
        self.assertIsNone(self.working_set.by_stem("ADR-009"))

    def test_first_path_wins(self) -> None:
        """Test duplicate stems in different folders."""
        working_set = WorkingSet(["a/adr-001.md", "b/adr-001.md"])
        self.assertEqual(working_set.by_stem("ADR-001"), os.path.normpath("a/adr-001.md"))

    def test_path_to_id(self) -> None:
        """Test id extraction from file names."""
        self.assertEqual(path_to_id("docs/adr-001-start-using-postgres.md"), "ADR-001")
        self.assertEqual(path_to_id("docs/inc_002.md"), "INC-002")
        self.assertEqual(path_to_id("docs/readme.md"), "README")


class TestResolveRef(unittest.TestCase):
    """Test reference resolution."""

    def setUp(self) -> None:
        """Compile the schema and build the working set."""
        self.schema = compile_schema(SCHEMA)
        self.working_set = WorkingSet(PATHS)
        self.source = "docs/adr/adr-003.md"

    def test_string_id_resolves_case_insensitively(self) -> None:
        """Test ADR-001 against adr-001.md."""
        resolved = resolve_ref("ADR-001", self.source, self.working_set, self.schema)
        self.assertEqual(resolved.strategy, STRING_ID)
        self.assertEqual(resolved.rule, "string-id")
        self.assertEqual(resolved.target, os.path.normpath("docs/adr/adr-001.md"))
        self.assertIsNone(resolved.code)
        self.assertTrue(resolved.resolved)

    def test_string_id_unresolved(self) -> None:
        """Test an id with no matching document."""
        resolved = resolve_ref("ADR-005", self.source, self.working_set, self.schema)
        self.assertEqual(resolved.code, R011)
        self.assertIsNone(resolved.target)

    def test_relative_path(self) -> None:
        """Test paths relative to the referencing document."""
        resolved = resolve_ref("../opp/opp_001.md", self.source, self.working_set, self.schema)
        self.assertEqual(resolved.strategy, RELATIVE_PATH)
        self.assertEqual(resolved.target, os.path.normpath("docs/opp/opp_001.md"))

        sibling = resolve_ref("adr-001.md", self.source, self.working_set, self.schema)
        self.assertEqual(sibling.target, os.path.normpath("docs/adr/adr-001.md"))

    def test_relative_path_must_be_in_working_set(self) -> None:
        """Test that existence on disk is not enough."""
        resolved = resolve_ref("../../README.md", self.source, self.working_set, self.schema)
        self.assertEqual(resolved.code, R010)
        self.assertIsNone(resolved.target)

    def test_unmatched_format(self) -> None:
        """Test values matching no ref-format rule."""
        resolved = resolve_ref("the old one", self.source, self.working_set, self.schema)
        self.assertEqual(resolved.code, R001)
        self.assertIsNone(resolved.rule)

    def test_schema_without_rules(self) -> None:
        """Test that every ref is R001 without ref-format rules."""
        resolved = resolve_ref("ADR-001", self.source, self.working_set, compile_schema(""))
        self.assertEqual(resolved.code, R001)

    def test_pure(self) -> None:
        """Test that results depend only on the working set passed in."""
        first = resolve_ref("ADR-001", self.source, self.working_set, self.schema)
        other = resolve_ref("ADR-001", self.source, WorkingSet([]), self.schema)
        self.assertIsNone(first.code)
        self.assertEqual(other.code, R011)


if __name__ == "__main__":
    unittest.main()
