# SPDX-License-Identifier: MIT
"""Tests for the mdstore validation engine."""

import json
import unittest

from mdstore.document import parse_document
from mdstore.refs import WorkingSet
from mdstore.schema import compile_schema
from mdstore.users import compile_users
from mdstore.validator import (
    DIRECTORY,
    FORMAT_ONLY,
    ErrorCode,
    Report,
    Severity,
    severity_for,
    validate_document,
    validate_documents,
)


SCHEMA = r'''
relation "supersedes" inverse="superseded_by" cardinality="one"
relation "depends_on" inverse="required_by"

type "adr" folder="docs/adr" {
    field "title" type="string" required=#true
    field "date" type="string" required=#true pattern=#"^\d{4}-\d{2}-\d{2}$"#
    field "status" type="enum" required=#true { values "proposed" "accepted" "superseded" }
    field "owner" type="user"
    field "reviewers" type="user[]"
    field "tags" type="string[]"
    field "related" type="ref"
    field "score" type="number"
    field "draft" type="bool"

    section "Context" required=#true
    section "Decision" required=#true {
        table required=#true {
            column "Option" type="string" required=#true
            column "Owner" type="user" required=#true
            column "Score" type="number"
        }
        section "Consequences" {
            list min-items=2
        }
    }
}

type "note" folder="docs/notes" {
    section "Summary" required=#true {
        content min-paragraphs=2
    }
    section "Flow" {
        diagram type="mermaid"
    }
}

type "gov" folder="docs/gov" max_count=1

ref-format {
    string-id pattern=#"^(ADR|OPP|GOV|INC)-\d+$"#
    relative-path pattern=#"\.md$"#
}
'''

HEADER = {
    "type": "adr",
    "title": "Use Postgres",
    "date": "2024-01-15",
    "status": "accepted",
}

BODY = (
    "# Context\n"
    "\n"
    "We need a database.\n"
    "\n"
    "# Decision\n"
    "\n"
    "| Option | Owner | Score |\n"
    "|---|---|---|\n"
    "| Postgres | @alice | 3 |\n"
    "\n"
    "## Consequences\n"
    "\n"
    "- one\n"
    "- two\n"
)


def make_doc(header_lines=None, body=BODY, path="docs/adr/adr-002.md", drop=(), **fields):
    """Build a document from the default header with overrides."""
    if header_lines is None:
        header = dict(HEADER)
        for key in drop:
            header.pop(key)
        header.update(fields)
        header_lines = [f"{key}: {json.dumps(value)}" for key, value in header.items()]
    text = "---\n" + "\n".join(header_lines) + "\n---\n" + body
    return parse_document(text, path=path)


def check(doc, users=None, schema=None, others=()):
    """Validate one document, returning its FileReport."""
    schema = schema or compile_schema(SCHEMA)
    report = validate_documents([doc, *others], schema, users)
    return report, report.files[0]


class TestSeverity(unittest.TestCase):
    """Test code severities."""

    def test_severity_for(self) -> None:
        """Test that R and U codes are warnings."""
        self.assertEqual(severity_for(ErrorCode.R011), Severity.WARNING)
        self.assertEqual(severity_for(ErrorCode.U010), Severity.WARNING)
        self.assertEqual(severity_for(ErrorCode.F010), Severity.ERROR)
        self.assertEqual(severity_for(ErrorCode.S021), Severity.ERROR)
        self.assertEqual(severity_for(ErrorCode.T010), Severity.ERROR)


class TestFieldPass(unittest.TestCase):
    """Test header field checks."""

    def test_valid_document(self) -> None:
        """Test a fully valid document."""
        report, file_report = check(make_doc())
        self.assertTrue(report.ok)
        self.assertEqual(report.errors, 0)
        self.assertEqual(report.warnings, 0)
        self.assertEqual(file_report.doc_type, "adr")

    def test_missing_required_field_is_single_f010(self) -> None:
        """Test that a missing patterned field is one F010 and no F030."""
        report, file_report = check(make_doc(drop=("date",)))
        self.assertEqual(report.errors, 1)
        self.assertEqual(report.warnings, 0)
        self.assertEqual(file_report.codes(), ["F010"])
        self.assertEqual(file_report.errors[0].location, "header.date")

    def test_null_counts_as_absent(self) -> None:
        """Test that an explicit null is a missing field."""
        _report, file_report = check(make_doc(date=None))
        self.assertEqual(file_report.codes(), ["F010"])

    def test_pattern_mismatch(self) -> None:
        """Test F030."""
        _report, file_report = check(make_doc(date="Jan 15"))
        self.assertEqual(file_report.codes(), ["F030"])
        self.assertEqual(file_report.errors[0].location, "header.date")

    def test_invalid_enum(self) -> None:
        """Test F021."""
        _report, file_report = check(make_doc(status="banana"))
        self.assertEqual(file_report.codes(), ["F021"])
        self.assertIn("proposed", file_report.errors[0].hint)

    def test_kind_mismatches(self) -> None:
        """Test F020 across scalar kinds."""
        for fields in ({"title": 42}, {"score": "high"}, {"score": True}, {"draft": "yes"}, {"status": 1}):
            _report, file_report = check(make_doc(**fields))
            self.assertEqual(file_report.codes(), ["F020"], msg=repr(fields))

    def test_number_and_bool(self) -> None:
        """Test accepted numeric and boolean values."""
        _report, file_report = check(make_doc(score=2.5, draft=False))
        self.assertEqual(file_report.codes(), [])

    def test_ref_holding_list(self) -> None:
        """Test that a single ref never accepts a list."""
        _report, file_report = check(make_doc(related=["ADR-002"]))
        self.assertEqual(file_report.codes(), ["F020"])
        self.assertEqual(file_report.errors[0].location, "header.related")

    def test_ref_array_holding_scalar(self) -> None:
        """Test that a ref array never accepts a scalar."""
        _report, file_report = check(make_doc(depends_on="ADR-002"))
        self.assertEqual(file_report.codes(), ["F020"])
        self.assertEqual(file_report.errors[0].location, "header.depends_on")

    def test_array_item_mismatch(self) -> None:
        """Test F020 on individual array items."""
        _report, file_report = check(make_doc(tags=["db", 3]))
        self.assertEqual(file_report.codes(), ["F020"])
        self.assertEqual(file_report.errors[0].location, "header.tags[1]")

    def test_errors_sorted_by_code(self) -> None:
        """Test code ordering regardless of declaration order."""
        _report, file_report = check(make_doc(drop=("title",), status="banana", date="x"))
        self.assertEqual(file_report.codes(), ["F010", "F021", "F030"])


PATTERN_SCHEMA = r'''
type "p" folder="p" {
    field "one" type="ref" pattern=#"^ADR-"#
    field "many" type="ref[]" pattern=#"^ADR-"#
    field "owner" type="user" pattern=#"^@[a-z]+$"#
    field "crew" type="user[]" pattern=#"^@[a-z]+$"#
    section "People" {
        table {
            column "Who" type="user" pattern=#"^@[a-z]+$"#
        }
    }
}

ref-format {
    string-id pattern=#"^(ADR|OPP)-\d+$"#
}
'''


class TestPatterns(unittest.TestCase):
    """Test patterns on every kind that carries string values."""

    def setUp(self) -> None:
        """Compile the pattern schema."""
        self.schema = compile_schema(PATTERN_SCHEMA)

    def errors_for(self, header_line, body=""):
        doc = parse_document(f"---\ntype: p\n{header_line}\n---\n{body}", path="p/p-001.md")
        report = validate_documents([doc], self.schema)
        return [(str(e.code), e.location) for e in report.files[0].errors]

    def test_scalar_ref(self) -> None:
        """Test a pattern on a single ref."""
        self.assertEqual(self.errors_for("one: OPP-1"), [("F030", "header.one")])

    def test_ref_array_items(self) -> None:
        """Test a pattern on each ref array item."""
        self.assertEqual(self.errors_for("many: [ADR-1, OPP-1]"), [("F030", "header.many[1]")])

    def test_scalar_user(self) -> None:
        """Test a pattern on a single user."""
        self.assertEqual(self.errors_for("owner: '@bob2'"), [("F030", "header.owner")])
        self.assertEqual(self.errors_for("owner: '@bob'"), [])

    def test_user_array_items(self) -> None:
        """Test a pattern on each user array item."""
        self.assertEqual(self.errors_for("crew: ['@bob', '@Eve']"), [("F030", "header.crew[1]")])

    def test_user_column(self) -> None:
        """Test a pattern on a user table column."""
        body = "# People\n\n| Who |\n|---|\n| @bob |\n| @Eve |\n"
        self.assertEqual(
            self.errors_for("owner: '@bob'", body),
            [("F030", 'section "People" > table[0] > Who[1]')],
        )


class TestReferences(unittest.TestCase):
    """Test reference warnings."""

    def test_unresolved_superseded_by(self) -> None:
        """Test ADR-005 with no adr-005.md in the working set."""
        report, file_report = check(make_doc(superseded_by="ADR-005"))
        self.assertEqual(report.errors, 0)
        self.assertEqual(report.warnings, 1)
        self.assertTrue(report.ok)
        warning = file_report.warnings[0]
        self.assertEqual(warning.code, ErrorCode.R011)
        self.assertEqual(warning.severity, Severity.WARNING)
        self.assertEqual(warning.location, "header.superseded_by")

    def test_resolved_reference_recorded(self) -> None:
        """Test that resolved refs are kept for the graph."""
        other = make_doc(path="docs/adr/adr-001.md")
        report, file_report = check(make_doc(supersedes="ADR-001"), others=[other])
        self.assertEqual(report.warnings, 0)
        refs = report.resolved_refs["docs/adr/adr-002.md"]
        self.assertEqual(len(refs), 1)
        self.assertEqual(refs[0].field, "supersedes")
        self.assertEqual(refs[0].ref.target, "docs/adr/adr-001.md")

    def test_ref_array_items(self) -> None:
        """Test per-item locations for ref arrays."""
        _report, file_report = check(make_doc(depends_on=["ADR-002", "nonsense"]))
        self.assertEqual(file_report.codes(), ["R001"])
        self.assertEqual(file_report.warnings[0].location, "header.depends_on[1]")

    def test_broken_path(self) -> None:
        """Test R010."""
        _report, file_report = check(make_doc(related="../opp/opp-009.md"))
        self.assertEqual(file_report.codes(), ["R010"])


class TestUsers(unittest.TestCase):
    """Test user and team checks."""

    def setUp(self) -> None:
        """Build a user directory."""
        self.users = compile_users(
            {"users": {"alice": {"teams": ["platform"]}}, "teams": {"platform": {}}}
        )

    def test_format_only_mode(self) -> None:
        """Test that unknown users pass without a directory."""
        report, file_report = check(make_doc(owner="@mallory"))
        self.assertEqual(report.user_mode, FORMAT_ONLY)
        self.assertEqual(file_report.codes(), [])

    def test_invalid_syntax(self) -> None:
        """Test U010 in either mode."""
        for users in (None, self.users):
            report, file_report = check(make_doc(owner="alice"), users=users)
            self.assertEqual(file_report.codes(), ["U010"])
            self.assertTrue(report.ok)

    def test_unknown_user_with_directory(self) -> None:
        """Test U011."""
        report, file_report = check(make_doc(owner="@mallory", reviewers=["@alice", "@team/platform"]), users=self.users)
        self.assertEqual(report.user_mode, DIRECTORY)
        self.assertEqual(file_report.codes(), ["U011"])
        self.assertEqual(file_report.warnings[0].location, "header.owner")

    def test_user_array_items(self) -> None:
        """Test per-item user checks."""
        _report, file_report = check(make_doc(reviewers=["@alice", "@ghost"]), users=self.users)
        self.assertEqual(file_report.warnings[0].location, "header.reviewers[1]")


class TestSectionPass(unittest.TestCase):
    """Test structural checks."""

    def test_missing_section(self) -> None:
        """Test S010."""
        body = BODY.replace("# Context\n\nWe need a database.\n\n", "")
        _report, file_report = check(make_doc(body=body))
        self.assertEqual(file_report.codes(), ["S010"])
        self.assertEqual(file_report.errors[0].location, 'section "Context"')

    def test_children_of_missing_section_skipped(self) -> None:
        """Test that a missing parent yields only its own S010."""
        _report, file_report = check(make_doc(body="# Context\n\nText.\n"))
        self.assertEqual(file_report.codes(), ["S010"])

    def test_missing_table(self) -> None:
        """Test S020."""
        body = "# Context\n\nText.\n\n# Decision\n\nNo table here.\n"
        _report, file_report = check(make_doc(body=body))
        self.assertEqual(file_report.codes(), ["S020"])

    def test_missing_column(self) -> None:
        """Test S021."""
        body = BODY.replace("| Option | Owner | Score |\n|---|---|---|\n| Postgres | @alice | 3 |\n",
                            "| Option | Score |\n|---|---|\n| Postgres | 3 |\n")
        _report, file_report = check(make_doc(body=body))
        self.assertEqual(file_report.codes(), ["S021"])

    def test_cell_checks(self) -> None:
        """Test per-cell rules keyed by column kind."""
        body = BODY.replace("| Postgres | @alice | 3 |\n", "| Postgres |  | high |\n| MySQL | bob | 1 |\n")
        _report, file_report = check(make_doc(body=body))
        self.assertEqual(file_report.codes(), ["F020", "S022", "U010"])
        self.assertEqual(file_report.errors[0].location, 'section "Decision" > table[0] > Score[0]')
        self.assertEqual(file_report.warnings[0].location, 'section "Decision" > table[0] > Owner[1]')

    def test_list_too_short(self) -> None:
        """Test S031."""
        _report, file_report = check(make_doc(body=BODY.replace("- two\n", "")))
        self.assertEqual(file_report.codes(), ["S031"])

    def test_content_and_diagram(self) -> None:
        """Test S030 and S032."""
        body = "# Summary\n\nOnly one.\n\n# Flow\n\n```python\nprint()\n```\n"
        doc = make_doc(header_lines=["type: note"], body=body, path="docs/notes/n.md")
        _report, file_report = check(doc)
        self.assertEqual(file_report.codes(), ["S030", "S032"])

    def test_content_and_diagram_satisfied(self) -> None:
        """Test passing content constraints."""
        body = "# Summary\n\nOne.\n\nTwo.\n\n# Flow\n\n```mermaid\ngraph TD\n```\n"
        doc = make_doc(header_lines=["type: note"], body=body, path="docs/notes/n.md")
        _report, file_report = check(doc)
        self.assertEqual(file_report.codes(), [])


class TestTypeResolution(unittest.TestCase):
    """Test F000, F001 and F002 handling."""

    def test_missing_type(self) -> None:
        """Test F001."""
        _report, file_report = check(make_doc(header_lines=["title: x"]))
        self.assertEqual(file_report.codes(), ["F001"])

    def test_unknown_type(self) -> None:
        """Test F002."""
        _report, file_report = check(make_doc(header_lines=["type: rfc"]))
        self.assertEqual(file_report.codes(), ["F002"])
        self.assertEqual(file_report.errors[0].location, "header.type")

    def test_no_header(self) -> None:
        """Test F000 with folder inference still checking sections."""
        doc = parse_document("# Context\n\nText.\n", path="docs/adr/adr-009.md")
        _report, file_report = check(doc)
        self.assertEqual(file_report.codes(), ["F000", "S010"])
        self.assertEqual(file_report.doc_type, "adr")

    def test_undecodable_header_reported_once(self) -> None:
        """Test partial degradation on a broken header."""
        doc = parse_document("---\ntitle: [unclosed\n---\n" + BODY, path="docs/adr/adr-009.md")
        report, file_report = check(doc)
        self.assertEqual(file_report.codes(), ["F000"])
        self.assertEqual(report.errors, 1)

    def test_no_header_outside_type_folders(self) -> None:
        """Test F000 when no type can be inferred."""
        doc = parse_document("# Anything\n", path="misc/readme.md")
        _report, file_report = check(doc)
        self.assertEqual(file_report.codes(), ["F000"])
        self.assertIsNone(file_report.doc_type)


class TestSetChecks(unittest.TestCase):
    """Test checks across the document set."""

    def test_max_count(self) -> None:
        """Test T010 on the first document past the limit."""
        schema = compile_schema(SCHEMA)
        docs = [
            parse_document("---\ntype: gov\n---\n", path="docs/gov/gov-001.md"),
            parse_document("---\ntype: gov\n---\n", path="docs/gov/gov-002.md"),
        ]
        report = validate_documents(docs, schema)
        self.assertEqual(report.files[0].codes(), [])
        self.assertEqual(report.files[1].codes(), ["T010"])
        self.assertIn("docs/gov/gov-001.md", report.files[1].errors[0].hint)

    def test_validate_document_directly(self) -> None:
        """Test the single-document entry point."""
        doc = make_doc(superseded_by="ADR-001")
        schema = compile_schema(SCHEMA)
        file_report = validate_document(doc, schema, WorkingSet(["docs/adr/adr-001.md"]))
        self.assertTrue(file_report.ok)
        self.assertEqual(file_report.codes(), [])


class TestReport(unittest.TestCase):
    """Test report serialization."""

    def test_to_dict_order(self) -> None:
        """Test stable field order."""
        report, _file_report = check(make_doc(drop=("title",), superseded_by="ADR-005"))
        data = report.to_dict()
        self.assertEqual(list(data), ["errors", "warnings", "ok", "files"])
        self.assertEqual(data["errors"], 1)
        self.assertEqual(data["warnings"], 1)
        self.assertFalse(data["ok"])
        entry = data["files"][0]
        self.assertEqual(list(entry), ["path", "errors", "warnings"])
        self.assertEqual(list(entry["errors"][0]), ["code", "location", "message", "hint"])
        self.assertEqual(entry["errors"][0]["code"], "F010")
        self.assertEqual(entry["warnings"][0]["code"], "R011")

    def test_to_json(self) -> None:
        """Test JSON output."""
        report, _file_report = check(make_doc())
        data = json.loads(report.to_json())
        self.assertTrue(data["ok"])
        self.assertEqual(data["files"][0]["path"], "docs/adr/adr-002.md")

    def test_files_in_input_order(self) -> None:
        """Test report file order."""
        schema = compile_schema(SCHEMA)
        docs = [make_doc(path="docs/adr/b.md"), make_doc(path="docs/adr/a.md")]
        report = validate_documents(docs, schema)
        self.assertEqual([f.path for f in report.files], ["docs/adr/b.md", "docs/adr/a.md"])
        self.assertIsNotNone(report.get_file("docs/adr/a.md"))

    def test_empty_report(self) -> None:
        """Test an empty document set."""
        report = Report()
        self.assertTrue(report.ok)
        self.assertEqual(report.to_dict(), {"errors": 0, "warnings": 0, "ok": True, "files": []})


if __name__ == "__main__":
    unittest.main()
