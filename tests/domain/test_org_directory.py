"""
Tests for OrgDirectory -- the immutable organization snapshot.

Covers:
- lookup() by email and by name, case-insensitive; ambiguous names
- department_head(), terminal_authority(), executive()
- supervisor_of() and reporting_line() including cycles and depth limits
- integrity checks at construction
"""

import pytest

from approval_kernel.domain.org import (
    Department,
    OrgDirectory,
    OrgNode,
    normalize_email,
    normalize_name,
)
from approval_kernel.exceptions import DirectoryIntegrityError
from tests.sample_org import (
    COMPLIANCE,
    EMPLOYEE,
    EXECUTIVE,
    OPS_HEAD,
    SUPERVISOR,
    make_directory,
)


class TestNormalization:

    def test_email_is_trimmed_and_lowercased(self):
        assert normalize_email("  Ann.Employee@Corp.TEST ") == "ann.employee@corp.test"

    def test_none_email_normalizes_to_empty(self):
        assert normalize_email(None) == ""

    def test_name_collapses_whitespace(self):
        assert normalize_name("  Ann   EMPLOYEE ") == "ann employee"


class TestLookup:

    def test_lookup_by_email(self, org_directory):
        assert org_directory.lookup("employee@corp.test") == EMPLOYEE

    def test_lookup_by_email_is_case_insensitive(self, org_directory):
        assert org_directory.lookup(" EMPLOYEE@Corp.Test ") == EMPLOYEE

    def test_lookup_by_full_name(self, org_directory):
        assert org_directory.lookup("sam super") == SUPERVISOR

    def test_unknown_identity_returns_none(self, org_directory):
        assert org_directory.lookup("nobody@corp.test") is None
        assert org_directory.lookup("") is None
        assert org_directory.lookup(None) is None

    def test_ambiguous_name_resolves_to_nothing(self):
        twin_a = OrgNode("Alex Kim", "alex.kim@corp.test", department="Ops")
        twin_b = OrgNode("Alex Kim", "alex.kim2@corp.test", department="Ops")
        head = OrgNode("Head", "head@corp.test", department="Ops")
        directory = OrgDirectory(
            [Department("Ops", head, (twin_a, twin_b))],
            terminal_department="Ops",
        )
        assert directory.lookup("Alex Kim") is None
        assert directory.lookup("alex.kim2@corp.test") == twin_b

    def test_contains_and_len(self, org_directory):
        assert "employee@corp.test" in org_directory
        assert "ghost@corp.test" not in org_directory
        assert 42 not in org_directory
        assert len(org_directory) == 8


class TestDepartments:

    def test_department_head(self, org_directory):
        assert org_directory.department_head("Operations") == OPS_HEAD
        assert org_directory.department_head("operations") == OPS_HEAD

    def test_unknown_department_has_no_head(self, org_directory):
        assert org_directory.department_head("Marketing") is None
        assert org_directory.department_head(None) is None

    def test_terminal_authority_is_head_of_terminal_department(self, org_directory):
        assert org_directory.terminal_authority() == COMPLIANCE

    def test_executive(self, org_directory):
        assert org_directory.executive() == EXECUTIVE

    def test_missing_executive_department(self):
        directory = OrgDirectory(
            [Department("HR", COMPLIANCE)], terminal_department="HR",
        )
        assert directory.executive() is None

    def test_is_department_head(self, org_directory):
        assert org_directory.is_department_head(OPS_HEAD)
        assert not org_directory.is_department_head(EMPLOYEE)
        assert not org_directory.is_department_head(None)


class TestReportingLine:

    def test_supervisor_of(self, org_directory):
        assert org_directory.supervisor_of(EMPLOYEE) == SUPERVISOR

    def test_supervisor_outside_directory_is_none(self, org_directory):
        stray = OrgNode("Stray", "stray@corp.test", reports_to_email="ghost@corp.test")
        assert org_directory.supervisor_of(stray) is None

    def test_reporting_line_nearest_first(self, org_directory):
        line = org_directory.reporting_line(EMPLOYEE)
        assert [n.email for n in line] == [
            "supervisor@corp.test",
            "ops.head@corp.test",
            "ceo@corp.test",
        ]

    def test_reporting_cycle_stops(self):
        a = OrgNode("A", "a@corp.test", department="X", reports_to_email="b@corp.test")
        b = OrgNode("B", "b@corp.test", department="X", reports_to_email="c@corp.test")
        c = OrgNode("C", "c@corp.test", department="X", reports_to_email="a@corp.test")
        directory = OrgDirectory([Department("X", c, (a, b))], terminal_department="X")

        line = directory.reporting_line(a)

        assert [n.email for n in line] == ["b@corp.test", "c@corp.test"]

    def test_self_reference_is_not_a_supervisor(self):
        loner = OrgNode("Loner", "loner@corp.test", reports_to_email="LONER@corp.test")
        directory = OrgDirectory([Department("X", loner)], terminal_department="X")
        assert directory.supervisor_of(loner) is None

    def test_max_depth_limits_walk(self):
        directory = make_directory(max_reporting_depth=1)
        line = directory.reporting_line(EMPLOYEE)
        assert [n.email for n in line] == ["supervisor@corp.test"]


class TestIntegrity:

    def test_same_email_with_different_names_rejected(self):
        head = OrgNode("Head", "head@corp.test")
        clash = OrgNode("Someone Else", "HEAD@corp.test")
        with pytest.raises(DirectoryIntegrityError):
            OrgDirectory([Department("X", head, (clash,))], terminal_department="X")

    def test_same_person_listed_twice_keeps_first(self):
        head = OrgNode("Head", "head@corp.test", title="Director")
        again = OrgNode("Head", "head@corp.test", title="Acting Manager")
        directory = OrgDirectory(
            [Department("X", head), Department("Y", again)], terminal_department="X",
        )
        assert directory.lookup("head@corp.test").title == "Director"
        assert directory.department_head("Y").title == "Director"

    def test_contact_without_email_rejected(self):
        with pytest.raises(DirectoryIntegrityError):
            OrgDirectory([Department("X", OrgNode("Nameless", " "))], terminal_department="X")

    def test_department_listed_twice_rejected(self):
        with pytest.raises(DirectoryIntegrityError):
            OrgDirectory(
                [
                    Department("Ops", OrgNode("A", "a@corp.test")),
                    Department("OPS", OrgNode("B", "b@corp.test")),
                ],
                terminal_department="Ops",
            )
