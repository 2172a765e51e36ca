"""
Organization directory (``approval_kernel.domain.org``).

Responsibility
--------------
Immutable, in-memory snapshot of the organization used to resolve
approvers: departments, their heads, named positions, and reporting
lines.  Built once at process start by a loader (see
``approval_config``) and only ever read afterwards.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Identity key is the normalized email (trimmed, lower-cased); it is
  unique across the directory.  A person listed under several positions
  must carry the same name every time, the first listing wins.
* Lookups are O(1) over indices built at construction: email -> node,
  normalized name -> emails, department -> head.
* Reporting-line walks stop on cycles and at ``max_reporting_depth``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType

from approval_kernel.exceptions import DirectoryIntegrityError


def normalize_email(email: str | None) -> str:
    """Canonical identity key for an email address."""
    return (email or "").strip().lower()


def normalize_name(name: str | None) -> str:
    return " ".join((name or "").split()).lower()


@dataclass(frozen=True)
class OrgNode:
    """A contact in the organization.

    ``reports_to_email`` references the contact this person reports to;
    it is resolved lazily through the directory.
    """

    name: str
    email: str
    title: str = ""
    department: str | None = None
    reports_to_email: str | None = None

    @property
    def key(self) -> str:
        return normalize_email(self.email)

    def is_same_contact(self, other: OrgNode | None) -> bool:
        return other is not None and bool(self.key) and self.key == other.key


@dataclass(frozen=True)
class Department:
    """A department with its head and named positions."""

    name: str
    head: OrgNode
    positions: tuple[OrgNode, ...] = ()


class OrgDirectory:
    """
    Read-only organization snapshot.

    Contract:
        Constructed from ``Department`` records; never mutated afterwards,
        so instances are safe to share between threads without locking.

    Guarantees:
        - ``lookup()`` accepts an email or a full name, case-insensitive.
          A name shared by several contacts resolves to nothing rather
          than to an arbitrary one of them.
        - ``terminal_authority()`` is the head of ``terminal_department``,
          ``executive()`` the head of ``executive_department``; either is
          None when that department is missing.

    Raises:
        DirectoryIntegrityError: an email appears with two different names,
            a contact has no email, or a department is listed twice.
    """

    def __init__(
        self,
        departments: Iterable[Department],
        *,
        terminal_department: str,
        executive_department: str | None = None,
        max_reporting_depth: int = 10,
    ) -> None:
        by_email: dict[str, OrgNode] = {}
        by_name: dict[str, set[str]] = {}
        heads: dict[str, OrgNode] = {}
        ordered: dict[str, Department] = {}

        for dept in departments:
            dept_key = normalize_name(dept.name)
            if dept_key in ordered:
                raise DirectoryIntegrityError(
                    f"department {dept.name!r} is listed twice"
                )
            ordered[dept_key] = dept
            head = self._register(dept.head, by_email, by_name)
            heads[dept_key] = head
            for position in dept.positions:
                self._register(position, by_email, by_name)

        self._by_email = MappingProxyType(by_email)
        self._by_name = MappingProxyType(
            {name: frozenset(emails) for name, emails in by_name.items()}
        )
        self._heads = MappingProxyType(heads)
        self._departments = MappingProxyType(ordered)
        self._head_keys = frozenset(h.key for h in heads.values())
        self._terminal_department = terminal_department
        self._executive_department = executive_department
        self._max_reporting_depth = max_reporting_depth

    @staticmethod
    def _register(
        node: OrgNode,
        by_email: dict[str, OrgNode],
        by_name: dict[str, set[str]],
    ) -> OrgNode:
        key = node.key
        if not key:
            raise DirectoryIntegrityError(f"contact {node.name!r} has no email")
        existing = by_email.get(key)
        if existing is not None:
            if normalize_name(existing.name) != normalize_name(node.name):
                raise DirectoryIntegrityError(
                    f"email {key} is used by {existing.name!r} and {node.name!r}"
                )
            return existing
        by_email[key] = node
        by_name.setdefault(normalize_name(node.name), set()).add(key)
        return node

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def lookup(self, identity: str | None) -> OrgNode | None:
        """Resolve a contact by email or by full name."""
        if not identity or not identity.strip():
            return None
        node = self._by_email.get(normalize_email(identity))
        if node is not None:
            return node
        emails = self._by_name.get(normalize_name(identity), frozenset())
        if len(emails) != 1:
            return None
        return self._by_email[next(iter(emails))]

    def department_head(self, department: str | None) -> OrgNode | None:
        if not department:
            return None
        return self._heads.get(normalize_name(department))

    def terminal_authority(self) -> OrgNode | None:
        """The final compliance/HR approver of every chain."""
        return self.department_head(self._terminal_department)

    def executive(self) -> OrgNode | None:
        return self.department_head(self._executive_department)

    def is_department_head(self, node: OrgNode | None) -> bool:
        return node is not None and node.key in self._head_keys

    def supervisor_of(self, node: OrgNode | None) -> OrgNode | None:
        """The contact ``node`` reports to, if it is in the directory."""
        if node is None or not node.reports_to_email:
            return None
        supervisor = self._by_email.get(normalize_email(node.reports_to_email))
        if supervisor is None or supervisor.key == node.key:
            return None
        return supervisor

    def reporting_line(self, node: OrgNode | None) -> tuple[OrgNode, ...]:
        """Supervisors above ``node``, nearest first.

        Stops at the first unresolvable link, on a cycle, or after
        ``max_reporting_depth`` hops.
        """
        if node is None:
            return ()
        line: list[OrgNode] = []
        visited = {node.key}
        current = self.supervisor_of(node)
        while current is not None and len(line) < self._max_reporting_depth:
            if current.key in visited:
                break
            line.append(current)
            visited.add(current.key)
            current = self.supervisor_of(current)
        return tuple(line)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def terminal_department(self) -> str:
        return self._terminal_department

    @property
    def executive_department(self) -> str | None:
        return self._executive_department

    def departments(self) -> tuple[Department, ...]:
        return tuple(self._departments.values())

    def contacts(self) -> Iterator[OrgNode]:
        return iter(self._by_email.values())

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and self.lookup(identity) is not None

    def __len__(self) -> int:
        return len(self._by_email)

    def __repr__(self) -> str:
        return (
            f"<OrgDirectory departments={len(self._departments)} "
            f"contacts={len(self._by_email)}>"
        )
