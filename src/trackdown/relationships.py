"""Hierarchy reconstruction, search and integrity checks over record files.

Ownership is one-directional: children name their parents (``epic_id``,
``issue_id``). "Children of X" is always recomputed from the child records;
the ``related_*`` lists stored on parents are never consulted here.
"""

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from trackdown.codec import parse_timestamp
from trackdown.errors import DanglingReference, NotFound
from trackdown.models import Entity, Epic, Issue, PullRequest, RecordType, Task
from trackdown.repository import RecordRepository
from trackdown.scanner import ScanWarning

logger = structlog.get_logger()

PRIORITY_ORDER: tuple[str, ...] = ("low", "medium", "high", "critical")
STATUS_ORDER: tuple[str, ...] = ("archived", "completed", "planning", "active")
SORT_FIELDS: tuple[str, ...] = ("created", "updated", "title", "priority", "status")

_EARLIEST = datetime.min.replace(tzinfo=UTC)


def _as_list(value: str | Iterable[str] | None) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


def _timestamp(value: str | datetime | None) -> datetime:
    if value is None:
        return _EARLIEST
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    try:
        return parse_timestamp(value)
    except ValueError:
        return _EARLIEST


@dataclass
class SearchFilters:
    """Search criteria; every criterion that is set must match.

    A criterion given as a list matches any of its values. ``content`` is a
    case-insensitive substring of the title, description or body.
    """

    status: str | list[str] | None = None
    priority: str | list[str] | None = None
    assignee: str | list[str] | None = None
    tags: str | list[str] | None = None
    content: str | None = None
    types: list[RecordType] | None = None
    created_after: str | datetime | None = None
    created_before: str | datetime | None = None
    updated_after: str | datetime | None = None
    updated_before: str | datetime | None = None
    ai_context: str | None = None

    def wanted_types(self) -> list[RecordType]:
        if self.types is None:
            return list(RecordType)
        requested = {RecordType(t) for t in self.types}
        return [t for t in RecordType if t in requested]

    def matches_summary(self, item: Any) -> bool:
        """Check the criteria an index entry can answer without the file.

        Works on an ``IndexEntry`` as well as an ``Entity``.
        """
        for name, value in (("status", self.status), ("priority", self.priority), ("assignee", self.assignee)):
            wanted = _as_list(value)
            if wanted is not None and getattr(item, name) not in wanted:
                return False

        tags = _as_list(self.tags)
        if tags is not None and not any(tag in item.tags for tag in tags):
            return False

        bounds = (
            (self.created_after, item.created_date, lambda own, bound: own >= bound),
            (self.created_before, item.created_date, lambda own, bound: own <= bound),
            (self.updated_after, item.updated_date, lambda own, bound: own >= bound),
            (self.updated_before, item.updated_date, lambda own, bound: own <= bound),
        )
        for bound, own, check in bounds:
            if bound is None:
                continue
            if own is None or not check(_timestamp(own), _timestamp(bound)):
                return False
        return True

    def matches(self, entity: Entity) -> bool:
        if entity.record_type not in self.wanted_types():
            return False
        if not self.matches_summary(entity):
            return False

        if self.content:
            needle = self.content.lower()
            haystacks = (entity.title, entity.description, entity.body)
            if not any(needle in text.lower() for text in haystacks):
                return False

        if self.ai_context:
            needle = self.ai_context.lower()
            if not any(needle in item.lower() for item in entity.ai_context):
                return False
        return True


@dataclass
class SortSpec:
    field: str = "created"
    descending: bool = False

    def __post_init__(self) -> None:
        if self.field not in SORT_FIELDS:
            raise ValueError(f"Unknown sort field '{self.field}' (expected one of {', '.join(SORT_FIELDS)})")

    def key(self) -> Callable[[Entity], Any]:
        if self.field == "created":
            return lambda e: _timestamp(e.created_date)
        if self.field == "updated":
            return lambda e: _timestamp(e.updated_date)
        if self.field == "title":
            return lambda e: e.title.casefold()
        if self.field == "priority":
            return lambda e: PRIORITY_ORDER.index(e.priority) if e.priority in PRIORITY_ORDER else -1
        return lambda e: STATUS_ORDER.index(e.status) if e.status in STATUS_ORDER else -1


def sort_entities(items: Iterable[Entity], sort: SortSpec) -> list[Entity]:
    """Sort records; records with equal keys keep their input order."""
    return sorted(items, key=sort.key(), reverse=sort.descending)


@dataclass
class SearchResult:
    items: list[Entity]
    total_count: int


@dataclass
class IssueHierarchy:
    epic: Epic
    issue: Issue
    tasks: list[Task] = field(default_factory=list)
    prs: list[PullRequest] = field(default_factory=list)


@dataclass
class EpicHierarchy:
    epic: Epic
    issues: list[Issue] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    prs: list[PullRequest] = field(default_factory=list)


@dataclass
class TaskHierarchy:
    task: Task
    issue: Issue
    epic: Epic


@dataclass
class PRHierarchy:
    pr: PullRequest
    issue: Issue
    epic: Epic


@dataclass
class RelatedItems:
    siblings: list[Entity] = field(default_factory=list)
    dependencies: list[Entity] = field(default_factory=list)
    dependents: list[Entity] = field(default_factory=list)
    blocked_by: list[Entity] = field(default_factory=list)
    blocks: list[Entity] = field(default_factory=list)


@dataclass
class Violation:
    """One broken reference found by an integrity check."""

    record_id: str
    field: str
    message: str
    target: str | None = None

    def __str__(self) -> str:
        return f"{self.record_id}: {self.message}"


@dataclass
class IntegrityReport:
    violations: list[Violation] = field(default_factory=list)
    file_warnings: list[ScanWarning] = field(default_factory=list)
    checked: int = 0

    @property
    def valid(self) -> bool:
        return not self.violations


class RelationshipResolver:
    """Answers hierarchy, search and integrity questions for one project."""

    def __init__(self, repository: RecordRepository) -> None:
        self.repository = repository

    def _universe(self) -> dict[RecordType, list[Entity]]:
        return self.repository.everything()

    @staticmethod
    def _by_id(universe: dict[RecordType, list[Entity]]) -> dict[str, Entity]:
        by_id: dict[str, Entity] = {}
        for items in universe.values():
            for entity in items:
                by_id.setdefault(entity.id, entity)
        return by_id

    @staticmethod
    def _by_created(items: Iterable[Entity]) -> list[Any]:
        return sort_entities(items, SortSpec("created"))

    def search(
        self, filters: SearchFilters | None = None, sort: SortSpec | None = None, limit: int | None = None
    ) -> SearchResult:
        """Find records across every type.

        Args:
            filters: Criteria to match (all records when omitted)
            sort: Ordering; records come in epic, issue, task, PR order otherwise
            limit: Maximum number of items returned

        Returns:
            Matching items plus the number of matches before the limit
        """
        filters = filters or SearchFilters()
        items = [
            e
            for record_type in filters.wanted_types()
            for e in self.repository.all(record_type, where=filters.matches_summary)
            if filters.matches(e)
        ]
        if sort is not None:
            items = sort_entities(items, sort)
        total = len(items)
        if limit is not None:
            items = items[: max(limit, 0)]
        logger.debug("Search complete", total=total, returned=len(items))
        return SearchResult(items=items, total_count=total)

    def _owned_by(self, record_type: RecordType, field_name: str, owner_id: str) -> list[Any]:
        return self.repository.all(record_type, where=lambda item: getattr(item, field_name) == owner_id)

    def _lookup(self, record_type: RecordType, record_id: str) -> Any:
        return self.repository.get(record_type, record_id)

    def _parent(self, child: Entity, field_name: str, parent_type: RecordType) -> Any:
        target = getattr(child, field_name)
        try:
            return self.repository.get(parent_type, target)
        except NotFound as e:
            raise DanglingReference(child.id, field_name, target) from e

    def get_issue_hierarchy(self, issue_id: str) -> IssueHierarchy:
        """The issue, its epic, and the tasks and PRs that name the issue.

        Raises:
            NotFound: no issue has this id
            DanglingReference: the issue's epic does not exist
        """
        issue = self._lookup(RecordType.ISSUE, issue_id)
        epic = self._parent(issue, "epic_id", RecordType.EPIC)
        tasks = self._owned_by(RecordType.TASK, "issue_id", issue_id)
        prs = self._owned_by(RecordType.PR, "issue_id", issue_id)
        return IssueHierarchy(epic=epic, issue=issue, tasks=self._by_created(tasks), prs=self._by_created(prs))

    def get_epic_hierarchy(self, epic_id: str) -> EpicHierarchy:
        epic = self._lookup(RecordType.EPIC, epic_id)
        return EpicHierarchy(
            epic=epic,
            issues=self._by_created(self._owned_by(RecordType.ISSUE, "epic_id", epic_id)),
            tasks=self._by_created(self._owned_by(RecordType.TASK, "epic_id", epic_id)),
            prs=self._by_created(self._owned_by(RecordType.PR, "epic_id", epic_id)),
        )

    def get_task_hierarchy(self, task_id: str) -> TaskHierarchy:
        task = self._lookup(RecordType.TASK, task_id)
        issue = self._parent(task, "issue_id", RecordType.ISSUE)
        epic = self._parent(task, "epic_id", RecordType.EPIC)
        return TaskHierarchy(task=task, issue=issue, epic=epic)

    def get_pr_hierarchy(self, pr_id: str) -> PRHierarchy:
        pr = self._lookup(RecordType.PR, pr_id)
        issue = self._parent(pr, "issue_id", RecordType.ISSUE)
        epic = self._parent(pr, "epic_id", RecordType.EPIC)
        return PRHierarchy(pr=pr, issue=issue, epic=epic)

    def children(self, parent_id: str) -> list[Entity]:
        """Records owned by parent_id: issues of an epic, tasks and PRs of an issue, subtasks of a task."""
        parent = self.repository.find(parent_id)
        if parent.record_type is RecordType.EPIC:
            found: list[Entity] = self._owned_by(RecordType.ISSUE, "epic_id", parent_id)
        elif parent.record_type is RecordType.ISSUE:
            found = self._owned_by(RecordType.TASK, "issue_id", parent_id)
            found += self._owned_by(RecordType.PR, "issue_id", parent_id)
        elif parent.record_type is RecordType.TASK:
            found = [t for t in self.repository.all(RecordType.TASK) if t.parent_task == parent_id]
        else:
            found = []
        return self._by_created(found)

    def parent(self, child_id: str) -> Entity | None:
        """The owning record of child_id; None for epics.

        Raises:
            NotFound: child_id resolves to no record
            DanglingReference: the owner named by the child does not exist
        """
        child = self.repository.find(child_id)
        if child.record_type is RecordType.ISSUE:
            return self._parent(child, "epic_id", RecordType.EPIC)
        if child.record_type in (RecordType.TASK, RecordType.PR):
            return self._parent(child, "issue_id", RecordType.ISSUE)
        return None

    def related(self, item_id: str) -> RelatedItems:
        """Siblings under the same owner plus resolved cross-links."""
        universe = self._universe()
        by_id = self._by_id(universe)
        item = by_id.get(item_id)
        if item is None:
            raise NotFound(item_id)

        if item.record_type is RecordType.ISSUE:
            siblings = [i for i in universe[RecordType.ISSUE] if i.epic_id == item.epic_id and i.id != item_id]
        elif item.record_type in (RecordType.TASK, RecordType.PR):
            siblings = [s for s in universe[item.record_type] if s.issue_id == item.issue_id and s.id != item_id]
        else:
            siblings = []

        def resolve(ids: list[str]) -> list[Entity]:
            return [by_id[i] for i in ids if i in by_id]

        return RelatedItems(
            siblings=siblings,
            dependencies=resolve(item.dependencies),
            dependents=[e for e in by_id.values() if item_id in e.dependencies],
            blocked_by=resolve(item.blocked_by),
            blocks=resolve(item.blocks),
        )

    @staticmethod
    def _cycles(by_id: dict[str, Entity]) -> list[list[str]]:
        cycles: list[list[str]] = []
        visited: set[str] = set()
        on_stack: set[str] = set()

        def dependencies(record_id: str) -> Iterator[str]:
            entity = by_id.get(record_id)
            return iter(entity.dependencies if entity else [])

        for root in by_id:
            if root in visited:
                continue
            # Depth-first walk with an explicit stack; path mirrors the open frames.
            visited.add(root)
            on_stack.add(root)
            path = [root]
            frames = [dependencies(root)]
            while frames:
                dep = next(frames[-1], None)
                if dep is None:
                    frames.pop()
                    on_stack.discard(path.pop())
                elif dep not in visited:
                    visited.add(dep)
                    on_stack.add(dep)
                    path.append(dep)
                    frames.append(dependencies(dep))
                elif dep in on_stack:
                    cycles.append(path[path.index(dep) :] + [dep])
        return cycles

    def find_cycles(self) -> list[list[str]]:
        """Dependency cycles, each as the id path that closes on itself."""
        return self._cycles(self._by_id(self._universe()))

    def validate_integrity(self) -> IntegrityReport:
        """Check every reference between records and collect what is broken.

        Nothing is raised for a broken reference; the report lists all of them.
        """
        universe = self._universe()
        by_id = self._by_id(universe)
        epics = {e.id for e in universe[RecordType.EPIC]}
        issues = {i.id: i for i in universe[RecordType.ISSUE]}
        tasks = {t.id for t in universe[RecordType.TASK]}
        report = IntegrityReport(file_warnings=self.repository.warnings, checked=len(by_id))

        def broken(entity: Entity, field_name: str, target: str, message: str) -> None:
            report.violations.append(Violation(entity.id, field_name, message, target))

        for issue in universe[RecordType.ISSUE]:
            if issue.epic_id not in epics:
                broken(issue, "epic_id", issue.epic_id, f"epic_id references missing epic {issue.epic_id}")

        for child in [*universe[RecordType.TASK], *universe[RecordType.PR]]:
            if child.epic_id not in epics:
                broken(child, "epic_id", child.epic_id, f"epic_id references missing epic {child.epic_id}")
            parent_issue = issues.get(child.issue_id)
            if parent_issue is None:
                broken(child, "issue_id", child.issue_id, f"issue_id references missing issue {child.issue_id}")
            elif parent_issue.epic_id != child.epic_id:
                broken(
                    child,
                    "epic_id",
                    child.epic_id,
                    f"epic_id {child.epic_id} does not match epic {parent_issue.epic_id} of issue {parent_issue.id}",
                )

        for task in universe[RecordType.TASK]:
            if task.parent_task and task.parent_task not in tasks:
                broken(task, "parent_task", task.parent_task, f"parent_task references missing task {task.parent_task}")
            for subtask in task.subtasks:
                if subtask not in tasks:
                    broken(task, "subtasks", subtask, f"subtasks references missing task {subtask}")

        for entity in by_id.values():
            for field_name, targets in entity.cross_links().items():
                for target in targets:
                    if target not in by_id:
                        broken(entity, field_name, target, f"{field_name} references missing record {target}")

        for cycle in self._cycles(by_id):
            report.violations.append(
                Violation(cycle[0], "dependencies", f"dependency cycle {' -> '.join(cycle)}", cycle[-2])
            )

        logger.debug("Integrity checked", records=report.checked, violations=len(report.violations))
        return report

    def overview(self) -> dict[str, Any]:
        """Totals, status and priority breakdowns and completion figures."""
        universe = self._universe()
        everything = [e for items in universe.values() for e in items]
        status_breakdown: dict[str, int] = {}
        priority_breakdown: dict[str, int] = {}
        for entity in everything:
            status_breakdown[entity.status] = status_breakdown.get(entity.status, 0) + 1
            priority_breakdown[entity.priority] = priority_breakdown.get(entity.priority, 0) + 1

        def is_done(entity: Entity) -> bool:
            return entity.status == "completed" or getattr(entity, "pr_status", None) == "merged"

        completed = {t.category.value: sum(1 for e in items if is_done(e)) for t, items in universe.items()}
        done = sum(completed.values())
        return {
            "totals": {t.category.value: len(items) for t, items in universe.items()},
            "status_breakdown": status_breakdown,
            "priority_breakdown": priority_breakdown,
            "completed": completed,
            "overall_completion": round(done / len(everything) * 100, 2) if everything else 0.0,
        }
