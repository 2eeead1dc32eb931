"""Data models for trackdown records."""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar

ITEM_STATUSES: tuple[str, ...] = ("planning", "active", "completed", "archived")
PRIORITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
SYNC_STATUSES: tuple[str, ...] = ("local", "synced", "conflict")
PR_STATUSES: tuple[str, ...] = ("draft", "open", "review", "approved", "merged", "closed")

ENUM_FIELDS: dict[str, tuple[str, ...]] = {
    "status": ITEM_STATUSES,
    "priority": PRIORITIES,
    "sync_status": SYNC_STATUSES,
    "pr_status": PR_STATUSES,
}
LIST_FIELDS = frozenset(
    {
        "ai_context",
        "tags",
        "dependencies",
        "blocked_by",
        "blocks",
        "related_issues",
        "related_tasks",
        "related_prs",
        "subtasks",
        "reviewers",
        "approvals",
    }
)
COUNTER_FIELDS = frozenset({"estimated_tokens", "actual_tokens"})
OPTIONAL_INT_FIELDS = frozenset({"pr_number", "completion_percentage"})
DATE_FIELDS = frozenset({"created_date", "updated_date"})

# Attributes that live outside the metadata block.
NON_METADATA_FIELDS = frozenset({"id", "body", "file_path", "extra"})

LINK_TYPES: tuple[str, ...] = ("blocks", "blocked_by", "dependencies")


class RecordType(StrEnum):
    """The four record kinds, each stored in its own category directory."""

    EPIC = "epic"
    ISSUE = "issue"
    TASK = "task"
    PR = "pr"

    @property
    def id_field(self) -> str:
        return f"{self.value}_id"

    @property
    def category(self) -> "Category":
        return Category(f"{self.value}s")


class Category(StrEnum):
    """Directories under the tasks root."""

    EPICS = "epics"
    ISSUES = "issues"
    TASKS = "tasks"
    PRS = "prs"
    TEMPLATES = "templates"


ID_FIELDS: tuple[str, ...] = tuple(t.id_field for t in RecordType)


@dataclass(kw_only=True)
class Entity:
    """Fields shared by every record type."""

    record_type: ClassVar[RecordType]
    parent_fields: ClassVar[tuple[str, ...]] = ()

    id: str
    title: str = ""
    description: str = ""
    status: str = "planning"
    priority: str = "medium"
    assignee: str = "unassigned"
    created_date: str | None = None
    updated_date: str | None = None
    estimated_tokens: int = 0
    actual_tokens: int = 0
    ai_context: list[str] = field(default_factory=list)
    sync_status: str = "local"
    tags: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    body: str = ""
    file_path: Path | None = field(default=None, compare=False)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def mandatory_fields(cls) -> tuple[str, ...]:
        """Metadata keys a record must carry to be classified as this type."""
        return (cls.record_type.id_field, *cls.parent_fields)

    @classmethod
    def excluded_fields(cls) -> tuple[str, ...]:
        """Other types' id fields that must be absent for this type to match."""
        mandatory = set(cls.mandatory_fields())
        return tuple(name for name in ID_FIELDS if name not in mandatory)

    def parent_ids(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in self.parent_fields}

    def cross_links(self) -> dict[str, list[str]]:
        return {"blocked_by": self.blocked_by, "blocks": self.blocks, "dependencies": self.dependencies}


@dataclass(kw_only=True)
class Epic(Entity):
    """Top-level container of issues."""

    record_type: ClassVar[RecordType] = RecordType.EPIC

    related_issues: list[str] = field(default_factory=list)
    milestone: str | None = None
    completion_percentage: int | None = None


@dataclass(kw_only=True)
class Issue(Entity):
    """Work unit owned by exactly one epic."""

    record_type: ClassVar[RecordType] = RecordType.ISSUE
    parent_fields: ClassVar[tuple[str, ...]] = ("epic_id",)

    epic_id: str
    related_tasks: list[str] = field(default_factory=list)
    related_prs: list[str] = field(default_factory=list)
    related_issues: list[str] = field(default_factory=list)
    milestone: str | None = None
    completion_percentage: int | None = None


@dataclass(kw_only=True)
class Task(Entity):
    """Granular work item owned by an issue (and transitively its epic)."""

    record_type: ClassVar[RecordType] = RecordType.TASK
    parent_fields: ClassVar[tuple[str, ...]] = ("issue_id", "epic_id")

    issue_id: str
    epic_id: str
    subtasks: list[str] = field(default_factory=list)
    parent_task: str | None = None
    time_estimate: str | None = None
    time_spent: str | None = None


@dataclass(kw_only=True)
class PullRequest(Entity):
    """Pull request record owned by an issue."""

    record_type: ClassVar[RecordType] = RecordType.PR
    parent_fields: ClassVar[tuple[str, ...]] = ("issue_id", "epic_id")

    issue_id: str
    epic_id: str
    pr_status: str = "draft"
    branch_name: str | None = None
    source_branch: str | None = None
    target_branch: str | None = None
    repository_url: str | None = None
    pr_number: int | None = None
    reviewers: list[str] = field(default_factory=list)
    approvals: list[str] = field(default_factory=list)
    merge_commit: str | None = None
    related_prs: list[str] = field(default_factory=list)


RECORD_CLASSES: dict[RecordType, type[Entity]] = {
    RecordType.EPIC: Epic,
    RecordType.ISSUE: Issue,
    RecordType.TASK: Task,
    RecordType.PR: PullRequest,
}

# Order in which type inference tries each mandatory-field schema.
INFERENCE_ORDER: tuple[type[Entity], ...] = (Epic, Issue, Task, PullRequest)

# Parent list that mirrors each child type ("children of X" cache on the parent).
PARENT_LIST_FIELDS: dict[RecordType, tuple[RecordType, str, str]] = {
    RecordType.ISSUE: (RecordType.EPIC, "epic_id", "related_issues"),
    RecordType.TASK: (RecordType.ISSUE, "issue_id", "related_tasks"),
    RecordType.PR: (RecordType.ISSUE, "issue_id", "related_prs"),
}


@dataclass
class Link:
    """Represents a cross-link between records."""

    source_id: str
    target_id: str
    link_type: str = "dependencies"
