"""Record lifecycle: create, update, delete, link and transition records.

Every mutation is a sequence of independent single-file writes followed by
index updates. A failure between steps leaves each file valid on its own;
the parent ``related_*`` lists are caches that an index rebuild and the
integrity check can reconcile.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from trackdown import codec
from trackdown.config import ProjectConfig
from trackdown.errors import NotFound, RecordError
from trackdown.ids import IdAllocator, record_filename
from trackdown.index import IndexManager
from trackdown.models import (
    LINK_TYPES,
    PARENT_LIST_FIELDS,
    RECORD_CLASSES,
    Entity,
    Link,
    PullRequest,
    RecordType,
)
from trackdown.paths import ResolutionContext, ResolvedPaths, load_project_config, resolve_paths
from trackdown.pr_workflow import TransitionCheck, check_transition
from trackdown.repository import RecordRepository

logger = structlog.get_logger()

RECIPROCAL_LINKS: dict[str, str] = {"blocks": "blocked_by", "blocked_by": "blocks"}


def _pr_status_fields(to_status: str) -> dict[str, Any]:
    """Fields written for a pull request status change; merging completes the record."""
    fields: dict[str, Any] = {"pr_status": to_status}
    if to_status == "merged":
        fields["status"] = "completed"
    return fields


class RecordStore:
    """Write side of a project.

    Args:
        paths: Resolved project directories
        config: Project configuration
        index: Index to keep current (one is created for ``paths`` when omitted)
    """

    def __init__(self, paths: ResolvedPaths, config: ProjectConfig, index: IndexManager | None = None) -> None:
        self.paths = paths
        self.config = config
        self.index = index or IndexManager(paths)
        self.repository = RecordRepository(paths, config, self.index)
        self.ids = IdAllocator(paths, config.naming_conventions)

    @classmethod
    def open(cls, context: ResolutionContext) -> "RecordStore":
        config = load_project_config(context.project_root)
        return cls(resolve_paths(context, config), config)

    # ------------------------------------------------------------------
    # Creation

    def _create(self, record_type: RecordType, title: str, fields: dict[str, Any]) -> Entity:
        cls = RECORD_CLASSES[record_type]
        body = fields.pop("body", "") or ""
        now = codec.now_iso()
        metadata: dict[str, Any] = {
            record_type.id_field: self.ids.peek(record_type),
            "title": title,
            "assignee": self.config.default_assignee,
            **{k: v for k, v in fields.items() if v is not None},
            "created_date": now,
            "updated_date": now,
        }
        # Validate before an id is consumed or anything is written.
        codec.from_metadata(cls, metadata, body)

        record_id = self.ids.next_id(record_type)
        metadata[record_type.id_field] = record_id
        path = self.paths.directory_for(record_type) / record_filename(record_id, title, self.paths.extension)
        entity = codec.from_metadata(cls, metadata, body, path)
        codec.write_record(path, entity)
        logger.info("Record created", record_type=record_type.value, record_id=record_id, path=str(path))

        self.index.update_item(record_type, record_id)
        self._link_to_parent(entity)
        return entity

    def _link_to_parent(self, child: Entity) -> None:
        """Append the new child's id to its parent's ``related_*`` (or ``subtasks``) list."""
        targets: list[tuple[RecordType, str, str]] = []
        if child.record_type in PARENT_LIST_FIELDS:
            parent_type, parent_field, list_field = PARENT_LIST_FIELDS[child.record_type]
            targets.append((parent_type, getattr(child, parent_field), list_field))
        if child.record_type is RecordType.TASK and child.parent_task:
            targets.append((RecordType.TASK, child.parent_task, "subtasks"))

        for parent_type, parent_id, list_field in targets:
            self._edit_list(parent_type, parent_id, list_field, add=child.id)

    def _edit_list(
        self, record_type: RecordType, record_id: str, list_field: str, add: str | None = None, remove: str | None = None
    ) -> Entity | None:
        """Add or remove one id in a list field of another record, as its own write.

        Returns None when the record is gone or could not be rewritten; the
        index is then marked stale instead of failing the caller's operation.
        """
        try:
            record = self.repository.get(record_type, record_id)
            values = list(getattr(record, list_field))
            if add is not None and add not in values:
                values.append(add)
            if remove is not None and remove in values:
                values.remove(remove)
            if values == getattr(record, list_field):
                return record
            updated = codec.update(record.file_path, {list_field: values}, record_type)
        except NotFound:
            logger.warning("Linked record not found", record_id=record_id, field=list_field)
            return None
        except (RecordError, OSError) as e:
            logger.warning("Failed to update linked record", record_id=record_id, field=list_field, error=str(e))
            self.index.mark_stale(f"{record_id}: {list_field} could not be updated: {e}")
            return None

        self.index.update_item(record_type, record_id)
        return updated

    def create_epic(self, title: str, **fields: Any) -> Entity:
        return self._create(RecordType.EPIC, title, fields)

    def create_issue(self, title: str, epic_id: str, **fields: Any) -> Entity:
        """Create an issue under an existing epic.

        Raises:
            NotFound: the epic does not exist
        """
        self.repository.get(RecordType.EPIC, epic_id)
        return self._create(RecordType.ISSUE, title, {"epic_id": epic_id, **fields})

    def _issue_parents(self, issue_id: str, epic_id: str | None) -> dict[str, str]:
        issue = self.repository.get(RecordType.ISSUE, issue_id)
        if epic_id is None:
            epic_id = issue.epic_id
        elif epic_id != issue.epic_id:
            raise ValueError(f"epic_id {epic_id} does not match epic {issue.epic_id} of issue {issue_id}")
        self.repository.get(RecordType.EPIC, epic_id)
        return {"issue_id": issue_id, "epic_id": epic_id}

    def create_task(self, title: str, issue_id: str, epic_id: str | None = None, **fields: Any) -> Entity:
        """Create a task under an existing issue; the epic defaults to the issue's.

        Raises:
            NotFound: the issue, its epic or the parent task does not exist
            ValueError: epic_id differs from the issue's epic
        """
        parents = self._issue_parents(issue_id, epic_id)
        if fields.get("parent_task"):
            self.repository.get(RecordType.TASK, fields["parent_task"])
        return self._create(RecordType.TASK, title, {**parents, **fields})

    def create_pr(self, title: str, issue_id: str, epic_id: str | None = None, **fields: Any) -> Entity:
        parents = self._issue_parents(issue_id, epic_id)
        return self._create(RecordType.PR, title, {**parents, **fields})

    # ------------------------------------------------------------------
    # Updates

    def update(self, record_id: str, **fields: Any) -> Entity:
        """Merge fields into a record.

        Changing ``pr_status`` goes through the pull request state machine, and
        a merge also marks the record completed. Parent ids must point at
        existing records.

        Raises:
            NotFound: the record or a new parent does not exist
            InvalidTransition: the pr_status change is not allowed
            ImmutableFieldError: fields try to change the id
            MalformedRecord: a value is invalid
        """
        record = self.repository.find(record_id)
        if "pr_status" in fields and fields["pr_status"] != getattr(record, "pr_status", None):
            if not isinstance(record, PullRequest):
                raise ValueError(f"{record_id} is not a pull request")
            check_transition(record, fields["pr_status"])
            fields = {**fields, **_pr_status_fields(fields["pr_status"])}

        for parent_field, parent_type in (("epic_id", RecordType.EPIC), ("issue_id", RecordType.ISSUE)):
            if parent_field in fields and parent_field in record.parent_fields:
                self.repository.get(parent_type, fields[parent_field])

        updated = codec.update(record.file_path, fields, record.record_type)
        self.index.update_item(record.record_type, record.id)
        logger.info("Record updated", record_id=record.id, fields=sorted(fields))
        return updated

    def transition_pr(
        self,
        pr_id: str,
        to_status: str,
        bypass_checks: bool = False,
        required_approvals: int | None = None,
    ) -> tuple[Entity, TransitionCheck]:
        """Move a pull request to a new status.

        The transition is validated before any file is written. Merging also
        marks the record completed.

        Raises:
            NotFound: the pull request does not exist
            InvalidTransition: the transition is not allowed
        """
        pr = self.repository.get(RecordType.PR, pr_id)
        check = check_transition(pr, to_status, bypass_checks=bypass_checks, required_approvals=required_approvals)

        updated = codec.update(pr.file_path, _pr_status_fields(to_status), RecordType.PR)
        self.index.update_item(RecordType.PR, pr_id)
        logger.info("Pull request transitioned", pr_id=pr_id, from_status=check.from_status, to_status=to_status)
        return updated, check

    # ------------------------------------------------------------------
    # Deletion

    def delete(self, record_id: str) -> Entity:
        """Delete a record file and drop it from its parent's list and the index.

        Children are left in place; they show up as broken references in the
        integrity report.
        """
        record = self.repository.find(record_id)
        path: Path = record.file_path
        path.unlink()
        self.index.remove_item(record.record_type, record.id)
        logger.info("Record deleted", record_id=record.id, path=str(path))

        if record.record_type in PARENT_LIST_FIELDS:
            parent_type, parent_field, list_field = PARENT_LIST_FIELDS[record.record_type]
            self._edit_list(parent_type, getattr(record, parent_field), list_field, remove=record.id)
        if record.record_type is RecordType.TASK and record.parent_task:
            self._edit_list(RecordType.TASK, record.parent_task, "subtasks", remove=record.id)
        return record

    # ------------------------------------------------------------------
    # Cross-links

    @staticmethod
    def _check_link_type(link_type: str) -> None:
        if link_type not in LINK_TYPES:
            raise ValueError(f"Unknown link type '{link_type}' (expected one of {', '.join(LINK_TYPES)})")

    def add_link(self, source_id: str, target_id: str, link_type: str = "dependencies") -> Link:
        """Link two existing records; blocks/blocked_by are recorded on both sides.

        Raises:
            NotFound: either record does not exist
            ValueError: unknown link type or a self-link
        """
        self._check_link_type(link_type)
        if source_id == target_id:
            raise ValueError(f"{source_id} cannot be linked to itself")
        source = self.repository.find(source_id)
        target = self.repository.find(target_id)

        self._edit_list(source.record_type, source.id, link_type, add=target.id)
        if link_type in RECIPROCAL_LINKS:
            self._edit_list(target.record_type, target.id, RECIPROCAL_LINKS[link_type], add=source.id)
        logger.info("Link added", source_id=source_id, target_id=target_id, link_type=link_type)
        return Link(source_id=source.id, target_id=target.id, link_type=link_type)

    def remove_link(self, source_id: str, target_id: str, link_type: str = "dependencies") -> bool:
        """Remove a link; returns False when the source did not carry it."""
        self._check_link_type(link_type)
        source = self.repository.find(source_id)
        present = target_id in getattr(source, link_type)
        if present:
            self._edit_list(source.record_type, source.id, link_type, remove=target_id)

        if link_type in RECIPROCAL_LINKS:
            try:
                target = self.repository.find(target_id)
            except NotFound:
                return present
            self._edit_list(target.record_type, target.id, RECIPROCAL_LINKS[link_type], remove=source.id)
        logger.info("Link removed", source_id=source_id, target_id=target_id, link_type=link_type, present=present)
        return present

    def list_links(self, record_id: str, link_type: str | None = None) -> list[Link]:
        if link_type is not None:
            self._check_link_type(link_type)
        record = self.repository.find(record_id)
        links = []
        for name, targets in record.cross_links().items():
            if link_type is None or name == link_type:
                links.extend(Link(source_id=record.id, target_id=t, link_type=name) for t in targets)
        return links

    # ------------------------------------------------------------------
    # Maintenance

    def archive_older_than(
        self, days: int, statuses: tuple[str, ...] = ("completed",), dry_run: bool = False
    ) -> list[Entity]:
        """Set status ``archived`` on records last updated more than ``days`` ago.

        Only the status changes; files stay in their category directory. The
        index entries of all archived records are refreshed in one batch.
        """
        if days < 0:
            raise ValueError("days must not be negative")
        cutoff = datetime.now(UTC) - timedelta(days=days)

        due = []
        for items in self.repository.everything().values():
            for record in items:
                stamp = record.updated_date or record.created_date
                if record.status in statuses and stamp and codec.parse_timestamp(stamp) < cutoff:
                    due.append(record)

        if dry_run or not due:
            return due

        archived = [codec.update(r.file_path, {"status": "archived"}, r.record_type) for r in due]
        asyncio.run(self.index.update_items([(r.record_type, r.id) for r in archived]))
        logger.info("Records archived", count=len(archived), days=days)
        return archived
