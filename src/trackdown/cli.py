"""CLI for trackdown."""

import dataclasses
import sys
from pathlib import Path
from typing import Annotated, Literal

import structlog
from cyclopts import App, Parameter

from trackdown.codec import to_metadata
from trackdown.config_commands import config_app
from trackdown.create_commands import create_app
from trackdown.errors import TrackdownError
from trackdown.index_commands import index_app
from trackdown.link_commands import link_app
from trackdown.models import Entity, RecordType
from trackdown.paths import ResolutionContext, init_project, validate_structure
from trackdown.pr_commands import pr_app
from trackdown.relationships import RelationshipResolver, SearchFilters, SortSpec
from trackdown.store import RecordStore

logger = structlog.get_logger()

app = App(
    help="trackdown - file-based epics, issues, tasks and pull requests",
)

app.command(create_app)
app.command(pr_app)
app.command(link_app)
app.command(index_app)
app.command(config_app)

_context: ResolutionContext | None = None


def configure_logging(log_level: str) -> None:
    """Configure structlog with the specified log level."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level.lower()))


def get_context() -> ResolutionContext:
    """Resolution inputs for this invocation."""
    global _context
    if _context is None:
        _context = ResolutionContext.from_environment()
    return _context


def get_store() -> RecordStore:
    """Open the record store of the current project."""
    return RecordStore.open(get_context())


def finish(store: RecordStore) -> None:
    """Run a scheduled index rebuild before the command returns."""
    result = store.index.rebuild_if_pending()
    if result is not None:
        print(f"Index rebuilt ({result.total} records)")


def format_entity(entity: Entity) -> str:
    status_marker = "●" if entity.status == "active" else "○"
    extra = f" <{entity.pr_status}>" if entity.record_type is RecordType.PR else ""
    tags = f" [{', '.join(entity.tags)}]" if entity.tags else ""
    return f"{status_marker} {entity.id}: {entity.title} ({entity.status}, {entity.priority}){extra}{tags}"


@app.command
def init(name: str | None = None, directory: Path | None = None) -> None:
    """Initialize a project.

    Args:
        name: Project name (defaults to the directory name)
        directory: Project directory (defaults to the current directory)
    """
    context = dataclasses.replace(get_context(), project_root=Path(directory or Path.cwd()).resolve())
    paths = init_project(context, name=name)
    print(f"Initialized project in {paths.project_root}")
    print(f"Tasks root: {paths.tasks_root} ({paths.source})")


@app.command
def structure() -> None:
    """Show the resolved directories and check the layout."""
    store = get_store()
    report = validate_structure(store.paths)

    print(f"Project root: {store.paths.project_root}")
    print(f"Tasks root: {report.tasks_root} ({store.paths.source})\n")
    for category, exists in report.categories.items():
        marker = "✓" if exists else "✗"
        print(f"{marker} {category.value}: {store.paths.directory_for(category)}")

    if report.legacy.detected:
        print("\nLegacy directories found:")
        for suggestion in report.legacy.suggestions:
            print(f"  {suggestion}")
    print(f"\nStructure is {'valid' if report.valid else 'invalid'}")


@app.command
def show(record_id: str) -> None:
    """Show one record with all of its fields."""
    store = get_store()
    entity = store.repository.find(record_id)
    for key, value in to_metadata(entity).items():
        if isinstance(value, list):
            value = ", ".join(value) if value else "-"
        print(f"{key}: {value}")
    print(f"file: {entity.file_path}")
    if entity.body:
        print()
        print(entity.body, end="" if entity.body.endswith("\n") else "\n")
    finish(store)


@app.command
def search(
    content: str | None = None,
    status: list[str] | None = None,
    priority: list[str] | None = None,
    assignee: list[str] | None = None,
    tag: list[str] | None = None,
    type: list[RecordType] | None = None,
    sort: Literal["created", "updated", "title", "priority", "status"] | None = None,
    desc: bool = False,
    limit: int | None = None,
) -> None:
    """Search records across every type.

    Args:
        content: Case-insensitive text to find in title, description or body
        status: Status(es) to match
        priority: Priority(ies) to match
        assignee: Assignee(s) to match
        tag: Tags; a record matches when it has any of them
        type: Record type(s) to include
        sort: Field to sort by
        desc: Sort in descending order
        limit: Maximum number of records to print
    """
    store = get_store()
    resolver = RelationshipResolver(store.repository)
    filters = SearchFilters(
        status=status, priority=priority, assignee=assignee, tags=tag, content=content, types=type
    )
    result = resolver.search(filters, SortSpec(sort, desc) if sort else None, limit)

    print(f"Found {result.total_count} record(s):\n")
    for entity in result.items:
        print(format_entity(entity))
    for warning in store.repository.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    finish(store)


@app.command
def hierarchy(record_id: str) -> None:
    """Show the hierarchy around an epic, issue, task or pull request."""
    store = get_store()
    resolver = RelationshipResolver(store.repository)
    record_type = store.repository.type_of(record_id) or store.repository.find(record_id).record_type

    if record_type is RecordType.EPIC:
        tree = resolver.get_epic_hierarchy(record_id)
        print(format_entity(tree.epic))
        for issue in tree.issues:
            print(f"  {format_entity(issue)}")
            for child in [*tree.tasks, *tree.prs]:
                if child.issue_id == issue.id:
                    print(f"    {format_entity(child)}")
    elif record_type is RecordType.ISSUE:
        issue_tree = resolver.get_issue_hierarchy(record_id)
        print(format_entity(issue_tree.epic))
        print(f"  {format_entity(issue_tree.issue)}")
        for child in [*issue_tree.tasks, *issue_tree.prs]:
            print(f"    {format_entity(child)}")
    else:
        leaf = (
            resolver.get_task_hierarchy(record_id)
            if record_type is RecordType.TASK
            else resolver.get_pr_hierarchy(record_id)
        )
        print(format_entity(leaf.epic))
        print(f"  {format_entity(leaf.issue)}")
        print(f"    {format_entity(leaf.task if record_type is RecordType.TASK else leaf.pr)}")
    finish(store)


@app.command
def update(
    record_id: str,
    title: str | None = None,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    assignee: str | None = None,
    body: str | None = None,
) -> None:
    """Update fields of a record."""
    store = get_store()
    fields = {
        k: v
        for k, v in {
            "title": title,
            "description": description,
            "status": status,
            "priority": priority,
            "assignee": assignee,
            "body": body,
        }.items()
        if v is not None
    }
    entity = store.update(record_id, **fields)
    print(f"Updated {entity.id}: {entity.title}")
    finish(store)


@app.command
def delete(*record_ids: str) -> None:
    """Delete one or more records."""
    store = get_store()
    for record_id in record_ids:
        store.delete(record_id)
    print(f"Deleted {len(record_ids)} record(s)")
    finish(store)


@app.command
def archive(days: int = 30, dry_run: bool = False) -> None:
    """Archive completed records not updated for a number of days.

    Args:
        days: Minimum age in days since the last update
        dry_run: Only list the records that would be archived
    """
    store = get_store()
    records = store.archive_older_than(days, dry_run=dry_run)
    verb = "Would archive" if dry_run else "Archived"
    print(f"{verb} {len(records)} record(s)")
    for entity in records:
        print(f"  {entity.id}: {entity.title}")
    finish(store)


@app.command
def health() -> None:
    """Check directory layout, index and references."""
    store = get_store()
    structure_report = validate_structure(store.paths)
    index_health = store.index.validate_index()
    integrity = RelationshipResolver(store.repository).validate_integrity()

    print(f"Structure: {'ok' if structure_report.valid else 'invalid'}")
    for category in structure_report.missing:
        print(f"  missing directory: {store.paths.directory_for(category)}")
    for suggestion in structure_report.legacy.suggestions:
        print(f"  legacy: {suggestion}")

    print(f"Index: {'ok' if index_health.healthy else 'needs rebuild'}")
    for problem in index_health.problems:
        print(f"  {problem}")

    print(f"References: {'ok' if integrity.valid else f'{len(integrity.violations)} problem(s)'}")
    for violation in integrity.violations:
        print(f"  {violation}")
    for warning in integrity.file_warnings:
        print(f"  invalid file: {warning}")

    overview = RelationshipResolver(store.repository).overview()
    totals = ", ".join(f"{count} {name}" for name, count in overview["totals"].items())
    print(f"\nRecords: {totals} ({overview['overall_completion']}% complete)")
    finish(store)


@app.meta.default
def main(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "critical",
    tasks_dir: str | None = None,
    project_root: Path | None = None,
) -> None:
    """Main entry point with global options.

    Args:
        log_level: Logging threshold
        tasks_dir: Tasks directory for this invocation (overrides environment and config)
        project_root: Project directory (defaults to the nearest configured ancestor)
    """
    global _context
    configure_logging(log_level)
    _context = ResolutionContext.from_environment(project_root=project_root, override=tasks_dir)
    try:
        app(tokens)
    except (TrackdownError, ValueError) as e:
        logger.error("Command failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    app.meta()
