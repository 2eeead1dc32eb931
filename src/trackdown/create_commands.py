"""Record creation commands for trackdown CLI."""

from cyclopts import App

create_app = App(name="create", help="Create epics, issues, tasks and pull requests")


def _split(values: str) -> list[str]:
    return [v.strip() for v in values.split(",") if v.strip()]


def _common_fields(description: str, priority: str | None, assignee: str | None, tags: str, body: str) -> dict:
    fields: dict = {"description": description, "body": body}
    if priority:
        fields["priority"] = priority
    if assignee:
        fields["assignee"] = assignee
    if tags:
        fields["tags"] = _split(tags)
    return fields


@create_app.command
def epic(
    title: str,
    description: str = "",
    priority: str | None = None,
    assignee: str | None = None,
    tags: str = "",
    body: str = "",
) -> None:
    """Create a new epic.

    Args:
        title: Epic title
        description: Short description
        priority: low, medium, high or critical
        assignee: Owner of the epic
        tags: Comma-separated tags
        body: Free-form body text
    """
    from trackdown.cli import finish, get_store

    store = get_store()
    entity = store.create_epic(title, **_common_fields(description, priority, assignee, tags, body))
    print(f"Created epic {entity.id}: {entity.title}")
    finish(store)


@create_app.command
def issue(
    title: str,
    epic_id: str,
    description: str = "",
    priority: str | None = None,
    assignee: str | None = None,
    tags: str = "",
    body: str = "",
) -> None:
    """Create a new issue under an epic."""
    from trackdown.cli import finish, get_store

    store = get_store()
    entity = store.create_issue(title, epic_id, **_common_fields(description, priority, assignee, tags, body))
    print(f"Created issue {entity.id}: {entity.title}")
    finish(store)


@create_app.command
def task(
    title: str,
    issue_id: str,
    description: str = "",
    priority: str | None = None,
    assignee: str | None = None,
    tags: str = "",
    body: str = "",
    parent_task: str | None = None,
) -> None:
    """Create a new task under an issue."""
    from trackdown.cli import finish, get_store

    store = get_store()
    fields = _common_fields(description, priority, assignee, tags, body)
    if parent_task:
        fields["parent_task"] = parent_task
    entity = store.create_task(title, issue_id, **fields)
    print(f"Created task {entity.id}: {entity.title}")
    finish(store)


@create_app.command
def pr(
    title: str,
    issue_id: str,
    description: str = "",
    branch: str | None = None,
    target_branch: str | None = None,
    reviewers: str = "",
    priority: str | None = None,
    assignee: str | None = None,
    tags: str = "",
    body: str = "",
) -> None:
    """Create a new pull request record under an issue.

    Args:
        title: Pull request title
        issue_id: Issue the pull request belongs to
        description: Short description
        branch: Source branch name
        target_branch: Branch to merge into
        reviewers: Comma-separated reviewers
        priority: low, medium, high or critical
        assignee: Author of the pull request
        tags: Comma-separated tags
        body: Free-form body text
    """
    from trackdown.cli import finish, get_store

    store = get_store()
    fields = _common_fields(description, priority, assignee, tags, body)
    if branch:
        fields["branch_name"] = branch
    if target_branch:
        fields["target_branch"] = target_branch
    if reviewers:
        fields["reviewers"] = _split(reviewers)
    entity = store.create_pr(title, issue_id, **fields)
    print(f"Created pull request {entity.id}: {entity.title}")
    finish(store)
