"""Pull request workflow commands for trackdown CLI."""

from cyclopts import App

from trackdown.models import PR_STATUSES, RecordType
from trackdown.pr_workflow import PR_TRANSITIONS, STATUS_REQUIREMENTS, auto_transition, next_recommended_status

pr_app = App(name="pr", help="Manage pull request status")


@pr_app.command
def transition(
    pr_id: str,
    status: str,
    bypass_checks: bool = False,
    required_approvals: int | None = None,
) -> None:
    """Move a pull request to a new status.

    Args:
        pr_id: Pull request id
        status: Target status (draft, open, review, approved, merged, closed)
        bypass_checks: Skip the merge and approval rules
        required_approvals: Approvals expected before approving (defaults to the reviewer count)
    """
    from trackdown.cli import finish, get_store

    store = get_store()
    entity, check = store.transition_pr(
        pr_id, status, bypass_checks=bypass_checks, required_approvals=required_approvals
    )
    for warning in check.warnings:
        print(f"warning: {warning}")
    print(f"{entity.id}: {check.from_status} -> {check.to_status}")
    finish(store)


@pr_app.command
def status(pr_id: str) -> None:
    """Show the status of a pull request and where it can go next."""
    from trackdown.cli import finish, get_store

    store = get_store()
    pr = store.repository.get(RecordType.PR, pr_id)
    allowed = sorted(PR_TRANSITIONS[pr.pr_status])
    print(f"{pr.id}: {pr.pr_status}")
    print(f"Allowed: {', '.join(allowed) if allowed else 'none (terminal)'}")
    recommended = next_recommended_status(pr)
    if recommended:
        print(f"Recommended next: {recommended}")
    print(f"Reviewers: {len(pr.reviewers)}, approvals: {len(pr.approvals)}")
    ready = auto_transition(pr)
    if ready:
        print(f"Ready to move to {ready}: every reviewer approved")
    for action in STATUS_REQUIREMENTS[pr.pr_status].next_actions:
        print(f"  - {action}")
    finish(store)


@pr_app.command(name="list")
def list_prs(status: str | None = None) -> None:
    """List pull requests, optionally only those in one status."""
    from trackdown.cli import finish, format_entity, get_store

    if status is not None and status not in PR_STATUSES:
        raise ValueError(f"Unknown status '{status}' (expected one of {', '.join(PR_STATUSES)})")
    store = get_store()
    prs = [p for p in store.repository.all(RecordType.PR) if status is None or p.pr_status == status]
    print(f"Found {len(prs)} pull request(s):\n")
    for pr in prs:
        print(format_entity(pr))
    finish(store)
