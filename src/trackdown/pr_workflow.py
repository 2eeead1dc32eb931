"""Pull request status state machine and its business rules."""

from dataclasses import dataclass, field

import structlog

from trackdown.errors import InvalidTransition
from trackdown.models import PR_STATUSES, PullRequest

logger = structlog.get_logger()

PR_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"open", "closed"}),
    "open": frozenset({"draft", "review", "approved", "merged", "closed"}),
    "review": frozenset({"open", "approved", "closed"}),
    "approved": frozenset({"review", "merged", "closed"}),
    "merged": frozenset(),
    "closed": frozenset({"draft", "open"}),
}

NEXT_STATUS: dict[str, str] = {
    "draft": "open",
    "open": "review",
    "approved": "merged",
}


@dataclass(frozen=True)
class StatusRequirements:
    required: tuple[str, ...] = ()
    recommended: tuple[str, ...] = ()
    next_actions: tuple[str, ...] = ()


STATUS_REQUIREMENTS: dict[str, StatusRequirements] = {
    "draft": StatusRequirements((), ("title", "description", "branch_name"), ("Add reviewers", "Open when ready")),
    "open": StatusRequirements(("title", "description"), ("reviewers", "target_branch"), ("Request reviews",)),
    "review": StatusRequirements(("reviewers",), ("approvals",), ("Wait for reviews", "Address feedback")),
    "approved": StatusRequirements(("approvals",), (), ("Merge", "Deploy changes")),
    "merged": StatusRequirements(("merge_commit",), (), ("Close related tasks", "Update documentation")),
    "closed": StatusRequirements((), (), ("Archive or reopen if needed",)),
}


@dataclass
class TransitionCheck:
    """A transition that passed validation, with any non-blocking warnings."""

    pr_id: str
    from_status: str
    to_status: str
    warnings: list[str] = field(default_factory=list)


def is_valid_transition(from_status: str, to_status: str) -> bool:
    return to_status in PR_TRANSITIONS.get(from_status, frozenset())


def check_transition(
    pr: PullRequest,
    to_status: str,
    bypass_checks: bool = False,
    required_approvals: int | None = None,
) -> TransitionCheck:
    """Validate moving a pull request to a new status.

    Structural checks against ``PR_TRANSITIONS`` always apply. Business rules
    apply unless ``bypass_checks`` is set: merging requires an approved,
    unblocked pull request; approving with missing reviews and closing an
    approved pull request only produce warnings.

    Args:
        pr: Pull request in its current state
        to_status: Requested status
        bypass_checks: Skip the business rules
        required_approvals: Approvals expected before approval (defaults to the reviewer count)

    Returns:
        The accepted transition with its warnings

    Raises:
        InvalidTransition: the transition is not allowed
    """
    from_status = pr.pr_status
    if to_status not in PR_STATUSES:
        raise InvalidTransition(pr.id, from_status, to_status, [f"unknown status (expected one of {', '.join(PR_STATUSES)})"])
    if not is_valid_transition(from_status, to_status):
        allowed = sorted(PR_TRANSITIONS.get(from_status, frozenset()))
        reason = f"'{from_status}' is terminal" if not allowed else f"'{from_status}' can move to {', '.join(allowed)}"
        raise InvalidTransition(pr.id, from_status, to_status, [reason])

    check = TransitionCheck(pr_id=pr.id, from_status=from_status, to_status=to_status)
    if bypass_checks:
        return check

    if to_status == "approved":
        if not pr.reviewers:
            check.warnings.append("no reviewers assigned")
        needed = required_approvals if required_approvals is not None else len(pr.reviewers)
        if len(pr.approvals) < needed:
            check.warnings.append(f"needs {needed - len(pr.approvals)} more approval(s)")

    elif to_status == "merged":
        reasons = []
        if from_status != "approved":
            reasons.append("pull request must be approved before merging")
        if pr.blocked_by:
            reasons.append(f"pull request is blocked by {', '.join(pr.blocked_by)}")
        if reasons:
            raise InvalidTransition(pr.id, from_status, to_status, reasons)

    elif to_status == "closed" and from_status == "approved":
        check.warnings.append("closing an approved pull request; merging may have been intended")

    if check.warnings:
        logger.info("Transition accepted with warnings", pr_id=pr.id, to_status=to_status, warnings=check.warnings)
    return check


def next_recommended_status(pr: PullRequest) -> str | None:
    """Suggested next status, or None when the pull request is finished."""
    if pr.pr_status == "review":
        return "approved" if len(pr.approvals) >= len(pr.reviewers) else "review"
    return NEXT_STATUS.get(pr.pr_status)


def auto_transition(pr: PullRequest) -> str | None:
    """Status a pull request should move to on its own, if any.

    A pull request in review moves to approved once every reviewer approved.
    """
    if pr.pr_status == "review" and pr.reviewers and len(pr.approvals) >= len(pr.reviewers):
        return "approved"
    return None
