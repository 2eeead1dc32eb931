"""Tests for the trackdown CLI commands."""

from pathlib import Path

import pytest

from trackdown import cli, config_commands, create_commands, index_commands, link_commands, pr_commands
from trackdown.models import Epic
from trackdown.paths import ResolutionContext, ResolvedPaths

from conftest import write_entity


@pytest.fixture
def project(paths: ResolvedPaths, monkeypatch: pytest.MonkeyPatch) -> ResolvedPaths:
    """Initialized project that CLI commands resolve to."""
    monkeypatch.setattr(cli, "_context", ResolutionContext(project_root=paths.project_root))
    return paths


@pytest.fixture
def populated(project: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> ResolvedPaths:
    create_commands.epic("Checkout", tags="web, api")
    create_commands.issue("Cart", "EP-0001", priority="high")
    create_commands.task("Add item", "ISS-0001")
    create_commands.pr("Cart endpoint", "ISS-0001", branch="feature/cart", reviewers="ana")
    capsys.readouterr()
    return project


def test_init(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(cli, "_context", ResolutionContext(project_root=tmp_path))

    cli.init(name="demo", directory=tmp_path)

    output = capsys.readouterr().out
    assert "Initialized project" in output
    assert f"Tasks root: {tmp_path.resolve() / 'tasks'}" in output
    assert (tmp_path / ".trackdown" / "config.yaml").is_file()
    assert (tmp_path / "tasks" / "epics").is_dir()


def test_create_and_show(project: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    create_commands.epic("Checkout", tags="web, api", body="Payment flow.")
    assert capsys.readouterr().out.strip() == "Created epic EP-0001: Checkout"

    cli.show("EP-0001")
    output = capsys.readouterr().out
    assert "title: Checkout" in output
    assert "tags: web, api" in output
    assert "Payment flow." in output


def test_search(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    cli.search(priority=["high"])
    output = capsys.readouterr().out
    assert "Found 1 record(s)" in output
    assert "ISS-0001: Cart" in output

    cli.search(sort="title", limit=2)
    assert "Found 4 record(s)" in capsys.readouterr().out


def test_hierarchy(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    cli.hierarchy("EP-0001")
    lines = capsys.readouterr().out.splitlines()
    assert "EP-0001: Checkout" in lines[0]
    assert "ISS-0001: Cart" in lines[1]
    assert any("TSK-0001" in line for line in lines[2:])
    assert any("PR-0001" in line for line in lines[2:])


def test_pr_commands(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    pr_commands.transition("PR-0001", "open")
    assert "PR-0001: draft -> open" in capsys.readouterr().out

    pr_commands.status("PR-0001")
    output = capsys.readouterr().out
    assert "PR-0001: open" in output
    assert "Allowed: approved, closed, draft, merged, review" in output
    assert "Recommended next: review" in output

    pr_commands.list_prs(status="open")
    assert "Found 1 pull request(s)" in capsys.readouterr().out


def test_pr_status_reports_full_approval(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    pr_commands.transition("PR-0001", "open")
    pr_commands.transition("PR-0001", "review")
    cli.get_store().update("PR-0001", approvals=["ana"])
    capsys.readouterr()

    pr_commands.status("PR-0001")
    assert "Ready to move to approved: every reviewer approved" in capsys.readouterr().out


def test_link_commands(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    create_commands.task("Remove item", "ISS-0001")
    link_commands.add("TSK-0002", "TSK-0001", type="blocked_by")
    capsys.readouterr()

    link_commands.list_links("TSK-0001")
    assert "TSK-0001 --[blocks]--> TSK-0002" in capsys.readouterr().out

    link_commands.cycles()
    assert "No dependency cycles" in capsys.readouterr().out


def test_index_commands(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    index_commands.validate()
    assert "Index is healthy" in capsys.readouterr().out

    index_commands.rebuild()
    assert "Indexed 4 record(s)" in capsys.readouterr().out

    index_commands.update("EP-0001", "TSK-0001")
    assert "TSK-0001: updated" in capsys.readouterr().out

    index_commands.stats()
    assert "Total: 4" in capsys.readouterr().out


def test_config_commands(project: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    config_commands.set("structure.epics_dir", "big-epics")
    config_commands.get("structure.epics_dir")
    assert "structure.epics_dir = big-epics" in capsys.readouterr().out

    config_commands.unset("structure.epics_dir")
    config_commands.get("structure.epics_dir")
    assert "structure.epics_dir is not set" in capsys.readouterr().out


def test_health(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    cli.health()
    output = capsys.readouterr().out
    assert "Structure: ok" in output
    assert "Index: ok" in output
    assert "References: ok" in output


def test_health_rebuilds_stale_index(populated: ResolvedPaths, capsys: pytest.CaptureFixture[str]) -> None:
    write_entity(populated, Epic(id="EP-0002", title="Billing"))

    cli.health()
    assert "Index rebuilt (5 records)" in capsys.readouterr().out

    index_commands.validate()
    assert "Index is healthy" in capsys.readouterr().out


def test_errors_exit_nonzero(
    project: ResolvedPaths, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cli, "_context", None)

    with pytest.raises(SystemExit) as exc_info:
        cli.main("show", "EP-0404", project_root=project.project_root)

    assert exc_info.value.code == 1
    assert "Error: record EP-0404 not found" in capsys.readouterr().err
