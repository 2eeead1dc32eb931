"""Tests for the index manager."""

import asyncio
import json

import pytest

from trackdown.codec import write_record
from trackdown.config import ProjectConfig
from trackdown.index import SCHEMA_VERSION, IndexManager
from trackdown.models import Epic, Issue, RecordType
from trackdown.paths import ResolutionContext, ResolvedPaths, ensure_structure, resolve_paths

from conftest import write_entity


@pytest.fixture
def index(paths: ResolvedPaths) -> IndexManager:
    """Index manager over a project holding one epic and one issue."""
    write_entity(paths, Epic(id="EP-0001", title="Checkout", status="active", priority="high"))
    write_entity(paths, Issue(id="ISS-0001", epic_id="EP-0001", title="Cart", tags=["web"]))
    return IndexManager(paths)


def test_rebuild_then_validate_is_healthy(index: IndexManager) -> None:
    """Test a fresh rebuild always validates."""
    result = index.rebuild_index()
    assert result.total == 2
    assert result.warnings == []

    health = index.validate_index()
    assert health.healthy
    assert health.counts["epic"] == (1, 1)


def test_rebuild_with_invalid_file_is_healthy(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test unparsable files are remembered so counts still match."""
    (paths.issues_dir / "ISS-0002-broken.md").write_text("---\nissue_id: ISS-0002\n---\n", encoding="utf-8")

    result = index.rebuild_index()

    assert result.total == 2
    assert len(result.warnings) == 1
    assert index.validate_index().healthy


def test_rebuild_with_duplicate_id_is_healthy(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test a second file with the same id is reported and counted."""
    write_record(paths.epics_dir / "EP-0001-copy.md", Epic(id="EP-0001", title="Copy"))

    result = index.rebuild_index()

    assert any("duplicate id EP-0001" in w.message for w in result.warnings)
    assert index.validate_index().healthy


def test_index_file_layout(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test the index file carries a schema version and key fields."""
    index.rebuild_index()
    data = json.loads(paths.index_file.read_text(encoding="utf-8"))
    assert data["schema_version"] == SCHEMA_VERSION
    assert data["tasks_root"] == str(paths.tasks_root)
    entry = data["entries"]["issue"]["ISS-0001"]
    assert entry["epic_id"] == "EP-0001"
    assert entry["path"] == "tasks/issues/ISS-0001-cart.md"
    assert entry["tags"] == ["web"]


def test_update_item_is_idempotent(index: IndexManager) -> None:
    """Test updating twice without a file change gives the same entry."""
    first = index.update_item(RecordType.EPIC, "EP-0001")
    second = index.update_item(RecordType.EPIC, "EP-0001")
    assert first is not None
    assert first == second
    assert index.get_entry(RecordType.EPIC, "EP-0001") == first


def test_update_item_sees_file_change(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test an update picks up the new file content."""
    index.rebuild_index()
    write_entity(paths, Epic(id="EP-0001", title="Checkout", status="completed"))
    assert index.update_item(RecordType.EPIC, "EP-0001").status == "completed"


def test_update_item_for_deleted_file(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test the entry is dropped once the file is gone."""
    index.rebuild_index()
    (paths.issues_dir / "ISS-0001-cart.md").unlink()

    assert index.update_item(RecordType.ISSUE, "ISS-0001") is None
    assert index.get_entry(RecordType.ISSUE, "ISS-0001") is None
    assert index.validate_index().healthy


def test_remove_item_leaves_files(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test removing an entry never touches the record file."""
    index.rebuild_index()
    assert index.remove_item(RecordType.EPIC, "EP-0001")
    assert (paths.epics_dir / "EP-0001-checkout.md").exists()
    assert index.get_entry(RecordType.EPIC, "EP-0001") is None
    assert not index.remove_item(RecordType.EPIC, "EP-0001")


def test_remove_after_delete_restores_health(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test deleting a file then removing its entry keeps the index valid."""
    index.rebuild_index()
    (paths.epics_dir / "EP-0001-checkout.md").unlink()
    assert not index.validate_index().healthy

    index.remove_item(RecordType.EPIC, "EP-0001")
    assert index.validate_index().healthy


def test_missing_index_needs_rebuild(index: IndexManager) -> None:
    """Test a missing index is reported and rebuilt on demand."""
    assert index.load() is None
    health = index.validate_index()
    assert not health.exists
    assert not health.healthy

    assert index.update_item(RecordType.ISSUE, "ISS-0001") is not None
    assert index.validate_index().healthy


def test_corrupt_index_is_recoverable(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test a corrupt index is not fatal and a rebuild fixes it."""
    paths.index_file.parent.mkdir(parents=True, exist_ok=True)
    paths.index_file.write_text("{not json", encoding="utf-8")

    assert index.load() is None
    health = index.validate_index()
    assert health.exists
    assert not health.parsable

    index.rebuild_index()
    assert index.validate_index().healthy


def test_unknown_schema_version(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test an index from another schema version is treated as missing."""
    paths.index_file.write_text(json.dumps({"schema_version": 99, "entries": {}}), encoding="utf-8")
    assert index.load() is None
    health = index.validate_index()
    assert health.parsable
    assert not health.version_ok


def test_index_for_other_tasks_root(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test an index built for another tasks root is not used."""
    index.rebuild_index()
    other = resolve_paths(ResolutionContext(project_root=paths.project_root, override="work"), ProjectConfig())
    ensure_structure(other)
    assert IndexManager(other).load() is None


def test_new_file_makes_index_unhealthy(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test a file added behind the index's back shows up in validation."""
    index.rebuild_index()
    write_entity(paths, Epic(id="EP-0002", title="Search"))
    health = index.validate_index()
    assert not health.healthy
    assert health.counts["epic"] == (1, 2)


def test_batch_update(index: IndexManager, paths: ResolvedPaths) -> None:
    """Test several entries are refreshed concurrently and saved together."""
    index.rebuild_index()
    write_entity(paths, Epic(id="EP-0002", title="Search"))
    write_entity(paths, Issue(id="ISS-0001", epic_id="EP-0001", title="Cart", status="active"))

    entries = asyncio.run(index.update_items([(RecordType.EPIC, "EP-0002"), (RecordType.ISSUE, "ISS-0001")]))

    assert [e.id for e in entries] == ["EP-0002", "ISS-0001"]
    assert index.get_entry(RecordType.ISSUE, "ISS-0001").status == "active"
    assert index.validate_index().healthy


def test_mark_stale_schedules_rebuild(index: IndexManager) -> None:
    """Test a detected drift leads to one rebuild."""
    assert index.rebuild_if_pending() is None
    index.mark_stale("test drift")
    assert index.rebuild_pending

    result = index.rebuild_if_pending()
    assert result is not None
    assert not index.rebuild_pending
    assert index.rebuild_if_pending() is None


def test_stats(index: IndexManager) -> None:
    """Test totals and breakdowns come from the index."""
    stats = index.stats()
    assert stats["total"] == 2
    assert stats["by_type"]["epic"] == 1
    assert stats["by_status"] == {"active": 1, "planning": 1}
    assert stats["by_priority"] == {"high": 1, "medium": 1}
