"""Tests for id allocation and file naming."""

from trackdown.config import NamingConventions
from trackdown.ids import IdAllocator, format_id, parse_sequence, record_filename, slugify, type_for_id
from trackdown.models import Epic, RecordType
from trackdown.paths import ResolvedPaths

from conftest import write_entity


def test_slugify() -> None:
    assert slugify("Add Login Page!") == "add-login-page"
    assert slugify("  spaced   out  ") == "spaced-out"
    assert slugify("a" * 80) == "a" * 50
    assert slugify("???") == ""


def test_record_filename() -> None:
    assert record_filename("EP-0001", "User Auth") == "EP-0001-user-auth.md"
    assert record_filename("EP-0002", "!!!") == "EP-0002.md"


def test_sequence_parsing() -> None:
    assert format_id("TSK", 7) == "TSK-0007"
    assert parse_sequence("TSK-0007", "TSK") == 7
    assert parse_sequence("TSK-0007", "PR") is None


def test_type_for_id_prefers_longest_prefix() -> None:
    """Test a prefix that extends another still resolves to its own type."""
    naming = NamingConventions(pr_prefix="P", task_prefix="PT")
    assert type_for_id("PT-0001", naming) is RecordType.TASK
    assert type_for_id("P-0001", naming) is RecordType.PR
    assert type_for_id("XYZ-0001", naming) is None


def test_ids_are_sequential(paths: ResolvedPaths) -> None:
    ids = IdAllocator(paths, NamingConventions())
    assert ids.peek(RecordType.EPIC) == "EP-0001"
    assert ids.next_id(RecordType.EPIC) == "EP-0001"
    assert ids.next_id(RecordType.EPIC) == "EP-0002"
    assert ids.next_id(RecordType.ISSUE) == "ISS-0001"


def test_counter_never_reuses_ids_on_disk(paths: ResolvedPaths) -> None:
    """Test a lost counters file cannot lead to a reused id."""
    write_entity(paths, Epic(id="EP-0041", title="Existing"))
    ids = IdAllocator(paths, NamingConventions())
    assert ids.next_id(RecordType.EPIC) == "EP-0042"

    paths.counters_file.write_text("{broken", encoding="utf-8")
    assert ids.next_id(RecordType.EPIC) == "EP-0042"
