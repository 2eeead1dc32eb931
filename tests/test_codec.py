"""Tests for the record codec."""

from pathlib import Path

import pytest

from trackdown.codec import decode, encode, read_record, update, write_record
from trackdown.errors import ImmutableFieldError, MalformedRecord, UnknownRecordType
from trackdown.models import Epic, Issue, PullRequest, RecordType, Task


@pytest.fixture
def issue() -> Issue:
    """A fully populated issue."""
    return Issue(
        id="ISS-0001",
        epic_id="EP-0001",
        title="Checkout flow",
        description="Pay for the cart",
        status="active",
        priority="high",
        assignee="alice",
        created_date="2025-01-01T09:00:00+00:00",
        updated_date="2025-01-02T09:00:00+00:00",
        estimated_tokens=1200,
        tags=["web", "payments"],
        dependencies=["ISS-0002"],
        related_tasks=["TSK-0001"],
        body="## Notes\n\n  keep   spacing\n\n---\ntrailing marker-looking line\n",
    )


def test_round_trip(issue: Issue) -> None:
    """Test decoding an encoded record reproduces fields and body."""
    decoded = decode(encode(issue))
    assert decoded == issue
    assert decoded.body == issue.body


def test_round_trip_body_with_leading_newlines() -> None:
    """Test leading blank lines in the body survive the separator line."""
    epic = Epic(id="EP-0001", body="\n\nstarts low")
    assert decode(encode(epic)).body == "\n\nstarts low"


def test_encode_layout(issue: Issue) -> None:
    """Test the metadata block is delimited by marker lines and starts with the id."""
    text = encode(issue)
    lines = text.splitlines()
    assert lines[0] == "---"
    assert lines[1] == "issue_id: ISS-0001"
    assert lines[2] == "epic_id: EP-0001"
    assert "\n---\n\n## Notes" in text


def test_issue_without_epic_id_is_malformed() -> None:
    """Test a missing parent id is rejected and named, with the file path."""
    path = Path("tasks/issues/ISS-0001-orphan.md")
    with pytest.raises(MalformedRecord) as exc_info:
        decode("---\nissue_id: ISS-0001\ntitle: Orphan\n---\n\nbody\n", path=path)

    assert exc_info.value.fields == ["epic_id"]
    assert exc_info.value.path == path
    assert "ISS-0001-orphan.md" in str(exc_info.value)
    assert "epic_id" in str(exc_info.value)


def test_expected_type_missing_field() -> None:
    """Test decoding with an expected type checks that type's schema."""
    with pytest.raises(MalformedRecord) as exc_info:
        decode("---\ntask_id: TSK-0001\nepic_id: EP-0001\n---\n", RecordType.TASK)
    assert exc_info.value.fields == ["issue_id"]


def test_expected_type_rejects_foreign_id() -> None:
    """Test an issue file in the epics directory is not read as an epic."""
    with pytest.raises(MalformedRecord) as exc_info:
        decode("---\nissue_id: ISS-0001\nepic_id: EP-0001\n---\n", RecordType.EPIC)
    assert exc_info.value.fields == ["issue_id"]


def test_type_inference() -> None:
    """Test each schema is recognised without an expected type."""
    assert isinstance(decode("---\nepic_id: EP-0001\n---\n"), Epic)
    assert isinstance(decode("---\nissue_id: ISS-0001\nepic_id: EP-0001\n---\n"), Issue)
    task = decode("---\ntask_id: TSK-0001\nissue_id: ISS-0001\nepic_id: EP-0001\n---\n")
    assert isinstance(task, Task)
    pr = decode("---\npr_id: PR-0001\nissue_id: ISS-0001\nepic_id: EP-0001\n---\n")
    assert isinstance(pr, PullRequest)
    assert pr.pr_status == "draft"


def test_unknown_record_type() -> None:
    """Test metadata without any id field is of unknown type."""
    with pytest.raises(UnknownRecordType):
        decode("---\ntitle: Lost\n---\n\nbody\n")


def test_missing_metadata_block() -> None:
    """Test text without a metadata block is malformed."""
    with pytest.raises(MalformedRecord):
        decode("just a body\n")


def test_unparsable_metadata() -> None:
    """Test invalid YAML in the metadata block is malformed."""
    with pytest.raises(MalformedRecord):
        decode("---\nepic_id: [EP-0001\n---\n")


@pytest.mark.parametrize(
    ("line", "field"),
    [
        ("estimated_tokens: -5", "estimated_tokens"),
        ("actual_tokens: true", "actual_tokens"),
        ("status: doing", "status"),
        ("priority: urgent", "priority"),
        ("created_date: yesterday", "created_date"),
        ("tags: web", "tags"),
    ],
)
def test_invalid_values_are_rejected(line: str, field: str) -> None:
    """Test invalid optional values are errors, not clamped or coerced."""
    with pytest.raises(MalformedRecord) as exc_info:
        decode(f"---\nepic_id: EP-0001\n{line}\n---\n")
    assert field in exc_info.value.fields


def test_created_after_updated_is_rejected() -> None:
    """Test dates must not run backwards."""
    text = "---\nepic_id: EP-0001\ncreated_date: '2025-02-01T00:00:00Z'\nupdated_date: '2025-01-01T00:00:00Z'\n---\n"
    with pytest.raises(MalformedRecord) as exc_info:
        decode(text)
    assert exc_info.value.fields == ["updated_date"]


def test_yaml_timestamps_become_text() -> None:
    """Test unquoted YAML timestamps are kept as ISO text."""
    epic = decode("---\nepic_id: EP-0001\ncreated_date: 2025-01-01T10:00:00Z\n---\n")
    assert epic.created_date == "2025-01-01T10:00:00+00:00"


def test_unknown_keys_preserved() -> None:
    """Test metadata keys outside the model survive a round trip."""
    epic = decode("---\nepic_id: EP-0001\nsprint: 7\n---\n")
    assert epic.extra == {"sprint": 7}
    assert "sprint: 7" in encode(epic)


def test_body_in_content_key() -> None:
    """Test older files that kept the body in the metadata block."""
    epic = decode("---\nepic_id: EP-0001\ncontent: old style body\n---\n")
    assert epic.body == "old style body"
    assert "content" not in epic.extra


def test_content_key_with_empty_body_round_trips() -> None:
    """Test a content metadata key next to an empty body stays metadata."""
    epic = Epic(id="EP-0001", title="Notes", body="", extra={"content": "kept as metadata"})
    decoded = decode(encode(epic))
    assert decoded.extra == {"content": "kept as metadata"}
    assert decoded.body == ""


def test_crlf_file(tmp_path: Path) -> None:
    """Test records with Windows line endings keep their body bytes."""
    path = tmp_path / "EP-0001.md"
    path.write_bytes(b"---\r\nepic_id: EP-0001\r\n---\r\n\r\nline one\r\nline two\r\n")
    epic = read_record(path)
    assert epic.id == "EP-0001"
    assert epic.body == "line one\r\nline two\r\n"


def test_update_preserves_body(tmp_path: Path, issue: Issue) -> None:
    """Test update merges fields, refreshes updated_date and keeps the body."""
    path = tmp_path / "ISS-0001.md"
    write_record(path, issue)

    updated = update(path, {"title": "New title", "tags": ["web"]})

    assert updated.title == "New title"
    assert updated.tags == ["web"]
    assert updated.body == issue.body
    assert updated.updated_date != issue.updated_date
    assert read_record(path) == updated


def test_update_body(tmp_path: Path, issue: Issue) -> None:
    """Test the body changes only when given."""
    path = tmp_path / "ISS-0001.md"
    write_record(path, issue)
    assert update(path, {"body": "replaced\n"}).body == "replaced\n"


def test_update_rejects_id_change(tmp_path: Path, issue: Issue) -> None:
    """Test record ids are immutable."""
    path = tmp_path / "ISS-0001.md"
    write_record(path, issue)
    with pytest.raises(ImmutableFieldError):
        update(path, {"issue_id": "ISS-0009"})
    assert read_record(path).id == "ISS-0001"


def test_update_invalid_value_writes_nothing(tmp_path: Path, issue: Issue) -> None:
    """Test a rejected update leaves the file untouched."""
    path = tmp_path / "ISS-0001.md"
    write_record(path, issue)
    before = path.read_bytes()
    with pytest.raises(MalformedRecord):
        update(path, {"priority": "whenever"})
    assert path.read_bytes() == before
