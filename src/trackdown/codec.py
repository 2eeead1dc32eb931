"""Record codec: one entity per text file, YAML metadata block plus verbatim body.

File layout::

    ---
    issue_id: ISS-0001
    epic_id: EP-0001
    title: Checkout flow
    ...
    ---

    free-form body, stored exactly as written

Everything after the closing marker line (minus the single blank separator
line the encoder writes) is the body.
A file that ends right at the closing marker may carry its body under a
``content`` metadata key instead.
"""

import contextlib
import dataclasses
import os
import re
import tempfile
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import structlog
import yaml

from trackdown.errors import ImmutableFieldError, MalformedRecord, UnknownRecordType
from trackdown.models import (
    COUNTER_FIELDS,
    DATE_FIELDS,
    ENUM_FIELDS,
    ID_FIELDS,
    INFERENCE_ORDER,
    LIST_FIELDS,
    NON_METADATA_FIELDS,
    OPTIONAL_INT_FIELDS,
    RECORD_CLASSES,
    Entity,
    PullRequest,
    RecordType,
    Task,
)

logger = structlog.get_logger()

MARKER = "---"
_BLOCK_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)

# Most specific id field first; used to name the missing fields of a partial match.
_SPECIFICITY: tuple[type[Entity], ...] = tuple(reversed(INFERENCE_ORDER))


def now_iso() -> str:
    """Current UTC time as ISO-8601 text."""
    return datetime.now(UTC).isoformat(timespec="seconds")


def parse_timestamp(value: str) -> datetime:
    """Parse ISO-8601 text; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def atomic_write_text(path: Path, content: str) -> None:
    """Write file atomically via temp file + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


# ---------------------------------------------------------------------------
# Text <-> entity


def split_text(text: str, path: Path | None = None) -> tuple[dict[str, Any], str]:
    """Split a record into its metadata mapping and verbatim body."""
    match = _BLOCK_RE.match(text)
    if not match:
        raise MalformedRecord("metadata block not found", path=path)

    try:
        metadata = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise MalformedRecord(f"metadata block is not valid YAML: {e}", path=path) from e

    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise MalformedRecord("metadata block must be a mapping", path=path)

    raw = text[match.end() :]
    body = raw
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    # Older files kept the body inside the metadata block and ended at the
    # closing marker. Encoded files always carry the separator line.
    content = metadata.get("content")
    if isinstance(content, str) and raw == "":
        metadata = {k: v for k, v in metadata.items() if k != "content"}
        body = content

    return {str(k): v for k, v in metadata.items()}, body


def _present(metadata: dict[str, Any], key: str) -> bool:
    value = metadata.get(key)
    if value is None:
        return False
    return not (isinstance(value, str) and not value.strip())


def infer_type(metadata: dict[str, Any], path: Path | None = None) -> type[Entity]:
    """Pick the record class whose mandatory-field schema the metadata satisfies.

    Schemas are tried Epic -> Issue -> Task -> PullRequest and the first full
    match wins. A record that carries some type's id field but not the rest of
    that type's mandatory fields is malformed; one that carries no id field at
    all is of unknown type.
    """
    for cls in INFERENCE_ORDER:
        if all(_present(metadata, f) for f in cls.mandatory_fields()) and not any(
            _present(metadata, f) for f in cls.excluded_fields()
        ):
            return cls

    own_ids = [f for f in ID_FIELDS if _present(metadata, f)]
    if not own_ids:
        raise UnknownRecordType(
            f"no record id field found (expected one of {', '.join(ID_FIELDS)})", path=path, fields=list(ID_FIELDS)
        )
    if _present(metadata, Task.record_type.id_field) and _present(metadata, PullRequest.record_type.id_field):
        raise UnknownRecordType("record carries both task_id and pr_id", path=path, fields=["task_id", "pr_id"])

    for cls in _SPECIFICITY:
        if _present(metadata, cls.record_type.id_field):
            missing = [f for f in cls.mandatory_fields() if not _present(metadata, f)]
            raise MalformedRecord(
                f"{cls.record_type.value} record missing mandatory field(s): {', '.join(missing)}",
                path=path,
                fields=missing,
            )
    raise UnknownRecordType("record matches no type", path=path)


def _check_schema(cls: type[Entity], metadata: dict[str, Any], path: Path | None) -> None:
    missing = [f for f in cls.mandatory_fields() if not _present(metadata, f)]
    if missing:
        raise MalformedRecord(
            f"{cls.record_type.value} record missing mandatory field(s): {', '.join(missing)}",
            path=path,
            fields=missing,
        )
    foreign = [f for f in cls.excluded_fields() if _present(metadata, f)]
    if foreign:
        raise MalformedRecord(
            f"{cls.record_type.value} record carries field(s) of another type: {', '.join(foreign)}",
            path=path,
            fields=foreign,
        )


def _normalize(name: str, value: Any, problems: dict[str, str]) -> Any:
    """Validate one metadata value; record a problem instead of coercing."""
    if name in ENUM_FIELDS:
        if not isinstance(value, str) or value not in ENUM_FIELDS[name]:
            problems[name] = f"must be one of {', '.join(ENUM_FIELDS[name])} (got {value!r})"
        return value
    if name in COUNTER_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            problems[name] = f"must be a non-negative integer (got {value!r})"
        return value
    if name in OPTIONAL_INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            problems[name] = f"must be a non-negative integer (got {value!r})"
        elif name == "completion_percentage" and value > 100:
            problems[name] = f"must be between 0 and 100 (got {value!r})"
        return value
    if name in DATE_FIELDS:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            try:
                parse_timestamp(value)
            except ValueError:
                problems[name] = f"must be an ISO-8601 timestamp (got {value!r})"
            return value
        problems[name] = f"must be an ISO-8601 timestamp (got {value!r})"
        return value
    if name in LIST_FIELDS:
        if not isinstance(value, list):
            problems[name] = f"must be a list (got {type(value).__name__})"
            return value
        items = []
        for item in value:
            if isinstance(item, (dict, list)) or item is None:
                problems[name] = "list items must be plain values"
                return value
            items.append(item if isinstance(item, str) else str(item))
        return items
    if isinstance(value, (dict, list)):
        problems[name] = f"must be a plain value (got {type(value).__name__})"
        return value
    return value if isinstance(value, str) else str(value)


def from_metadata(
    cls: type[Entity], metadata: dict[str, Any], body: str = "", path: Path | None = None
) -> Entity:
    """Build a typed entity from an already-classified metadata mapping."""
    _check_schema(cls, metadata, path)

    problems: dict[str, str] = {}
    kwargs: dict[str, Any] = {}
    for name in cls.mandatory_fields():
        if not isinstance(metadata[name], str):
            problems[name] = f"must be a string id (got {metadata[name]!r})"

    known = {f.name for f in dataclasses.fields(cls)} - NON_METADATA_FIELDS
    extra: dict[str, Any] = {}
    for key, value in metadata.items():
        if key == cls.record_type.id_field:
            continue
        if key not in known:
            extra[key] = value
            continue
        if value is None:
            continue
        kwargs[key] = _normalize(key, value, problems)

    if not problems and kwargs.get("created_date") and kwargs.get("updated_date"):
        if parse_timestamp(kwargs["created_date"]) > parse_timestamp(kwargs["updated_date"]):
            problems["updated_date"] = "must not be earlier than created_date"

    if problems:
        detail = "; ".join(f"{k} {v}" for k, v in problems.items())
        raise MalformedRecord(f"invalid field(s): {detail}", path=path, fields=list(problems))

    entity = cls(id=metadata[cls.record_type.id_field].strip(), body=body, file_path=path, extra=extra, **kwargs)
    return entity


def decode(text: str, expected_type: RecordType | None = None, path: Path | None = None) -> Entity:
    """Parse record text into a typed entity.

    Args:
        text: Full file content
        expected_type: Record type implied by the file's category directory;
            when omitted the type is inferred from the metadata
        path: File the text came from, used in error messages

    Raises:
        MalformedRecord: metadata absent, unparsable, or missing/invalid fields
        UnknownRecordType: metadata matches no record type
    """
    metadata, body = split_text(text, path)
    cls = RECORD_CLASSES[RecordType(expected_type)] if expected_type else infer_type(metadata, path)
    return from_metadata(cls, metadata, body, path)


def to_metadata(entity: Entity) -> dict[str, Any]:
    """Ordered metadata mapping for an entity: id, parent ids, then the rest."""
    metadata: dict[str, Any] = {entity.record_type.id_field: entity.id}
    for name in entity.parent_fields:
        metadata[name] = getattr(entity, name)
    for f in dataclasses.fields(entity):
        if f.name in NON_METADATA_FIELDS or f.name in metadata:
            continue
        value = getattr(entity, f.name)
        if value is None:
            continue
        metadata[f.name] = list(value) if isinstance(value, list) else value
    for key, value in entity.extra.items():
        metadata.setdefault(key, value)
    return metadata


def encode(entity: Entity) -> str:
    """Serialize an entity to record text."""
    metadata_text = yaml.safe_dump(
        to_metadata(entity), default_flow_style=False, sort_keys=False, allow_unicode=True, width=120
    )
    return f"{MARKER}\n{metadata_text}{MARKER}\n\n{entity.body}"


# ---------------------------------------------------------------------------
# File operations


def read_record(path: Path, expected_type: RecordType | None = None) -> Entity:
    """Read and decode one record file."""
    path = Path(path)
    with open(path, encoding="utf-8", newline="") as f:
        text = f.read()
    return decode(text, expected_type, path)


def write_record(path: Path, entity: Entity) -> Entity:
    """Encode an entity and replace the file at path with it."""
    path = Path(path)
    atomic_write_text(path, encode(entity))
    entity.file_path = path
    logger.debug("Record written", record_id=entity.id, path=str(path))
    return entity


def update(path: Path, fields: dict[str, Any], expected_type: RecordType | None = None) -> Entity:
    """Merge fields into the record at path and rewrite the whole file.

    Fields are merged last-write-wins, ``updated_date`` is forced to now and
    the body is kept byte-for-byte unless ``body`` is one of the fields. The
    merged record is validated before anything is written.

    Raises:
        ImmutableFieldError: fields try to change the record id
        MalformedRecord: the merged record is invalid
    """
    path = Path(path)
    current = read_record(path, expected_type)
    id_field = current.record_type.id_field

    metadata = to_metadata(current)
    body = current.body
    for key, value in fields.items():
        if key in ("id", id_field):
            if value != current.id:
                raise ImmutableFieldError(current.id, id_field)
            continue
        if key == "body":
            body = value
            continue
        if key in ("file_path", "extra"):
            raise ValueError(f"{key} cannot be updated")
        metadata[key] = value
    metadata["updated_date"] = now_iso()

    updated = from_metadata(type(current), metadata, body, path)
    write_record(path, updated)
    logger.debug("Record updated", record_id=updated.id, fields=sorted(fields))
    return updated
