"""Exception hierarchy for trackdown."""

from pathlib import Path


class TrackdownError(Exception):
    """Base class for every error raised by trackdown."""


class ConfigError(TrackdownError):
    """The project configuration could not be loaded, validated or saved."""


class RecordError(TrackdownError):
    """A record file could not be turned into an entity.

    Attributes:
        path: File the record was read from (None for in-memory text)
        fields: Names of the missing or invalid fields
    """

    def __init__(self, message: str, path: Path | str | None = None, fields: list[str] | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self.fields = list(fields or [])
        location = str(self.path) if self.path is not None else "<text>"
        super().__init__(f"{location}: {message}")


class MalformedRecord(RecordError):
    """Metadata block absent, unparsable, or missing/invalid mandatory fields."""


class UnknownRecordType(RecordError):
    """Metadata block parses but matches no record type's mandatory fields."""


class ImmutableFieldError(TrackdownError):
    """An update tried to change a record identifier."""

    def __init__(self, record_id: str, field: str) -> None:
        self.record_id = record_id
        self.field = field
        super().__init__(f"{record_id}: field '{field}' is immutable")


class NotFound(TrackdownError):
    """A requested id does not resolve to any record."""

    def __init__(self, record_id: str, record_type: str | None = None) -> None:
        self.record_id = record_id
        self.record_type = record_type
        kind = record_type or "record"
        super().__init__(f"{kind} {record_id} not found")


class DanglingReference(TrackdownError):
    """A parent id field points at a record that does not exist."""

    def __init__(self, record_id: str, field: str, target: str) -> None:
        self.record_id = record_id
        self.field = field
        self.target = target
        super().__init__(f"{record_id}: {field} references missing record {target}")


class InvalidTransition(TrackdownError):
    """A pull request status change was rejected."""

    def __init__(self, pr_id: str, from_status: str, to_status: str, reasons: list[str] | None = None) -> None:
        self.pr_id = pr_id
        self.from_status = from_status
        self.to_status = to_status
        self.reasons = list(reasons or [])
        detail = "; ".join(self.reasons) if self.reasons else "transition not allowed"
        super().__init__(f"{pr_id}: cannot move from '{from_status}' to '{to_status}': {detail}")


class IndexInconsistent(TrackdownError):
    """The index disagrees with the record files and needs a rebuild."""
