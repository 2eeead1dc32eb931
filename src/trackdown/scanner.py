"""Bulk loading of record files from category directories."""

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from trackdown.codec import read_record
from trackdown.errors import RecordError
from trackdown.models import Entity, RecordType

logger = structlog.get_logger()


@dataclass
class ScanWarning:
    """A file that could not be loaded during a bulk scan."""

    path: Path
    message: str
    fields: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return self.message


@dataclass
class ScanResult:
    items: list[Entity] = field(default_factory=list)
    warnings: list[ScanWarning] = field(default_factory=list)


def load_record(path: Path, record_type: RecordType) -> tuple[Entity | None, ScanWarning | None]:
    """Decode one file, turning a decode or read failure into a warning."""
    try:
        return read_record(path, record_type), None
    except RecordError as e:
        logger.warning("Skipping invalid record", path=str(path), error=str(e))
        return None, ScanWarning(path=path, message=str(e), fields=e.fields)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Skipping unreadable record", path=str(path), error=str(e))
        return None, ScanWarning(path=path, message=f"{path}: {e}")


def record_files(category_dir: Path, extension: str = ".md") -> list[Path]:
    """Candidate record files directly inside category_dir, sorted by name."""
    category_dir = Path(category_dir)
    if not category_dir.is_dir():
        return []
    return sorted(p for p in category_dir.iterdir() if p.is_file() and p.name.endswith(extension))


def count_record_files(category_dir: Path, extension: str = ".md") -> int:
    return len(record_files(category_dir, extension))


def scan(category_dir: Path, record_type: RecordType, extension: str = ".md") -> ScanResult:
    """Decode every record file in a category directory.

    A file that fails to decode is reported as a warning and skipped; the
    scan itself never raises for a bad file.

    Args:
        category_dir: Directory to scan (not recursive)
        record_type: Type every file in the directory must decode as
        extension: Record file extension

    Returns:
        Loaded entities plus one warning per rejected file
    """
    result = ScanResult()
    for path in record_files(category_dir, extension):
        entity, warning = load_record(path, record_type)
        if warning is not None:
            result.warnings.append(warning)
        else:
            result.items.append(entity)

    logger.debug(
        "Scanned category", directory=str(category_dir), items=len(result.items), warnings=len(result.warnings)
    )
    return result


def scan_all(directories: dict[RecordType, Path], extension: str = ".md") -> dict[RecordType, ScanResult]:
    """Scan the directory of every record type."""
    return {record_type: scan(directory, record_type, extension) for record_type, directory in directories.items()}


def find_record(category_dir: Path, record_type: RecordType, record_id: str, extension: str = ".md") -> Entity | None:
    """Find one record by id, trying files named after the id before a full scan."""
    named = [
        p
        for p in record_files(category_dir, extension)
        if p.name.startswith(f"{record_id}-") or p.name == f"{record_id}{extension}"
    ]
    for path in named:
        try:
            entity = read_record(path, record_type)
        except (RecordError, OSError, UnicodeDecodeError):
            continue
        if entity.id == record_id:
            return entity

    for entity in scan(category_dir, record_type, extension).items:
        if entity.id == record_id:
            return entity
    return None
