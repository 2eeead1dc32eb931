"""Id allocation and record file naming."""

import json
import re
from pathlib import Path

import structlog

from trackdown.codec import atomic_write_text
from trackdown.config import NamingConventions
from trackdown.models import RecordType
from trackdown.paths import ResolvedPaths
from trackdown.scanner import record_files

logger = structlog.get_logger()

SEQUENCE_WIDTH = 4
SLUG_MAX_LENGTH = 50


def slugify(title: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Lowercase, dash-separated form of a title usable in a file name."""
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:max_length].strip("-")


def record_filename(record_id: str, title: str, extension: str = ".md") -> str:
    slug = slugify(title)
    return f"{record_id}-{slug}{extension}" if slug else f"{record_id}{extension}"


def format_id(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(record_id: str, prefix: str) -> int | None:
    match = re.match(rf"^{re.escape(prefix)}-(\d+)$", record_id)
    return int(match.group(1)) if match else None


def type_for_id(record_id: str, naming: NamingConventions) -> RecordType | None:
    """Record type whose id prefix the id carries, or None."""
    # Longest prefix first so that e.g. "PRJ" never shadows "PR".
    for record_type in sorted(RecordType, key=lambda t: len(naming.prefix(t)), reverse=True):
        if parse_sequence(record_id, naming.prefix(record_type)) is not None:
            return record_type
    return None


class IdAllocator:
    """Hands out sequential ids per record type.

    Counters persist in ``.trackdown/counters.json``. A counter never falls
    behind the highest sequence already used by a file on disk, so a lost or
    stale counters file cannot cause an id to be reused.
    """

    def __init__(self, paths: ResolvedPaths, naming: NamingConventions) -> None:
        self.paths = paths
        self.naming = naming

    @property
    def counters_file(self) -> Path:
        return self.paths.counters_file

    def _load(self) -> dict[str, int]:
        try:
            data = json.loads(self.counters_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Counters file unreadable, recomputing from disk", error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, int) and not isinstance(v, bool)}

    def _save(self, counters: dict[str, int]) -> None:
        atomic_write_text(self.counters_file, json.dumps(counters, indent=2, sort_keys=True) + "\n")

    def highest_on_disk(self, record_type: RecordType) -> int:
        prefix = self.naming.prefix(record_type)
        pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)(?:-|\.|$)")
        highest = 0
        for path in record_files(self.paths.directory_for(record_type), self.paths.extension):
            match = pattern.match(path.name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    def peek(self, record_type: RecordType) -> str:
        """Id the next call to ``next_id`` would return."""
        record_type = RecordType(record_type)
        current = max(self._load().get(record_type.value, 0), self.highest_on_disk(record_type))
        return format_id(self.naming.prefix(record_type), current + 1)

    def next_id(self, record_type: RecordType) -> str:
        record_type = RecordType(record_type)
        counters = self._load()
        sequence = max(counters.get(record_type.value, 0), self.highest_on_disk(record_type)) + 1
        counters[record_type.value] = sequence
        self._save(counters)
        record_id = format_id(self.naming.prefix(record_type), sequence)
        logger.debug("Allocated id", record_type=record_type.value, record_id=record_id)
        return record_id
