"""Index of record summaries kept in ``.trackdown/index.json``.

The index is a rebuildable cache over the record files, never the source of
truth. A missing, corrupt or outdated index file means "rebuild", not
failure.
"""

import asyncio
import dataclasses
import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from trackdown.codec import atomic_write_text, now_iso, read_record
from trackdown.errors import IndexInconsistent, RecordError
from trackdown.models import Entity, RecordType
from trackdown.paths import ResolvedPaths
from trackdown.scanner import ScanWarning, count_record_files, record_files, scan, scan_all

logger = structlog.get_logger()

SCHEMA_VERSION = 1


@dataclass
class IndexEntry:
    """Summary of one record file."""

    id: str
    type: str
    path: str
    title: str = ""
    status: str = "planning"
    priority: str = "medium"
    assignee: str = "unassigned"
    tags: list[str] = field(default_factory=list)
    epic_id: str | None = None
    issue_id: str | None = None
    pr_status: str | None = None
    dependencies: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    created_date: str | None = None
    updated_date: str | None = None
    last_modified: float = 0.0
    file_size: int = 0

    @classmethod
    def from_entity(cls, entity: Entity, path: str) -> "IndexEntry":
        stat = entity.file_path.stat() if entity.file_path else None
        return cls(
            id=entity.id,
            type=entity.record_type.value,
            path=path,
            title=entity.title,
            status=entity.status,
            priority=entity.priority,
            assignee=entity.assignee,
            tags=list(entity.tags),
            epic_id=getattr(entity, "epic_id", None),
            issue_id=getattr(entity, "issue_id", None),
            pr_status=getattr(entity, "pr_status", None),
            dependencies=list(entity.dependencies),
            blocked_by=list(entity.blocked_by),
            blocks=list(entity.blocks),
            created_date=entity.created_date,
            updated_date=entity.updated_date,
            last_modified=stat.st_mtime if stat else 0.0,
            file_size=stat.st_size if stat else 0,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class IndexSnapshot:
    tasks_root: str
    entries: dict[str, dict[str, IndexEntry]] = field(default_factory=dict)
    invalid: dict[str, list[str]] = field(default_factory=dict)
    updated_at: str = ""
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self) -> None:
        for record_type in RecordType:
            self.entries.setdefault(record_type.value, {})
            self.invalid.setdefault(record_type.value, [])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexSnapshot":
        entries = {
            type_name: {record_id: IndexEntry.from_dict(entry) for record_id, entry in items.items()}
            for type_name, items in data["entries"].items()
        }
        invalid = {type_name: list(paths) for type_name, paths in data.get("invalid", {}).items()}
        return cls(
            tasks_root=data["tasks_root"],
            entries=entries,
            invalid=invalid,
            updated_at=data.get("updated_at", ""),
            schema_version=data["schema_version"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "tasks_root": self.tasks_root,
            "updated_at": self.updated_at,
            "entries": {
                type_name: {record_id: items[record_id].to_dict() for record_id in sorted(items)}
                for type_name, items in self.entries.items()
            },
            "invalid": {type_name: sorted(set(paths)) for type_name, paths in self.invalid.items()},
        }

    def get(self, record_type: RecordType, record_id: str) -> IndexEntry | None:
        return self.entries[record_type.value].get(record_id)

    def all_entries(self) -> list[IndexEntry]:
        return [entry for items in self.entries.values() for entry in items.values()]


@dataclass
class RebuildResult:
    snapshot: IndexSnapshot
    warnings: list[ScanWarning] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.snapshot.all_entries())


@dataclass
class IndexHealth:
    """Outcome of a cheap index health check.

    Attributes:
        counts: Per record type, (indexed files, files on disk)
    """

    exists: bool = False
    parsable: bool = False
    version_ok: bool = False
    counts: dict[str, tuple[int, int]] = field(default_factory=dict)
    problems: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.exists and self.parsable and self.version_ok and not self.problems


class IndexManager:
    """Maintains the index file for one project.

    Args:
        paths: Resolved project directories; the index lives at ``paths.index_file``
    """

    def __init__(self, paths: ResolvedPaths) -> None:
        self.paths = paths
        self.rebuild_pending = False
        self.stale_reasons: list[str] = []

    @property
    def index_file(self) -> Path:
        return self.paths.index_file

    def _directory(self, record_type: RecordType) -> Path:
        return self.paths.directory_for(record_type)

    def _relative(self, path: Path) -> str:
        return self.paths.relative(path)

    def _parse(self, data: Any) -> IndexSnapshot:
        if not isinstance(data, dict):
            raise IndexInconsistent("index file does not hold a mapping")
        if data.get("schema_version") != SCHEMA_VERSION:
            raise IndexInconsistent(f"unsupported index schema version {data.get('schema_version')!r}")
        try:
            snapshot = IndexSnapshot.from_dict(data)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise IndexInconsistent(f"index file has an invalid layout: {e}") from e
        if snapshot.tasks_root != str(self.paths.tasks_root):
            raise IndexInconsistent(f"index was built for tasks root {snapshot.tasks_root}")
        return snapshot

    def load(self) -> IndexSnapshot | None:
        """Read the index file.

        Returns:
            The snapshot, or None when the index is missing or unusable and
            needs a rebuild
        """
        try:
            text = self.index_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Index file missing, needs rebuild", index_file=str(self.index_file))
            return None
        except OSError as e:
            logger.warning("Index file unreadable, needs rebuild", index_file=str(self.index_file), error=str(e))
            return None

        try:
            return self._parse(json.loads(text))
        except json.JSONDecodeError as e:
            logger.warning("Index file corrupt, needs rebuild", index_file=str(self.index_file), error=str(e))
        except IndexInconsistent as e:
            logger.warning("Index file unusable, needs rebuild", index_file=str(self.index_file), error=str(e))
        return None

    def _save(self, snapshot: IndexSnapshot) -> None:
        snapshot.updated_at = now_iso()
        atomic_write_text(self.index_file, json.dumps(snapshot.to_dict(), indent=2) + "\n")
        logger.debug("Index saved", index_file=str(self.index_file))

    def _load_or_rebuild(self) -> IndexSnapshot:
        snapshot = self.load()
        if snapshot is None:
            snapshot = self.rebuild_index().snapshot
        return snapshot

    def _find_record(
        self, record_type: RecordType, record_id: str, snapshot: IndexSnapshot
    ) -> tuple[Entity | None, list[Path]]:
        """Locate and decode the file holding record_id.

        Tries the indexed path, then files named after the id, then every
        file of the category. Returns the entity (or None) and any files
        that failed to decode along the way.
        """
        directory = self._directory(record_type)
        extension = self.paths.extension
        candidates: list[Path] = []
        entry = snapshot.get(record_type, record_id)
        if entry is not None:
            candidates.append(self.paths.project_root / entry.path)
        candidates.extend(
            p for p in record_files(directory, extension) if p.name.startswith(f"{record_id}-") or p.stem == record_id
        )

        invalid: list[Path] = []
        seen: set[Path] = set()
        for path in candidates:
            if path in seen or not path.is_file():
                continue
            seen.add(path)
            try:
                entity = read_record(path, record_type)
            except RecordError as e:
                logger.warning("Skipping invalid record", path=str(path), error=str(e))
                invalid.append(path)
                continue
            if entity.id == record_id:
                return entity, invalid

        result = scan(directory, record_type, extension)
        invalid.extend(w.path for w in result.warnings)
        for entity in result.items:
            if entity.id == record_id:
                return entity, invalid
        return None, invalid

    def _apply(
        self,
        snapshot: IndexSnapshot,
        record_type: RecordType,
        record_id: str,
        entity: Entity | None,
        invalid: list[Path],
    ) -> IndexEntry | None:
        invalid_paths = [p for p in snapshot.invalid[record_type.value] if (self.paths.project_root / p).is_file()]
        snapshot.invalid[record_type.value] = invalid_paths
        for path in invalid:
            relative = self._relative(path)
            if relative not in invalid_paths:
                invalid_paths.append(relative)

        items = snapshot.entries[record_type.value]
        if entity is None:
            if items.pop(record_id, None) is not None:
                logger.info("Record file gone, index entry removed", record_type=record_type.value, record_id=record_id)
            return None

        entry = IndexEntry.from_entity(entity, self._relative(entity.file_path))
        if entry.path in invalid_paths:
            invalid_paths.remove(entry.path)
        items[record_id] = entry
        return entry

    def update_item(self, record_type: RecordType, record_id: str) -> IndexEntry | None:
        """Re-read one record file and upsert its index entry.

        Calling it again without a file change yields the same entry. When
        the file no longer exists the entry is dropped and None is returned.
        """
        record_type = RecordType(record_type)
        snapshot = self._load_or_rebuild()
        entity, invalid = self._find_record(record_type, record_id, snapshot)
        entry = self._apply(snapshot, record_type, record_id, entity, invalid)
        self._save(snapshot)
        logger.debug("Index entry updated", record_type=record_type.value, record_id=record_id)
        return entry

    async def update_items(self, refs: Iterable[tuple[RecordType, str]]) -> list[IndexEntry | None]:
        """Update several entries, decoding their files concurrently.

        Each reference touches its own file and its own index key; results are
        applied in order and the index is written once.
        """
        refs = [(RecordType(record_type), record_id) for record_type, record_id in refs]
        snapshot = self._load_or_rebuild()
        found = await asyncio.gather(
            *(asyncio.to_thread(self._find_record, record_type, record_id, snapshot) for record_type, record_id in refs)
        )

        entries = [
            self._apply(snapshot, record_type, record_id, entity, invalid)
            for (record_type, record_id), (entity, invalid) in zip(refs, found, strict=True)
        ]
        self._save(snapshot)
        logger.debug("Index entries updated", count=len(refs))
        return entries

    def remove_item(self, record_type: RecordType, record_id: str) -> bool:
        """Drop an entry without touching any record file."""
        record_type = RecordType(record_type)
        snapshot = self.load()
        if snapshot is None:
            # A rebuild cannot include the removed record once its file is gone.
            self.rebuild_index()
            return False
        removed = snapshot.entries[record_type.value].pop(record_id, None)
        if removed is None:
            return False
        self._save(snapshot)
        logger.debug("Index entry removed", record_type=record_type.value, record_id=record_id)
        return True

    def rebuild_index(self) -> RebuildResult:
        """Scan every category and atomically replace the index file."""
        snapshot = IndexSnapshot(tasks_root=str(self.paths.tasks_root))
        result = RebuildResult(snapshot=snapshot)

        directories = {record_type: self._directory(record_type) for record_type in RecordType}
        for record_type, scanned in scan_all(directories, self.paths.extension).items():
            result.warnings.extend(scanned.warnings)
            invalid = snapshot.invalid[record_type.value]
            invalid.extend(self._relative(w.path) for w in scanned.warnings)

            items = snapshot.entries[record_type.value]
            for entity in scanned.items:
                if entity.id in items:
                    message = f"{entity.file_path}: duplicate id {entity.id} (already in {items[entity.id].path})"
                    logger.warning("Duplicate record id", record_id=entity.id, path=str(entity.file_path))
                    result.warnings.append(ScanWarning(path=entity.file_path, message=message))
                    invalid.append(self._relative(entity.file_path))
                    continue
                items[entity.id] = IndexEntry.from_entity(entity, self._relative(entity.file_path))

        self._save(snapshot)
        self.rebuild_pending = False
        self.stale_reasons.clear()
        logger.info("Index rebuilt", entries=result.total, warnings=len(result.warnings))
        return result

    def validate_index(self) -> IndexHealth:
        """Check the index file exists, parses and matches per-category file counts."""
        health = IndexHealth(exists=self.index_file.is_file())
        if not health.exists:
            health.problems.append(f"index file {self.index_file} does not exist")
            return health

        try:
            data = json.loads(self.index_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            health.problems.append(f"index file {self.index_file} is not readable: {e}")
            return health
        health.parsable = True

        if not isinstance(data, dict) or data.get("schema_version") != SCHEMA_VERSION:
            version = data.get("schema_version") if isinstance(data, dict) else None
            health.problems.append(f"unsupported index schema version {version!r}")
            return health
        health.version_ok = True

        try:
            snapshot = self._parse(data)
        except IndexInconsistent as e:
            health.problems.append(str(e))
            return health

        for record_type in RecordType:
            indexed = len(snapshot.entries[record_type.value]) + len(set(snapshot.invalid[record_type.value]))
            on_disk = count_record_files(self._directory(record_type), self.paths.extension)
            health.counts[record_type.value] = (indexed, on_disk)
            if indexed != on_disk:
                health.problems.append(
                    f"{record_type.category.value}: {indexed} file(s) indexed but {on_disk} on disk"
                )

        logger.debug("Index validated", healthy=health.healthy, problems=health.problems)
        return health

    def mark_stale(self, reason: str) -> None:
        """Record that the index disagrees with the files; a rebuild is scheduled."""
        self.rebuild_pending = True
        self.stale_reasons.append(reason)
        logger.warning("Index out of date, rebuild scheduled", reason=reason)

    def rebuild_if_pending(self) -> RebuildResult | None:
        if not self.rebuild_pending:
            return None
        return self.rebuild_index()

    def get_entry(self, record_type: RecordType, record_id: str) -> IndexEntry | None:
        snapshot = self.load()
        if snapshot is None:
            return None
        return snapshot.get(RecordType(record_type), record_id)

    def stats(self) -> dict[str, Any]:
        """Totals and status/priority breakdowns computed from the index."""
        snapshot = self._load_or_rebuild()
        entries = snapshot.all_entries()
        by_status: dict[str, int] = {}
        by_priority: dict[str, int] = {}
        for entry in entries:
            by_status[entry.status] = by_status.get(entry.status, 0) + 1
            by_priority[entry.priority] = by_priority.get(entry.priority, 0) + 1

        completed = by_status.get("completed", 0)
        return {
            "total": len(entries),
            "by_type": {type_name: len(items) for type_name, items in snapshot.entries.items()},
            "by_status": by_status,
            "by_priority": by_priority,
            "invalid": sum(len(paths) for paths in snapshot.invalid.values()),
            "completion_rate": round(completed / len(entries) * 100, 1) if entries else 0.0,
            "updated_at": snapshot.updated_at,
        }
