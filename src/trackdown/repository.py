"""Read access to records, through the index when it can be trusted.

Record files always win over the index. When an indexed path is gone or
holds a different record, the repository reads the files directly and
schedules an index rebuild.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

from trackdown.codec import read_record
from trackdown.config import ProjectConfig
from trackdown.errors import NotFound, RecordError
from trackdown.ids import type_for_id
from trackdown.index import IndexEntry, IndexManager
from trackdown.models import Entity, RecordType
from trackdown.paths import ResolvedPaths
from trackdown.scanner import ScanWarning, count_record_files, find_record, load_record, scan

logger = structlog.get_logger()

# Predicate over an IndexEntry or an Entity; both carry the summary fields.
Summary = Callable[[Any], bool]


class RecordRepository:
    """Loads records of a project.

    Args:
        paths: Resolved project directories
        config: Project configuration (id prefixes)
        index: Index to consult first; without one every read scans the files
    """

    def __init__(self, paths: ResolvedPaths, config: ProjectConfig, index: IndexManager | None = None) -> None:
        self.paths = paths
        self.config = config
        self.index = index
        self._warnings: dict[Path, ScanWarning] = {}

    @property
    def warnings(self) -> list[ScanWarning]:
        """Files skipped by scans made through this repository."""
        return list(self._warnings.values())

    def _read_indexed(self, record_type: RecordType, record_id: str) -> Entity | None:
        if self.index is None:
            return None
        entry = self.index.get_entry(record_type, record_id)
        if entry is None:
            return None
        return self._read_entry(record_type, record_id, entry)

    def _read_entry(self, record_type: RecordType, record_id: str, entry: IndexEntry) -> Entity | None:
        path = self.paths.project_root / entry.path
        try:
            entity = read_record(path, record_type)
        except FileNotFoundError:
            self.index.mark_stale(f"{record_id}: indexed file {entry.path} no longer exists")
            return None
        except (RecordError, OSError, UnicodeDecodeError) as e:
            self.index.mark_stale(f"{record_id}: indexed file {entry.path} cannot be read: {e}")
            return None

        if entity.id != record_id:
            self.index.mark_stale(f"{entry.path} now holds {entity.id}, not {record_id}")
            return None
        return entity

    def get(self, record_type: RecordType, record_id: str) -> Entity:
        """Load one record.

        Raises:
            NotFound: no file of that type holds the id
        """
        record_type = RecordType(record_type)
        entity = self._read_indexed(record_type, record_id)
        if entity is not None:
            return entity

        entity = find_record(self.paths.directory_for(record_type), record_type, record_id, self.paths.extension)
        if entity is None:
            raise NotFound(record_id, record_type.value)
        if self.index is not None and not self.index.rebuild_pending:
            self.index.mark_stale(f"{record_id} is missing from the index")
        return entity

    def type_of(self, record_id: str) -> RecordType | None:
        return type_for_id(record_id, self.config.naming_conventions)

    def find(self, record_id: str) -> Entity:
        """Load a record of any type, inferring the type from the id prefix.

        Raises:
            NotFound: the id resolves to no record
        """
        record_type = self.type_of(record_id)
        candidates = [record_type] if record_type is not None else list(RecordType)
        for candidate in candidates:
            try:
                return self.get(candidate, record_id)
            except NotFound:
                continue
        raise NotFound(record_id)

    def _entry_is_current(self, entry: IndexEntry) -> bool:
        """Whether the indexed file still has the size and mtime the entry was built from."""
        try:
            stat = (self.paths.project_root / entry.path).stat()
        except OSError:
            return False
        return stat.st_mtime == entry.last_modified and stat.st_size == entry.file_size

    def _all_indexed(self, record_type: RecordType, where: Summary | None) -> list[Entity] | None:
        if self.index is None:
            return None
        snapshot = self.index.load()
        if snapshot is None:
            self.index.mark_stale("index missing or unusable")
            return None

        directory = self.paths.directory_for(record_type)
        indexed = snapshot.entries[record_type.value]
        invalid = sorted(set(snapshot.invalid[record_type.value]))
        expected = len(indexed) + len(invalid)
        on_disk = count_record_files(directory, self.paths.extension)
        if expected != on_disk:
            self.index.mark_stale(f"{record_type.category.value}: {expected} indexed, {on_disk} on disk")
            return None

        items = []
        for record_id, entry in indexed.items():
            if where is not None:
                # Entries are only trusted for filtering while their file is unchanged.
                if not self._entry_is_current(entry):
                    self.index.mark_stale(f"{record_id}: {entry.path} changed since it was indexed")
                    return None
                if not where(entry):
                    continue
            entity = self._read_entry(record_type, record_id, entry)
            if entity is None:
                return None
            items.append(entity)

        for relative in invalid:
            path = self.paths.project_root / relative
            entity, warning = load_record(path, record_type)
            if warning is None:
                self.index.mark_stale(f"{relative} now decodes as {entity.id}")
                return None
            self._warnings[path] = warning
        return items

    def all(self, record_type: RecordType, where: Summary | None = None) -> list[Entity]:
        """Every valid record of one type, optionally narrowed by a summary filter.

        Args:
            record_type: Type of records to load
            where: Predicate over the fields an index entry shares with a record
                (status, priority, assignee, tags, parent ids, dates); with a
                usable index only matching files are decoded
        """
        record_type = RecordType(record_type)
        items = self._all_indexed(record_type, where)
        if items is not None:
            return items

        result = scan(self.paths.directory_for(record_type), record_type, self.paths.extension)
        for warning in result.warnings:
            self._warnings[warning.path] = warning
        logger.debug("Loaded records by scan", record_type=record_type.value, count=len(result.items))
        return [e for e in result.items if where is None or where(e)]

    def everything(self) -> dict[RecordType, list[Entity]]:
        return {record_type: self.all(record_type) for record_type in RecordType}
