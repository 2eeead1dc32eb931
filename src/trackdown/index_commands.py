"""Index maintenance commands for trackdown CLI."""

import asyncio

from cyclopts import App

from trackdown.errors import NotFound

index_app = App(name="index", help="Maintain the record index")


@index_app.command
def rebuild() -> None:
    """Rebuild the index from the record files."""
    from trackdown.cli import get_store

    store = get_store()
    result = store.index.rebuild_index()
    print(f"Indexed {result.total} record(s)")
    for warning in result.warnings:
        print(f"warning: {warning}")


@index_app.command
def validate() -> None:
    """Check the index against the record files."""
    from trackdown.cli import get_store

    store = get_store()
    health = store.index.validate_index()
    for type_name, (indexed, on_disk) in health.counts.items():
        print(f"{type_name}: {indexed} indexed, {on_disk} on disk")
    if health.healthy:
        print("Index is healthy")
        return
    print("Index needs a rebuild:")
    for problem in health.problems:
        print(f"  {problem}")


@index_app.command
def update(*record_ids: str) -> None:
    """Refresh the index entries of the given records."""
    from trackdown.cli import get_store

    store = get_store()
    refs = []
    for record_id in record_ids:
        record_type = store.repository.type_of(record_id)
        if record_type is None:
            raise NotFound(record_id)
        refs.append((record_type, record_id))

    entries = asyncio.run(store.index.update_items(refs))
    for (_, record_id), entry in zip(refs, entries, strict=True):
        print(f"{record_id}: {'updated' if entry else 'removed'}")


@index_app.command
def stats() -> None:
    """Show totals from the index."""
    from trackdown.cli import get_store

    store = get_store()
    summary = store.index.stats()
    print(f"Total: {summary['total']} ({summary['completion_rate']}% completed)")
    for type_name, count in summary["by_type"].items():
        print(f"  {type_name}: {count}")
    if summary["invalid"]:
        print(f"Invalid files: {summary['invalid']}")
