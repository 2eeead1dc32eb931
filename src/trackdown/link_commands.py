"""Link management commands for trackdown CLI."""

from cyclopts import App

link_app = App(name="link", help="Manage links between records")


@link_app.command
def add(
    source_id: str,
    *target_ids: str,
    type: str = "dependencies",
) -> None:
    """Add links from source record to target records.

    Args:
        source_id: Record the links start from
        target_ids: Records to link to
        type: blocks, blocked_by or dependencies
    """
    from trackdown.cli import finish, get_store

    store = get_store()
    for target_id in target_ids:
        store.add_link(source_id, target_id, type)
    print(f"Added {len(target_ids)} link(s) from {source_id}")
    finish(store)


@link_app.command
def remove(
    source_id: str,
    *target_ids: str,
    type: str = "dependencies",
) -> None:
    """Remove links from source record to target records."""
    from trackdown.cli import finish, get_store

    store = get_store()
    removed = sum(1 for target_id in target_ids if store.remove_link(source_id, target_id, type))
    print(f"Removed {removed} link(s) from {source_id}")
    finish(store)


@link_app.command(name="list")
def list_links(
    record_id: str,
    type: str | None = None,
) -> None:
    """List all links for a record."""
    from trackdown.cli import finish, get_store

    store = get_store()
    links = store.list_links(record_id, type)

    if not links:
        print(f"No links found for record {record_id}")
        finish(store)
        return

    print(f"Links for record {record_id}:\n")
    for link in links:
        print(f"  {link.source_id} --[{link.link_type}]--> {link.target_id}")
    finish(store)


@link_app.command
def cycles() -> None:
    """Report dependency cycles."""
    from trackdown.cli import finish, get_store
    from trackdown.relationships import RelationshipResolver

    store = get_store()
    found = RelationshipResolver(store.repository).find_cycles()
    if not found:
        print("No dependency cycles")
    for cycle in found:
        print(" -> ".join(cycle))
    finish(store)
