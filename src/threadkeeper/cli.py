"""CLI interface for threadkeeper.

Commands:
    setup       - Configure data directory and sync credentials
    init        - Create the local store if it does not exist
    save        - Save a captured thread from a JSON payload
    list        - List saved threads with optional filters
    show        - Show a thread and mark it as viewed
    update      - Edit thread fields
    delete      - Delete a thread
    search      - Relevance-ranked search over threads
    export      - Export a thread as text, json or markdown
    import      - Import threads from a JSON export
    stats       - Show store statistics
    status      - Show store and sync status
    sync        - Push local changes to the sync service
    collection  - Manage collections
    tag         - Manage tags
    user        - Manage local account flags
"""

import functools
import json
import sys
from pathlib import Path

import click

from .client import SyncError
from .config import (
    CONFIG_FILE,
    DEFAULT_DATA_DIR,
    AppConfig,
    SyncConfig,
    config_exists,
    load_config_or_default,
    save_config,
)
from .errors import StoreError
from .export import EXPORT_FORMATS
from .logging_config import setup_logging

STRUCTURED_FIELDS = ("posts", "metadata")


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def handle_errors(func):
    """Turn store and sync failures into an error message and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (StoreError, SyncError, ValueError) as e:
            _fail(str(e))

    return wrapper


def _load_config(ctx) -> AppConfig:
    config = load_config_or_default(ctx.obj["config_path"])
    if ctx.obj.get("data_dir"):
        config.data_dir = ctx.obj["data_dir"]
    return config


def _open_store(ctx):
    """Build the store for this invocation and make sure it is initialized."""
    from .backends import JsonFileBackend
    from .store import ThreadStore

    config = _load_config(ctx)
    store = ThreadStore(
        JsonFileBackend(config.data_dir), max_free_threads=config.max_free_threads
    )
    if not store.initialize():
        _fail(f"Store at {config.data_dir} is unavailable. Run with -v for details.")
    return store


def _preview(text: str, length: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= length else text[: length - 3] + "..."


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", type=click.Path(), default=None, help="Config file path")
@click.option(
    "--data-dir", type=click.Path(), default=None, help="Store directory (overrides config)"
)
@click.pass_context
def main(ctx, verbose, config, data_dir):
    """ThreadKeeper — Save, organize and export social media threads."""
    setup_logging(debug=verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else CONFIG_FILE
    ctx.obj["data_dir"] = Path(data_dir) if data_dir else None


@main.command()
@click.pass_context
def setup(ctx):
    """Configure the data directory and sync credentials."""
    config_path = ctx.obj["config_path"]

    click.echo("ThreadKeeper — Setup")
    click.echo("=" * 40)
    click.echo()

    data_dir = click.prompt("data_dir", default=str(DEFAULT_DATA_DIR))

    click.echo()
    click.echo("(Optional) Sync token for premium accounts — press Enter to skip.")
    token = click.prompt("token", default="", show_default=False, hide_input=True)
    api_url = click.prompt("api_url", default="", show_default=False)

    config = AppConfig(
        data_dir=Path(data_dir).expanduser(),
        sync=SyncConfig(token=token or None, api_url=api_url or None),
    )

    save_config(config, config_path)
    click.echo(f"\nConfig saved to {config_path}")
    click.echo("Run 'threadkeeper init' to create the store.")


@main.command()
@click.pass_context
def init(ctx):
    """Create the local store if it does not exist yet."""
    _open_store(ctx)
    click.echo(f"Store ready at {_load_config(ctx).data_dir}")


@main.command()
@click.argument("capture_file", type=click.Path(allow_dash=True))
@click.pass_context
@handle_errors
def save(ctx, capture_file):
    """Save a captured thread.

    CAPTURE_FILE is a JSON capture payload, or "-" to read from stdin.
    """
    from .capture import load_capture

    try:
        capture = load_capture(capture_file)
    except (OSError, json.JSONDecodeError) as e:
        _fail(f"Cannot read capture {capture_file}: {e}")

    store = _open_store(ctx)
    thread = store.save_thread(capture)
    click.echo(
        f"Saved thread {thread.id} ({len(thread.posts)} posts) "
        f"by @{thread.author_username}"
    )


@main.command("list")
@click.option("--collection", "collection_id", default=None, help="Collection id")
@click.option("--tag", "tags", multiple=True, help="Tag id (repeatable, any matches)")
@click.option("--author", default=None, help="Author username substring")
@click.option("--search", default=None, help="Text contained in any post")
@click.pass_context
@handle_errors
def list_threads(ctx, collection_id, tags, author, search):
    """List saved threads."""
    store = _open_store(ctx)
    threads = store.get_threads(
        collection_id=collection_id, tags=list(tags), author=author, search=search
    )
    if not threads:
        click.echo("No threads found.")
        return

    for thread in sorted(threads.values(), key=lambda t: t.saved_at, reverse=True):
        first = thread.posts[0].text if thread.posts else ""
        click.echo(
            f"{thread.id}  @{thread.author_username}  "
            f"{len(thread.posts)} posts  {thread.saved_at.strftime('%Y-%m-%d')}  "
            f"{_preview(first, 50)}"
        )


@main.command()
@click.argument("thread_id")
@click.pass_context
@handle_errors
def show(ctx, thread_id):
    """Show a thread and mark it as viewed."""
    from .export import render_text

    store = _open_store(ctx)
    thread = store.touch_thread(thread_id)
    if thread is None:
        _fail(f"Thread {thread_id} not found")

    click.echo(render_text(thread), nl=False)
    tags = store.get_thread_tags(thread_id)
    collection = store.get_collection(thread.collection_id)
    click.echo(f"Collection: {collection.name if collection else thread.collection_id}")
    click.echo(f"Tags: {', '.join(t.name for t in tags) if tags else '(none)'}")


@main.command()
@click.argument("thread_id")
@click.option(
    "--set", "assignments", multiple=True, required=True, help="field=value (repeatable)"
)
@click.pass_context
@handle_errors
def update(ctx, thread_id, assignments):
    """Edit fields of a saved thread.

    Structured fields (posts, metadata) take a JSON value.
    """
    updates = {}
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            _fail(f"Expected field=value, got {assignment!r}")
        if key in STRUCTURED_FIELDS:
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                _fail(f"{key} expects a JSON value: {e}")
        updates[key] = value

    store = _open_store(ctx)
    thread = store.update_thread(thread_id, updates)
    click.echo(f"Updated thread {thread.id}")


@main.command()
@click.argument("thread_id")
@click.pass_context
@handle_errors
def delete(ctx, thread_id):
    """Delete a saved thread."""
    store = _open_store(ctx)
    if not store.delete_thread(thread_id):
        _fail(f"Thread {thread_id} not found")
    click.echo(f"Deleted thread {thread_id}")


@main.command()
@click.argument("query")
@click.option("--limit", type=int, default=None, help="Maximum results")
@click.option("--offset", type=int, default=0, help="Results to skip")
@click.pass_context
@handle_errors
def search(ctx, query, limit, offset):
    """Search threads by post text and author."""
    store = _open_store(ctx)
    results = store.search_threads(query, limit=limit, offset=offset)
    if not results:
        click.echo("No matches.")
        return

    for result in results:
        thread = result.thread
        click.echo(f"[{result.score}] {thread.id}  @{thread.author_username}")
        for match in result.matches:
            if match.type == "post":
                click.echo(f"    post {match.index + 1}: {match.snippet}")
            else:
                click.echo(f"    {match.type}: {match.value}")


@main.command()
@click.argument("thread_id")
@click.option(
    "--format", "fmt", type=click.Choice(EXPORT_FORMATS), default="text", help="Output format"
)
@click.option("-o", "--output", type=click.Path(), default=None, help="Output file")
@click.pass_context
@handle_errors
def export(ctx, thread_id, fmt, output):
    """Export a thread as text, json or markdown."""
    store = _open_store(ctx)
    content = store.export_thread(thread_id, fmt)
    if content is None:
        _fail(f"Thread {thread_id} not found")

    if output:
        Path(output).write_text(content, encoding="utf-8")
        click.echo(f"Exported {thread_id} to {output}", err=True)
    else:
        click.echo(content, nl=not content.endswith("\n"))


@main.command("import")
@click.argument("input_file", type=click.Path(exists=True))
@click.pass_context
@handle_errors
def import_threads(ctx, input_file):
    """Import threads from a JSON export (one thread or a list)."""
    try:
        data = json.loads(Path(input_file).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {input_file}: {e}")

    records = data if isinstance(data, list) else [data]
    store = _open_store(ctx)
    for record in records:
        try:
            store.import_thread(record)
        except (KeyError, TypeError) as e:
            _fail(f"Malformed thread record: {e}")
    click.echo(f"Imported {len(records)} threads.")


@main.command()
@click.pass_context
@handle_errors
def stats(ctx):
    """Show store statistics."""
    store = _open_store(ctx)
    s = store.get_stats()

    click.echo("ThreadKeeper — Stats")
    click.echo("=" * 40)
    click.echo(f"Threads: {s.total_threads}")
    click.echo(f"Posts: {s.total_posts}")
    click.echo(f"Collections: {s.total_collections}")
    click.echo(f"Tags: {s.total_tags}")
    click.echo(f"Storage used: {s.storage_used:,} bytes")
    click.echo(
        f"Saved today / week / month: "
        f"{s.saved_today} / {s.saved_this_week} / {s.saved_this_month}"
    )
    click.echo(f"Average thread length: {s.avg_thread_length} posts")
    if s.top_authors:
        click.echo("Top authors:")
        for entry in s.top_authors:
            click.echo(f"  @{entry.author}: {entry.count}")


@main.command()
@click.pass_context
@handle_errors
def status(ctx):
    """Show store and sync status."""
    config_path = ctx.obj["config_path"]
    has_config = config_exists(config_path)
    config = _load_config(ctx)

    click.echo("ThreadKeeper — Status")
    click.echo("=" * 40)
    click.echo(f"Config: {'Found' if has_config else 'Not configured'} ({config_path})")
    click.echo(f"Data directory: {config.data_dir}")

    store = _open_store(ctx)
    metadata = store.get_metadata()
    if store.is_premium():
        click.echo(f"Threads: {metadata.thread_count} (premium, unlimited)")
    else:
        click.echo(f"Threads: {metadata.thread_count} / {store.max_free_threads}")

    sync_state = store.get_sync_state()
    click.echo(f"Sync: {'enabled' if sync_state.sync_enabled else 'disabled'}")
    click.echo(f"Pending changes: {len(sync_state.pending_changes)}")
    last_sync = sync_state.last_sync
    click.echo(
        f"Last sync: {last_sync.strftime('%Y-%m-%d %H:%M UTC') if last_sync else 'never'}"
    )


@main.command()
@click.pass_context
@handle_errors
def sync(ctx):
    """Push local changes to the sync service (premium only)."""
    from .client import SyncClient
    from .sync import sync_store

    config = _load_config(ctx)
    if not config.sync.token:
        _fail("No sync token configured. Run 'threadkeeper setup' first.")

    store = _open_store(ctx)
    with SyncClient(config.sync.token, api_url=config.sync.api_url) as client:
        synced = sync_store(store, client)
    if synced:
        click.echo(f"Synced {synced} threads.")
    else:
        click.echo("Nothing to sync.")


# ── Collections ──────────────────────────────────────────────────


@main.group()
def collection():
    """Manage collections."""


@collection.command("list")
@click.pass_context
@handle_errors
def collection_list(ctx):
    """List collections."""
    store = _open_store(ctx)
    for c in store.get_collections().values():
        parent = f"  (in {c.parent_id})" if c.parent_id else ""
        click.echo(f"{c.id}  {c.name}  {len(c.thread_ids)} threads{parent}")


@collection.command("create")
@click.argument("name")
@click.option("--description", default="", help="Collection description")
@click.option("--parent", "parent_id", default=None, help="Parent collection id")
@click.pass_context
@handle_errors
def collection_create(ctx, name, description, parent_id):
    """Create a collection."""
    store = _open_store(ctx)
    c = store.create_collection(name, description, parent_id=parent_id)
    click.echo(f"Created collection {c.id}")


@collection.command("rename")
@click.argument("collection_id")
@click.argument("name")
@click.pass_context
@handle_errors
def collection_rename(ctx, collection_id, name):
    """Rename a collection."""
    store = _open_store(ctx)
    store.update_collection(collection_id, {"name": name})
    click.echo(f"Renamed collection {collection_id} to {name}")


@collection.command("delete")
@click.argument("collection_id")
@click.pass_context
@handle_errors
def collection_delete(ctx, collection_id):
    """Delete a collection; its threads move to the default collection."""
    store = _open_store(ctx)
    if not store.delete_collection(collection_id):
        _fail(f"Collection {collection_id} not found")
    click.echo(f"Deleted collection {collection_id}")


@collection.command("move")
@click.argument("thread_id")
@click.argument("collection_id")
@click.pass_context
@handle_errors
def collection_move(ctx, thread_id, collection_id):
    """Move a thread into a collection."""
    store = _open_store(ctx)
    if not store.add_thread_to_collection(thread_id, collection_id):
        _fail("Unknown thread or collection")
    click.echo(f"Moved {thread_id} to {collection_id}")


@collection.command("remove")
@click.argument("thread_id")
@click.argument("collection_id")
@click.pass_context
@handle_errors
def collection_remove(ctx, thread_id, collection_id):
    """Return a thread from a collection to the default collection."""
    store = _open_store(ctx)
    if not store.remove_thread_from_collection(thread_id, collection_id):
        _fail(f"Thread {thread_id} is not in collection {collection_id}")
    click.echo(f"Removed {thread_id} from {collection_id}")


# ── Tags ─────────────────────────────────────────────────────────


@main.group()
def tag():
    """Manage tags."""


@tag.command("list")
@click.pass_context
@handle_errors
def tag_list(ctx):
    """List tags with usage counts."""
    store = _open_store(ctx)
    tags = store.get_tags()
    if not tags:
        click.echo("No tags.")
        return
    for t in tags.values():
        click.echo(f"{t.id}  {t.name}  {t.color}  {t.thread_count} threads")


@tag.command("create")
@click.argument("name")
@click.option("--color", default=None, help="Hex color, e.g. #FF6B6B")
@click.pass_context
@handle_errors
def tag_create(ctx, name, color):
    """Create a tag."""
    store = _open_store(ctx)
    t = store.create_tag(name, color)
    click.echo(f"Created tag {t.id}")


@tag.command("delete")
@click.argument("tag_id")
@click.pass_context
@handle_errors
def tag_delete(ctx, tag_id):
    """Delete a tag and remove it from every thread."""
    store = _open_store(ctx)
    if not store.delete_tag(tag_id):
        _fail(f"Tag {tag_id} not found")
    click.echo(f"Deleted tag {tag_id}")


@tag.command("add")
@click.argument("thread_id")
@click.argument("tag_id")
@click.pass_context
@handle_errors
def tag_add(ctx, thread_id, tag_id):
    """Tag a thread."""
    store = _open_store(ctx)
    if store.add_tag_to_thread(thread_id, tag_id):
        click.echo(f"Tagged {thread_id} with {tag_id}")
    else:
        click.echo("Nothing changed (already tagged, or unknown thread/tag).")


@tag.command("remove")
@click.argument("thread_id")
@click.argument("tag_id")
@click.pass_context
@handle_errors
def tag_remove(ctx, thread_id, tag_id):
    """Remove a tag from a thread."""
    store = _open_store(ctx)
    if store.remove_tag_from_thread(thread_id, tag_id):
        click.echo(f"Removed {tag_id} from {thread_id}")
    else:
        click.echo("Nothing changed (not tagged, or unknown thread/tag).")


@tag.command("find")
@click.argument("query")
@click.pass_context
@handle_errors
def tag_find(ctx, query):
    """Find tags by name."""
    store = _open_store(ctx)
    for t in store.search_tags(query):
        click.echo(f"{t.id}  {t.name}")


# ── Account flags ────────────────────────────────────────────────


@main.group()
def user():
    """Manage local account flags."""


@user.command("premium")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_context
@handle_errors
def user_premium(ctx, state):
    """Mark the local account as premium (no thread limit) or free."""
    from .models import User

    store = _open_store(ctx)
    current = store.get_user() or User()
    current.is_premium = state == "on"
    store.set_user(current)
    click.echo(f"Premium {'enabled' if current.is_premium else 'disabled'}.")


@user.command("sync")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_context
@handle_errors
def user_sync(ctx, state):
    """Turn change tracking for sync on or off."""
    store = _open_store(ctx)
    store.update_sync_state({"sync_enabled": state == "on"})
    click.echo(f"Sync {'enabled' if state == 'on' else 'disabled'}.")
