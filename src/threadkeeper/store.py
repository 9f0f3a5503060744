"""Local thread store: threads, collections, tags, metadata and sync state.

Every operation follows the same shape: read the documents it needs from the
backend, validate, mutate in memory, then write every touched document back
in a single ``backend.set`` call. Validation happens before the write, so a
failed operation never leaves partial state behind.

Operations on one ThreadStore instance are serialized by a lock. Two
processes sharing the same backend file are NOT coordinated: both can pass
the quota check against the same ``thread_count`` and the later write wins.
Construct one store per process and pass it to whatever needs it.

Invariants kept by every mutating operation:
    - the "default" collection always exists and is never deleted
    - thread.collection_id names a collection whose thread_ids holds the thread
    - tag.thread_count equals the number of threads carrying the tag
    - metadata.thread_count equals the number of stored threads
"""

import functools
import json
import logging
import random
import re
import threading
import uuid
from dataclasses import fields
from datetime import datetime

from .backends import StorageBackend
from .capture import ThreadCapture, parse_capture
from .errors import (
    BackendUnavailableError,
    EmptyThreadError,
    ForbiddenError,
    NotFoundError,
    StorageLimitError,
)
from .export import export_thread
from .models import (
    ChangeRecord,
    Collection,
    StoreMetadata,
    SyncState,
    Tag,
    Thread,
    ThreadMetadata,
    User,
    UserPrefs,
    utcnow,
)
from .search import SearchResult, rank_threads
from .stats import StoreStats, compute_stats

logger = logging.getLogger(__name__)

THREADS = "threads"
COLLECTIONS = "collections"
TAGS = "tags"
USER_PREFS = "userPrefs"
METADATA = "metadata"
AUTH = "auth"
SYNC_STATE = "syncState"

CURRENT_VERSION = 1
MAX_FREE_THREADS = 50
DEFAULT_COLLECTION_ID = "default"
DEFAULT_COLLECTION_NAME = "Uncategorized"

COLORS = [
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7",
    "#DDA0DD", "#98D8C8", "#FFA07A", "#87CEEB", "#F0E68C",
]

_THREAD_FIELDS = {f.name for f in fields(Thread)}
# Membership fields change only through the collection/tag operations;
# saved_at is fixed at creation
_THREAD_PROTECTED = {"id", "collection_id", "tags", "saved_at"}
_COLLECTION_UPDATABLE = {"name", "description", "color", "parent_id"}
_TAG_UPDATABLE = {"name", "color"}


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def new_thread_id(url: str) -> str:
    """Build a thread id from the last URL segment plus a UUID."""
    slug = re.sub(r"[^A-Za-z0-9_-]", "", url.rstrip("/").split("/")[-1]) if url else ""
    return new_id(f"thread_{slug}" if slug else "thread")


def random_color() -> str:
    return random.choice(COLORS)


class ThreadStore:
    """Persistent store for captured threads and their organization."""

    STORAGE_VERSION = CURRENT_VERSION

    def __init__(self, backend: StorageBackend, *, max_free_threads: int = MAX_FREE_THREADS):
        self.backend = backend
        self.max_free_threads = max_free_threads
        self._lock = threading.RLock()

    # ── Setup ────────────────────────────────────────────────────

    def initialize(self) -> bool:
        """Make sure the backend holds a usable document set.

        Returns False if the backend cannot be reached; the store should be
        treated as unusable for this session.
        """
        try:
            with self._lock:
                metadata = self.backend.get([METADATA]).get(METADATA) or {}
                version = metadata.get("version")
                if not version:
                    self._setup_initial_storage()
                elif version < self.STORAGE_VERSION:
                    self._migrate(version)
            return True
        except BackendUnavailableError as e:
            logger.error("Storage initialization failed: %s", e)
            return False

    def _setup_initial_storage(self) -> None:
        now = utcnow()
        default = Collection(
            id=DEFAULT_COLLECTION_ID, name=DEFAULT_COLLECTION_NAME, created_at=now
        )
        self.backend.set(
            {
                THREADS: {},
                COLLECTIONS: {DEFAULT_COLLECTION_ID: default.to_dict()},
                TAGS: {},
                USER_PREFS: UserPrefs().to_dict(),
                METADATA: StoreMetadata(
                    version=self.STORAGE_VERSION, installed_at=now
                ).to_dict(),
                SYNC_STATE: SyncState().to_dict(),
            }
        )
        logger.info("Initialized empty thread store (version %d)", self.STORAGE_VERSION)

    def _migrate(self, from_version: int) -> None:
        logger.info(
            "Migrating storage from version %d to %d", from_version, self.STORAGE_VERSION
        )
        # No schema changes between released versions yet; only the stamp moves.
        docs = self.backend.get([METADATA])
        metadata = StoreMetadata.from_dict(docs.get(METADATA) or {})
        metadata.version = self.STORAGE_VERSION
        self.backend.set({METADATA: metadata.to_dict()})

    # ── Document helpers ─────────────────────────────────────────

    def _read(self, *keys: str) -> dict:
        return self.backend.get(list(keys))

    @staticmethod
    def _threads(docs: dict) -> dict[str, Thread]:
        return {tid: Thread.from_dict(t) for tid, t in (docs.get(THREADS) or {}).items()}

    @staticmethod
    def _collections(docs: dict) -> dict[str, Collection]:
        collections = {
            cid: Collection.from_dict(c) for cid, c in (docs.get(COLLECTIONS) or {}).items()
        }
        if DEFAULT_COLLECTION_ID not in collections:
            logger.warning("Default collection missing; recreating it")
            collections[DEFAULT_COLLECTION_ID] = Collection(
                id=DEFAULT_COLLECTION_ID, name=DEFAULT_COLLECTION_NAME, created_at=utcnow()
            )
        return collections

    @staticmethod
    def _tags(docs: dict) -> dict[str, Tag]:
        return {tid: Tag.from_dict(t) for tid, t in (docs.get(TAGS) or {}).items()}

    def _metadata(self, docs: dict) -> StoreMetadata:
        data = docs.get(METADATA)
        if not data:
            return StoreMetadata(version=self.STORAGE_VERSION, installed_at=utcnow())
        return StoreMetadata.from_dict(data)

    @staticmethod
    def _sync_state(docs: dict) -> SyncState:
        return SyncState.from_dict(docs.get(SYNC_STATE) or {})

    @staticmethod
    def _is_premium(docs: dict) -> bool:
        user = (docs.get(AUTH) or {}).get("user") or {}
        return bool(user.get("is_premium"))

    @staticmethod
    def _dump(entities: dict) -> dict:
        return {key: entity.to_dict() for key, entity in entities.items()}

    def _measure(self, pending: dict) -> int:
        """Size in bytes of the full document set once ``pending`` is written."""
        snapshot = self.backend.get()
        snapshot.update(pending)
        return len(json.dumps(snapshot, ensure_ascii=False).encode("utf-8"))

    def _record_change(self, docs: dict, items: dict, action: str, thread_id: str) -> None:
        """Queue a change record in ``items`` if sync is enabled."""
        sync_state = self._sync_state(docs)
        if not sync_state.sync_enabled:
            return
        sync_state.pending_changes.append(ChangeRecord(action=action, thread_id=thread_id))
        items[SYNC_STATE] = sync_state.to_dict()

    def _check_quota(self, docs: dict, metadata: StoreMetadata) -> None:
        if not self._is_premium(docs) and metadata.thread_count >= self.max_free_threads:
            raise StorageLimitError(
                f"Free plan limit of {self.max_free_threads} threads reached. "
                "Upgrade to premium to save more threads."
            )

    # ── Threads ──────────────────────────────────────────────────

    @_locked
    def save_thread(self, capture: ThreadCapture | dict) -> Thread:
        """Store a newly captured thread in the default collection.

        Raises:
            EmptyThreadError: The capture holds no posts.
            StorageLimitError: A free-tier store is already full.
        """
        if isinstance(capture, dict):
            capture = parse_capture(capture)
        if not capture.posts:
            raise EmptyThreadError("Cannot save a thread with no posts")

        docs = self._read(THREADS, COLLECTIONS, METADATA, AUTH, SYNC_STATE)
        metadata = self._metadata(docs)
        self._check_quota(docs, metadata)

        threads = docs.get(THREADS) or {}
        collections = self._collections(docs)

        now = utcnow()
        thread = Thread(
            id=new_thread_id(capture.url),
            url=capture.url,
            author_username=capture.author_username,
            author_name=capture.author_name,
            author_avatar=capture.author_avatar,
            posts=list(capture.posts),
            saved_at=now,
            last_accessed=now,
            tags=[],
            collection_id=DEFAULT_COLLECTION_ID,
            metadata=ThreadMetadata(
                post_count=len(capture.posts),
                likes=capture.likes,
                retweets=capture.retweets,
                replies=capture.replies,
                has_media=any(p.media for p in capture.posts),
                language=capture.language or "en",
            ),
        )

        threads[thread.id] = thread.to_dict()
        collections[DEFAULT_COLLECTION_ID].thread_ids.append(thread.id)
        metadata.thread_count += 1

        items = {THREADS: threads, COLLECTIONS: self._dump(collections)}
        self._record_change(docs, items, "save", thread.id)
        metadata.storage_used = self._measure(items)
        items[METADATA] = metadata.to_dict()
        self.backend.set(items)

        logger.info(
            "Saved thread %s by @%s (%d posts)",
            thread.id,
            thread.author_username,
            len(thread.posts),
        )
        return thread

    @_locked
    def get_thread(self, thread_id: str) -> Thread | None:
        """Return a thread without touching last_accessed."""
        raw = (self._read(THREADS).get(THREADS) or {}).get(thread_id)
        return Thread.from_dict(raw) if raw else None

    @_locked
    def touch_thread(self, thread_id: str) -> Thread | None:
        """Return a thread and record that it was just viewed."""
        threads = self._read(THREADS).get(THREADS) or {}
        raw = threads.get(thread_id)
        if not raw:
            return None
        thread = Thread.from_dict(raw)
        thread.last_accessed = utcnow()
        threads[thread_id] = thread.to_dict()
        self.backend.set({THREADS: threads})
        return thread

    @_locked
    def get_threads(
        self,
        *,
        collection_id: str | None = None,
        tags: list[str] | None = None,
        author: str | None = None,
        search: str | None = None,
    ) -> dict[str, Thread]:
        """Return threads matching every given filter (all threads if none)."""
        threads = self._threads(self._read(THREADS))
        if not (collection_id or tags or author or search):
            return threads

        author_lower = author.lower() if author else None
        search_lower = search.lower() if search else None

        def matches(thread: Thread) -> bool:
            if collection_id and thread.collection_id != collection_id:
                return False
            if tags and not any(tag in thread.tags for tag in tags):
                return False
            if author_lower and author_lower not in thread.author_username.lower():
                return False
            if search_lower and not any(
                search_lower in post.text.lower() for post in thread.posts
            ):
                return False
            return True

        return {tid: t for tid, t in threads.items() if matches(t)}

    @_locked
    def update_thread(self, thread_id: str, updates: dict) -> Thread:
        """Merge ``updates`` into a thread and stamp last_modified.

        Collection membership and tags cannot be changed here; use the
        collection and tag operations instead.

        Raises:
            NotFoundError: No thread with that id.
            EmptyThreadError: The update would leave the thread with no posts.
            ValueError: Unknown or protected field, or a malformed value.
        """
        unknown = set(updates) - _THREAD_FIELDS
        if unknown:
            raise ValueError(f"Unknown thread fields: {', '.join(sorted(unknown))}")
        protected = set(updates) & _THREAD_PROTECTED
        if protected:
            raise ValueError(
                f"Fields cannot be updated directly: {', '.join(sorted(protected))}"
            )

        docs = self._read(THREADS, SYNC_STATE)
        threads = docs.get(THREADS) or {}
        if thread_id not in threads:
            raise NotFoundError(f"Thread {thread_id} not found")

        merged = dict(threads[thread_id])
        merged.update(updates)
        try:
            thread = Thread.from_dict(merged)
        except (AttributeError, TypeError, KeyError) as e:
            raise ValueError(f"Invalid thread update: {e}") from e
        if not thread.posts:
            raise EmptyThreadError("Cannot save a thread with no posts")
        if "posts" in updates and "metadata" not in updates:
            thread.metadata.post_count = len(thread.posts)
            thread.metadata.has_media = any(p.media for p in thread.posts)
        thread.last_modified = utcnow()

        threads[thread_id] = thread.to_dict()
        items = {THREADS: threads}
        self._record_change(docs, items, "update", thread_id)
        self.backend.set(items)
        logger.debug("Updated thread %s: %s", thread_id, ", ".join(sorted(updates)))
        return thread

    @_locked
    def delete_thread(self, thread_id: str) -> bool:
        """Delete a thread. Returns False if it does not exist."""
        docs = self._read(THREADS, COLLECTIONS, TAGS, METADATA, SYNC_STATE)
        threads = docs.get(THREADS) or {}
        if thread_id not in threads:
            return False

        thread = Thread.from_dict(threads.pop(thread_id))
        collections = self._collections(docs)
        tags = self._tags(docs)
        metadata = self._metadata(docs)

        owner = collections.get(thread.collection_id)
        if owner is not None:
            owner.thread_ids = [tid for tid in owner.thread_ids if tid != thread_id]
        for tag_id in thread.tags:
            if tag_id in tags:
                tags[tag_id].thread_count = max(0, tags[tag_id].thread_count - 1)
        metadata.thread_count = max(0, metadata.thread_count - 1)

        items = {
            THREADS: threads,
            COLLECTIONS: self._dump(collections),
            TAGS: self._dump(tags),
        }
        self._record_change(docs, items, "delete", thread_id)
        metadata.storage_used = self._measure(items)
        items[METADATA] = metadata.to_dict()
        self.backend.set(items)

        logger.info("Deleted thread %s", thread_id)
        return True

    @_locked
    def import_thread(self, thread: Thread | dict) -> Thread:
        """Insert or replace a complete thread record.

        Used for JSON exports and threads pulled from the sync service. An
        unknown collection falls back to the default one, unknown tag ids
        are dropped, and new threads count against the free-tier quota.

        Raises:
            EmptyThreadError: The record holds no posts.
            StorageLimitError: A new thread would exceed the free-tier quota.
        """
        if isinstance(thread, dict):
            thread = Thread.from_dict(thread)
        if not thread.posts:
            raise EmptyThreadError("Cannot save a thread with no posts")

        docs = self._read(THREADS, COLLECTIONS, TAGS, METADATA, AUTH)
        threads = docs.get(THREADS) or {}
        collections = self._collections(docs)
        tags = self._tags(docs)
        metadata = self._metadata(docs)

        existing = Thread.from_dict(threads[thread.id]) if thread.id in threads else None
        if existing is None:
            self._check_quota(docs, metadata)
            metadata.thread_count += 1
        else:
            old_owner = collections.get(existing.collection_id)
            if old_owner is not None:
                old_owner.thread_ids = [t for t in old_owner.thread_ids if t != thread.id]
            for tag_id in existing.tags:
                if tag_id in tags:
                    tags[tag_id].thread_count = max(0, tags[tag_id].thread_count - 1)

        if thread.collection_id not in collections:
            thread.collection_id = DEFAULT_COLLECTION_ID
        collections[thread.collection_id].thread_ids.append(thread.id)

        kept_tags: list[str] = []
        for tag_id in thread.tags:
            if tag_id in tags and tag_id not in kept_tags:
                kept_tags.append(tag_id)
                tags[tag_id].thread_count += 1
        thread.tags = kept_tags

        threads[thread.id] = thread.to_dict()
        items = {
            THREADS: threads,
            COLLECTIONS: self._dump(collections),
            TAGS: self._dump(tags),
        }
        metadata.storage_used = self._measure(items)
        items[METADATA] = metadata.to_dict()
        self.backend.set(items)

        logger.info(
            "%s thread %s", "Replaced" if existing else "Imported", thread.id
        )
        return thread

    # ── Collections ──────────────────────────────────────────────

    @_locked
    def get_collections(self) -> dict[str, Collection]:
        return self._collections(self._read(COLLECTIONS))

    @_locked
    def get_collection(self, collection_id: str) -> Collection | None:
        return self.get_collections().get(collection_id)

    @_locked
    def create_collection(
        self, name: str, description: str = "", parent_id: str | None = None
    ) -> Collection:
        """Create an empty collection. Names need not be unique."""
        collections = self._collections(self._read(COLLECTIONS))
        if parent_id is not None and parent_id not in collections:
            raise NotFoundError(f"Parent collection {parent_id} not found")

        collection = Collection(
            id=new_id("col"),
            name=name,
            description=description,
            color=random_color(),
            created_at=utcnow(),
            parent_id=parent_id,
        )
        collections[collection.id] = collection
        self.backend.set({COLLECTIONS: self._dump(collections)})
        logger.info("Created collection %s (%s)", collection.id, name)
        return collection

    @_locked
    def update_collection(self, collection_id: str, updates: dict) -> Collection:
        """Change a collection's name, description, color or parent."""
        not_allowed = set(updates) - _COLLECTION_UPDATABLE
        if not_allowed:
            raise ValueError(
                f"Fields cannot be updated: {', '.join(sorted(not_allowed))}"
            )
        collections = self._collections(self._read(COLLECTIONS))
        collection = collections.get(collection_id)
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found")

        parent_id = updates.get("parent_id", collection.parent_id)
        if parent_id is not None:
            if parent_id == collection_id:
                raise ValueError("A collection cannot be its own parent")
            if parent_id not in collections:
                raise NotFoundError(f"Parent collection {parent_id} not found")

        for key, value in updates.items():
            setattr(collection, key, value)
        self.backend.set({COLLECTIONS: self._dump(collections)})
        return collection

    @_locked
    def delete_collection(self, collection_id: str) -> bool:
        """Delete a collection, moving its threads to the default collection.

        Child collections are re-parented to the deleted collection's parent.
        Returns False if the collection does not exist.

        Raises:
            ForbiddenError: Attempt to delete the default collection.
        """
        if collection_id == DEFAULT_COLLECTION_ID:
            raise ForbiddenError("Cannot delete the default collection")

        docs = self._read(THREADS, COLLECTIONS)
        collections = self._collections(docs)
        collection = collections.get(collection_id)
        if collection is None:
            return False

        threads = self._threads(docs)
        default = collections[DEFAULT_COLLECTION_ID]
        moved = 0
        for thread_id in collection.thread_ids:
            thread = threads.get(thread_id)
            if thread is None:
                continue
            thread.collection_id = DEFAULT_COLLECTION_ID
            thread.last_modified = utcnow()
            if thread_id not in default.thread_ids:
                default.thread_ids.append(thread_id)
            moved += 1

        for child in collections.values():
            if child.parent_id == collection_id:
                child.parent_id = collection.parent_id
        del collections[collection_id]

        self.backend.set(
            {COLLECTIONS: self._dump(collections), THREADS: self._dump(threads)}
        )
        logger.info(
            "Deleted collection %s; moved %d threads to default", collection_id, moved
        )
        return True

    @_locked
    def add_thread_to_collection(self, thread_id: str, collection_id: str) -> bool:
        """Move a thread into a collection. Returns False if either id is unknown."""
        docs = self._read(THREADS, COLLECTIONS)
        threads = docs.get(THREADS) or {}
        collections = self._collections(docs)
        if thread_id not in threads or collection_id not in collections:
            return False

        thread = Thread.from_dict(threads[thread_id])
        previous = collections.get(thread.collection_id)
        if previous is not None:
            previous.thread_ids = [t for t in previous.thread_ids if t != thread_id]

        target = collections[collection_id]
        if thread_id not in target.thread_ids:
            target.thread_ids.append(thread_id)
        thread.collection_id = collection_id
        thread.last_modified = utcnow()
        threads[thread_id] = thread.to_dict()

        self.backend.set({THREADS: threads, COLLECTIONS: self._dump(collections)})
        return True

    @_locked
    def remove_thread_from_collection(self, thread_id: str, collection_id: str) -> bool:
        """Take a thread out of a collection, returning it to the default one.

        Returns False if the thread is not in that collection, or the
        collection is the default one (a thread always has one owner).
        """
        if collection_id == DEFAULT_COLLECTION_ID:
            return False
        thread = self.get_thread(thread_id)
        if thread is None or thread.collection_id != collection_id:
            return False
        return self.add_thread_to_collection(thread_id, DEFAULT_COLLECTION_ID)

    # ── Tags ─────────────────────────────────────────────────────

    @_locked
    def get_tags(self) -> dict[str, Tag]:
        return self._tags(self._read(TAGS))

    @_locked
    def create_tag(self, name: str, color: str | None = None) -> Tag:
        tags = self._tags(self._read(TAGS))
        tag = Tag(
            id=new_id("tag"),
            name=name,
            color=color or random_color(),
            created_at=utcnow(),
        )
        tags[tag.id] = tag
        self.backend.set({TAGS: self._dump(tags)})
        logger.info("Created tag %s (%s)", tag.id, name)
        return tag

    @_locked
    def update_tag(self, tag_id: str, updates: dict) -> Tag:
        """Rename or recolor a tag."""
        not_allowed = set(updates) - _TAG_UPDATABLE
        if not_allowed:
            raise ValueError(
                f"Fields cannot be updated: {', '.join(sorted(not_allowed))}"
            )
        tags = self._tags(self._read(TAGS))
        tag = tags.get(tag_id)
        if tag is None:
            raise NotFoundError(f"Tag {tag_id} not found")
        for key, value in updates.items():
            setattr(tag, key, value)
        tag.updated_at = utcnow()
        self.backend.set({TAGS: self._dump(tags)})
        return tag

    @_locked
    def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag and strip it from every thread that carries it."""
        docs = self._read(THREADS, TAGS)
        tags = self._tags(docs)
        if tag_id not in tags:
            return False

        threads = self._threads(docs)
        stripped = 0
        for thread in threads.values():
            if tag_id in thread.tags:
                thread.tags = [t for t in thread.tags if t != tag_id]
                thread.last_modified = utcnow()
                stripped += 1
        del tags[tag_id]

        self.backend.set({THREADS: self._dump(threads), TAGS: self._dump(tags)})
        logger.info("Deleted tag %s from %d threads", tag_id, stripped)
        return True

    @_locked
    def add_tag_to_thread(self, thread_id: str, tag_id: str) -> bool:
        """Tag a thread. Returns False if already tagged or either id is unknown."""
        docs = self._read(THREADS, TAGS)
        threads = docs.get(THREADS) or {}
        tags = self._tags(docs)
        if thread_id not in threads or tag_id not in tags:
            return False

        thread = Thread.from_dict(threads[thread_id])
        if tag_id in thread.tags:
            return False
        thread.tags.append(tag_id)
        thread.last_modified = utcnow()
        tags[tag_id].thread_count += 1
        threads[thread_id] = thread.to_dict()

        self.backend.set({THREADS: threads, TAGS: self._dump(tags)})
        return True

    @_locked
    def remove_tag_from_thread(self, thread_id: str, tag_id: str) -> bool:
        """Untag a thread. Returns False if the thread does not carry the tag."""
        docs = self._read(THREADS, TAGS)
        threads = docs.get(THREADS) or {}
        tags = self._tags(docs)
        if thread_id not in threads or tag_id not in tags:
            return False

        thread = Thread.from_dict(threads[thread_id])
        if tag_id not in thread.tags:
            return False
        thread.tags = [t for t in thread.tags if t != tag_id]
        thread.last_modified = utcnow()
        tags[tag_id].thread_count = max(0, tags[tag_id].thread_count - 1)
        threads[thread_id] = thread.to_dict()

        self.backend.set({THREADS: threads, TAGS: self._dump(tags)})
        return True

    @_locked
    def get_thread_tags(self, thread_id: str) -> list[Tag]:
        thread = self.get_thread(thread_id)
        if thread is None:
            return []
        tags = self.get_tags()
        return [tags[t] for t in thread.tags if t in tags]

    @_locked
    def search_tags(self, query: str) -> list[Tag]:
        query_lower = query.lower()
        return [t for t in self.get_tags().values() if query_lower in t.name.lower()]

    # ── Search, stats, export ────────────────────────────────────

    @_locked
    def search_threads(
        self, query: str, *, limit: int | None = None, offset: int = 0
    ) -> list[SearchResult]:
        """Rank all threads against ``query``; see threadkeeper.search."""
        threads = self._threads(self._read(THREADS))
        return rank_threads(threads.values(), query, limit=limit, offset=offset)

    @_locked
    def get_stats(self) -> StoreStats:
        docs = self._read(THREADS, COLLECTIONS, TAGS, METADATA)
        metadata = self._metadata(docs)
        return compute_stats(
            list(self._threads(docs).values()),
            thread_count=metadata.thread_count,
            storage_used=metadata.storage_used,
            total_collections=len(self._collections(docs)),
            total_tags=len(docs.get(TAGS) or {}),
        )

    @_locked
    def export_thread(self, thread_id: str, fmt: str = "text") -> str | None:
        """Render a thread as text, json or markdown; None if unavailable."""
        thread = self.get_thread(thread_id)
        if thread is None:
            return None
        return export_thread(thread, fmt)

    # ── Metadata, user and preferences ───────────────────────────

    @_locked
    def get_metadata(self) -> StoreMetadata:
        return self._metadata(self._read(METADATA))

    @_locked
    def update_metadata(self, updates: dict) -> StoreMetadata:
        merged = self.get_metadata().to_dict()
        merged.update(updates)
        metadata = StoreMetadata.from_dict(merged)
        self.backend.set({METADATA: metadata.to_dict()})
        return metadata

    @_locked
    def get_auth(self) -> dict:
        return self._read(AUTH).get(AUTH) or {}

    @_locked
    def set_auth(self, auth: dict) -> None:
        self.backend.set({AUTH: auth})

    @_locked
    def clear_auth(self) -> None:
        self.backend.remove([AUTH])

    @_locked
    def get_user(self) -> User | None:
        user = self.get_auth().get("user")
        return User.from_dict(user) if user else None

    @_locked
    def set_user(self, user: User) -> None:
        auth = self.get_auth()
        auth["user"] = user.to_dict()
        self.backend.set({AUTH: auth})

    @_locked
    def is_premium(self) -> bool:
        return self._is_premium(self._read(AUTH))

    @_locked
    def get_user_prefs(self) -> UserPrefs:
        return UserPrefs.from_dict(self._read(USER_PREFS).get(USER_PREFS) or {})

    @_locked
    def update_user_prefs(self, updates: dict) -> UserPrefs:
        merged = self.get_user_prefs().to_dict()
        merged.update(updates)
        prefs = UserPrefs.from_dict(merged)
        self.backend.set({USER_PREFS: prefs.to_dict()})
        return prefs

    # ── Sync state ───────────────────────────────────────────────

    @_locked
    def get_sync_state(self) -> SyncState:
        return self._sync_state(self._read(SYNC_STATE))

    @_locked
    def update_sync_state(self, updates: dict) -> SyncState:
        merged = self.get_sync_state().to_dict()
        merged.update(updates)
        sync_state = SyncState.from_dict(merged)
        self.backend.set({SYNC_STATE: sync_state.to_dict()})
        return sync_state

    @_locked
    def add_pending_change(self, action: str, thread_id: str) -> ChangeRecord:
        sync_state = self.get_sync_state()
        change = ChangeRecord(action=action, thread_id=thread_id)
        sync_state.pending_changes.append(change)
        self.backend.set({SYNC_STATE: sync_state.to_dict()})
        return change

    @_locked
    def acknowledge_sync(self, when: datetime | None = None) -> SyncState:
        """Clear pending changes after the sync service accepted them."""
        when = when or utcnow()
        docs = self._read(SYNC_STATE, METADATA)
        sync_state = self._sync_state(docs)
        metadata = self._metadata(docs)
        sync_state.pending_changes = []
        sync_state.last_sync = when
        metadata.last_sync = when
        self.backend.set(
            {SYNC_STATE: sync_state.to_dict(), METADATA: metadata.to_dict()}
        )
        return sync_state

    @_locked
    def threads_modified_since(self, when: datetime | None) -> list[Thread]:
        """Threads saved or modified after ``when`` (all threads if None)."""
        threads = self._threads(self._read(THREADS)).values()
        if when is None:
            return list(threads)
        return [t for t in threads if (t.last_modified or t.saved_at) > when]
