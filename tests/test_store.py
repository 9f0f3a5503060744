"""Tests for thread CRUD, quota enforcement and store bookkeeping."""

from datetime import datetime, timedelta, timezone

import pytest

from threadkeeper.backends import MemoryBackend, StorageBackend
from threadkeeper.errors import (
    BackendUnavailableError,
    EmptyThreadError,
    NotFoundError,
    StorageLimitError,
)
from threadkeeper.store import (
    COLLECTIONS,
    DEFAULT_COLLECTION_ID,
    MAX_FREE_THREADS,
    METADATA,
    ThreadStore,
)


class UnreachableBackend(StorageBackend):
    def get(self, keys=None):
        raise BackendUnavailableError("storage offline")

    def set(self, items):
        raise BackendUnavailableError("storage offline")

    def remove(self, keys):
        raise BackendUnavailableError("storage offline")


class TestInitialize:
    def test_first_run_writes_defaults(self, backend):
        store = ThreadStore(backend)
        assert store.initialize() is True

        docs = backend.get()
        assert docs["threads"] == {}
        assert docs["tags"] == {}
        assert docs[COLLECTIONS]["default"]["name"] == "Uncategorized"
        assert docs[METADATA]["version"] == 1
        assert docs[METADATA]["thread_count"] == 0
        assert docs["syncState"]["pending_changes"] == []
        assert docs["userPrefs"]["default_collection"] == "default"

    def test_second_run_keeps_data(self, store, backend, saved_thread):
        assert ThreadStore(backend).initialize() is True
        assert store.get_thread(saved_thread.id) is not None

    def test_unreachable_backend_returns_false(self):
        assert ThreadStore(UnreachableBackend()).initialize() is False

    def test_older_version_is_migrated(self, store, backend, saved_thread):
        class NewerStore(ThreadStore):
            STORAGE_VERSION = 2

        newer = NewerStore(backend)
        assert newer.initialize() is True
        assert newer.get_metadata().version == 2
        assert newer.get_thread(saved_thread.id) is not None


class TestSaveThread:
    def test_returns_materialized_thread(self, store, sample_capture):
        thread = store.save_thread(sample_capture)

        assert thread.id.startswith("thread_1234567890_")
        assert thread.author_username == "testuser"
        assert thread.collection_id == DEFAULT_COLLECTION_ID
        assert thread.tags == []
        assert thread.saved_at == thread.last_accessed
        assert thread.last_modified is None
        assert thread.metadata.post_count == 2
        assert thread.metadata.likes == 120
        assert thread.metadata.has_media is True
        assert thread.metadata.language == "en"

    def test_preserves_post_order(self, store, capture_factory):
        texts = ("one", "two", "three", "four")
        thread = store.save_thread(capture_factory(texts=texts))
        assert [p.text for p in store.get_thread(thread.id).posts] == list(texts)

    def test_language_defaults_to_en(self, store, capture_factory):
        thread = store.save_thread(capture_factory())
        assert thread.metadata.language == "en"
        assert thread.metadata.has_media is False

    def test_updates_metadata_and_default_collection(self, store, saved_thread):
        metadata = store.get_metadata()
        assert metadata.thread_count == 1
        assert metadata.storage_used > 0
        assert store.get_collection("default").thread_ids == [saved_thread.id]

    def test_ids_are_unique_for_same_url(self, store, capture_factory):
        a = store.save_thread(capture_factory())
        b = store.save_thread(capture_factory())
        assert a.id != b.id

    def test_empty_thread_rejected(self, store, capture_factory):
        with pytest.raises(EmptyThreadError):
            store.save_thread(capture_factory(texts=()))
        assert store.get_metadata().thread_count == 0
        assert store.get_threads() == {}

    def test_empty_thread_error_code(self, store, capture_factory):
        with pytest.raises(EmptyThreadError) as exc_info:
            store.save_thread(capture_factory(texts=()))
        assert exc_info.value.code == "EMPTY_THREAD"

    def test_quota_reached_after_max_free_threads(self, store, capture_factory):
        for i in range(MAX_FREE_THREADS):
            store.save_thread(capture_factory(status_id=str(i)))

        with pytest.raises(StorageLimitError, match="Upgrade"):
            store.save_thread(capture_factory(status_id="overflow"))

        assert store.get_metadata().thread_count == MAX_FREE_THREADS
        assert len(store.get_threads()) == MAX_FREE_THREADS

    def test_custom_quota(self, backend, capture_factory):
        store = ThreadStore(backend, max_free_threads=2)
        store.initialize()
        store.save_thread(capture_factory())
        store.save_thread(capture_factory())
        with pytest.raises(StorageLimitError) as exc_info:
            store.save_thread(capture_factory())
        assert exc_info.value.code == "STORAGE_LIMIT_REACHED"

    def test_premium_has_no_quota(self, backend, capture_factory):
        store = ThreadStore(backend, max_free_threads=1)
        store.initialize()
        store.set_auth({"user": {"id": "u1", "is_premium": True}, "token": "t"})
        store.save_thread(capture_factory())
        store.save_thread(capture_factory())
        assert store.get_metadata().thread_count == 2

    def test_backend_failure_propagates(self, capture_factory):
        store = ThreadStore(UnreachableBackend())
        with pytest.raises(BackendUnavailableError):
            store.save_thread(capture_factory())

    def test_recreates_missing_default_collection(self, capture_factory):
        backend = MemoryBackend({METADATA: {"version": 1, "thread_count": 0}})
        store = ThreadStore(backend)
        thread = store.save_thread(capture_factory())
        assert store.get_collection("default").thread_ids == [thread.id]


class TestGetThreads:
    @pytest.fixture
    def populated(self, store, capture_factory):
        a = store.save_thread(
            capture_factory(username="alice", texts=("Rust ownership explained",))
        )
        b = store.save_thread(
            capture_factory(username="bob", texts=("Python packaging tips", "More on wheels"))
        )
        c = store.save_thread(capture_factory(username="alicia", texts=("Gardening",)))
        return store, a, b, c

    def test_get_thread_missing_returns_none(self, store):
        assert store.get_thread("nope") is None

    def test_get_thread_does_not_touch(self, store, saved_thread):
        before = store.get_thread(saved_thread.id).last_accessed
        again = store.get_thread(saved_thread.id)
        assert again.last_accessed == before

    def test_touch_thread_bumps_last_accessed(self, store, saved_thread):
        touched = store.touch_thread(saved_thread.id)
        assert touched.last_accessed >= saved_thread.last_accessed
        assert store.get_thread(saved_thread.id).last_accessed == touched.last_accessed

    def test_touch_missing_returns_none(self, store):
        assert store.touch_thread("nope") is None

    def test_no_filters_returns_all(self, populated):
        store, a, b, c = populated
        assert set(store.get_threads()) == {a.id, b.id, c.id}

    def test_author_filter_case_insensitive(self, populated):
        store, a, b, c = populated
        assert set(store.get_threads(author="ALI")) == {a.id, c.id}

    def test_search_filter_matches_any_post(self, populated):
        store, a, b, c = populated
        assert set(store.get_threads(search="WHEELS")) == {b.id}

    def test_filters_combine_as_conjunction(self, populated):
        store, a, b, c = populated
        assert store.get_threads(author="alice", search="packaging") == {}
        assert set(store.get_threads(author="alice", search="rust")) == {a.id}

    def test_collection_filter(self, populated):
        store, a, b, c = populated
        col = store.create_collection("Reading")
        store.add_thread_to_collection(b.id, col.id)
        assert set(store.get_threads(collection_id=col.id)) == {b.id}
        assert set(store.get_threads(collection_id="default")) == {a.id, c.id}

    def test_tags_filter_any_of(self, populated):
        store, a, b, c = populated
        t1 = store.create_tag("rust")
        t2 = store.create_tag("python")
        store.add_tag_to_thread(a.id, t1.id)
        store.add_tag_to_thread(b.id, t2.id)
        assert set(store.get_threads(tags=[t1.id, t2.id])) == {a.id, b.id}
        assert set(store.get_threads(tags=[t2.id], author="bob")) == {b.id}


class TestUpdateThread:
    def test_merges_and_stamps_last_modified(self, store, saved_thread):
        updated = store.update_thread(saved_thread.id, {"author_name": "Renamed"})
        assert updated.author_name == "Renamed"
        assert updated.last_modified is not None
        assert updated.url == saved_thread.url
        assert store.get_thread(saved_thread.id).author_name == "Renamed"

    def test_missing_thread_raises_not_found(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            store.update_thread("nope", {"author_name": "x"})
        assert exc_info.value.code == "NOT_FOUND"

    def test_rejects_membership_fields(self, store, saved_thread):
        with pytest.raises(ValueError, match="collection_id"):
            store.update_thread(saved_thread.id, {"collection_id": "other"})
        with pytest.raises(ValueError, match="tags"):
            store.update_thread(saved_thread.id, {"tags": ["x"]})

    def test_rejects_unknown_fields(self, store, saved_thread):
        with pytest.raises(ValueError, match="Unknown"):
            store.update_thread(saved_thread.id, {"colour": "red"})

    def test_replacing_posts_refreshes_metadata(self, store, saved_thread):
        updated = store.update_thread(
            saved_thread.id, {"posts": [{"id": "1", "text": "only one"}]}
        )
        assert updated.metadata.post_count == 1
        assert updated.metadata.has_media is False

    def test_rejects_empty_posts(self, store, saved_thread):
        with pytest.raises(EmptyThreadError):
            store.update_thread(saved_thread.id, {"posts": []})
        assert len(store.get_thread(saved_thread.id).posts) == 2

    @pytest.mark.parametrize(
        "updates", [{"posts": "hello"}, {"posts": ["x"]}, {"metadata": "x"}]
    )
    def test_malformed_values_raise_value_error(self, store, saved_thread, updates):
        with pytest.raises(ValueError, match="Invalid thread update"):
            store.update_thread(saved_thread.id, updates)
        assert store.get_thread(saved_thread.id) == saved_thread

    def test_saved_at_is_fixed(self, store, saved_thread):
        with pytest.raises(ValueError, match="saved_at"):
            store.update_thread(saved_thread.id, {"saved_at": None})
        assert store.get_thread(saved_thread.id).saved_at == saved_thread.saved_at


class TestDeleteThread:
    def test_idempotent_delete(self, store, saved_thread, capture_factory):
        store.save_thread(capture_factory())
        assert store.get_metadata().thread_count == 2

        assert store.delete_thread(saved_thread.id) is True
        assert store.get_metadata().thread_count == 1

        assert store.delete_thread(saved_thread.id) is False
        assert store.get_metadata().thread_count == 1

    def test_removes_from_owning_collection(self, store, saved_thread, assert_consistent):
        col = store.create_collection("Keep")
        store.add_thread_to_collection(saved_thread.id, col.id)
        store.delete_thread(saved_thread.id)
        assert store.get_collection(col.id).thread_ids == []
        assert_consistent(store)

    def test_decrements_tag_counts(self, store, saved_thread, assert_consistent):
        tag = store.create_tag("ml")
        store.add_tag_to_thread(saved_thread.id, tag.id)
        assert store.get_tags()[tag.id].thread_count == 1

        store.delete_thread(saved_thread.id)
        assert store.get_tags()[tag.id].thread_count == 0
        assert_consistent(store)

    def test_frees_quota(self, backend, capture_factory):
        store = ThreadStore(backend, max_free_threads=1)
        store.initialize()
        first = store.save_thread(capture_factory())
        store.delete_thread(first.id)
        store.save_thread(capture_factory())
        assert store.get_metadata().thread_count == 1


class TestImportThread:
    def test_import_new_thread(self, saved_thread, assert_consistent):
        exported = saved_thread.to_dict()
        fresh = ThreadStore(MemoryBackend())
        fresh.initialize()

        imported = fresh.import_thread(exported)
        assert imported == saved_thread
        assert fresh.get_metadata().thread_count == 1
        assert_consistent(fresh)

    def test_unknown_collection_and_tags_fall_back(self, store, saved_thread, assert_consistent):
        record = saved_thread.to_dict()
        record["id"] = "thread_from_elsewhere"
        record["collection_id"] = "col_missing"
        record["tags"] = ["tag_missing"]

        imported = store.import_thread(record)
        assert imported.collection_id == DEFAULT_COLLECTION_ID
        assert imported.tags == []
        assert_consistent(store)

    def test_replace_existing_keeps_counts(self, store, saved_thread, assert_consistent):
        tag = store.create_tag("kept")
        store.add_tag_to_thread(saved_thread.id, tag.id)
        record = store.get_thread(saved_thread.id).to_dict()
        record["author_name"] = "From server"

        store.import_thread(record)
        assert store.get_metadata().thread_count == 1
        assert store.get_tags()[tag.id].thread_count == 1
        assert store.get_thread(saved_thread.id).author_name == "From server"
        assert_consistent(store)

    def test_rejects_empty_thread(self, store, saved_thread):
        record = saved_thread.to_dict()
        record["id"] = "thread_empty"
        record["posts"] = []

        with pytest.raises(EmptyThreadError):
            store.import_thread(record)
        assert store.get_thread("thread_empty") is None
        assert store.get_metadata().thread_count == 1

    def test_import_respects_quota(self, saved_thread):
        full = ThreadStore(MemoryBackend(), max_free_threads=0)
        full.initialize()
        with pytest.raises(StorageLimitError):
            full.import_thread(saved_thread.to_dict())


class TestSyncState:
    def test_defaults(self, store):
        sync_state = store.get_sync_state()
        assert sync_state.last_sync is None
        assert sync_state.pending_changes == []
        assert sync_state.sync_enabled is False

    def test_no_change_records_when_disabled(self, store, saved_thread):
        store.delete_thread(saved_thread.id)
        assert store.get_sync_state().pending_changes == []

    def test_mutations_append_changes_when_enabled(self, store, capture_factory):
        store.update_sync_state({"sync_enabled": True})
        thread = store.save_thread(capture_factory())
        store.update_thread(thread.id, {"author_name": "New"})
        store.delete_thread(thread.id)

        changes = store.get_sync_state().pending_changes
        assert [c.action for c in changes] == ["save", "update", "delete"]
        assert all(c.thread_id == thread.id for c in changes)

    def test_add_pending_change_and_acknowledge(self, store):
        store.add_pending_change("delete", "thread_x")
        assert len(store.get_sync_state().pending_changes) == 1

        when = datetime(2025, 3, 1, tzinfo=timezone.utc)
        state = store.acknowledge_sync(when)
        assert state.pending_changes == []
        assert store.get_sync_state().last_sync == when
        assert store.get_metadata().last_sync == when

    def test_threads_modified_since(self, store, saved_thread, capture_factory):
        cutoff = saved_thread.saved_at - timedelta(seconds=1)
        other = store.save_thread(capture_factory())
        store.update_thread(saved_thread.id, {"author_name": "Edited"})

        modified = {t.id for t in store.threads_modified_since(cutoff)}
        assert saved_thread.id in modified
        assert other.id in modified
        assert len(store.threads_modified_since(None)) == 2
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert store.threads_modified_since(later) == []


class TestUserAndPrefs:
    def test_user_round_trip(self, premium_store):
        user = premium_store.get_user()
        assert user.is_premium is True
        assert premium_store.is_premium() is True

    def test_clear_auth(self, premium_store):
        premium_store.clear_auth()
        assert premium_store.get_user() is None
        assert premium_store.is_premium() is False

    def test_update_prefs(self, store):
        prefs = store.update_user_prefs({"theme": "dark"})
        assert prefs.theme == "dark"
        assert store.get_user_prefs().notifications is True

    def test_update_metadata(self, store):
        metadata = store.update_metadata({"storage_used": 42})
        assert metadata.storage_used == 42
        assert store.get_metadata().version == 1
