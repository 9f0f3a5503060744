"""Shared test fixtures."""

import pytest

from threadkeeper.backends import MemoryBackend
from threadkeeper.models import User
from threadkeeper.store import DEFAULT_COLLECTION_ID, ThreadStore


def make_capture(
    username: str = "testuser",
    name: str = "Test User",
    texts: tuple[str, ...] = ("First post of the thread", "Second post"),
    status_id: str = "1234567890",
    **extra,
) -> dict:
    """Build a scraper capture payload in its camelCase wire shape."""
    payload = {
        "url": f"https://x.com/{username}/status/{status_id}",
        "authorUsername": username,
        "authorName": name,
        "authorAvatar": f"https://pbs.twimg.com/profile_images/{username}.jpg",
        "posts": [
            {
                "id": f"{status_id}{i}",
                "text": text,
                "timestamp": f"2025-02-10T18:3{i}:00.000Z",
                "media": [],
                "links": [],
                "isReply": False,
                "hasQuote": False,
            }
            for i, text in enumerate(texts)
        ],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend) -> ThreadStore:
    """An initialized free-tier store on an in-memory backend."""
    s = ThreadStore(backend)
    assert s.initialize()
    return s


@pytest.fixture
def premium_store(store) -> ThreadStore:
    store.set_user(User(id="u1", email="user@example.com", is_premium=True))
    return store


@pytest.fixture
def sample_capture() -> dict:
    return make_capture(
        likes=120,
        retweets=14,
        replies=9,
        language="en",
        posts=[
            {
                "id": "111",
                "text": "Machine learning is powerful when the data is clean.",
                "timestamp": "2025-02-10T18:30:00.000Z",
                "media": [
                    {
                        "type": "image",
                        "url": "https://pbs.twimg.com/media/test123.jpg",
                        "alt": "A chart",
                    }
                ],
                "links": [{"url": "https://example.com/article", "display": "example.com/article"}],
                "isReply": False,
                "hasQuote": False,
            },
            {
                "id": "112",
                "text": "Here is why.",
                "timestamp": "2025-02-10T18:31:00.000Z",
                "media": [],
                "links": [],
                "isReply": True,
                "hasQuoteTweet": True,
            },
        ],
    )


@pytest.fixture
def saved_thread(store, sample_capture):
    return store.save_thread(sample_capture)


@pytest.fixture
def capture_factory():
    return make_capture


def _assert_consistent(store: ThreadStore) -> None:
    """Check every cross-document invariant of the store."""
    threads = store.get_threads()
    collections = store.get_collections()
    tags = store.get_tags()

    assert DEFAULT_COLLECTION_ID in collections
    for thread in threads.values():
        assert thread.id in collections[thread.collection_id].thread_ids
    for collection in collections.values():
        for thread_id in collection.thread_ids:
            assert threads[thread_id].collection_id == collection.id
    for tag in tags.values():
        carrying = sum(1 for t in threads.values() if tag.id in t.tags)
        assert tag.thread_count == carrying
    assert store.get_metadata().thread_count == len(threads)


@pytest.fixture
def assert_consistent():
    return _assert_consistent
