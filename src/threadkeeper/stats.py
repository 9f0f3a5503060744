"""Aggregate statistics over the thread store."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .models import Thread, utcnow

TOP_AUTHORS_LIMIT = 5


@dataclass
class AuthorCount:
    author: str
    count: int


@dataclass
class StoreStats:
    total_threads: int
    total_posts: int
    total_collections: int
    total_tags: int
    storage_used: int
    saved_today: int
    saved_this_week: int
    saved_this_month: int
    top_authors: list[AuthorCount] = field(default_factory=list)
    avg_thread_length: int = 0


def top_authors(threads: list[Thread], limit: int = TOP_AUTHORS_LIMIT) -> list[AuthorCount]:
    """Authors with the most saved threads; ties keep first-seen order."""
    counts = Counter(t.author_username for t in threads)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [AuthorCount(author=a, count=c) for a, c in ranked[:limit]]


def compute_stats(
    threads: list[Thread],
    *,
    thread_count: int,
    storage_used: int,
    total_collections: int,
    total_tags: int,
    now: datetime | None = None,
) -> StoreStats:
    """Build a StoreStats snapshot.

    ``thread_count`` and ``storage_used`` come from store metadata and are
    reported as-is; everything else is computed from ``threads``.
    """
    now = now or utcnow()
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    total_posts = sum(len(t.posts) for t in threads)

    return StoreStats(
        total_threads=thread_count,
        total_posts=total_posts,
        total_collections=total_collections,
        total_tags=total_tags,
        storage_used=storage_used,
        saved_today=sum(1 for t in threads if t.saved_at > day_ago),
        saved_this_week=sum(1 for t in threads if t.saved_at > week_ago),
        saved_this_month=sum(1 for t in threads if t.saved_at > month_ago),
        top_authors=top_authors(threads),
        # Half rounds up (2.5 -> 3), unlike round()
        avg_thread_length=int(total_posts / len(threads) + 0.5) if threads else 0,
    )
