"""Scored keyword search over stored threads.

Scoring per thread:
    +10 for each post whose text contains the query
    +20 if the author username contains the query
    +15 if the author display name contains the query

All comparisons are case-insensitive substring matches. Threads scoring 0
are dropped. Every thread is scored before pagination, so the cost is
always proportional to the total number of posts.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .models import Thread

logger = logging.getLogger(__name__)

POST_SCORE = 10
USERNAME_SCORE = 20
AUTHOR_NAME_SCORE = 15

SNIPPET_CONTEXT = 50
FALLBACK_SNIPPET_LENGTH = 100


@dataclass
class SearchMatch:
    type: str  # "post", "author", "authorName"
    index: int | None = None  # post position, for "post" matches
    snippet: str | None = None
    value: str | None = None  # matched author field, for author matches


@dataclass
class SearchResult:
    thread: Thread
    score: int
    matches: list[SearchMatch] = field(default_factory=list)


def get_snippet(text: str, query: str, context: int = SNIPPET_CONTEXT) -> str:
    """Return the first occurrence of query in text with surrounding context.

    Truncated ends are marked with "...". If the query cannot be located the
    first 100 characters are returned instead.
    """
    index = text.lower().find(query.lower())
    if index == -1:
        logger.warning("Query %r not found in matched post text; using prefix", query)
        return text[:FALLBACK_SNIPPET_LENGTH] + "..."

    start = max(0, index - context)
    end = min(len(text), index + len(query) + context)

    snippet = text[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def score_thread(thread: Thread, query: str) -> SearchResult:
    """Score a single thread against a query."""
    query_lower = query.lower()
    score = 0
    matches: list[SearchMatch] = []

    for index, post in enumerate(thread.posts):
        if query_lower in post.text.lower():
            score += POST_SCORE
            matches.append(
                SearchMatch(type="post", index=index, snippet=get_snippet(post.text, query))
            )

    if query_lower in thread.author_username.lower():
        score += USERNAME_SCORE
        matches.append(SearchMatch(type="author", value=thread.author_username))

    if query_lower in thread.author_name.lower():
        score += AUTHOR_NAME_SCORE
        matches.append(SearchMatch(type="authorName", value=thread.author_name))

    return SearchResult(thread=thread, score=score, matches=matches)


def rank_threads(
    threads: Iterable[Thread],
    query: str,
    limit: int | None = None,
    offset: int = 0,
) -> list[SearchResult]:
    """Score, filter and sort threads by relevance.

    Ties keep the iteration order of ``threads`` (sorted() is stable).
    An empty or whitespace-only query matches nothing. A ``limit`` of None
    or 0 means no limit.
    """
    if not query or not query.strip():
        return []

    results = [r for r in (score_thread(t, query) for t in threads) if r.score > 0]
    results = sorted(results, key=lambda r: r.score, reverse=True)

    offset = max(0, offset)
    if limit:
        return results[offset : offset + limit]
    return results[offset:]
