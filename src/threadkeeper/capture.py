"""Parse thread-capture payloads produced by the page scraper.

The scraper emits camelCase JSON shaped like:
    {
        "url": "https://x.com/user/status/123",
        "authorUsername": "user",
        "authorName": "User Name",
        "authorAvatar": "https://...",
        "posts": [{"id", "text", "timestamp", "media", "links",
                   "isReply", "hasQuote"}, ...],
        "likes": 10, "retweets": 2, "replies": 1,
        "language": "en"
    }

Older scraper builds send ``tweets`` instead of ``posts`` and
``hasQuoteTweet`` instead of ``hasQuote``; both are accepted.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .models import Link, MediaItem, Post

logger = logging.getLogger(__name__)


@dataclass
class ThreadCapture:
    url: str
    author_username: str
    author_name: str
    posts: list[Post] = field(default_factory=list)
    author_avatar: str = ""
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    language: str | None = None


def parse_capture(raw: dict) -> ThreadCapture:
    """Convert a raw scraper payload into a ThreadCapture.

    Malformed posts are skipped with a warning. An empty post list is
    returned as-is; the store decides whether that is acceptable.
    """
    if not isinstance(raw, dict):
        raise ValueError("Capture payload must be a JSON object")

    raw_posts = raw.get("posts")
    if raw_posts is None:
        raw_posts = raw.get("tweets", [])

    posts: list[Post] = []
    for index, raw_post in enumerate(raw_posts or []):
        try:
            posts.append(_parse_post(raw_post, index))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed post %d in capture: %s", index, e)

    username = (raw.get("authorUsername") or "").lstrip("@")
    return ThreadCapture(
        url=raw.get("url", ""),
        author_username=username,
        author_name=raw.get("authorName") or username,
        author_avatar=raw.get("authorAvatar") or "",
        posts=posts,
        likes=_as_count(raw.get("likes")),
        retweets=_as_count(raw.get("retweets")),
        replies=_as_count(raw.get("replies")),
        language=raw.get("language") or None,
    )


def _parse_post(raw_post: dict, index: int) -> Post:
    if not isinstance(raw_post, dict):
        raise TypeError(f"expected object, got {type(raw_post).__name__}")
    text = raw_post["text"]
    if not isinstance(text, str):
        raise ValueError("post text must be a string")

    media = [
        MediaItem(
            type=m.get("type", "image"),
            url=m.get("url", ""),
            alt=m.get("alt", ""),
            thumbnail=m.get("thumbnail", ""),
            title=m.get("title", ""),
        )
        for m in raw_post.get("media") or []
        if isinstance(m, dict)
    ]

    links: list[Link] = []
    for link in raw_post.get("links") or []:
        if isinstance(link, str):
            links.append(Link(url=link))
        elif isinstance(link, dict) and link.get("url"):
            links.append(Link(url=link["url"], display=link.get("display", "")))

    return Post(
        id=str(raw_post.get("id") or index),
        text=text,
        timestamp=raw_post.get("timestamp"),
        media=media,
        links=links,
        is_reply=bool(raw_post.get("isReply", False)),
        has_quote=bool(raw_post.get("hasQuote", raw_post.get("hasQuoteTweet", False))),
    )


def _as_count(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def load_capture(path: str | Path) -> ThreadCapture:
    """Read a capture payload from a JSON file, or stdin when path is "-"."""
    if str(path) == "-":
        raw = json.load(sys.stdin)
    else:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_capture(raw)
