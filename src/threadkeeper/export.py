"""Render a stored thread as plain text, JSON or markdown.

Each renderer is a pure function of the Thread record.
"""

import json
from urllib.parse import urlparse

from .models import Thread

EXPORT_FORMATS = ("text", "json", "markdown")

DATE_FORMAT = "%Y-%m-%d %H:%M UTC"


def export_thread(thread: Thread, fmt: str = "text") -> str | None:
    """Render a thread in the given format, or None for an unknown format."""
    if fmt == "text":
        return render_text(thread)
    if fmt == "json":
        return render_json(thread)
    if fmt == "markdown":
        return render_markdown(thread)
    return None


def render_json(thread: Thread) -> str:
    return json.dumps(thread.to_dict(), indent=2, ensure_ascii=False)


def render_text(thread: Thread) -> str:
    lines: list[str] = []
    lines.append(f"Thread by @{thread.author_username} ({thread.author_name})")
    lines.append(f"Saved on: {thread.saved_at.strftime(DATE_FORMAT)}")
    lines.append(f"URL: {thread.url}")
    lines.append("=" * 50)
    lines.append("")

    total = len(thread.posts)
    for index, post in enumerate(thread.posts, start=1):
        lines.append(f"[{index}/{total}]")
        lines.append(post.text)
        if post.timestamp:
            lines.append(f"({post.timestamp})")
        lines.append("")

    return "\n".join(lines) + "\n"


def render_markdown(thread: Thread) -> str:
    lines: list[str] = []

    # Header with author
    lines.append(f"# Thread by @{thread.author_username}")
    lines.append("")
    lines.append(f"**Author:** {thread.author_name}")
    lines.append(f"**Date Saved:** {thread.saved_at.strftime(DATE_FORMAT)}")
    lines.append(f"**Original URL:** [View on X]({thread.url})")
    lines.append("")
    lines.append("---")
    lines.append("")

    total = len(thread.posts)
    for index, post in enumerate(thread.posts, start=1):
        lines.append(f"## Post {index}/{total}")
        lines.append("")
        lines.append(post.text)
        lines.append("")

        if post.media:
            lines.append(f"**Media:** {len(post.media)} attachment(s)")
            lines.append("")

        if post.links:
            link_desc = ", ".join(
                f"[{l.display or _shorten_url(l.url)}]({l.url})" for l in post.links
            )
            lines.append(f"**Links:** {link_desc}")
            lines.append("")

        if post.timestamp:
            lines.append(f"*{post.timestamp}*")
            lines.append("")

    return "\n".join(lines)


def _shorten_url(url: str) -> str:
    """Shorten a URL for display (domain + truncated path)."""
    parsed = urlparse(url)
    display = parsed.netloc + parsed.path
    if len(display) > 60:
        display = display[:57] + "..."
    return display
