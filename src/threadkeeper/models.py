"""Data models for stored threads, collections, tags and store bookkeeping.

Every model round-trips through ``to_dict()`` / ``from_dict()`` using plain
JSON types, which is the shape persisted by the storage backends.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: datetime | str | None) -> datetime | None:
    """Accept a datetime, an ISO-8601 string or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class MediaItem:
    type: str  # "image", "video", "card"
    url: str = ""
    alt: str = ""
    thumbnail: str = ""
    title: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "url": self.url,
            "alt": self.alt,
            "thumbnail": self.thumbnail,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MediaItem":
        return cls(
            type=data.get("type", "image"),
            url=data.get("url", ""),
            alt=data.get("alt", ""),
            thumbnail=data.get("thumbnail", ""),
            title=data.get("title", ""),
        )


@dataclass
class Link:
    url: str
    display: str = ""

    def to_dict(self) -> dict:
        return {"url": self.url, "display": self.display}

    @classmethod
    def from_dict(cls, data: dict) -> "Link":
        return cls(url=data["url"], display=data.get("display", ""))


@dataclass
class Post:
    id: str
    text: str
    timestamp: str | None = None  # ISO string as captured, not normalized
    media: list[MediaItem] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    is_reply: bool = False
    has_quote: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "timestamp": self.timestamp,
            "media": [m.to_dict() for m in self.media],
            "links": [l.to_dict() for l in self.links],
            "is_reply": self.is_reply,
            "has_quote": self.has_quote,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Post":
        return cls(
            id=data.get("id", ""),
            text=data.get("text", ""),
            timestamp=data.get("timestamp"),
            media=[MediaItem.from_dict(m) for m in data.get("media", [])],
            links=[Link.from_dict(l) for l in data.get("links", [])],
            is_reply=bool(data.get("is_reply", False)),
            has_quote=bool(data.get("has_quote", False)),
        )


@dataclass
class ThreadMetadata:
    post_count: int
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    has_media: bool = False
    language: str = "en"

    def to_dict(self) -> dict:
        return {
            "post_count": self.post_count,
            "likes": self.likes,
            "retweets": self.retweets,
            "replies": self.replies,
            "has_media": self.has_media,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ThreadMetadata":
        return cls(
            post_count=int(data.get("post_count", 0)),
            likes=int(data.get("likes", 0)),
            retweets=int(data.get("retweets", 0)),
            replies=int(data.get("replies", 0)),
            has_media=bool(data.get("has_media", False)),
            language=data.get("language", "en"),
        )


@dataclass
class Thread:
    id: str
    url: str
    author_username: str
    author_name: str
    posts: list[Post]
    saved_at: datetime
    last_accessed: datetime
    metadata: ThreadMetadata
    author_avatar: str = ""
    last_modified: datetime | None = None
    tags: list[str] = field(default_factory=list)
    collection_id: str = "default"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "author_username": self.author_username,
            "author_name": self.author_name,
            "author_avatar": self.author_avatar,
            "posts": [p.to_dict() for p in self.posts],
            "saved_at": _dt_to_str(self.saved_at),
            "last_accessed": _dt_to_str(self.last_accessed),
            "last_modified": _dt_to_str(self.last_modified),
            "tags": list(self.tags),
            "collection_id": self.collection_id,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Thread":
        posts = [p if isinstance(p, Post) else Post.from_dict(p) for p in data["posts"]]
        metadata = data.get("metadata")
        if isinstance(metadata, ThreadMetadata):
            meta = metadata
        elif metadata:
            meta = ThreadMetadata.from_dict(metadata)
        else:
            meta = ThreadMetadata(post_count=len(posts))
        saved_at = _parse_dt(data.get("saved_at")) or utcnow()
        return cls(
            id=data["id"],
            url=data.get("url", ""),
            author_username=data.get("author_username", ""),
            author_name=data.get("author_name", ""),
            author_avatar=data.get("author_avatar", ""),
            posts=posts,
            saved_at=saved_at,
            last_accessed=_parse_dt(data.get("last_accessed")) or saved_at,
            last_modified=_parse_dt(data.get("last_modified")),
            tags=list(data.get("tags", [])),
            collection_id=data.get("collection_id", "default"),
            metadata=meta,
        )


@dataclass
class Collection:
    id: str
    name: str
    created_at: datetime
    description: str = ""
    color: str = ""
    parent_id: str | None = None
    thread_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "created_at": _dt_to_str(self.created_at),
            "parent_id": self.parent_id,
            "thread_ids": list(self.thread_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Collection":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            color=data.get("color", ""),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            parent_id=data.get("parent_id"),
            thread_ids=list(data.get("thread_ids", [])),
        )


@dataclass
class Tag:
    id: str
    name: str
    color: str
    created_at: datetime
    thread_count: int = 0
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": _dt_to_str(self.created_at),
            "thread_count": self.thread_count,
            "updated_at": _dt_to_str(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Tag":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            color=data.get("color", ""),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            thread_count=int(data.get("thread_count", 0)),
            updated_at=_parse_dt(data.get("updated_at")),
        )


@dataclass
class StoreMetadata:
    version: int
    installed_at: datetime
    last_sync: datetime | None = None
    thread_count: int = 0
    storage_used: int = 0  # bytes, snapshot taken on save/delete

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "installed_at": _dt_to_str(self.installed_at),
            "last_sync": _dt_to_str(self.last_sync),
            "thread_count": self.thread_count,
            "storage_used": self.storage_used,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoreMetadata":
        return cls(
            version=int(data.get("version", 0)),
            installed_at=_parse_dt(data.get("installed_at")) or utcnow(),
            last_sync=_parse_dt(data.get("last_sync")),
            thread_count=int(data.get("thread_count", 0)),
            storage_used=int(data.get("storage_used", 0)),
        )


@dataclass
class ChangeRecord:
    action: str  # "save", "update", "delete"
    thread_id: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "thread_id": self.thread_id,
            "timestamp": _dt_to_str(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeRecord":
        return cls(
            action=data["action"],
            thread_id=data.get("thread_id", ""),
            timestamp=_parse_dt(data.get("timestamp")) or utcnow(),
        )


@dataclass
class SyncState:
    last_sync: datetime | None = None
    pending_changes: list[ChangeRecord] = field(default_factory=list)
    sync_enabled: bool = False

    def to_dict(self) -> dict:
        return {
            "last_sync": _dt_to_str(self.last_sync),
            "pending_changes": [c.to_dict() for c in self.pending_changes],
            "sync_enabled": self.sync_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        return cls(
            last_sync=_parse_dt(data.get("last_sync")),
            pending_changes=[
                ChangeRecord.from_dict(c) for c in data.get("pending_changes", [])
            ],
            sync_enabled=bool(data.get("sync_enabled", False)),
        )


@dataclass
class User:
    id: str = ""
    email: str = ""
    is_premium: bool = False

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "is_premium": self.is_premium}

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        return cls(
            id=data.get("id", ""),
            email=data.get("email", ""),
            is_premium=bool(data.get("is_premium", False)),
        )


@dataclass
class UserPrefs:
    theme: str = "light"
    auto_save: bool = False
    notifications: bool = True
    default_collection: str = "default"

    def to_dict(self) -> dict:
        return {
            "theme": self.theme,
            "auto_save": self.auto_save,
            "notifications": self.notifications,
            "default_collection": self.default_collection,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserPrefs":
        return cls(
            theme=data.get("theme", "light"),
            auto_save=bool(data.get("auto_save", False)),
            notifications=bool(data.get("notifications", True)),
            default_collection=data.get("default_collection", "default"),
        )
