"""Data models for Douyin post data."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass(frozen=True)
class DetailPayload:
    """Single-post detail data, whichever API shape it arrived in.

    Douyin answers with either ``{"aweme_detail": {...}}`` (detail API) or
    ``{"item_list": [{...}]}`` (item info API). Both are folded into this one
    shape at the strategy boundary so nothing downstream has to sniff.

    Attributes:
        detail: The aweme detail object for the post
        source: Where the data came from ("detail_api", "iteminfo_api",
            "intercepted", "render_data" or "dom")
    """

    detail: dict[str, Any]
    source: str

    @classmethod
    def from_response(cls, data: Any, source: str) -> Optional[DetailPayload]:
        """Build a payload from a raw API response.

        Returns:
            DetailPayload if the response has a detail or non-empty list shape,
            None otherwise.
        """
        if not isinstance(data, dict):
            return None

        detail = data.get("aweme_detail")
        if isinstance(detail, dict) and detail:
            return cls(detail=detail, source=source)

        items = data.get("item_list")
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return cls(detail=items[0], source=source)

        return None

    @property
    def degraded(self) -> bool:
        """True for payloads synthesized from scraped <video> tags."""
        return self.source == "dom"

    def as_response(self) -> dict[str, Any]:
        return {"aweme_detail": self.detail}


@dataclass
class MediaInfo:
    """Information about a Douyin video or image post.

    Attributes:
        type: Content type - "video" for videos, "images" for image posts
        id: Douyin post ID (aweme_id)
        desc: Post description text
        author: Author nickname
        cover: Cover image URL (empty string if unknown)
        video_url: Direct playable URL (only for videos)
        images: Image URLs in post order (only for image posts)
        source: Strategy that produced the underlying data
        degraded: True when built from scraped page elements rather than API data
    """

    type: str  # "video" or "images"
    id: str
    desc: str
    author: str
    cover: str
    video_url: Optional[str] = None
    images: List[str] = field(default_factory=list)
    source: str = ""
    degraded: bool = False

    @property
    def is_video(self) -> bool:
        return self.type == "video"

    @property
    def is_slideshow(self) -> bool:
        return self.type == "images"

    def to_dict(self) -> dict[str, Any]:
        """Outbound shape handed to callers (bot handlers, JSON APIs)."""
        result: dict[str, Any] = {
            "id": self.id,
            "desc": self.desc,
            "author": self.author,
            "cover": self.cover,
            "type": self.type,
        }
        if self.is_slideshow:
            result["images"] = list(self.images)
        else:
            result["videoUrl"] = self.video_url
        return result


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class DownloadTarget:
    """What the materializer should fetch for one download request.

    Videos carry a single URL and filename, image posts carry the image URL
    list and a filename prefix.
    """

    type: str  # "video" or "images"
    url: Optional[str] = None
    filename: Optional[str] = None
    urls: List[str] = field(default_factory=list)
    prefix: Optional[str] = None

    @classmethod
    def for_video(cls, url: str) -> DownloadTarget:
        return cls(type="video", url=url, filename=f"douyin_video_{_short_id()}.mp4")

    @classmethod
    def for_images(cls, urls: List[str]) -> DownloadTarget:
        return cls(type="images", urls=list(urls), prefix=f"douyin_image_{_short_id()}")


@dataclass
class Artifact:
    """A materialized download sitting in the download directory.

    Attributes:
        path: Absolute path of the file on disk
        name: File name (what a client would download)
        expire_at: When the file is scheduled for deletion
    """

    path: str
    name: str
    expire_at: datetime
