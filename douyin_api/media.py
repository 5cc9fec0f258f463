"""Turn Douyin detail payloads into MediaInfo objects."""

import logging
from typing import Any, Optional

from yt_dlp.utils import traverse_obj

from .exceptions import DouyinNoPlayableMediaError
from .models import DetailPayload, MediaInfo

logger = logging.getLogger(__name__)

PLAY_ENDPOINT_TEMPLATE = (
    "https://aweme.snssdk.com/aweme/v1/play/?video_id={uri}&ratio=720p&line=0"
)


def _first_url(addr: Any) -> Optional[str]:
    """First non-empty URL of an address object ({"uri": ..., "url_list": [...]})."""
    return traverse_obj(addr, ("url_list", 0), expected_type=str) or None


def select_video_url(video: Optional[dict[str, Any]]) -> Optional[str]:
    """Pick the best playable URL from a detail's ``video`` object.

    Rules, first one that yields a URL wins:
    1. Highest ``bit_rate`` rendition that has a play URL and a positive bit rate
    2. First URL of ``play_addr``
    3. First URL of ``download_addr``
    4. Playback endpoint built from ``play_addr.uri``

    Args:
        video: The 'video' dict from the aweme detail

    Returns:
        Video URL string or None if nothing usable is present
    """
    if not isinstance(video, dict):
        return None

    renditions = [
        rendition
        for rendition in (video.get("bit_rate") or [])
        if isinstance(rendition, dict)
        and (rendition.get("bit_rate") or 0) > 0
        and _first_url(rendition.get("play_addr"))
    ]
    if renditions:
        best = max(renditions, key=lambda r: r["bit_rate"])
        logger.debug(
            f"Selected {best.get('gear_name', 'unnamed')} rendition "
            f"({best.get('bit_rate')} bps) out of {len(renditions)}"
        )
        return _first_url(best["play_addr"])

    url = _first_url(video.get("play_addr")) or _first_url(video.get("download_addr"))
    if url:
        return url

    uri = traverse_obj(video, ("play_addr", "uri"), expected_type=str)
    if uri:
        return PLAY_ENDPOINT_TEMPLATE.format(uri=uri)

    return None


def select_image_urls(images: list[Any]) -> list[str]:
    """Highest resolution URL for each image (Douyin lists them ascending)."""
    urls = []
    for image in images:
        url = traverse_obj(image, ("url_list", -1), expected_type=str)
        if url:
            urls.append(url)
    return urls


def build_media_info(payload: DetailPayload) -> MediaInfo:
    """Normalize a detail payload into a MediaInfo.

    Args:
        payload: Detail payload from any strategy

    Returns:
        MediaInfo for a video or an image post

    Raises:
        DouyinNoPlayableMediaError: No video URL / image URL could be selected
    """
    detail = payload.detail
    post_id = str(detail.get("aweme_id") or "")
    images = detail.get("images")
    is_image_post = isinstance(images, list)

    image_urls = select_image_urls(images) if is_image_post else []
    cover = (
        traverse_obj(detail, ("video", "cover", "url_list", 0), expected_type=str)
        or (image_urls[0] if image_urls else "")
    )

    info = MediaInfo(
        type="images" if is_image_post else "video",
        id=post_id,
        desc=detail.get("desc") or "",
        author=traverse_obj(detail, ("author", "nickname"), expected_type=str) or "Unknown",
        cover=cover,
        source=payload.source,
        degraded=payload.degraded,
    )

    if is_image_post:
        if not image_urls:
            raise DouyinNoPlayableMediaError(f"Image post {post_id} has no image URLs")
        info.images = image_urls
        return info

    video_url = select_video_url(detail.get("video"))
    if not video_url:
        raise DouyinNoPlayableMediaError(f"No playable URL found for post {post_id}")
    info.video_url = video_url
    return info
