"""Douyin share link resolution client."""

import logging
from typing import List, Optional

from .browser import BrowserInterceptionStrategy
from .direct_api import DirectApiStrategy
from .exceptions import (
    DouyinIdentifierNotFoundError,
    DouyinInvalidRequestError,
    DouyinNoPlayableMediaError,
    DouyinResolutionError,
    DouyinTimeoutError,
)
from .media import build_media_info
from .models import DetailPayload, DownloadTarget, MediaInfo
from .redirects import RedirectResolver
from .urls import clean_url, extract_video_id, is_direct_media_url

logger = logging.getLogger(__name__)


class DouyinClient:
    """Client for resolving Douyin share links to playable media.

    Resolution order for post data: the web detail API (plain HTTP), then a
    headless browser that intercepts the page's own API calls. Strategies
    report "nothing found" softly; only this class raises errors to callers.

    Args:
        redirect_resolver: Resolver for short links (default: shared-cache resolver)
        direct_api: Direct API strategy (default built from config)
        browser: Browser strategy (default built from config)

    Example:
        >>> client = DouyinClient()
        >>> info = await client.video("look https://v.douyin.com/iRNBho6u/ wow")
        >>> if info.is_video:
        ...     print(info.video_url)
        ... else:
        ...     print(info.images)
    """

    def __init__(
        self,
        redirect_resolver: Optional[RedirectResolver] = None,
        direct_api: Optional[DirectApiStrategy] = None,
        browser: Optional[BrowserInterceptionStrategy] = None,
    ):
        self.redirect_resolver = redirect_resolver or RedirectResolver()
        self.direct_api = direct_api or DirectApiStrategy()
        self._browser = browser

    @property
    def browser(self) -> BrowserInterceptionStrategy:
        # Built lazily so requests served by the direct API never read browser config
        if self._browser is None:
            self._browser = BrowserInterceptionStrategy()
        return self._browser

    @classmethod
    async def close(cls) -> None:
        """Close shared HTTP resources. Call on application shutdown."""
        await RedirectResolver.close_connector()
        await DirectApiStrategy.close_session()

    async def resolve_video_id(
        self, share_text: str, secondary_url: Optional[str] = None
    ) -> str:
        """Find the post ID behind a share link.

        Tries the cleaned link itself, then ``secondary_url``, then the
        terminal URL of the link's redirect chain.

        Args:
            share_text: Share text or URL supplied by the user
            secondary_url: Extra URL known to belong to the same post

        Returns:
            Post ID string

        Raises:
            DouyinIdentifierNotFoundError: No candidate URL contains an ID, including
                when the redirect failed or timed out
        """
        url = clean_url(share_text)
        video_id = extract_video_id(url) or extract_video_id(secondary_url)
        if video_id:
            logger.debug(f"Extracted video ID {video_id} without redirect")
            return video_id

        try:
            final_url = await self.redirect_resolver.resolve(url)
        except DouyinTimeoutError as e:
            # Terminal URL unknown; carry on without it
            logger.warning(f"Redirect timed out for {url}: {e}")
            final_url = None

        video_id = extract_video_id(final_url)
        if not video_id:
            logger.warning(f"No video ID in {url} (redirected to {final_url})")
            raise DouyinIdentifierNotFoundError(f"Could not extract video ID from {url}")
        return video_id

    async def fetch_payload(self, video_id: str) -> DetailPayload:
        """Get post details, trying the direct API before the browser.

        Args:
            video_id: Douyin post ID

        Returns:
            DetailPayload from the first strategy that produced one

        Raises:
            DouyinResolutionError: No strategy produced data
            DouyinTimeoutError: No strategy produced data and at least one timed out
            DouyinBrowserLaunchError: The browser could not be started
        """
        timed_out = False

        try:
            payload = await self.direct_api.fetch(video_id)
        except DouyinTimeoutError as e:
            logger.warning(f"Direct API timed out for video ID {video_id}: {e}")
            payload = None
            timed_out = True
        if payload is not None:
            return payload

        logger.info(f"Falling back to browser for video ID: {video_id}")
        try:
            payload = await self.browser.fetch(video_id)
        except DouyinTimeoutError as e:
            logger.warning(f"Browser timed out for video ID {video_id}: {e}")
            payload = None
            timed_out = True
        if payload is not None:
            if payload.degraded:
                logger.warning(f"Using degraded page-scraped data for video ID: {video_id}")
            return payload

        logger.error(f"All strategies exhausted for video ID: {video_id}")
        if timed_out:
            raise DouyinTimeoutError(f"Timed out fetching data for video {video_id}")
        raise DouyinResolutionError(f"Could not get data for video {video_id}")

    async def video(self, share_text: str) -> MediaInfo:
        """Resolve a share link all the way to a media descriptor.

        Args:
            share_text: Share text or URL supplied by the user

        Returns:
            MediaInfo for the post

        Raises:
            DouyinIdentifierNotFoundError: No post ID in the link
            DouyinResolutionError: Post data could not be fetched
            DouyinNoPlayableMediaError: Post data has no usable media URL
            DouyinTimeoutError: Resolution failed and a timeout was involved
            DouyinBrowserLaunchError: The browser could not be started
        """
        video_id = await self.resolve_video_id(share_text)
        logger.info(f"Resolving video ID: {video_id}")
        payload = await self.fetch_payload(video_id)
        info = build_media_info(payload)
        logger.info(f"Resolved {info.type} post {info.id} via {info.source}")
        return info

    async def ensure_media_url(self, url: str, video_url: str) -> str:
        """Make sure a video URL points at media, not at a Douyin page.

        Callers fetch info and request a download separately, so the URL they
        hand back may be a page link. Those are resolved again.

        Args:
            url: The share link the video URL was obtained from
            video_url: Candidate video URL

        Returns:
            A direct media URL
        """
        if is_direct_media_url(video_url):
            return video_url

        logger.info(f"Video URL is a page link, resolving again: {video_url}")
        video_id = extract_video_id(video_url) or extract_video_id(clean_url(url))
        if not video_id:
            raise DouyinIdentifierNotFoundError(
                f"Could not extract video ID from {video_url}"
            )

        info = build_media_info(await self.fetch_payload(video_id))
        if not info.video_url:
            raise DouyinNoPlayableMediaError(f"Post {video_id} has no video")
        logger.info(f"Found real video URL: {info.video_url}")
        return info.video_url

    async def download_target(
        self,
        url: str,
        media_type: str,
        video_url: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> DownloadTarget:
        """Prepare what the materializer should download.

        Args:
            url: The share link
            media_type: "video" or "images"
            video_url: Video URL (for videos)
            images: Image URLs (for image posts)

        Returns:
            DownloadTarget with a generated file name or prefix

        Raises:
            DouyinInvalidRequestError: The media for ``media_type`` is missing
        """
        if media_type == "video":
            if not video_url:
                raise DouyinInvalidRequestError("Video URL is required")
            return DownloadTarget.for_video(await self.ensure_media_url(url, video_url))

        if media_type == "images":
            if not images:
                raise DouyinInvalidRequestError("Image URLs are required")
            return DownloadTarget.for_images(images)

        raise DouyinInvalidRequestError(f"Unknown media type: {media_type}")
