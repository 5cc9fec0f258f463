"""Douyin client for resolving share links to playable media.

This module turns free-form Douyin share text into a normalized media
descriptor: the short link is followed to find the post ID, post details are
fetched from the web API (curl_cffi with browser impersonation) and, failing
that, captured from a headless Chromium session (Playwright).

Example:
    >>> from douyin_api import DouyinClient, DouyinResolutionError
    >>>
    >>> client = DouyinClient()
    >>> try:
    ...     info = await client.video("7.43 https://v.douyin.com/iRNBho6u/ copy and open")
    ...     print(info.author)
    ...     if info.is_video:
    ...         print(info.video_url)
    ...     else:
    ...         print(f"{len(info.images)} images")
    ... except DouyinResolutionError:
    ...     print("Video unavailable")
"""

from .browser import BrowserInterceptionStrategy, BrowserProfile
from .client import DouyinClient
from .direct_api import DirectApiStrategy
from .exceptions import (
    DouyinBrowserLaunchError,
    DouyinDownloadError,
    DouyinError,
    DouyinIdentifierNotFoundError,
    DouyinInvalidRequestError,
    DouyinNoPlayableMediaError,
    DouyinResolutionError,
    DouyinTimeoutError,
)
from .models import Artifact, DetailPayload, DownloadTarget, MediaInfo
from .redirects import RedirectCache, RedirectResolver

__all__ = [
    # Client
    "DouyinClient",
    # Strategies
    "DirectApiStrategy",
    "BrowserInterceptionStrategy",
    "BrowserProfile",
    "RedirectResolver",
    "RedirectCache",
    # Models
    "DetailPayload",
    "MediaInfo",
    "DownloadTarget",
    "Artifact",
    # Exceptions
    "DouyinError",
    "DouyinIdentifierNotFoundError",
    "DouyinTimeoutError",
    "DouyinResolutionError",
    "DouyinNoPlayableMediaError",
    "DouyinBrowserLaunchError",
    "DouyinInvalidRequestError",
    "DouyinDownloadError",
]
