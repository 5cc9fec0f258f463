"""Douyin API exception classes."""

from typing import Optional


class DouyinError(Exception):
    """Base exception for Douyin resolution errors."""

    pass


class DouyinIdentifierNotFoundError(DouyinError):
    """No post ID could be extracted from the link or its redirect target."""

    pass


class DouyinTimeoutError(DouyinError):
    """A network or browser operation exceeded its time budget."""

    pass


class DouyinResolutionError(DouyinError):
    """Every strategy ran out without producing post data."""

    pass


class DouyinNoPlayableMediaError(DouyinError):
    """Post data was found but no playable video or image URL could be selected."""

    pass


class DouyinBrowserLaunchError(DouyinError):
    """Headless browser could not be started (bad executable or launch args)."""

    def __init__(self, message: str, profile: Optional[str] = None):
        super().__init__(message)
        self.profile = profile


class DouyinInvalidRequestError(DouyinError):
    """Download request is missing the media it is supposed to fetch."""

    pass


class DouyinDownloadError(DouyinError):
    """Media could not be downloaded from the CDN."""

    pass
