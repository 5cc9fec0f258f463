"""Helpers for Douyin share links and post IDs."""

import re
import secrets
import string
from typing import Optional

SHORT_LINK_REGEX = re.compile(r"https?://v\.douyin\.com/[a-zA-Z0-9]+")
FULL_LINK_PREFIX = "https://www.douyin.com/"

# Order matters: the first pattern that matches wins
_video_id_regexes = (
    re.compile(r"/(?:video|note)/(\d+)"),
    re.compile(r"aweme_id=(\d+)"),
    re.compile(r"vid=(\d+)"),
)

_token_alphabet = string.ascii_letters + string.digits
MS_TOKEN_LENGTH = 107


def clean_url(share_text: str) -> str:
    """Pull a Douyin link out of free-form share text.

    The share text copied from the app usually wraps the short link in a
    sentence ("7.43 copy this https://v.douyin.com/AbC123/ open app ...").

    Args:
        share_text: Raw text supplied by the user

    Returns:
        The short link if one is embedded, otherwise the input unchanged.
        Nothing is rejected here; callers deal with links that don't resolve.
    """
    match = SHORT_LINK_REGEX.search(share_text)
    if match:
        return match.group(0)
    # Full www.douyin.com links and anything unrecognised pass through as-is
    return share_text


def extract_video_id(url: Optional[str]) -> Optional[str]:
    """Extract the numeric post ID from a Douyin URL.

    Args:
        url: Any URL (page link, redirect target, API link)

    Returns:
        Post ID string, or None if no known pattern matches.
    """
    if not url:
        return None
    for regex in _video_id_regexes:
        match = regex.search(url)
        if match:
            return match.group(1)
    return None


def generate_ms_token(length: int = MS_TOKEN_LENGTH) -> str:
    """Generate a throwaway msToken for the web detail API."""
    return "".join(secrets.choice(_token_alphabet) for _ in range(length))


def video_page_url(video_id: str) -> str:
    return f"{FULL_LINK_PREFIX}video/{video_id}"


def is_direct_media_url(url: str) -> bool:
    """Check whether a URL points at media rather than a Douyin page."""
    return not ("douyin.com" in url and not url.endswith(".mp4"))
