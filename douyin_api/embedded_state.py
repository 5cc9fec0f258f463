"""Extraction of the server-rendered state Douyin embeds in its pages."""

import json
import logging
import re
from typing import Any, Optional
from urllib.parse import unquote

logger = logging.getLogger(__name__)

_render_data_regexes = (
    re.compile(r"window\.__RENDER_DATA__\s*=\s*([^<]+?)\s*(?:</script>|;)", re.DOTALL),
    re.compile(r'<script[^>]*id="RENDER_DATA"[^>]*>(.*?)</script>', re.DOTALL),
)

DEFAULT_MAX_DEPTH = 12


def extract_render_data(html: str) -> Optional[Any]:
    """Find and decode the RENDER_DATA blob in a page.

    Douyin serializes its initial state URL-encoded, either as a
    ``window.__RENDER_DATA__ = ...`` assignment or as the body of a
    ``<script id="RENDER_DATA">`` element.

    Args:
        html: Page HTML

    Returns:
        Decoded JSON object, or None if no blob is present or it doesn't parse.
    """
    for regex in _render_data_regexes:
        match = regex.search(html)
        if not match:
            continue
        raw = match.group(1).strip()
        # The assignment form is sometimes a quoted string literal
        if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
            raw = raw[1:-1]
        try:
            return json.loads(unquote(raw))
        except ValueError as e:
            logger.debug(f"Could not parse RENDER_DATA: {e}")
    return None


def _detail_from_node(node: dict[str, Any]) -> Optional[dict[str, Any]]:
    detail = node.get("aweme_detail")
    if isinstance(detail, dict) and detail:
        return detail

    aweme = node.get("aweme")
    if isinstance(aweme, dict) and isinstance(aweme.get("detail"), dict) and aweme["detail"]:
        return aweme["detail"]

    for list_key in ("aweme_list", "item_list"):
        items = node.get(list_key)
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]

    return None


def find_detail(state: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Optional[dict[str, Any]]:
    """Search decoded page state for a post detail object.

    Walks the object graph depth-first and returns the detail from the first
    node that carries ``aweme_detail``, ``aweme.detail``, ``aweme_list`` or
    ``item_list``. Depth is capped and already-seen containers are skipped.

    Args:
        state: Decoded RENDER_DATA
        max_depth: Maximum nesting depth to descend into

    Returns:
        The detail dict, or None if nothing matches.
    """
    visited: set[int] = set()
    stack: list[tuple[Any, int]] = [(state, 0)]

    while stack:
        node, depth = stack.pop()
        if not isinstance(node, (dict, list)) or id(node) in visited:
            continue
        visited.add(id(node))

        if isinstance(node, dict):
            detail = _detail_from_node(node)
            if detail is not None:
                return detail
            children = list(node.values())
        else:
            children = list(node)

        if depth >= max_depth:
            continue
        # Reversed so the first child is popped first (document order)
        for child in reversed(children):
            if isinstance(child, (dict, list)):
                stack.append((child, depth + 1))

    return None
