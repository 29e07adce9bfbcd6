from __future__ import annotations

import logging
from typing import Any

from ..errors import HighlightError

logger = logging.getLogger(__name__)

PREV_OUTLINE_ATTR = "data-sniffr-prev-outline"
HIGHLIGHT_OUTLINE = "3px solid #ffa424"
HIGHLIGHT_OFFSET = "4px"

# The revert timer lives in the page so callers never wait on it.
HIGHLIGHT_JS = """
(el, opts) => {
    if (!el.isConnected) return false;
    try {
        el.scrollIntoView({ behavior: "smooth", block: "center" });
    } catch (e) {}
    if (!el.hasAttribute(opts.attr)) {
        el.setAttribute(opts.attr, el.style.outline || "");
    }
    el.style.outline = opts.outline;
    el.style.outlineOffset = opts.offset;
    setTimeout(() => {
        const prev = el.getAttribute(opts.attr);
        if (prev !== null) {
            el.style.outline = prev;
            el.removeAttribute(opts.attr);
        }
    }, opts.durationMs);
    return true;
}
"""


async def highlight_element(handle: Any, duration_ms: int = 2500) -> bool:
    """Outline ``handle``, scroll it into view and restore the previous outline later."""

    if handle is None:
        raise HighlightError("no element to highlight")
    try:
        applied = await handle.evaluate(
            HIGHLIGHT_JS,
            {
                "attr": PREV_OUTLINE_ATTR,
                "outline": HIGHLIGHT_OUTLINE,
                "offset": HIGHLIGHT_OFFSET,
                "durationMs": duration_ms,
            },
        )
    except Exception as exc:
        raise HighlightError(f"highlight failed: {exc}") from exc
    if not applied:
        raise HighlightError("element is no longer attached to the page")
    logger.debug("highlight_applied duration_ms=%d", duration_ms)
    return True
