from __future__ import annotations
"""Scanner for links, buttons and headings that a query can be matched against."""

import json
import logging
import re
from typing import Any, List, Optional, Sequence, Set, Tuple

from playwright.async_api import ElementHandle, Page

from ..config import settings
from ..models import MAX_TEXT_CHARS, Candidate, CandidateType, Region

logger = logging.getLogger(__name__)

LINK_SELECTOR = "a"
BUTTON_SELECTOR = "button, input[type=button], input[type=submit], [role='button']"
HEADING_SELECTOR = "h1,h2,h3,h4,h5,h6"

SCAN_ORDER: Sequence[Tuple[CandidateType, str]] = (
    ("link", LINK_SELECTOR),
    ("button", BUTTON_SELECTOR),
    ("heading", HEADING_SELECTOR),
)

UPPER_REGION_FRACTION = 0.25

TEXT_SOURCES = ("innerText", "textContent", "ariaLabel", "title", "alt", "value")

_WHITESPACE = re.compile(r"\s+")

# Collects everything the Python side needs in a single round trip per element.
DESCRIBE_ELEMENT_JS = """
(el) => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const chain = [];
    let node = el;
    while (node && node !== document.body) {
        chain.push({
            tag: node.tagName ? node.tagName.toLowerCase() : "",
            role: node.getAttribute ? (node.getAttribute("role") || "").toLowerCase() : "",
        });
        node = node.parentElement;
    }
    const attr = (name) => (el.getAttribute ? el.getAttribute(name) : null);
    return {
        tagName: el.tagName ? el.tagName.toLowerCase() : "",
        display: style.display,
        visibility: style.visibility,
        opacity: style.opacity,
        width: rect.width,
        height: rect.height,
        top: rect.top,
        viewportHeight: window.innerHeight || document.documentElement.clientHeight || 0,
        chain,
        innerText: typeof el.innerText === "string" ? el.innerText : null,
        textContent: el.textContent,
        ariaLabel: attr("aria-label"),
        title: attr("title"),
        alt: attr("alt"),
        value: attr("value"),
        hrefAttr: attr("href"),
        resolvedHref: typeof el.href === "string" ? el.href : null,
    };
}
"""


def is_rendered(facts: dict[str, Any]) -> bool:
    """Visibility filter: hidden or zero-sized boxes are skipped, off-screen ones are kept."""

    if facts.get("display") == "none" or facts.get("visibility") == "hidden":
        return False
    try:
        if float(facts.get("opacity", 1) or 0) == 0:
            return False
    except (TypeError, ValueError):
        pass
    if not facts.get("width") or not facts.get("height"):
        return False
    return True


def classify_region(
    chain: Sequence[dict[str, Any]], top: Optional[float], viewport_height: Optional[float]
) -> Region:
    for entry in chain:
        tag = (entry.get("tag") or "").lower()
        role = (entry.get("role") or "").lower()
        if tag == "nav" or role == "navigation":
            return "nav"
        if tag == "header" or role == "banner":
            return "header"
        if tag == "footer" or role == "contentinfo":
            return "footer"

    if top is not None and viewport_height and top < viewport_height * UPPER_REGION_FRACTION:
        return "upper"
    return "body"


def normalize_text(value: Optional[str], limit: int = MAX_TEXT_CHARS) -> str:
    if not value or not isinstance(value, str):
        return ""
    text = value.strip()
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text)[:limit]


def readable_text(facts: dict[str, Any]) -> str:
    for source in TEXT_SOURCES:
        text = normalize_text(facts.get(source))
        if text:
            return text
    return ""


def _candidate_href(ctype: CandidateType, facts: dict[str, Any]) -> Optional[str]:
    if ctype == "heading":
        return None
    if ctype == "link":
        href = facts.get("resolvedHref") or facts.get("hrefAttr") or ""
    else:
        href = facts.get("hrefAttr") or ""
    return href or None


def build_candidate(ctype: CandidateType, facts: dict[str, Any], element: Any = None) -> Optional[Candidate]:
    """Turn the raw facts of one element into a candidate, or ``None`` if it is not usable."""

    if not is_rendered(facts):
        return None
    text = readable_text(facts)
    href = _candidate_href(ctype, facts)
    if ctype == "heading" and not text:
        return None
    if not text and not href:
        return None
    return Candidate(
        type=ctype,
        text=text,
        href=href,
        region=classify_region(facts.get("chain") or [], facts.get("top"), facts.get("viewportHeight")),
        tag_name=facts.get("tagName") or None,
        element=element,
    )


async def describe_element(handle: ElementHandle) -> Optional[dict[str, Any]]:
    try:
        facts = await handle.evaluate(DESCRIBE_ELEMENT_JS)
    except Exception as exc:
        # Elements can be detached between query and evaluation on busy pages.
        logger.debug("scan_element_failed reason=%r", exc)
        return None
    return facts if isinstance(facts, dict) else None


async def scan_candidates(page: Page, max_candidates: int | None = None) -> List[Candidate]:
    """
    Collect visible links, buttons and headings in document order per kind,
    de-duplicated by (type, href, first 60 chars of text) and capped at
    ``max_candidates``. Reads the DOM only.
    """
    limit = max_candidates or settings.max_candidates
    candidates: List[Candidate] = []
    seen: Set[tuple[str, str, str]] = set()

    for ctype, selector in SCAN_ORDER:
        if len(candidates) >= limit:
            break
        handles = await page.query_selector_all(selector)
        for handle in handles:
            facts = await describe_element(handle)
            if facts is None:
                continue
            candidate = build_candidate(ctype, facts, element=handle)
            if candidate is None:
                continue
            key = candidate.dedupe_key
            if key in seen:
                continue
            seen.add(key)
            candidates.append(candidate)
            if len(candidates) >= limit:
                break

    logger.debug("scan_complete candidates=%d limit=%d", len(candidates), limit)
    return candidates


async def is_attached(handle: Any) -> bool:
    if handle is None:
        return False
    try:
        return bool(await handle.evaluate("(el) => el.isConnected"))
    except Exception:
        return False


def _css_string(value: str) -> str:
    # JSON string escaping is valid CSS string escaping for quotes and backslashes.
    return json.dumps(value)


async def resolve_by_href(page: Page, href: Optional[str]) -> Optional[ElementHandle]:
    """Find a replacement for a stale element reference using its href."""

    if not href:
        return None
    for selector in (f"a[href={_css_string(href)}]", f"[href={_css_string(href)}]"):
        try:
            handle = await page.query_selector(selector)
        except Exception as exc:
            logger.debug("resolve_by_href_failed selector=%s reason=%r", selector, exc)
            continue
        if handle is not None:
            return handle

    # Links report absolute hrefs while the attribute may be relative.
    try:
        return await _find_link_by_resolved_href(page, href)
    except Exception as exc:
        logger.debug("resolve_by_href_failed href=%s reason=%r", href, exc)
        return None


async def _find_link_by_resolved_href(page: Page, href: str) -> Optional[ElementHandle]:
    handle = await page.evaluate_handle(
        "(href) => Array.from(document.querySelectorAll('a')).find((a) => a.href === href) || null",
        href,
    )
    element = handle.as_element()
    if element is None:
        await handle.dispose()
    return element
