"""Search result parsing and locale-robust price normalization.

Turns a fragment of store search markup into ``SaleItem`` rows. Prices
arrive in whatever locale the store picked for the session ("$9.99",
"9,99€", "1.234,56 zł"), so numeric comparison goes through
``price_to_number`` which treats the last separator as the decimal point.
"""

import logging
import re
from typing import Optional

from selectolax.parser import HTMLParser, Node

from sales_board.ingest.base import SaleItem

logger = logging.getLogger(__name__)

DEFAULT_STORE_URL = "https://store.steampowered.com"

_NUMBER_RE = re.compile(r"[\d.,]+")
_APP_PATH_RE = re.compile(r"/app/\d+")


def price_to_number(text: Optional[str]) -> Optional[float]:
    """
    Convert a price string to a float.

    The last numeric run in the string is used. Within it, the last ``.`` or
    ``,`` is the decimal point and every earlier separator is thousands
    grouping.

    Args:
        text: Price text such as "€19,99" or "1.234,56"

    Returns:
        Float value, or None when the text holds no number
    """
    if not text:
        return None

    runs = [m for m in _NUMBER_RE.findall(str(text)) if any(c.isdigit() for c in m)]
    if not runs:
        return None

    digits = runs[-1].strip(".,")
    sep_idx = max(digits.rfind(","), digits.rfind("."))
    if sep_idx >= 0:
        int_part = re.sub(r"[.,]", "", digits[:sep_idx])
        frac_part = re.sub(r"[.,]", "", digits[sep_idx + 1:])
        candidate = f"{int_part or '0'}.{frac_part or '0'}"
    else:
        candidate = digits

    try:
        return float(candidate)
    except ValueError:
        return None


def compute_discount_percent(final: float, original: float) -> int:
    """Discount implied by two prices, never reported below 1%."""
    return max(1, round((1 - final / original) * 100))


def _text(node: Optional[Node], separator: str = "") -> str:
    if node is None:
        return ""
    return " ".join(node.text(separator=separator).split())


def _parse_app_id(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    head = str(raw).split(",")[0].strip()
    if not head.isdigit():
        return None
    value = int(head)
    return value or None


def _parse_percent(text: str) -> int:
    cleaned = re.sub(r"[^\d-]", "", text or "")
    try:
        return min(100, abs(int(cleaned)))
    except ValueError:
        return 0


def _split_freeform_price(text: str) -> tuple[Optional[str], Optional[str]]:
    """Return (original, final) from a whitespace separated price string."""
    tokens = [t for t in text.split(" ") if t]
    numeric = [t for t in tokens if any(c.isdigit() for c in t)]
    if len(numeric) >= 2:
        return numeric[0], numeric[-1]
    if len(numeric) == 1:
        return None, numeric[0]
    return None, text


def parse_row(row: Node, base_url: str = DEFAULT_STORE_URL) -> Optional[SaleItem]:
    """
    Parse one search result row.

    Returns:
        SaleItem, or None when the row has no app id or is not discounted
    """
    app_id = _parse_app_id(row.attributes.get("data-ds-appid"))
    if app_id is None:
        return None

    name = _text(row.css_first(".title")) or f"Item {app_id}"

    pct_node = row.css_first(".search_discount .discount_pct") or row.css_first(".discount_pct")
    discount_percent = _parse_percent(_text(pct_node))

    final_text: Optional[str] = None
    original_text: Optional[str] = None

    block = row.css_first(".discount_block")
    if block is not None:
        final_text = _text(block.css_first(".discount_final_price")) or None
        original_text = _text(block.css_first(".discount_original_price")) or None

    if not final_text:
        freeform = _text(row.css_first(".search_price"), separator=" ")
        if freeform:
            split_original, final_text = _split_freeform_price(freeform)
            original_text = split_original or original_text

    final_num = price_to_number(final_text)
    original_num = price_to_number(original_text)
    cheaper = final_num is not None and original_num is not None and final_num < original_num

    if discount_percent <= 0 and cheaper:
        discount_percent = compute_discount_percent(final_num, original_num)

    if discount_percent <= 0 and not cheaper:
        return None

    href = (row.attributes.get("href") or "").split("?")[0]
    url = href if href and _APP_PATH_RE.search(href) else f"{base_url.rstrip('/')}/app/{app_id}/"

    return SaleItem(
        id=app_id,
        name=name,
        discount_percent=discount_percent,
        final_price_text=final_text or "Free",
        original_price_text=original_text,
        url=url,
    )


def parse_items(raw_html: str, base_url: str = DEFAULT_STORE_URL) -> list[SaleItem]:
    """
    Parse search result markup into discounted items, in page order.

    Args:
        raw_html: ``results_html`` fragment or a full search page
        base_url: Store origin for canonical app URLs

    Returns:
        List of SaleItem; rows without an id or discount are dropped
    """
    if not raw_html:
        return []

    tree = HTMLParser(raw_html)
    items: list[SaleItem] = []
    for row in tree.css(".search_result_row"):
        item = parse_row(row, base_url)
        if item is not None:
            items.append(item)
    return items
