"""Pure rendering of a sales page into a platform-neutral display payload.

The payload carries a Discord-style embed dict plus one row of navigation
buttons. Button ids encode region, target page and the epoch the render was
committed under: ``sales_nav:<region>:<page>:<epoch>``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sales_board.config import settings
from sales_board.ingest.base import SaleItem

NAV_PREFIX = "sales_nav"
EMBED_DESCRIPTION_LIMIT = 4096
EMPTY_PAGE_TEXT = "_No discounted games found._"


class MalformedButtonError(ValueError):
    """Raised when a navigation button id cannot be decoded."""
    pass


@dataclass(frozen=True)
class ButtonSpec:
    """One interactive button."""

    custom_id: str
    label: str
    disabled: bool = False


@dataclass(frozen=True)
class DisplayPayload:
    """Embed plus button rows, ready for a message channel adapter."""

    embed: Optional[dict[str, Any]] = None
    content: Optional[str] = None
    buttons: tuple[ButtonSpec, ...] = field(default_factory=tuple)

    def with_buttons_disabled(self) -> "DisplayPayload":
        return replace(self, buttons=tuple(replace(b, disabled=True) for b in self.buttons))


@dataclass(frozen=True)
class NavRequest:
    """Decoded navigation button click."""

    region: str
    page_index: int
    epoch: int


def encode_nav_id(region: str, page_index: int, epoch: int) -> str:
    return f"{NAV_PREFIX}:{region}:{page_index}:{epoch}"


def is_nav_id(custom_id: Optional[str]) -> bool:
    return bool(custom_id) and custom_id.startswith(f"{NAV_PREFIX}:")


def _parse_int(raw: str) -> Optional[int]:
    raw = raw.strip()
    if raw.startswith("-"):
        return -int(raw[1:]) if raw[1:].isdigit() else None
    return int(raw) if raw.isdigit() else None


def decode_nav_id(custom_id: str, default_region: Optional[str] = None) -> NavRequest:
    """
    Decode a navigation button id.

    Negative page numbers are clamped to 0.

    Raises:
        MalformedButtonError: Wrong prefix, missing parts, or bad numbers
    """
    parts = (custom_id or "").split(":")
    if len(parts) < 4 or parts[0] != NAV_PREFIX:
        raise MalformedButtonError("Malformed button.")

    region = parts[1].strip().upper() or (default_region or settings.sales_region_cc)
    page = _parse_int(parts[2])
    epoch = _parse_int(parts[3])
    if page is None or epoch is None or epoch <= 0:
        raise MalformedButtonError("Malformed button state.")
    return NavRequest(region=region, page_index=max(0, page), epoch=epoch)


def sale_item_line(item: SaleItem) -> str:
    """One markdown line for an item."""
    final = (item.final_price_text or "").strip() or "Free"
    original = f" ~~{item.original_price_text}~~" if item.original_price_text else ""
    return f"**{item.name}** - {item.discount_percent}% off • {final}{original} - [Store]({item.url})"


def _description(items: Sequence[SaleItem]) -> str:
    if not items:
        return EMPTY_PAGE_TEXT
    lines: list[str] = []
    used = 0
    for item in items:
        line = sale_item_line(item)
        cost = len(line) + (2 if lines else 0)
        if used + cost > EMBED_DESCRIPTION_LIMIT:
            break
        lines.append(line)
        used += cost
    return "\n\n".join(lines)


def build_nav_buttons(region: str, page_index: int, total_pages: int, epoch: int) -> tuple[ButtonSpec, ...]:
    """Prev/next buttons; prev disabled on the first page, next on the last."""
    return (
        ButtonSpec(
            custom_id=encode_nav_id(region, page_index - 1, epoch),
            label="◀️ Prev",
            disabled=page_index <= 0,
        ),
        ButtonSpec(
            custom_id=encode_nav_id(region, page_index + 1, epoch),
            label="Next ▶️",
            disabled=page_index >= total_pages - 1,
        ),
    )


def render_page(
    region: str,
    page_index: int,
    items: Sequence[SaleItem],
    total_pages: int,
    epoch: int,
    page_size: Optional[int] = None,
    color: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DisplayPayload:
    """
    Render one page of the sales board.

    Args:
        region: Region code
        page_index: Zero-based page shown
        items: Items on the page
        total_pages: Known page count
        epoch: Epoch the render is committed under, encoded into button ids
        page_size: Page size for the footer (defaults to config)
        color: Embed color (defaults to config)
        now: Timestamp for the embed (defaults to current UTC time)

    Returns:
        DisplayPayload with embed dict and two navigation buttons
    """
    total_pages = max(1, total_pages)
    shown_page = min(page_index + 1, total_pages)
    embed = {
        "title": f"Steam Game Sales - page {shown_page}/{total_pages}",
        "description": _description(items),
        "color": settings.steam_embed_color if color is None else color,
        "footer": {
            "text": (
                f"Showing {len(items)} items • "
                f"{page_size or settings.sales_page_size} per page • Region {region}"
            ),
        },
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
    return DisplayPayload(
        embed=embed,
        buttons=build_nav_buttons(region, page_index, total_pages, epoch),
    )


def render_error(message: str) -> DisplayPayload:
    """Plain error content with no buttons."""
    return DisplayPayload(content=f"Error: {message}", buttons=())
