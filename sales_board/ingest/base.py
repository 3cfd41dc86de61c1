"""Data types shared by the sales ingest pipeline."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SaleItem:
    """One discounted catalog entry."""

    id: int
    name: str
    discount_percent: int
    final_price_text: str
    original_price_text: str | None
    url: str


@dataclass(frozen=True)
class FetchResult:
    """Items and page count for one upstream search page."""

    items: tuple[SaleItem, ...]
    total_pages: int


@dataclass
class PageRecord:
    """A cached page. Owned by the page cache."""

    items: tuple[SaleItem, ...]
    total_pages: int
    expires_at: float
    created_at: float = field(default=0.0)

    @property
    def ids(self) -> tuple[int, ...]:
        return tuple(item.id for item in self.items)
