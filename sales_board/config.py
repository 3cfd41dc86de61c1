"""Application configuration using Pydantic settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_color(value: str | int | None, fallback: int = 0x171A21) -> int:
    """Parse an embed color given as '#RRGGBB', '0xRRGGBB', decimal or bare hex."""
    if value is None or value == "":
        return fallback
    if isinstance(value, int):
        return value
    s = str(value).strip()
    try:
        if s.startswith("#"):
            return int(s[1:], 16)
        if s.lower().startswith("0x"):
            return int(s, 16)
        if s.isdigit():
            return int(s)
        return int(s, 16)
    except ValueError:
        return fallback


class Settings(BaseSettings):
    """Application settings."""

    # Discord
    discord_token: str = ""
    discord_guild_id: int | None = None  # Sync slash commands to one guild (dev)

    # Database (pinned board mapping)
    database_url: str = "sqlite+aiosqlite:///data/sales_board.db"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = ""
    status_api_enabled: bool = True
    status_api_host: str = "127.0.0.1"
    status_api_port: int = 8001

    # ==========================================================================
    # Store (catalog host)
    # ==========================================================================
    store_base_url: str = "https://store.steampowered.com"
    store_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    )
    http_timeout_seconds: float = 10.0  # Must stay well under the interaction token lifetime
    http_max_attempts: int = 2

    # ==========================================================================
    # Sales board
    # ==========================================================================
    sales_region_cc: str = "US"
    sales_page_size: int = 10
    sales_sort_by: str = "Discount_DESC"
    sales_poll_seconds: int = 24 * 3600
    steam_embed_color: int = 0x171A21

    # Page cache
    sales_page_ttl_seconds: float = 1200.0
    sales_max_pages_cache: int = 400
    sales_extend_ttl_on_hit: bool = True

    # Prewarming
    sales_precache_pages: int = 10
    sales_precache_prev_pages: int = 2
    sales_prewarm_spacing_seconds: float = 0.8
    sales_full_warmer_enabled: bool = True
    sales_full_warmer_delay_seconds: float = 15.0
    sales_full_warmer_spacing_seconds: float = 1.5

    # Navigation
    sales_nav_cooldown_seconds: float = 1.5
    sales_nav_state_ttl_seconds: float = 600.0
    sales_trust_unknown_epoch: bool = True

    @field_validator("steam_embed_color", mode="before")
    @classmethod
    def _color(cls, v):
        return parse_color(v)

    @field_validator("sales_region_cc", mode="before")
    @classmethod
    def _region(cls, v):
        return str(v or "US").strip().upper()

    @field_validator("sales_page_size")
    @classmethod
    def _page_size(cls, v: int) -> int:
        return max(5, v)

    @field_validator("sales_precache_pages", "sales_precache_prev_pages")
    @classmethod
    def _non_negative_int(cls, v: int) -> int:
        return max(0, v)

    @field_validator("sales_page_ttl_seconds")
    @classmethod
    def _page_ttl(cls, v: float) -> float:
        return max(60.0, v)

    @field_validator("sales_max_pages_cache")
    @classmethod
    def _max_pages(cls, v: int) -> int:
        return max(50, v)

    @field_validator("sales_prewarm_spacing_seconds")
    @classmethod
    def _prewarm_spacing(cls, v: float) -> float:
        return max(0.25, v)

    @field_validator("sales_full_warmer_delay_seconds", "sales_nav_cooldown_seconds")
    @classmethod
    def _non_negative_float(cls, v: float) -> float:
        return max(0.0, v)

    @field_validator("sales_full_warmer_spacing_seconds")
    @classmethod
    def _full_warm_spacing(cls, v: float) -> float:
        return max(0.4, v)

    @field_validator("sales_poll_seconds")
    @classmethod
    def _poll(cls, v: int) -> int:
        return max(3600, v)

    @field_validator("http_max_attempts")
    @classmethod
    def _attempts(cls, v: int) -> int:
        return max(1, v)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
