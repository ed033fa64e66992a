# rentwatch/config/settings.py

"""Central configuration for the rentwatch price tracker."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: str = "") -> str:
    """Return a trimmed environment value, or *default* when blank."""
    value = os.getenv(key, "").strip()
    return value or default


def _env_int(key: str, default: int) -> int:
    """Return an integer environment value, or *default* if unparsable."""
    try:
        return int(_env(key))
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    """Return a boolean environment value (1/true/yes/on)."""
    raw = _env(key)
    if not raw:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_list(key: str, default: list[str]) -> list[str]:
    """Return a comma-separated environment value as a list."""
    raw = _env(key)
    if not raw:
        return default
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    """Central configuration for the rentwatch price tracker."""

    # --- Browser ---
    USER_AGENT: str = _env(
        "SCRAPER_USER_AGENT",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36",
    )
    HEADLESS: bool = _env_bool("SCRAPER_HEADLESS", True)
    NO_SANDBOX: bool = _env_bool("SCRAPER_NO_SANDBOX", True)
    VIEWPORT: dict[str, int] = {"width": 1920, "height": 1080}
    EXTRA_HEADERS: dict[str, str] = {
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
    }
    BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset(
        {"image", "font", "media"}
    )

    # --- Scraping ---
    CRAWL_DELAY: float = (
        _env_int("SCRAPER_CRAWL_DELAY_MS", 2000) / 1000
    )                                   # Politeness delay between sources
    TIMEOUT_MS: int = _env_int("SCRAPER_TIMEOUT_MS", 30000)
    MAX_RETRIES: int = _env_int("SCRAPER_MAX_RETRIES", 3)
    NAVIGATION_ATTEMPTS: int = 3        # Per-navigation retry count
    SETTLE_DELAY: float = 0.5           # Seconds after DOM ready
    READY_STATE_TIMEOUT_MS: int = 15000
    WAIT_FOR_ITEMS_MS: int = 10000      # Best-effort item selector wait
    SCROLL_STEP_PX: int = 400
    SCROLL_INTERVAL_MS: int = 200
    BACKOFF_BASE: float = 2.0           # Per-source retry backoff (secs)
    SOURCE_TIMEOUT: float = float(
        _env_int("SCRAPER_SOURCE_TIMEOUT_S", 300)
    )                                   # Per-attempt scrape timeout (secs)
    CONCURRENCY: int = max(1, _env_int("SCRAPER_CONCURRENCY", 1))
    DEFAULT_WINGS: list[str] = _env_list("DEFAULT_WINGS", [])

    # --- Extraction ---
    MIN_PLAUSIBLE_PRICE: int = 1000     # Prices below this are noise
    AVAILABILITY_WINDOW_DAYS: int = 30
    PAST_DATE_GRACE_HOURS: int = 24

    # --- Alerts ---
    DEFAULT_THRESHOLD_KIND: str = "percentage"
    DEFAULT_THRESHOLD_VALUE: float = 5.0

    # --- Schedule (local time) ---
    SCHEDULE_TIMES: list[tuple[int, int]] = [(7, 0), (19, 0)]

    # --- Health ---
    HEALTH_TIMEOUT: int = 10
    HEALTH_SLOW_MS: float = 5000.0
    IMPERSONATE_BROWSER: str = "chrome131"

    # --- Logging ---
    CONSOLE_LOG_LEVEL: str = _env("RENTWATCH_CONSOLE_LOG_LEVEL", "WARNING").upper()

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = BASE_DIR / "rentwatch" / "config" / "selectors.json"
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    PRICE_DB_PATH: Path = Path(
        _env("RENTWATCH_DB_PATH", str(DATA_DIR / "rentwatch.db"))
    )

    # --- Sources ---
    AVAILABLE_SOURCES: list[dict[str, str]] = [
        {
            "id": "fairview",
            "label": "Fairview",
            "url": _env(
                "SOURCE_FAIRVIEW_URL",
                "https://onnislu.com/floorplans/fairview",
            ),
        },
        {
            "id": "boren",
            "label": "Boren",
            "url": _env(
                "SOURCE_BOREN_URL",
                "https://onnislu.com/floorplans/boren",
            ),
        },
    ]
    AVAILABILITY_URL: str = _env(
        "AVAILABILITY_URL",
        "https://onnislu.securecafe.com/onlineleasing/south-lake-union/"
        "oleapplication.aspx?stepname=Apartments&myOlePropertyId=1087755",
    )

    @classmethod
    def enabled_sources(cls) -> list[dict[str, str]]:
        """Return the registered sources that have a URL configured."""
        return [s for s in cls.AVAILABLE_SOURCES if s.get("url")]
