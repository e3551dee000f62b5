# price_monitor/config/settings.py

"""Central configuration for the price_monitor service."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the price_monitor service."""

    # --- Browser scraping ---
    PRODUCT_DELAY: float = 0.5            # Seconds between product pages
    NAVIGATION_TIMEOUT_MS: int = 30_000   # Hard page-load timeout
    WAIT_UNTIL: str = "networkidle"       # Network quiescence before reading
    CURRENCY_CODE: str = "KES"
    USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )
    BROWSER_ARGS: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--disable-gpu",
    ]
    VIEWPORT: dict[str, int] = {"width": 1280, "height": 800}

    # --- Catalog HTTP client ---
    CATALOG_API_URL: str = os.getenv(
        "CATALOG_API_URL",
        "https://price-scraper.michael-135.workers.dev",
    ).rstrip("/")
    REQUEST_DELAY: float = 1.0          # Base back-off between retries
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
        "Content-Type": "application/json",
    }

    # --- Sessions & streaming ---
    SESSION_RETENTION: float = 30 * 60.0   # Seconds a finished session is kept
    SUBSCRIBER_QUEUE_SIZE: int = 256       # Pending events per observer
    STREAM_KEEPALIVE: float = 15.0         # Idle seconds between SSE pings

    # --- Notifications ---
    EMAIL_USER: str = os.getenv("EMAIL_USER", "").strip()
    EMAIL_PASSWORD: str = os.getenv("EMAIL_PASSWORD", "").strip()
    NOTIFICATION_EMAIL: str = os.getenv("NOTIFICATION_EMAIL", "").strip()
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com").strip()
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USE_SSL: bool = (
        os.getenv("SMTP_USE_SSL", "false").lower() == "true"
    )
    SMTP_TIMEOUT: int = 30
    APP_URL: str = os.getenv("APP_URL", "https://your-app-url.com")

    # --- API server ---
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")
    API_PORT: int = int(os.getenv("API_PORT", "5000"))

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = (
        BASE_DIR / "price_monitor" / "config" / "selectors.json"
    )
    TEMPLATES_DIR: Path = (
        BASE_DIR / "price_monitor" / "notifications" / "templates"
    )
    LOGS_DIR: Path = BASE_DIR / "logs"
