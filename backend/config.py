"""
Configuration & Constants for LeadCrush

Everything configurable lives here:
  - API keys and model selection for lead scoring
  - Xiaohongshu scraping targets and politeness delays
  - Backend proxy location
  - Scoring thresholds (what counts as a lead / a high-quality lead)
  - Auth, CORS, database and export settings
  - Cost tracking rates
"""

from pathlib import Path
import os
from dotenv import load_dotenv

load_dotenv()

# ===========================================
# Paths
# ===========================================
BASE_DIR = Path(__file__).parent
EXPORT_DIR = Path(os.getenv("EXPORT_DIR", str(BASE_DIR / "output")))


def _get_bool(key_name: str, default: bool = False) -> bool:
    value = os.getenv(key_name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ===========================================
# API Keys
# ===========================================
def _get_valid_key(key_name: str) -> str:
    """Get API key, returning empty string if it's a placeholder."""
    key = os.getenv(key_name, "")
    # Filter out placeholder values
    if not key or "your" in key.lower() or key.startswith("sk-your"):
        return ""
    return key

OPENAI_API_KEY = _get_valid_key("OPENAI_API_KEY")
KIMI_API_KEY = _get_valid_key("KIMI_API_KEY")

# ===========================================
# Model Selection
# ===========================================
LEAD_MODEL = os.getenv("LEAD_MODEL", "gpt-4o")
KIMI_LEAD_MODEL = os.getenv("KIMI_LEAD_MODEL", "kimi-k2-turbo-preview")

KIMI_API_BASE = "https://api.moonshot.ai/v1"

# ===========================================
# Xiaohongshu scraping
# ===========================================
XHS_BASE_URL = os.getenv("XHS_BASE_URL", "https://www.xiaohongshu.com").rstrip("/")
XHS_SEARCH_TYPE = os.getenv("XHS_SEARCH_TYPE", "51")
XHS_USE_MOCK_DATA = _get_bool("XHS_USE_MOCK_DATA")

SCRAPE_MIN_DELAY = float(os.getenv("SCRAPE_MIN_DELAY", "1.0"))
SCRAPE_MAX_DELAY = float(os.getenv("SCRAPE_MAX_DELAY", "3.0"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))  # seconds

# A search page with this many posts probably has another page behind it
SEARCH_PAGE_SIZE = 20

# ===========================================
# Backend proxy (private platform API)
# ===========================================
XHS_BACKEND_CONFIGURED = bool(os.getenv("XHS_BACKEND_URL"))
XHS_BACKEND_URL = os.getenv("XHS_BACKEND_URL", "http://localhost:8000").rstrip("/")

# ===========================================
# Lead scoring thresholds (0-100)
# ===========================================
LEAD_MIN_SCORE = int(os.getenv("LEAD_MIN_SCORE", "60"))          # below → not a lead
HIGH_QUALITY_SCORE = int(os.getenv("HIGH_QUALITY_SCORE", "80"))  # high-quality lead

# ===========================================
# Server
# ===========================================
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./leadcrush.db")

AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
AUTH_COOKIE_NAME = "auth-token"
AUTH_TOKEN_TTL_HOURS = int(os.getenv("AUTH_TOKEN_TTL_HOURS", "72"))
DEMO_USER_ID = "demo-user"

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:3001",
    ).split(",")
    if o.strip()
]

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

# ===========================================
# Logging
# ===========================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()  # text | json

# ===========================================
# Cost Tracking (approximate USD)
# ===========================================
COST_PER_1K_TOKENS = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "kimi-k2-turbo-preview": {"input": 0.0006, "output": 0.0025},  # Estimated
}
