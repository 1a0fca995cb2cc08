# ideator/settings.py
import os

from dotenv import load_dotenv

load_dotenv()

# --- Model provider ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-pro")
GEMINI_FALLBACK_MODELS = os.getenv(
    "GEMINI_FALLBACK_MODELS",
    "gemini-2.0-flash-exp,gemini-1.5-flash,gemini-1.5-pro",
)
GEMINI_STRICT = os.getenv("GEMINI_STRICT", "").strip().lower() in ("1", "true")

LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "300"))

# --- Pipeline tuning ---
MAX_ATTEMPTS_PER_MODEL = int(os.getenv("MAX_ATTEMPTS_PER_MODEL", "3"))
BACKOFF_SCHEDULE = os.getenv("BACKOFF_SCHEDULE", "0.4,0.9,1.8")
BACKOFF_CEILING = float(os.getenv("BACKOFF_CEILING", "1.5"))
# seconds; 0 disables the per-attempt deadline
ATTEMPT_TIMEOUT = float(os.getenv("ATTEMPT_TIMEOUT", "120"))
READINESS_MIN_EXCHANGES = int(os.getenv("READINESS_MIN_EXCHANGES", "3"))
STREAMING_MODE = os.getenv("STREAMING_MODE", "auto")  # auto | native | simulated
STREAM_CHUNK_DELAY = float(os.getenv("STREAM_CHUNK_DELAY", "0.02"))

# JSON-with-comments file overriding the values above
IDEATOR_MODEL_CONFIG_PATH = os.getenv("IDEATOR_MODEL_CONFIG_PATH")

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_NAME = os.getenv("DB_NAME", "ideator")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_SECRET_ID = os.getenv("DB_SECRET_ID")

# --- Conversation store ---
HISTORY_TTL_SECONDS = int(os.getenv("HISTORY_TTL_SECONDS", str(24 * 3600)))
HISTORY_MAX_TOKENS = int(os.getenv("HISTORY_MAX_TOKENS", "8000"))
