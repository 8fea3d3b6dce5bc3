"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Hosted model used by the settings advisor
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
ADVISOR_MODEL = os.getenv("ADVISOR_MODEL", "gemini-2.0-flash").strip()
# When set, the advisor is reached over HTTP (another instance's /api/optimize)
ADVISOR_URL = os.getenv("ADVISOR_URL", "").strip()
ADVISOR_TIMEOUT = float(os.getenv("ADVISOR_TIMEOUT", "30"))
ADVISOR_RETRY_ATTEMPTS = int(os.getenv("ADVISOR_RETRY_ATTEMPTS", "3"))
ADVISOR_RETRY_DELAY = float(os.getenv("ADVISOR_RETRY_DELAY", "1.0"))

# Settings form defaults and ranges
DEFAULT_TARGET_FORMAT = os.getenv("DEFAULT_TARGET_FORMAT", "WEBP").upper()
DEFAULT_LOSSLESS = os.getenv("DEFAULT_LOSSLESS", "false").lower() in ("1", "true", "yes")
DEFAULT_COMPRESSION_SPEED = int(os.getenv("DEFAULT_COMPRESSION_SPEED", "5"))
DEFAULT_STRIP_METADATA = os.getenv("DEFAULT_STRIP_METADATA", "true").lower() in ("1", "true", "yes")
DEFAULT_MAX_FILE_SIZE_KB = int(os.getenv("DEFAULT_MAX_FILE_SIZE_KB", "1024"))
MIN_COMPRESSION_SPEED, MAX_COMPRESSION_SPEED = 1, 10
MIN_FILE_SIZE_KB, MAX_FILE_SIZE_KB = 10, 10000

# Intake limits
MAX_IMAGES_PER_UPLOAD = int(os.getenv("MAX_IMAGES_PER_UPLOAD", "50"))
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "20"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024

# Bulk download
ARCHIVE_NAME = os.getenv("ARCHIVE_NAME", "converted_images.zip")

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")
