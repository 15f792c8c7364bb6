import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ANALYSIS_MODEL = os.environ.get("MIRROR_AI_ANALYSIS_MODEL", "gemini-2.5-flash")
IMAGE_MODEL = os.environ.get("MIRROR_AI_IMAGE_MODEL", "gemini-3-pro-image-preview")

# milliseconds, as HttpOptions expects
TIMEOUT_MS = int(os.environ.get("MIRROR_AI_TIMEOUT_MS", "300000"))

STORAGE_PATH = Path(
    os.environ.get("MIRROR_AI_STORAGE_PATH", "~/.mirror_ai/storage.json")
).expanduser()
CREDENTIAL_KEY = "mirror_ai_key"

REPORT_FONT = os.environ.get("MIRROR_AI_REPORT_FONT") or None

HOST = os.environ.get("MIRROR_AI_HOST", "127.0.0.1")
PORT = int(os.environ.get("MIRROR_AI_PORT", "5001"))
LOG_LEVEL = os.environ.get("MIRROR_AI_LOG_LEVEL", "INFO").upper()

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
JPEG_QUALITY = 95
ANALYSIS_TEMPERATURE = 0.2
