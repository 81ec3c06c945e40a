# Shared configuration, helpers, and constants for the JANVANI client

import os
import uuid
from pathlib import Path
from datetime import datetime, timezone
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
_package_dir = Path(__file__).resolve().parent                 # janvani/
for _env_path in [_package_dir / ".env", _package_dir.parent / ".env", Path.cwd() / ".env"]:
    if _env_path.is_file():
        load_dotenv(_env_path, override=True)
        break
else:
    load_dotenv(override=True)

# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------
API_URL         = os.getenv("JANVANI_API_URL", "http://localhost:5000/api")
REQUEST_TIMEOUT = float(os.getenv("JANVANI_REQUEST_TIMEOUT", 15))     # seconds, per attempt
RETRY_BACKOFF   = float(os.getenv("JANVANI_RETRY_BACKOFF", 1.5))      # seconds before the single retry

# ---------------------------------------------------------------------------
# Caching, persistence, polling
# ---------------------------------------------------------------------------
CACHE_TTL        = float(os.getenv("JANVANI_CACHE_TTL", 15))          # response cache, seconds
SNAPSHOT_MAX_AGE = float(os.getenv("JANVANI_SNAPSHOT_MAX_AGE", 300))  # list snapshots on disk
POLL_INTERVAL    = float(os.getenv("JANVANI_POLL_INTERVAL", 25))
STATE_DIR        = Path(os.getenv("JANVANI_STATE_DIR", Path.home() / ".janvani"))

# ---------------------------------------------------------------------------
# Reference backend (devserver)
# ---------------------------------------------------------------------------
JWT_SECRET       = os.getenv("JANVANI_JWT_SECRET", "")
JWT_ALGORITHM    = "HS256"
JWT_EXPIRE_HOURS = int(os.getenv("JANVANI_JWT_EXPIRE_HOURS", 24 * 7))
BCRYPT_ROUNDS    = int(os.getenv("JANVANI_BCRYPT_ROUNDS", 10))
DEV_HOST         = os.getenv("JANVANI_DEV_HOST", "127.0.0.1")
DEV_PORT         = int(os.getenv("JANVANI_DEV_PORT", 5000))

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return uuid.uuid4().hex[:24]

def now_utc() -> datetime:
    return datetime.now(timezone.utc)
