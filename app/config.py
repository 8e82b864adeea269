import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portal_sync.db")

# Portal backend (client-facing web portal)
PORTAL_BACKEND_URL = os.getenv(
    "PORTAL_BACKEND_URL", "https://smallbizworkspace-portal-backend.vercel.app"
)
PORTAL_ADMIN_KEY = (os.getenv("PORTAL_ADMIN_KEY") or "").strip() or None
PORTAL_HTTP_TIMEOUT_SECONDS = float(os.getenv("PORTAL_HTTP_TIMEOUT_SECONDS", "30"))

# Key required on /portal-sync routes (sent as X-Sync-Key)
PORTAL_SYNC_API_KEY = os.getenv("PORTAL_SYNC_API_KEY")
if not PORTAL_SYNC_API_KEY:
    import warnings

    warnings.warn(
        "PORTAL_SYNC_API_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    PORTAL_SYNC_API_KEY = "INSECURE-DEV-SYNC-KEY"  # noqa: S105 - Dev fallback only

# In-flight flags older than this are treated as abandoned by a dead worker
PORTAL_IN_FLIGHT_STALE_MINUTES = int(os.getenv("PORTAL_IN_FLIGHT_STALE_MINUTES", "10"))

# Max documents reconciled per sweep run
PORTAL_SWEEP_BATCH = int(os.getenv("PORTAL_SWEEP_BATCH", "25"))

# Cloudflare R2 Configuration (persisted PDF copies)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "smallbiz-documents")
