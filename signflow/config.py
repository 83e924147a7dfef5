import os

# Everything is read once at import; restart the app to pick up changes.
LOG_LEVEL = os.getenv("SIGNFLOW_LOG_LEVEL", "INFO").upper()

# Signing links in outgoing notifications point at the frontend
BASE_URL = os.getenv("SIGNFLOW_BASE_URL", "http://localhost:8000").rstrip("/")

NARRATION_ENABLED = os.getenv("SIGNFLOW_NARRATION_ENABLED", "true").lower() in ("1", "true", "yes", "on")

MAX_UPLOAD_BYTES = int(os.getenv("SIGNFLOW_MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

TEXT_LINES_PER_PAGE = int(os.getenv("SIGNFLOW_TEXT_LINES_PER_PAGE", "50"))

# When set, every signer notification is also POSTed here as JSON
NOTIFY_WEBHOOK_URL = os.getenv("SIGNFLOW_NOTIFY_WEBHOOK_URL")
NOTIFY_WEBHOOK_TIMEOUT = float(os.getenv("SIGNFLOW_NOTIFY_WEBHOOK_TIMEOUT", "5"))
