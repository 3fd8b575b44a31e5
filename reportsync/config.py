"""Application constants and defaults.

Paths to the project root and the settings file, plus default timings of the
job status synchronization engine. Runtime overrides live in
``reportsync.core.settings``.
"""

from pathlib import Path

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SETTINGS_PATH = PROJECT_ROOT / "reportsync_settings.json"
ENV_PREFIX = "REPORTSYNC_"

# Backend endpoints
DEFAULT_API_BASE_URL = "http://localhost:8080"
DEFAULT_WS_URL = "ws://localhost:8080/ws"

# Push channel
DEFAULT_RECONNECT_DELAY_SEC = 5.0
DEFAULT_MAX_FAILED_RECONNECTS = 3  # before a persistent error is shown
DEFAULT_HEARTBEAT_MS = 5000
DEFAULT_CONNECT_TIMEOUT_SEC = 5.0
UPDATES_DESTINATION = "/user/queue/job-updates/{job_id}"
CONTROL_DESTINATION = "/app/subscribe-job"

# Polling fallback
DEFAULT_POLL_INTERVAL_SEC = 1.0
DEFAULT_FALLBACK_POLL_INTERVAL_SEC = 3.0
DEFAULT_POLL_REQUEST_TIMEOUT_SEC = 10.0
DEFAULT_POLL_MAX_FAILURES = 5
DEFAULT_POLL_BACKOFF_SEC = 0.75
DEFAULT_POLL_BACKOFF_MAX_SEC = 10.0
DEFAULT_POLL_BACKOFF_JITTER = 0.3
DEFAULT_PUSH_SILENCE_TIMEOUT_SEC = 30.0

# Job list
DEFAULT_LIST_REFRESH_SEC = 15.0
DEFAULT_ACTIVE_LIST_REFRESH_SEC = 5.0
DEFAULT_PAGE_SIZE = 10
