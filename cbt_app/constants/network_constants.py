"""Network configuration constants for the exam runner."""

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 8000

# Environment variables read by app_main.
ENV_HOST: str = "CBT_HOST"
ENV_PORT: str = "CBT_PORT"
ENV_EXAMS_DIR: str = "CBT_EXAMS_DIR"
ENV_DATA_DIR: str = "CBT_DATA_DIR"
ENV_ADMIN_URL: str = "CBT_ADMIN_URL"
ENV_WEBHOOK_URL: str = "CBT_WEBHOOK_URL"
ENV_LOG_LEVEL: str = "CBT_LOG_LEVEL"

ACTIVITY_PATH: str = "/api/analytics/activity"
STATUS_PATH: str = "/api/analytics/status"
TELEMETRY_TIMEOUT_SECONDS: float = 3.0
WEBHOOK_TIMEOUT_SECONDS: float = 15.0
REACHABILITY_TIMEOUT_SECONDS: float = 3.0
