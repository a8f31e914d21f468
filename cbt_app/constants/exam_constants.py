"""Exam-related constants shared across the engine and the HTTP layer."""

OPTION_KEYS: tuple[str, ...] = ("A", "B", "C", "D")

DEFAULT_DURATION_MINUTES: int = 30
DEFAULT_PASS_MARK: float = 50
DEFAULT_VIOLATION_THRESHOLD: int = 3
DEFAULT_QUESTION_MARKS: int = 1

DIFFICULTY_WEIGHTS: dict[str, int] = {"hard": 3, "medium": 2, "easy": 1}
HARD_PICK_THRESHOLD: float = 2.5
EASY_PICK_THRESHOLD: float = 1.5

VIOLATION_DEBOUNCE_SECONDS: float = 1.0
CHECKPOINT_INTERVAL_SECONDS: int = 5
COUNTDOWN_INTERVAL_SECONDS: float = 1.0

DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY_SECONDS: float = 2.0
QUEUE_REPLAY_DELAY_SECONDS: float = 2.0

ACTIVE_SESSION_KEY: str = "school_cbt_active_session"
PENDING_SUBMISSIONS_KEY: str = "pending_submissions"
RESULT_BACKUP_KEY_PREFIX: str = "exam_result_"

DEFAULT_EXAMS_DIR: str = "exams"
DEFAULT_DATA_DIR: str = ".cbt_data"
