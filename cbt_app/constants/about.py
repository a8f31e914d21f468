"""Static metadata describing the SchoolCBT exam runner."""

APP_NAME = "SchoolCBT Exam Runner"
APP_VERSION = "1.0.0"
RESULT_SCHEMA_VERSION = "1.0.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "SchoolCBT delivers computer-based tests on student workstations. "
    "The runner assigns each student a balanced paper, watches exam integrity, "
    "and forwards results to the school's webhook, queueing them while offline."
)
