"""Application entry point for the SchoolCBT exam runner."""

from __future__ import annotations

import os
from pathlib import Path

from cbt_app.constants.about import APP_NAME, APP_VERSION
from cbt_app.constants.exam_constants import DEFAULT_DATA_DIR, DEFAULT_EXAMS_DIR
from cbt_app.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ENV_ADMIN_URL,
    ENV_DATA_DIR,
    ENV_EXAMS_DIR,
    ENV_HOST,
    ENV_LOG_LEVEL,
    ENV_PORT,
    ENV_WEBHOOK_URL,
)
from cbt_app.core.exam_catalog import ExamCatalog
from cbt_app.core.exam_runner import ExamRunner
from cbt_app.core.services.activity_reporter import ActivityReporter
from cbt_app.core.services.storage import JsonFileStore
from cbt_app.server.api_server import run_api_server
from cbt_app.utils.logging_config import configure_logging


def _port_from_env() -> int:
    raw_port = os.getenv(ENV_PORT, "")
    try:
        return int(raw_port) if raw_port else DEFAULT_PORT
    except ValueError:
        return DEFAULT_PORT


def main() -> None:
    """Initialize logging, wire the runner from the environment, and serve the API."""
    logger = configure_logging(os.getenv(ENV_LOG_LEVEL, "INFO"))
    logger.info("Starting %s %s", APP_NAME, APP_VERSION)

    exams_dir = Path(os.getenv(ENV_EXAMS_DIR, DEFAULT_EXAMS_DIR))
    data_dir = Path(os.getenv(ENV_DATA_DIR, DEFAULT_DATA_DIR))
    host = os.getenv(ENV_HOST, DEFAULT_HOST)
    port = _port_from_env()

    reporter = ActivityReporter(os.getenv(ENV_ADMIN_URL))
    runner = ExamRunner(
        ExamCatalog(exams_dir),
        JsonFileStore(data_dir),
        reporter=reporter,
        default_webhook_url=os.getenv(ENV_WEBHOOK_URL) or None,
    )
    logger.info("Exams from %s, device data in %s", exams_dir.resolve(), data_dir.resolve())
    if runner.pending_submissions:
        logger.info("%d result(s) waiting in the offline queue", runner.pending_submissions)
    runner.schedule_pending_replay()

    logger.info("Student page API available at http://%s:%d/", host, port)
    try:
        run_api_server(runner, host=host, port=port)
    finally:
        runner.close()
        reporter.close()


if __name__ == "__main__":
    main()
