import json
import logging
from pathlib import Path

from sports_feed.config import LoggingConfig
from sports_feed.logging_utils import get_logger, log_event, setup_logging, truncate_text


def test_jsonl_log_lines_carry_event_fields(tmp_path: Path):
    logger = setup_logging(LoggingConfig(console=False, file=True, level="DEBUG"), tmp_path)
    try:
        log_event(get_logger("test"), "Cycle finished", event="cycle_finished", processed=2)
        log_event(get_logger("test"), "Hidden", level=logging.DEBUG, event="debug_only")
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []

    lines = (tmp_path / "run.jsonl").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert records[0]["message"] == "Cycle finished"
    assert records[0]["event"] == "cycle_finished"
    assert records[0]["processed"] == 2
    assert records[0]["logger"] == "sports_feed.test"
    assert records[1]["level"] == "DEBUG"


def test_log_event_without_logger_is_a_no_op():
    log_event(None, "nothing", event="ignored")


def test_truncate_text():
    assert truncate_text("short", 10) == "short"
    truncated = truncate_text("x" * 50, 10)
    assert len(truncated) == 10
    assert truncated.endswith("...")
