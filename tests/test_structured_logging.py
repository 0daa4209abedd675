import json

from specsync.logging import StructuredLogger, configure_logging, get_logger


def _json_lines(text: str) -> list[dict]:
    return [json.loads(line) for line in text.strip().split("\n") if line]


def test_structured_logger_json_format(capsys):
    """JSON mode emits one object per record with extra fields inlined."""
    logger = StructuredLogger(name="test", json_logging=True, level="INFO")
    logger.log_operation("test_operation", param1="value1", param2=42)

    (entry,) = _json_lines(capsys.readouterr().err)
    assert entry["message"] == "Operation: test_operation"
    assert entry["operation"] == "test_operation"
    assert entry["param1"] == "value1"
    assert entry["param2"] == 42
    assert entry["level"] == "INFO"
    assert "timestamp" in entry


def test_task_action_message(capsys):
    logger = StructuredLogger(name="test", json_logging=True)
    logger.log_task_action("create", "api/1@acme/app", 12, dry_run=True)
    (entry,) = _json_lines(capsys.readouterr().err)
    assert entry["message"] == "issue create api/1@acme/app #12 [DRY]"
    assert entry["operation"] == "issue_create"
    assert entry["issue_number"] == 12


def test_json_mode_dedupes_identical_consecutive_records(capsys):
    logger = StructuredLogger(name="test", json_logging=True)
    logger.log_operation("scan_complete", file_count=2)
    logger.log_operation("scan_complete", file_count=2)
    logger.log_operation("scan_complete", file_count=3)
    assert len(_json_lines(capsys.readouterr().err)) == 2


def test_plain_mode_and_level_filtering(capsys):
    logger = StructuredLogger(name="test", json_logging=False, level="WARNING")
    logger.info("hidden")
    logger.warning("shown", spec="api")
    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "WARNING shown" in err


def test_log_error_and_timed_operation(capsys):
    logger = StructuredLogger(name="test", json_logging=True)
    logger.log_error("task_sync_failed", error="boom", sync_key="api/1@x")
    with logger.timed_operation("scan", root="specs"):
        pass
    entries = _json_lines(capsys.readouterr().err)
    assert entries[0]["level"] == "ERROR"
    assert entries[0]["error"] == "boom"
    assert entries[1]["operation"] == "scan_start"
    assert entries[2]["operation"] == "scan"
    assert "duration_ms" in entries[2]
    assert entries[2]["root"] == "specs"


def test_configure_logging_replaces_global():
    first = configure_logging(json_logging=False, level="INFO")
    assert get_logger() is first
    second = configure_logging(json_logging=True, level="DEBUG")
    assert get_logger() is second
    configure_logging()
