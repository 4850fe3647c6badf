import json
import logging
import sys
from datetime import datetime

from shardconsole.config.schema import LoggingConfig
from shardconsole.core.audit import AuditLog
from shardconsole.core.logging import ECSJsonFormatter, EventLogger, configure_logging, get_logger


def test_ecs_log_output_to_file(tmp_path) -> None:
    log_file = tmp_path / "events.log"
    config = LoggingConfig(
        level="INFO",
        sink="file",
        file_path=str(log_file),
        service_name="shardconsole-test",
    )
    configure_logging(config, force=True)
    try:
        emitter = EventLogger(
            logger=get_logger("shardconsole.test.logging"),
            service_name="shardconsole-test",
        )
        emitter.emit(
            message="console login failure",
            service="auth",
            action="auth_attempt",
            session_id="1a2b3c4d",
            source_ip="10.0.0.5",
            source_port=55670,
            username="admin",
            outcome="failure",
            event_type="authentication",
            payload={"attempt": 2},
        )

        record = json.loads(log_file.read_text(encoding="utf-8").strip())
        assert record["@timestamp"]
        assert record["service"]["name"] == "shardconsole-test"
        assert record["event"]["action"] == "auth_attempt"
        assert record["event"]["outcome"] == "failure"
        assert record["session"]["id"] == "1a2b3c4d"
        assert record["source"]["ip"] == "10.0.0.5"
        assert record["user"]["name"] == "admin"
        assert record["shardconsole"]["component"] == "auth"
        assert record["shardconsole"]["payload"] == {"attempt": 2}
    finally:
        configure_logging(LoggingConfig(), force=True)


def test_formatter_drops_empty_fields_and_includes_errors() -> None:
    formatter = ECSJsonFormatter(service_name="svc")
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("shardconsole.x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    payload = json.loads(formatter.format(record))
    assert payload["message"] == "failed"
    assert "session" not in payload
    assert "source" not in payload
    assert payload["error"]["type"] == "RuntimeError"
    assert "boom" in payload["error"]["stack_trace"]


def test_audit_log_appends_timestamped_lines(tmp_path) -> None:
    audit = AuditLog(tmp_path / "nested" / "audit.log", now=lambda: datetime(2026, 3, 4, 5, 6, 7))
    audit.record("Successful login: admin@127.0.0.1:5000 (Session: 1a2b3c4d)")
    audit.record("Command: admin: save\nforged line")

    lines = (tmp_path / "nested" / "audit.log").read_text(encoding="utf-8").splitlines()
    assert lines == [
        "[2026-03-04 05:06:07] Successful login: admin@127.0.0.1:5000 (Session: 1a2b3c4d)",
        "[2026-03-04 05:06:07] Command: admin: save forged line",
    ]
    assert audit.tail(1) == [lines[-1]]


def test_audit_write_failure_does_not_raise(tmp_path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    audit = AuditLog(blocker / "audit.log")
    audit.record("Console started")
    assert audit.tail() == []
