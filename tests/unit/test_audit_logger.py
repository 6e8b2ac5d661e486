"""Tests for the audit logger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from src.audit.logger import AuditLogger, validate_audit_chain
from src.models import AuditEvent, AuditEventType, RiskLevel


def _make_event(**kwargs: object) -> AuditEvent:
    defaults: dict[str, object] = {
        "event_type": AuditEventType.SIGNATURE_FAILURE,
        "action": "POST /webhook/whatsapp",
        "result": "rejected",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]


def _lines(log_file: Path) -> list[str]:
    return log_file.read_text().strip().split("\n")


def test_log_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())

    [line] = _lines(log_file)
    parsed = json.loads(line)
    assert parsed["event_type"] == "signature_failure"
    assert parsed["risk_level"] == "high"
    assert "T" in parsed["timestamp"]


def test_log_creates_parent_directory(tmp_path: Path) -> None:
    log_file = tmp_path / "nested" / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    assert log_file.exists()


def test_record_builds_event(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.record(
        AuditEventType.BRIDGE_SUCCESS,
        action="bridge",
        result="success",
        sender_id="15551234567",
        response_length=5,
    )
    parsed = json.loads(_lines(log_file)[0])
    assert parsed["event_type"] == "bridge_success"
    assert parsed["risk_level"] == "info"
    assert parsed["sender_id"] == "15551234567"
    assert parsed["details"] == {"response_length": 5}


def test_record_without_details(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).record(
        AuditEventType.VERIFICATION_SUCCESS, action="verify", result="success",
    )
    assert json.loads(_lines(log_file)[0])["details"] is None


# --- Rotation tests ---


def test_rotation_triggers_at_threshold(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=100, backup_count=3)
    for i in range(20):
        logger.log(_make_event(action=f"event-{i}"))
    assert (tmp_path / "audit.jsonl.1").exists()
    assert not (tmp_path / "audit.jsonl.4").exists()


def test_rotation_configurable_via_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "500")
    monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "7")
    logger = AuditLogger.from_env(str(tmp_path / "audit.jsonl"))
    assert logger._max_bytes == 500
    assert logger._backup_count == 7


# --- Hash chain tests ---


def test_first_entry_has_null_prev_hash(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    assert json.loads(_lines(log_file)[0])["prev_hash"] is None


def test_entries_chain_to_previous_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event(action="first"))
    logger.log(_make_event(action="second"))
    first, second = _lines(log_file)
    assert json.loads(second)["prev_hash"] == hashlib.sha256(first.encode()).hexdigest()


def test_chain_continues_across_instances(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event(action="first"))
    AuditLogger(log_path=str(log_file)).log(_make_event(action="second"))
    assert validate_audit_chain(log_file).valid


def test_validate_chain_detects_tampering(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    for i in range(5):
        logger.log(_make_event(action=f"event-{i}"))
    assert validate_audit_chain(log_file).valid

    lines = _lines(log_file)
    lines[2] = lines[2].replace("event-2", "TAMPERED")
    log_file.write_text("\n".join(lines) + "\n")
    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.broken_at_line == 4


def test_validate_empty_log(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    log_file.write_text("")
    assert validate_audit_chain(log_file).valid


def test_unanchored_first_entry_is_invalid(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    AuditLogger(log_path=str(log_file)).log(_make_event())
    lines = _lines(log_file)
    log_file.write_text(lines[1] + "\n")
    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.broken_at_line == 1


def test_chain_spans_rotated_files(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=400, backup_count=10)
    for i in range(12):
        logger.log(_make_event(action=f"event-{i}"))
    assert (tmp_path / "audit.jsonl.1").exists()

    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 12


def test_chain_survives_pruned_backups(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=100, backup_count=2)
    for i in range(10):
        logger.log(_make_event(action=f"event-{i}"))
    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 3


def test_tampered_backup_detected(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=100, backup_count=5)
    for i in range(4):
        logger.log(_make_event(action=f"event-{i}"))
    backup = tmp_path / "audit.jsonl.2"
    backup.write_text(backup.read_text().replace("event-1", "TAMPERED"))

    result = validate_audit_chain(log_file)
    assert not result.valid
    assert result.file == tmp_path / "audit.jsonl.1"
    assert result.broken_at_line == 1


def test_live_file_alone_after_rotation(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=100, backup_count=1)
    for i in range(3):
        logger.log(_make_event(action=f"event-{i}"))
    assert validate_audit_chain(log_file, include_rotated=False).valid


def test_interleaved_writers_share_one_chain(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    first = AuditLogger(log_path=str(log_file))
    second = AuditLogger(log_path=str(log_file))
    for i in range(3):
        first.log(_make_event(action=f"first-{i}"))
        second.log(_make_event(action=f"second-{i}"))
    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 6


def test_long_lines_chain_correctly(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.record(
        AuditEventType.BRIDGE_FAILURE, action="bridge", result="failure",
        error="x" * 10_000,
    )
    logger.record(AuditEventType.BRIDGE_SUCCESS, action="bridge", result="success")
    assert validate_audit_chain(log_file).valid
