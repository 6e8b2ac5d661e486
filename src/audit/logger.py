"""Tamper-evident audit trail for webhook and bridge events.

Events are appended as JSON Lines. Each line carries ``prev_hash``, the
SHA-256 of the line written before it, and the chain runs on across size
rotation into ``<name>.1`` (newest) ... ``<name>.<backup_count>`` (oldest).
The predecessor is read back from disk under an exclusive lock on every
write, so uvicorn workers in separate processes can share one log.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.models import AuditEvent, AuditEventType, RiskLevel

_TAIL_CHUNK = 4096


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def _last_line(path: Path) -> str | None:
    """Final non-empty line of ``path``, read backwards from the end."""
    if not path.exists():
        return None
    with open(path, "rb") as f:
        pos = f.seek(0, os.SEEK_END)
        tail = b""
        while pos > 0:
            step = min(_TAIL_CHUNK, pos)
            pos -= step
            f.seek(pos)
            tail = f.read(step) + tail
            if b"\n" in tail.rstrip(b"\n"):
                break
    last = tail.rstrip(b"\n").rsplit(b"\n", 1)[-1].decode()
    return last or None


def rotated_backups(log_path: Path) -> list[Path]:
    """Existing ``<name>.<n>`` backups, oldest first."""
    found: list[tuple[int, Path]] = []
    for candidate in log_path.parent.glob(f"{log_path.name}.*"):
        suffix = candidate.name[len(log_path.name) + 1:]
        if suffix.isdigit():
            found.append((int(suffix), candidate))
    return [path for _, path in sorted(found, reverse=True)]


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None
    file: Path | None = None
    entries: int = 0


def validate_audit_chain(
    log_path: Path, include_rotated: bool = True,
) -> ChainValidationResult:
    """Check every entry's prev_hash against the line before it.

    With ``include_rotated`` the backups are walked first, oldest to newest,
    and the chain must carry over from each file into the next. Once
    backups exist the oldest surviving entry may point at a pruned line;
    otherwise the first entry must have a null prev_hash.
    """
    backups = rotated_backups(log_path)
    files = [*backups, log_path] if include_rotated else [log_path]
    previous: str | None = None
    entries = 0

    for path in files:
        if not path.exists():
            continue
        for number, line in enumerate(path.read_text().splitlines(), start=1):
            if not line:
                continue
            try:
                prev_hash = json.loads(line).get("prev_hash")
            except (ValueError, AttributeError):
                return ChainValidationResult(False, number, path, entries)

            if entries == 0:
                intact = prev_hash is None or bool(backups)
            else:
                intact = prev_hash == _line_hash(previous or "")
            if not intact:
                return ChainValidationResult(False, number, path, entries)
            previous = line
            entries += 1

    return ChainValidationResult(valid=True, entries=entries)


class AuditLogger:
    """Append-only JSON Lines audit log shared by all workers of one service."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock_path = self.log_path.with_name(f".{self.log_path.name}.lock")

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        """Build a logger using AUDIT_LOG_MAX_BYTES / AUDIT_LOG_BACKUP_COUNT."""
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _maybe_rotate(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return
        generations = [self.log_path] + [
            self._backup(index) for index in range(1, self._backup_count + 1)
        ]
        generations[-1].unlink(missing_ok=True)
        for newer, older in reversed(list(zip(generations, generations[1:]))):
            if newer.exists():
                newer.replace(older)

    def _previous_line(self) -> str | None:
        # right after rotation the live file is gone and .1 holds the tail
        return _last_line(self.log_path) or _last_line(self._backup(1))

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = json.loads(event.model_dump_json())

        with open(self._lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                self._maybe_rotate()
                previous = self._previous_line()
                data["prev_hash"] = _line_hash(previous) if previous is not None else None
                with open(self.log_path, "a") as f:
                    f.write(json.dumps(data, separators=(",", ":")) + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        risk_level: RiskLevel = RiskLevel.INFO,
        *,
        sender_id: str | None = None,
        source_ip: str | None = None,
        **details: Any,
    ) -> None:
        """Shorthand for ``log(AuditEvent(...))``."""
        self.log(AuditEvent(
            event_type=event_type,
            action=action,
            result=result,
            risk_level=risk_level,
            sender_id=sender_id,
            source_ip=source_ip,
            details=details or None,
        ))
