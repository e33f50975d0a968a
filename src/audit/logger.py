"""Append-only JSONL audit trail for webhook and rate-limit decisions.

Entries are hash chained: ``prev_hash`` is the SHA-256 of the preceding
line. After a size rotation the first line of the fresh file points at the
last line of ``<name>.1``, so the chain runs unbroken through the backups.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from src.models import AuditEvent

_TAIL_CHUNK = 8192


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def _digest(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def _last_line(path: Path) -> str | None:
    """Final non-empty line of ``path``, read from the end of the file."""
    if not path.exists():
        return None
    data = b""
    with open(path, "rb") as f:
        pos = f.seek(0, os.SEEK_END)
        while pos > 0:
            step = min(_TAIL_CHUNK, pos)
            pos -= step
            f.seek(pos)
            data = f.read(step) + data
            if b"\n" in data.rstrip(b"\n"):
                break
    return data.rstrip(b"\n").rsplit(b"\n", 1)[-1].decode() or None


def _predecessor(log_path: Path) -> Path:
    """The next-older file in the rotation: ``a.jsonl`` -> ``a.jsonl.1`` -> ``a.jsonl.2``."""
    stem, _, index = log_path.name.rpartition(".")
    if stem and index.isdigit():
        return log_path.with_name(f"{stem}.{int(index) + 1}")
    return log_path.with_name(f"{log_path.name}.1")


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check every entry's ``prev_hash`` against the line before it.

    The first entry may only carry a ``prev_hash`` when the next-older backup
    exists and ends with the line it hashes. An unparseable line counts as a
    break.
    """
    content = log_path.read_text().strip()
    if not content:
        return ChainValidationResult(valid=True)

    previous = _last_line(_predecessor(log_path))
    for number, line in enumerate(content.split("\n"), start=1):
        try:
            prev_hash = json.loads(line).get("prev_hash")
        except (ValueError, AttributeError):
            return ChainValidationResult(valid=False, broken_at_line=number)
        if prev_hash != (_digest(previous) if previous is not None else None):
            return ChainValidationResult(valid=False, broken_at_line=number)
        previous = line
    return ChainValidationResult(valid=True)


class AuditLogger:
    """Writes ``AuditEvent`` records; safe to share one file across processes."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return
        self._backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        record = event.model_dump(mode="json")

        lock_path = self.log_path.with_name(f".{self.log_path.name}.lock")
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                # Other processes may have appended since our last write.
                tail = _last_line(self.log_path) or _last_line(self._backup(1))
                record["prev_hash"] = _digest(tail) if tail else None
                self._rotate_if_needed()
                with open(self.log_path, "a") as out:
                    out.write(json.dumps(record, separators=(",", ":")) + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)
