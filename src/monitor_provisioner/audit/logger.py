"""Hash-chained append-only provisioning audit log.

Each entry is a JSON line describing one workflow step plus:
- prev_hash: SHA-256 of the previous entry (or "0"*64 for the first)
- entry_hash: SHA-256 of this entry's content (computed before writing)

Every change the provisioner makes to a cloud account, including the
settings it writes onto the monitored application, leaves a record here.
Modifying or deleting any entry breaks the chain and is detectable via
verify_log().
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from monitor_provisioner.models import StepEvent, StepOutcome

GENESIS_HASH = "0" * 64


class AuditError(Exception):
    """Raised when the audit log encounters an error."""


class AuditWarning(UserWarning):
    """Issued when a step could not be written to the audit log."""


class AuditLogger:
    """Append-only, hash-chained JSON-lines audit logger.

    Thread-safe via a lock on write operations.
    """

    def __init__(self, log_path: str | Path) -> None:
        self._path = Path(log_path)
        self._lock = threading.Lock()
        self._prev_hash = self._read_last_hash()

    def _read_last_hash(self) -> str:
        """Read the hash of the last entry, or return genesis hash."""
        if not self._path.exists() or self._path.stat().st_size == 0:
            return GENESIS_HASH

        last_line = ""
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line in f:
                    stripped = line.strip()
                    if stripped:
                        last_line = stripped
        except OSError as exc:
            raise AuditError(f"Could not read audit log {self._path}: {exc}") from exc

        if not last_line:
            return GENESIS_HASH

        try:
            entry = json.loads(last_line)
            return entry.get("entry_hash", GENESIS_HASH)
        except json.JSONDecodeError as exc:
            raise AuditError(
                f"Corrupt audit log — last line is not valid JSON: {self._path}"
            ) from exc

    @property
    def path(self) -> Path:
        return self._path

    @property
    def prev_hash(self) -> str:
        return self._prev_hash

    def log_step(
        self,
        run_id: str,
        outcome: StepOutcome,
        application: str,
        resource_group: str,
        modifies_target: bool = False,
        context: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> StepEvent:
        """Log one workflow step outcome.

        Returns the created StepEvent (with computed hashes).
        """
        timestamp = timestamp or datetime.now(tz=UTC)

        with self._lock:
            event = StepEvent(
                event_id=f"evt-{uuid.uuid4().hex[:12]}",
                timestamp=timestamp,
                prev_hash=self._prev_hash,
                run_id=run_id,
                step=outcome.step,
                ok=outcome.ok,
                application=application,
                resource_group=resource_group,
                resource_id=outcome.resource_id,
                created=outcome.created,
                modifies_target=modifies_target,
                error=outcome.error,
                context=context,
            )
            return self._write_event(event)

    def _write_event(self, event: StepEvent) -> StepEvent:
        """Compute hash, write to file, update chain. Caller holds the lock."""
        hash_payload = event.model_dump(mode="json", exclude={"entry_hash"})
        payload_bytes = json.dumps(hash_payload, sort_keys=True).encode("utf-8")
        entry_hash = hashlib.sha256(payload_bytes).hexdigest()

        event.entry_hash = entry_hash

        line = event.model_dump(mode="json")
        json_line = json.dumps(line, sort_keys=True)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(json_line + "\n")
        except OSError as exc:
            raise AuditError(f"Could not write audit log {self._path}: {exc}") from exc
        self._prev_hash = entry_hash

        return event

    def read_events(self, run_id: str | None = None) -> list[StepEvent]:
        """Read all events from the log file, optionally for one run."""
        if not self._path.exists():
            return []

        events: list[StepEvent] = []
        with self._path.open("r", encoding="utf-8") as f:
            for i, line in enumerate(f):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    data = json.loads(stripped)
                    events.append(StepEvent(**data))
                except (json.JSONDecodeError, Exception) as e:
                    raise AuditError(
                        f"Corrupt entry at line {i + 1} in {self._path}: {e}"
                    ) from e

        if run_id is not None:
            events = [e for e in events if e.run_id == run_id]
        return events


def verify_log(log_path: str | Path) -> tuple[bool, list[str]]:
    """Verify the integrity of a hash-chained audit log.

    Returns (is_valid, list_of_errors).
    An empty error list means the log is intact.
    """
    log_path = Path(log_path)
    if not log_path.exists():
        return True, []

    errors: list[str] = []
    prev_hash = GENESIS_HASH
    line_num = 0

    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            stripped = line.strip()
            if not stripped:
                continue
            line_num += 1

            try:
                data = json.loads(stripped)
            except json.JSONDecodeError as e:
                errors.append(f"Line {line_num}: invalid JSON: {e}")
                continue

            stored_prev = data.get("prev_hash", "")
            if stored_prev != prev_hash:
                errors.append(
                    f"Line {line_num}: chain broken — "
                    f"expected prev_hash {prev_hash[:16]}..., "
                    f"got {stored_prev[:16]}..."
                )

            stored_hash = data.get("entry_hash", "")
            verify_data = {k: v for k, v in data.items() if k != "entry_hash"}
            recomputed = hashlib.sha256(
                json.dumps(verify_data, sort_keys=True).encode("utf-8")
            ).hexdigest()

            if stored_hash != recomputed:
                errors.append(
                    f"Line {line_num}: hash mismatch — "
                    f"stored {stored_hash[:16]}..., "
                    f"computed {recomputed[:16]}..."
                )

            prev_hash = stored_hash

    return len(errors) == 0, errors
