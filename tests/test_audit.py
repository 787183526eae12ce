"""Tests for the hash-chained provisioning audit log."""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest

from monitor_provisioner.audit.logger import GENESIS_HASH, AuditError, AuditLogger, verify_log
from monitor_provisioner.models import StepName, StepOutcome


@pytest.fixture()
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "audit.jsonl"


@pytest.fixture()
def workspace_outcome() -> StepOutcome:
    return StepOutcome(
        step=StepName.WORKSPACE,
        ok=True,
        created=1,
        resource_id="/subscriptions/s/resourceGroups/rg-x/providers/"
        "Microsoft.OperationalInsights/workspaces/log-app-y",
    )


@pytest.fixture()
def failed_outcome() -> StepOutcome:
    return StepOutcome(
        step=StepName.NOTIFICATION_GROUP,
        ok=False,
        error="quota exceeded",
    )


def _log(logger: AuditLogger, outcome: StepOutcome, **kwargs):
    return logger.log_step("run-abc123", outcome, "app-y", "rg-x", **kwargs)


# --- Basic Writing ---


class TestAuditLogWriter:
    def test_log_creates_file(self, log_path: Path, workspace_outcome: StepOutcome):
        _log(AuditLogger(log_path), workspace_outcome)
        assert log_path.exists()

    def test_creates_parent_directory(self, tmp_path: Path, workspace_outcome: StepOutcome):
        path = tmp_path / "logs" / "nested" / "audit.jsonl"
        _log(AuditLogger(path), workspace_outcome)
        assert path.exists()

    def test_first_entry_uses_genesis_hash(
        self, log_path: Path, workspace_outcome: StepOutcome
    ):
        event = _log(AuditLogger(log_path), workspace_outcome)
        assert event.prev_hash == GENESIS_HASH
        assert len(event.entry_hash) == 64

    def test_second_entry_chains_to_first(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        first = _log(logger, workspace_outcome)
        second = _log(logger, failed_outcome)
        assert second.prev_hash == first.entry_hash
        assert logger.prev_hash == second.entry_hash

    def test_event_fields_persisted(
        self, log_path: Path, workspace_outcome: StepOutcome
    ):
        event = _log(
            AuditLogger(log_path), workspace_outcome,
            context={"retention_days": 30},
        )
        assert event.event_id.startswith("evt-")
        assert event.run_id == "run-abc123"
        assert event.step == StepName.WORKSPACE
        assert event.ok
        assert event.created == 1
        assert event.application == "app-y"
        assert event.resource_group == "rg-x"
        assert event.resource_id == workspace_outcome.resource_id
        assert not event.modifies_target
        assert event.context == {"retention_days": 30}

    def test_failure_fields_persisted(self, log_path: Path, failed_outcome: StepOutcome):
        event = _log(AuditLogger(log_path), failed_outcome)
        assert not event.ok
        assert event.error == "quota exceeded"

    def test_log_is_json_lines(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        _log(logger, workspace_outcome)
        _log(logger, failed_outcome)

        lines = log_path.read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 2
        for line in lines:
            data = json.loads(line)
            assert "event_id" in data
            assert "entry_hash" in data

    def test_custom_timestamp(self, log_path: Path, workspace_outcome: StepOutcome):
        ts = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)
        event = _log(AuditLogger(log_path), workspace_outcome, timestamp=ts)
        assert event.timestamp == ts

    def test_concurrent_writes_keep_chain(
        self, log_path: Path, workspace_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        threads = [
            threading.Thread(target=_log, args=(logger, workspace_outcome))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        is_valid, errors = verify_log(log_path)
        assert is_valid, errors
        assert len(logger.read_events()) == 8

    def test_write_failure_raises_audit_error(
        self, log_path: Path, workspace_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        log_path.mkdir()
        with pytest.raises(AuditError, match="Could not write audit log"):
            _log(logger, workspace_outcome)
        assert logger.prev_hash == GENESIS_HASH


# --- Reading ---


class TestAuditLogReader:
    def test_read_events(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        _log(logger, workspace_outcome)
        _log(logger, failed_outcome)

        events = logger.read_events()
        assert [e.step for e in events] == [StepName.WORKSPACE, StepName.NOTIFICATION_GROUP]

    def test_filter_by_run(self, log_path: Path, workspace_outcome: StepOutcome):
        logger = AuditLogger(log_path)
        logger.log_step("run-1", workspace_outcome, "app-y", "rg-x")
        logger.log_step("run-2", workspace_outcome, "app-y", "rg-x")
        logger.log_step("run-1", workspace_outcome, "app-y", "rg-x")
        assert len(logger.read_events(run_id="run-1")) == 2
        assert len(logger.read_events(run_id="run-3")) == 0

    def test_read_nonexistent_log(self, tmp_path: Path):
        assert AuditLogger(tmp_path / "missing.jsonl").read_events() == []

    def test_corrupt_entry_raises(self, log_path: Path, workspace_outcome: StepOutcome):
        logger = AuditLogger(log_path)
        _log(logger, workspace_outcome)
        with log_path.open("a", encoding="utf-8") as f:
            f.write('{"event_id": 1}\n')
        with pytest.raises(AuditError, match="line 2"):
            logger.read_events()

    def test_corrupt_last_line_rejected_on_open(self, log_path: Path):
        log_path.write_text("{not json\n", encoding="utf-8")
        with pytest.raises(AuditError, match="Corrupt audit log"):
            AuditLogger(log_path)


# --- Chain Verification ---


class TestVerifyLog:
    def test_valid_chain(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        _log(logger, workspace_outcome)
        _log(logger, failed_outcome)
        _log(logger, workspace_outcome)

        is_valid, errors = verify_log(log_path)
        assert is_valid is True
        assert errors == []

    def test_nonexistent_log_is_valid(self, tmp_path: Path):
        is_valid, _ = verify_log(tmp_path / "missing.jsonl")
        assert is_valid is True

    def test_tampered_entry_detected(
        self, log_path: Path, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        _log(logger, failed_outcome)
        _log(logger, failed_outcome)

        lines = log_path.read_text(encoding="utf-8").strip().split("\n")
        entry = json.loads(lines[0])
        entry["error"] = None
        entry["ok"] = True
        lines[0] = json.dumps(entry, sort_keys=True)
        log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        is_valid, errors = verify_log(log_path)
        assert is_valid is False
        assert any("hash mismatch" in e for e in errors)

    def test_deleted_entry_detected(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        logger = AuditLogger(log_path)
        _log(logger, workspace_outcome)
        _log(logger, failed_outcome)
        _log(logger, workspace_outcome)

        lines = log_path.read_text(encoding="utf-8").strip().split("\n")
        del lines[1]
        log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        is_valid, errors = verify_log(log_path)
        assert is_valid is False
        assert any("chain broken" in e for e in errors)

    def test_corrupt_json_detected(self, log_path: Path, workspace_outcome: StepOutcome):
        _log(AuditLogger(log_path), workspace_outcome)
        with log_path.open("a", encoding="utf-8") as f:
            f.write("{{not valid json}}\n")

        is_valid, errors = verify_log(log_path)
        assert is_valid is False
        assert any("invalid JSON" in e for e in errors)


# --- Resumption ---


class TestLogResumption:
    def test_new_logger_continues_chain(
        self, log_path: Path, workspace_outcome: StepOutcome, failed_outcome: StepOutcome
    ):
        """A new AuditLogger picks up where the last run left off."""
        first = _log(AuditLogger(log_path), workspace_outcome)
        second = _log(AuditLogger(log_path), failed_outcome)

        assert second.prev_hash == first.entry_hash
        is_valid, errors = verify_log(log_path)
        assert is_valid is True
        assert errors == []
