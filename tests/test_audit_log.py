"""Tests for the audit log."""

import json

from nixcfg.audit_log import (
    AuditEntry,
    CreationSummary,
    ErasureCost,
    format_audit_entry,
    get_audit_log_path,
    log_operation,
    read_audit_log,
)


class TestAuditLog:
    def test_log_and_read_back(self, tmp_path):
        log_operation(
            tmp_path,
            "history.reset",
            erased=ErasureCost(commits=12, branches=1),
            created=CreationSummary(commits=1, files=2),
            metadata={"branch": "main"},
        )
        entries = read_audit_log(tmp_path)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.operation == "history.reset"
        assert entry.erased.commits == 12
        assert entry.created.files == 2
        assert entry.metadata == {"branch": "main"}

    def test_lives_inside_git_dir(self, tmp_path):
        log_operation(tmp_path, "commit")
        path = get_audit_log_path(tmp_path)
        assert path == tmp_path / ".git" / "nixcfg" / "audit.log"
        assert json.loads(path.read_text().strip())["operation"] == "commit"

    def test_last_n(self, tmp_path):
        for op in ("commit", "commit.amend", "git.push.force"):
            log_operation(tmp_path, op)
        assert [e.operation for e in read_audit_log(tmp_path, last_n=2)] == ["commit.amend", "git.push.force"]
        assert read_audit_log(tmp_path, last_n=0) == []

    def test_skips_malformed_lines(self, tmp_path):
        log_operation(tmp_path, "commit")
        with get_audit_log_path(tmp_path).open("a", encoding="utf-8") as f:
            f.write("not json\n")
            f.write(json.dumps({"no": "operation"}) + "\n")
        log_operation(tmp_path, "disk.wipe")
        assert [e.operation for e in read_audit_log(tmp_path)] == ["commit", "disk.wipe"]

    def test_missing_log(self, tmp_path):
        assert read_audit_log(tmp_path) == []

    def test_format(self):
        entry = AuditEntry(
            timestamp="2026-01-01T00:00:00+00:00",
            operation="disk.wipe",
            erased=ErasureCost(devices=1),
            created=CreationSummary(),
            metadata={"device": "/dev/sdz"},
        )
        text = format_audit_entry(entry)
        assert text.splitlines()[0] == "[2026-01-01T00:00:00+00:00] disk.wipe"
        assert "Erased: 1 devices" in text
        assert "Created" not in text
        assert "device: /dev/sdz" in text

    def test_round_trip_dict(self):
        entry = AuditEntry("t", "commit", ErasureCost(), CreationSummary(commits=1), {"head": "abc"})
        assert AuditEntry.from_dict(entry.to_dict()) == entry
