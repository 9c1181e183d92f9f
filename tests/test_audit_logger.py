"""Tests for the audit logger."""

from __future__ import annotations

import io
import json

from mcp_gateway.middleware.audit_logger import REDACTED, AuditLogger, redact


def _audit_lines(captured: str) -> list[dict]:
    return [json.loads(line)["audit"] for line in captured.splitlines() if line.startswith("{")]


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_tool_call_is_written_to_stderr(self, capsys):
        """Test a tool call is emitted as one JSON line on stderr."""
        AuditLogger().log_tool_call(
            "gateway_call_tool",
            {"tool_name": "search"},
            user_id="alice",
            provider_id="alpha",
            result_status="success",
        )

        captured = capsys.readouterr()
        assert captured.out == ""
        (entry,) = _audit_lines(captured.err)
        assert entry["tool_name"] == "gateway_call_tool"
        assert entry["provider_id"] == "alpha"
        assert entry["result_status"] == "success"

    def test_sensitive_values_are_redacted(self, capsys):
        """Test secrets are redacted at any nesting depth."""
        AuditLogger().log_tool_call(
            "t",
            {"access_token": "at", "nested": {"client_secret": "s", "ok": 1}},
        )

        (entry,) = _audit_lines(capsys.readouterr().err)
        assert entry["parameters"]["access_token"] == "[REDACTED]"
        assert entry["parameters"]["nested"] == {"client_secret": "[REDACTED]", "ok": 1}

    def test_auth_event(self, capsys):
        """Test lifecycle events record action and outcome."""
        AuditLogger().log_auth_event(
            "refresh", "alice", "alpha", success=False, details={"status_code": 401}
        )

        (entry,) = _audit_lines(capsys.readouterr().err)
        assert entry["action"] == "refresh"
        assert entry["result_status"] == "error"
        assert entry["parameters"] == {"status_code": 401}

    def test_disabled_logger_writes_nothing(self, capsys):
        """Test a disabled logger is silent."""
        AuditLogger(enabled=False).log_auth_event("revoke", "alice", "alpha")

        assert _audit_lines(capsys.readouterr().err) == []


class TestRedact:
    """Tests for redact."""

    def test_suffix_keys_are_redacted(self):
        """Test keys ending in a credential suffix are hidden."""
        result = redact({"upstream_refresh_token": "rt", "X-Signature": "sig", "user": "alice"})

        assert result == {
            "upstream_refresh_token": REDACTED,
            "X-Signature": REDACTED,
            "user": "alice",
        }

    def test_status_code_is_kept(self):
        """Test only the exact key ``code`` is treated as an authorization code."""
        assert redact({"code": "abc", "status_code": 400}) == {
            "code": REDACTED,
            "status_code": 400,
        }

    def test_lists_of_mappings_are_walked(self):
        """Test mappings inside lists are redacted too."""
        result = redact({"steps": [{"client_secret": "s"}, "plain"]})

        assert result == {"steps": [{"client_secret": REDACTED}, "plain"]}


class TestAuditLoggerStream:
    """Tests for AuditLogger with an explicit stream and clock."""

    def test_entries_use_injected_clock_and_stream(self):
        """Test the timestamp comes from the clock and output goes to the stream."""
        stream = io.StringIO()
        audit = AuditLogger(clock=lambda: 1234, stream=stream)

        audit.log_tool_call("gateway_logout", {"provider_id": "alpha"}, user_id="alice")

        (entry,) = _audit_lines(stream.getvalue())
        assert entry["timestamp"] == 1234
        assert entry["kind"] == "tool"
        assert entry["action"] == "invoke"
        assert "result_status" not in entry
