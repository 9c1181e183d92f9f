"""Tests for cooperative cancellation of worker-thread operations."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import pytest
from conftest import BASE_URL

from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.middleware.audit_logger import AuditLogger
from mcp_gateway.tools.base import execute_tool
from mcp_gateway.utils.cancel import CancelScope, checkpoint, current_scope, run_cancellable
from mcp_gateway.utils.errors import OperationCancelledError


class TestCheckpoint:
    """Tests for checkpoint."""

    def test_noop_outside_scope(self):
        """Test checkpoint does nothing when no scope is active."""
        assert current_scope.get() is None
        checkpoint()

    def test_raises_in_cancelled_scope(self):
        """Test checkpoint raises once the active scope is cancelled."""
        scope = CancelScope()
        token = current_scope.set(scope)
        try:
            checkpoint()
            scope.cancel()
            with pytest.raises(OperationCancelledError) as exc_info:
                checkpoint()
        finally:
            current_scope.reset(token)

        assert exc_info.value.code == "CANCELLED"


class TestRunCancellable:
    """Tests for run_cancellable."""

    @pytest.mark.asyncio
    async def test_worker_sees_live_scope(self):
        """Test the worker thread runs inside a fresh, uncancelled scope."""
        scope = await run_cancellable(current_scope.get)

        assert isinstance(scope, CancelScope)
        assert scope.cancelled is False
        assert current_scope.get() is None

    @pytest.mark.asyncio
    async def test_cancel_stops_next_outbound_request(self, providers, http):
        """Test a cancelled caller prevents the worker's next request."""
        providers["alpha"].oauth.client_id = None
        providers["alpha"].oauth.registration_url = "https://alpha.example.com/register"
        engine = OAuthFlowEngine(providers, BASE_URL, http=http)
        started, release, finished = threading.Event(), threading.Event(), threading.Event()
        outcome: list[BaseException] = []

        def operation() -> str:
            started.set()
            release.wait(5)
            try:
                return engine.register_client("alpha", providers["alpha"].oauth)
            except BaseException as e:
                outcome.append(e)
                raise
            finally:
                finished.set()

        task = asyncio.create_task(run_cancellable(operation))
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        assert await asyncio.to_thread(finished.wait, 5)
        assert len(outcome) == 1
        assert isinstance(outcome[0], OperationCancelledError)
        http.post.assert_not_called()


class TestExecuteToolCancellation:
    """Tests for cancellation through execute_tool."""

    @pytest.mark.asyncio
    async def test_cancelled_tool_is_audited_and_side_effect_skipped(self):
        """Test cancelling a tool records an error and skips later requests."""
        audit = MagicMock(spec=AuditLogger)
        outbound = MagicMock()
        started, release, finished = threading.Event(), threading.Event(), threading.Event()

        def operation() -> None:
            started.set()
            release.wait(5)
            try:
                checkpoint()
                outbound()
            finally:
                finished.set()

        task = asyncio.create_task(
            execute_tool(audit, "gateway_call_tool", {}, operation, user_id="alice")
        )
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        assert await asyncio.to_thread(finished.wait, 5)
        outbound.assert_not_called()
        assert audit.log_tool_call.call_args.kwargs["result_status"] == "error"
