"""Unit tests for the retry-once wrapper around authenticated gateway calls."""

from __future__ import annotations

import pytest
from fleetpay_core.errors import GatewayAuthenticationError, GatewayResponseError, GatewayTimeoutError
from fleetpay_core.retry import AuthRetryPolicy, with_auth_retry


class _ScriptedCall:
    """Raises the scripted exceptions in order, then returns ``"ok"``."""

    def __init__(self, *failures: Exception) -> None:
        self._failures = list(failures)
        self.force_refresh_flags: list[bool] = []

    async def __call__(self, force_refresh: bool) -> str:
        self.force_refresh_flags.append(force_refresh)
        if self._failures:
            raise self._failures.pop(0)
        return "ok"


class _Invalidator:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


@pytest.mark.asyncio
class TestWithAuthRetry:
    async def test_success_first_try(self) -> None:
        call, invalidate = _ScriptedCall(), _Invalidator()

        assert await with_auth_retry(call, invalidate=invalidate) == "ok"
        assert call.force_refresh_flags == [False]
        assert invalidate.calls == 0

    async def test_auth_failure_invalidates_and_refreshes(self) -> None:
        call = _ScriptedCall(GatewayAuthenticationError("expired", status_code=401))
        invalidate = _Invalidator()

        assert await with_auth_retry(call, invalidate=invalidate) == "ok"
        assert call.force_refresh_flags == [False, True]
        assert invalidate.calls == 1

    async def test_second_auth_failure_propagates(self) -> None:
        call = _ScriptedCall(
            GatewayAuthenticationError("expired", status_code=401),
            GatewayAuthenticationError("still rejected", status_code=403),
        )
        invalidate = _Invalidator()

        with pytest.raises(GatewayAuthenticationError) as exc_info:
            await with_auth_retry(call, invalidate=invalidate)

        assert exc_info.value.status_code == 403
        assert len(call.force_refresh_flags) == 2
        assert invalidate.calls == 1

    async def test_timeout_retries_without_invalidation(self) -> None:
        call = _ScriptedCall(GatewayTimeoutError("slow"))
        invalidate = _Invalidator()

        assert await with_auth_retry(call, invalidate=invalidate) == "ok"
        assert call.force_refresh_flags == [False, False]
        assert invalidate.calls == 0

    async def test_timeout_and_auth_share_one_budget(self) -> None:
        call = _ScriptedCall(
            GatewayTimeoutError("slow"),
            GatewayAuthenticationError("expired", status_code=401),
        )

        with pytest.raises(GatewayAuthenticationError):
            await with_auth_retry(call, invalidate=_Invalidator())
        assert len(call.force_refresh_flags) == 2

    async def test_timeout_retry_disabled(self) -> None:
        call = _ScriptedCall(GatewayTimeoutError("slow"))

        with pytest.raises(GatewayTimeoutError):
            await with_auth_retry(
                call,
                invalidate=_Invalidator(),
                policy=AuthRetryPolicy(retry_on_timeout=False),
            )
        assert call.force_refresh_flags == [False]

    async def test_other_errors_are_not_retried(self) -> None:
        call = _ScriptedCall(GatewayResponseError("boom", status_code=500))

        with pytest.raises(GatewayResponseError):
            await with_auth_retry(call, invalidate=_Invalidator())
        assert call.force_refresh_flags == [False]

    async def test_zero_budget(self) -> None:
        call = _ScriptedCall(GatewayAuthenticationError("expired", status_code=401))
        invalidate = _Invalidator()

        with pytest.raises(GatewayAuthenticationError):
            await with_auth_retry(call, invalidate=invalidate, policy=AuthRetryPolicy(retry_budget=0))
        assert invalidate.calls == 0
