"""Retry-once policy for authenticated gateway calls.

Every gateway-facing operation goes through :func:`with_auth_retry` so the
"invalidate token and try again once" rule lives in a single place.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

from fleetpay_core.errors import GatewayAuthenticationError, GatewayTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthRetryPolicy(BaseModel):
    """Tuneable parameters for the auth retry wrapper."""

    retry_budget: int = Field(
        default=1,
        ge=0,
        description="Total number of retries allowed for one call, whatever the cause.",
    )
    retry_on_timeout: bool = Field(
        default=True,
        description="Spend the retry budget on timeouts too (without token invalidation).",
    )


async def with_auth_retry(
    call: Callable[[bool], Awaitable[T]],
    *,
    invalidate: Callable[[], Awaitable[None]],
    policy: AuthRetryPolicy | None = None,
) -> T:
    """Run *call* and retry it within the policy's budget.

    Parameters
    ----------
    call:
        Coroutine function receiving ``force_refresh``.  It must obtain its
        access token on every invocation, honouring ``force_refresh=True``
        by bypassing the token cache.
    invalidate:
        Drops the tenant's cached token.  Awaited before a retry caused by
        a 401/403, never before a retry caused by a timeout.
    policy:
        Retry parameters (see :class:`AuthRetryPolicy`).

    Returns
    -------
    T
        The return value of the first successful attempt.

    Raises
    ------
    GatewayAuthenticationError, GatewayTimeoutError
        When the budget is exhausted.  Every other exception propagates on
        the first occurrence.
    """
    policy = policy or AuthRetryPolicy()
    force_refresh = False
    attempt = 0

    while True:
        try:
            return await call(force_refresh)
        except GatewayAuthenticationError as exc:
            if attempt >= policy.retry_budget:
                raise
            logger.warning(
                "Gateway rejected credentials (status=%s); invalidating token and retrying (%d/%d)",
                exc.status_code,
                attempt + 1,
                policy.retry_budget,
            )
            await invalidate()
            force_refresh = True
        except GatewayTimeoutError:
            if not policy.retry_on_timeout or attempt >= policy.retry_budget:
                raise
            logger.warning(
                "Gateway call timed out; retrying (%d/%d)",
                attempt + 1,
                policy.retry_budget,
            )
        attempt += 1
