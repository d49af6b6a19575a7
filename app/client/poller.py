# app/client/poller.py
"""
Bounded settlement polling.

Used when no settlement push arrives (callback or live feed), or to drive
interactive progress. Polls the transaction status every
POLL_INTERVAL_SECONDS, at most MAX_POLL_ATTEMPTS times (about 5 minutes).
Giving up raises SettlementTimeoutError, which is not a payment failure:
the transaction may still settle later through the Gateway callback.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from app.x402.exceptions import (
    NotFoundError,
    PaymentFailedError,
    SettlementTimeoutError,
    UnauthorizedError,
    ValidationError,
)
from app.x402.models import TransactionStatus

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_ATTEMPTS = 60

StatusResult = Union[str, Dict[str, Any]]
StatusFetcher = Callable[[str], Union[StatusResult, Awaitable[StatusResult]]]


def _status_of(result: StatusResult) -> str:
    status = result.get("status", "") if isinstance(result, dict) else result
    if isinstance(status, Enum):
        return str(status.value)
    return str(status or "")


class SettlementPoller:
    """
    Polls a status fetcher until the transaction is terminal or attempts run out.

    `fetch_status(request_id)` may be sync (run in a worker thread) or async,
    and returns either the status string or a dict with a `status` key.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def _fetch(self, request_id: str) -> StatusResult:
        if inspect.iscoroutinefunction(self.fetch_status):
            return await self.fetch_status(request_id)
        result = await asyncio.to_thread(self.fetch_status, request_id)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def wait(self, request_id: str) -> StatusResult:
        """
        Wait for `request_id` to settle.

        Returns:
            The fetcher result that reported `settled`

        Raises:
            PaymentFailedError: The transaction failed (raised on first sight)
            SettlementTimeoutError: Still pending after max_attempts polls
        """
        if not request_id:
            raise ValidationError("request_id is required")

        last_result: Optional[StatusResult] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                last_result = await self._fetch(request_id)
            except (ValidationError, UnauthorizedError, NotFoundError):
                raise
            except Exception as e:
                # A failed poll still counts as an attempt
                logger.warning(f"Status check {attempt}/{self.max_attempts} for {request_id} failed: {e}")
            else:
                status = _status_of(last_result)
                if status == TransactionStatus.SETTLED.value:
                    logger.info(f"Transaction {request_id} settled after {attempt} status checks")
                    return last_result
                if status == TransactionStatus.FAILED.value:
                    logger.info(f"Transaction {request_id} failed after {attempt} status checks")
                    raise PaymentFailedError(request_id)
                logger.debug(f"Transaction {request_id} still {status or 'unknown'} ({attempt}/{self.max_attempts})")

            if attempt < self.max_attempts:
                await self.sleep(self.interval)

        logger.warning(f"Gave up waiting for {request_id} after {self.max_attempts} status checks")
        raise SettlementTimeoutError(request_id, self.max_attempts)

    def wait_sync(self, request_id: str) -> StatusResult:
        """Blocking variant of `wait` for callers without an event loop."""
        return asyncio.run(self.wait(request_id))
