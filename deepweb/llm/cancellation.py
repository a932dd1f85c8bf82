"""
Cooperative cancellation for in-flight requests.

WHAT: Per-request cancel tokens and deadline timers
WHY: Abort a pending network read without cancelling the caller's task
HOW: Run each suspension point as a child task that cancel() can abort
"""

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

T = TypeVar("T")


class RequestCancelled(Exception):
    """Raised from CancelToken.guard when the token fires."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Request {reason}")
        self.reason = reason


class CancelToken:
    """Cancellation handle owned by one request."""

    def __init__(self):
        self._reason: Optional[str] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Fire the token. The first reason wins.

        Returns:
            True if this call fired the token, False if it was already fired
        """
        if self._reason is not None:
            return False
        self._reason = reason
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        return True

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise RequestCancelled(self._reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` so that cancel() aborts it.

        Raises:
            RequestCancelled: If the token fired before or during the await
        """
        if self._reason is not None:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestCancelled(self._reason)

        task = asyncio.ensure_future(awaitable)
        self._pending = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._reason is not None and task.cancelled():
                raise RequestCancelled(self._reason) from None
            raise
        except Exception as exc:
            # The aborted operation may surface its own error while unwinding
            if self._reason is not None:
                raise RequestCancelled(self._reason) from exc
            raise
        finally:
            self._pending = None


def cancel_after(token: CancelToken, seconds: Optional[float]) -> Optional[asyncio.TimerHandle]:
    """Arm a deadline that fires the token with reason "timeout"."""
    if not seconds:
        return None
    loop = asyncio.get_running_loop()
    return loop.call_later(seconds, token.cancel, "timeout")


async def next_or_none(iterator: Any) -> Any:
    """Next item of an async iterator, or None when it is exhausted."""
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None
