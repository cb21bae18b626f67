"""Matches asynchronous responses back to the call that is waiting for them.

Every pending call is keyed by ``"{client_id}:{message_id}"``.  A call ends in
exactly one of three ways: a matching response arrives, its deadline elapses,
or it is cancelled.  Removing the key from ``_pending`` is the serialisation
point.  Whoever pops the entry completes the future, and everyone arriving
later finds the key gone and does nothing.  All methods must run on the event
loop that owns the correlator, which makes the pop-and-complete step atomic.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipemcp.ipc.constants import DEFAULT_CALL_TIMEOUT_SECONDS
from pipemcp.ipc.contracts import ErrorResponse, ResultResponse, correlation_key
from pipemcp.ipc.errors import (
    CallCancelledError,
    CallTimeoutError,
    DuplicatePendingCallError,
    RemoteCallError,
)

if TYPE_CHECKING:
    from pipemcp.ipc.contracts import ResponseEnvelope

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingCall:
    """A caller suspended until its response, deadline or cancellation."""

    client_id: str
    message_id: str
    future: asyncio.Future[ResultResponse]
    deadline: float
    timeout: float
    label: str | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def key(self) -> str:
        return correlation_key(self.client_id, self.message_id)


class ResponseCorrelator:
    """Registry of pending calls keyed by (client id, message id).

    Usage::

        correlator = ResponseCorrelator()
        waiter = asyncio.create_task(correlator.wait_for_response("h1", "m1", timeout=5))
        correlator.resolve(ResultResponse(client_id="h1", message_id="m1", payload="hi"))
        response = await waiter
    """

    def __init__(self, *, default_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS) -> None:
        self._default_timeout = default_timeout
        self._pending: dict[str, PendingCall] = {}

    @property
    def pending_count(self) -> int:
        """Number of calls currently waiting."""
        return len(self._pending)

    def is_pending(self, client_id: str, message_id: str) -> bool:
        """Whether a call for this correlation key is still waiting."""
        return correlation_key(client_id, message_id) in self._pending

    async def wait_for_response(
        self,
        client_id: str,
        message_id: str,
        timeout: float | None = None,
        *,
        label: str | None = None,
    ) -> ResultResponse:
        """Suspend until the matching response arrives.

        Raises:
            CallTimeoutError: The deadline elapsed first.
            CallCancelledError: :meth:`cancel` ran first.
            RemoteCallError: The matching response is an error envelope.
            DuplicatePendingCallError: The key is already pending.
        """
        pending = self.register(client_id, message_id, timeout, label=label)
        return await self.wait(pending)

    async def wait(self, pending: PendingCall) -> ResultResponse:
        """Await a call returned by :meth:`register`."""
        try:
            return await pending.future
        finally:
            # The awaiting task itself may have been cancelled.
            if self._pending.get(pending.key) is pending:
                self._discard(pending)

    def register(
        self,
        client_id: str,
        message_id: str,
        timeout: float | None = None,
        *,
        label: str | None = None,
    ) -> PendingCall:
        """Register a pending call without awaiting it.

        Lets a caller arm the correlator before sending its request so an
        immediate response cannot slip past.  Await ``pending.future`` to get
        the outcome through :meth:`wait`, or drop it with :meth:`discard`.
        """
        key = correlation_key(client_id, message_id)
        if key in self._pending:
            raise DuplicatePendingCallError(client_id=client_id, message_id=message_id)

        loop = asyncio.get_running_loop()
        effective_timeout = self._default_timeout if timeout is None else timeout
        pending = PendingCall(
            client_id=client_id,
            message_id=message_id,
            future=loop.create_future(),
            deadline=loop.time() + effective_timeout,
            timeout=effective_timeout,
            label=label,
        )
        pending.timer = loop.call_at(pending.deadline, self._expire, key, pending)
        self._pending[key] = pending
        logger.debug("Registered pending call %s (timeout %.3fs)", key, effective_timeout)
        return pending

    def resolve(self, response: ResponseEnvelope) -> bool:
        """Complete the call matching *response*.

        Returns False when no call is waiting (late, duplicate or unsolicited
        response); the response is then dropped.
        """
        key = correlation_key(response.client_id, response.message_id)
        pending = self._pending.pop(key, None)
        if pending is None:
            logger.info("Dropping unmatched %s response for %s", response.type, key)
            return False
        self._cancel_timer(pending)

        match response:
            case ErrorResponse(message=message):
                outcome: BaseException | ResultResponse = RemoteCallError(
                    message,
                    client_id=pending.client_id,
                    message_id=pending.message_id,
                    label=pending.label,
                )
            case _:
                outcome = response
        return self._complete(pending, outcome)

    def cancel(self, client_id: str, message_id: str) -> bool:
        """Cancel one pending call; returns False when nothing was waiting."""
        key = correlation_key(client_id, message_id)
        pending = self._pending.pop(key, None)
        if pending is None:
            return False
        self._cancel_timer(pending)
        logger.debug("Cancelled pending call %s", key)
        return self._complete(
            pending,
            CallCancelledError(
                client_id=client_id,
                message_id=message_id,
                label=pending.label,
            ),
        )

    def discard(self, pending: PendingCall) -> bool:
        """Forget a registered call that will never be awaited."""
        if self._pending.get(pending.key) is not pending:
            return False
        self._discard(pending)
        pending.future.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every pending call and return how many were cancelled."""
        cancelled = 0
        for pending in list(self._pending.values()):
            if self.cancel(pending.client_id, pending.message_id):
                cancelled += 1
        return cancelled

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expire(self, key: str, pending: PendingCall) -> None:
        if self._pending.get(key) is not pending:
            return
        del self._pending[key]
        logger.warning(
            "Pending call %s%s timed out after %.3fs",
            key,
            f" ({pending.label})" if pending.label else "",
            pending.timeout,
        )
        self._complete(
            pending,
            CallTimeoutError(
                client_id=pending.client_id,
                message_id=pending.message_id,
                timeout=pending.timeout,
                label=pending.label,
            ),
        )

    def _discard(self, pending: PendingCall) -> None:
        del self._pending[pending.key]
        self._cancel_timer(pending)

    @staticmethod
    def _cancel_timer(pending: PendingCall) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None

    @staticmethod
    def _complete(pending: PendingCall, outcome: BaseException | ResultResponse) -> bool:
        if pending.future.done():
            return False
        if isinstance(outcome, BaseException):
            pending.future.set_exception(outcome)
        else:
            pending.future.set_result(outcome)
        return True


__all__ = ["PendingCall", "ResponseCorrelator"]
