from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Protocol, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from inbox_responder.models import ConnectionExhaustedError, GatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MailboxGateway(Protocol):
    """
    Blocking mailbox client. Implementations must never flag a message as
    read as a side effect of fetch().
    """

    def connect(self) -> None: ...

    def search_unseen(self) -> List[str]:
        """Ids of all unseen messages, oldest first."""
        ...

    def fetch(self, message_id: str) -> bytes: ...

    def mark_seen(self, message_id: str) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...


class OutboundTransport(Protocol):
    def send(
        self, to_address: str, subject: str, body: str, in_reply_to: Optional[str] = None
    ) -> None: ...


@dataclass(frozen=True)
class CallResult(Generic[T]):
    op: str
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None

    def unwrap(self) -> T:
        if self.ok:
            return self.value  # type: ignore[return-value]
        if isinstance(self.error, GatewayError):
            raise self.error
        raise GatewayError(f"{self.op} failed: {self.error}") from self.error


async def call_with_timeout(
    op: str,
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    lock: Optional[threading.Lock] = None,
) -> CallResult[T]:
    """
    Run a blocking client call in a worker thread; timeouts count as failures.

    A timed-out call keeps running in its thread. With `lock`, every later
    call on the same session waits inside its worker until that thread is
    done, so a session never sees two commands at once.
    """
    target = fn
    if lock is not None:
        def target(*call_args: Any) -> T:
            with lock:
                return fn(*call_args)

    try:
        value = await asyncio.wait_for(asyncio.to_thread(target, *args), timeout=timeout)
    except asyncio.TimeoutError:
        return CallResult(op=op, ok=False, error=GatewayError(f"{op} timed out after {timeout}s"))
    except Exception as exc:
        return CallResult(op=op, ok=False, error=exc)
    return CallResult(op=op, ok=True, value=value)


class AsyncMailbox:
    """
    Uniform async facade over a MailboxGateway. Every operation returns a
    CallResult; connect() owns the bounded retry policy. All calls on the
    gateway are serialized through one session lock.
    """

    def __init__(
        self,
        gateway: MailboxGateway,
        *,
        timeout: float = 10.0,
        retries: int = 3,
        retry_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.session_lock = threading.Lock()

    async def _call(self, op: str, fn: Callable[..., T], *args: Any) -> CallResult[T]:
        return await call_with_timeout(op, fn, *args, timeout=self.timeout, lock=self.session_lock)

    async def _connect_once(self, attempt: int) -> None:
        result = await self._call("connect", self.gateway.connect)
        if result.ok:
            return
        logger.error(f"Mailbox connection error (attempt {attempt}/{self.retries}): {result.error}")
        # Drop whatever half-open session the failed attempt left behind.
        await self._call("disconnect", self.gateway.disconnect)
        result.unwrap()

    async def connect(self, *, force: bool = False) -> None:
        if force:
            await self.disconnect()
        elif self.gateway.is_connected():
            return

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(GatewayError),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._connect_once(attempt.retry_state.attempt_number)
        except GatewayError as exc:
            raise ConnectionExhaustedError(
                f"Could not connect after {self.retries} attempts: {exc}"
            ) from exc
        logger.info("Connected to mailbox")

    async def search_unseen(self) -> CallResult[List[str]]:
        return await self._call("search_unseen", self.gateway.search_unseen)

    async def fetch(self, message_id: str) -> CallResult[bytes]:
        return await self._call("fetch", self.gateway.fetch, message_id)

    async def mark_seen(self, message_id: str) -> CallResult[None]:
        return await self._call("mark_seen", self.gateway.mark_seen, message_id)

    async def disconnect(self) -> None:
        result = await self._call("disconnect", self.gateway.disconnect)
        if not result.ok:
            logger.warning(f"Mailbox disconnect failed: {result.error}")
