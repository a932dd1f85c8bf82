"""
Streaming session state machine.

WHAT: Owns one in-flight streaming exchange from request to done/cancelled
WHY: SSE streams drop, get cancelled and time out; callers need one clean contract
HOW: Pull-based async iterator over SSE frames with bounded reconnection

States: OPEN -> (STREAMING <-> RECONNECTING) -> DONE | CANCELLED | FAILED

Reconnection resends the partial assistant text with a "continue" instruction.
Providers have no native resume, so the continuation is approximate: the model
may repeat or rephrase the tail of what it already sent.
"""

import asyncio
import enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

import httpx

from .cancellation import CancelToken, RequestCancelled, cancel_after, next_or_none
from .costs import calculate_cost
from .sse import FrameType, SSEFrame, SSEFrameParser
from .types import (
    ActiveRequest,
    CancelledChunk,
    ContentChunk,
    DoneChunk,
    ErrorChunk,
    EventChunk,
    FinishChunk,
    ModelConfig,
    ReconnectingChunk,
    RetryChunk,
    StreamChunk,
    Usage,
)
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from .base import BaseProvider

logger = get_logger(__name__)


class SessionState(str, enum.Enum):
    OPEN = "open"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = (SessionState.DONE, SessionState.CANCELLED, SessionState.FAILED)


class StreamSession:
    """
    One streaming chat exchange.

    Iterate with `async for chunk in session`. The last chunk on any
    non-raising path is exactly one DoneChunk or CancelledChunk. Transport
    failures that cannot be resumed raise ClientError instead.
    """

    def __init__(
        self,
        provider: "BaseProvider",
        body: dict[str, Any],
        *,
        api_key: str,
        model: ModelConfig,
        request_id: str,
        max_reconnect_attempts: int = 3,
        reconnect_delay: float = 1.0,
        continue_prompt: str = "Continue from where you left off.",
        timeout: Optional[float] = None,
    ):
        self._provider = provider
        self._body = body
        self._api_key = api_key
        self.model = model
        self.request_id = request_id
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.continue_prompt = continue_prompt
        self.timeout = timeout

        self.state = SessionState.OPEN
        self.accumulated_content = ""
        self.total_usage = Usage()
        self.reconnect_attempts = 0

        self._token = CancelToken()
        self._parser = SSEFrameParser()
        self._response: Optional[httpx.Response] = None
        self._reader: Optional[AsyncIterator[bytes]] = None
        self._chunks = self._run()

    # ---- public iterator API ----

    def __aiter__(self) -> "StreamSession":
        return self

    async def __anext__(self) -> StreamChunk:
        return await self._chunks.__anext__()

    def cancel(self, reason: str = "cancelled") -> None:
        """Abort the stream; the next chunk will be a CancelledChunk."""
        self._token.cancel(reason)

    async def aclose(self) -> None:
        """Stop iterating early and release the connection."""
        if self.state not in TERMINAL_STATES:
            self._token.cancel()
        try:
            await self._chunks.aclose()
        except RuntimeError:
            # Another task is mid-read; the fired token makes that read finish the session
            logger.debug(f"Stream {self.request_id} closed while being read elsewhere")

    # ---- state machine ----

    async def _run(self) -> AsyncIterator[StreamChunk]:
        self._provider._track(ActiveRequest(request_id=self.request_id, token=self._token))
        timer = cancel_after(self._token, self.timeout)
        try:
            await self._open()
            self.state = SessionState.STREAMING

            while True:
                chunks, eof = await self._pump()
                for chunk in chunks:
                    yield chunk
                if self.state is SessionState.DONE:
                    return
                if not eof:
                    continue

                if not self._can_reconnect():
                    break

                self.reconnect_attempts += 1
                self.state = SessionState.RECONNECTING
                logger.warning(
                    f"Stream {self.request_id} ended early, reconnecting "
                    f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
                )
                yield ReconnectingChunk(attempt=self.reconnect_attempts)
                await self._token.guard(asyncio.sleep(self.reconnect_delay * self.reconnect_attempts))
                await self._reconnect()

            self.state = SessionState.DONE
            yield self._incomplete_done()

        except RequestCancelled as e:
            self.state = SessionState.CANCELLED
            logger.info(f"Stream {self.request_id} {e.reason} ({len(self.accumulated_content)} chars received)")
            yield CancelledChunk(partial_content=self.accumulated_content, reason=e.reason)

        except ClientError:
            self.state = SessionState.FAILED
            raise

        finally:
            if timer is not None:
                timer.cancel()
            await self._close_response()
            self._provider._untrack(self.request_id)

    async def _send(self, body: dict[str, Any], request_id: str) -> httpx.Response:
        request = self._provider.client.build_request(
            "POST",
            self._provider.endpoint,
            json=body,
            headers=self._provider.build_headers(self._api_key, request_id, stream=True),
        )
        return await self._token.guard(self._provider.client.send(request, stream=True))

    async def _open(self) -> None:
        try:
            response = await self._send(self._body, self.request_id)
        except httpx.TransportError as e:
            raise self._provider.transport_error(e) from e

        if not response.is_success:
            try:
                raise await self._provider.error_from_response(response)
            finally:
                await response.aclose()

        self._attach(response)

    async def _reconnect(self) -> None:
        """Re-issue the request asking the model to continue; failures consume the attempt."""
        body = {
            **self._body,
            "messages": [
                *self._body["messages"],
                {"role": "assistant", "content": self.accumulated_content},
                {"role": "user", "content": self.continue_prompt},
            ],
        }
        logger.debug(f"Reconnect request for {self.request_id} with {len(self.accumulated_content)} chars of context")

        try:
            response = await self._send(body, f"{self.request_id}-reconnect")
        except httpx.TransportError as e:
            logger.error(f"Reconnection failed for {self.request_id}: {e}")
            return

        if not response.is_success:
            logger.error(f"Reconnection failed for {self.request_id}: HTTP {response.status_code}")
            await response.aclose()
            return

        self._attach(response)
        self.state = SessionState.STREAMING

    def _attach(self, response: httpx.Response) -> None:
        self._response = response
        self._reader = response.aiter_bytes()
        self._parser = SSEFrameParser()

    async def _close_response(self) -> None:
        response, self._response, self._reader = self._response, None, None
        if response is not None:
            await response.aclose()

    async def _pump(self) -> tuple[list[StreamChunk], bool]:
        """
        Read one network chunk and turn it into stream chunks.

        Returns:
            (chunks, eof) where eof means the current connection is finished
        """
        if self._reader is None:
            return [], True

        try:
            data = await self._token.guard(next_or_none(self._reader))
        except httpx.TransportError as e:
            if not self._is_resumable():
                raise self._provider.transport_error(e) from e
            logger.warning(f"Stream {self.request_id} dropped: {e}")
            tail = self._parser.discard()
            if tail:
                logger.debug(f"Discarded {len(tail)} chars of a partial frame from {self.request_id}")
            await self._close_response()
            return [], True

        if data is None:
            frames = self._parser.flush()
            await self._close_response()
            return self._process(frames), True

        return self._process(self._parser.feed(data)), False

    def _process(self, frames: list[SSEFrame]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        for frame in frames:
            if frame.type is FrameType.DONE:
                self.state = SessionState.DONE
                chunks.append(DoneChunk(
                    usage=self.total_usage,
                    cost=calculate_cost(self.total_usage, self.model),
                    content=self.accumulated_content,
                ))
                logger.info(
                    f"Stream {self.request_id} completed (model: {self.model.id}, "
                    f"tokens: {self.total_usage.total_tokens})"
                )
                break

            if frame.type is FrameType.DATA:
                try:
                    chunks.extend(self._process_data(frame.data or {}))
                except ValueError as e:
                    logger.warning(f"Unexpected stream payload shape: {e} ({frame.raw[:100]})")
                    chunks.append(ErrorChunk(message="Failed to parse stream data", recoverable=True))
            elif frame.type is FrameType.INVALID:
                logger.warning(f"Failed to parse stream data: {frame.error} ({frame.raw[:100]})")
                chunks.append(ErrorChunk(message="Failed to parse stream data", recoverable=True))
            elif frame.type is FrameType.EVENT:
                chunks.append(EventChunk(event=frame.value or ""))
            elif frame.type is FrameType.RETRY:
                chunks.append(RetryChunk(delay_ms=frame.retry_ms))
        return chunks

    def _process_data(self, payload: dict[str, Any]) -> list[StreamChunk]:
        """
        Turn one JSON frame into chunks.

        The frame is fully checked before any session state changes, so a
        rejected frame leaves the accumulated text and usage untouched.

        Raises:
            ClientError: (api) the frame carries an `error` object
            ValueError: a known field has the wrong type
        """
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                message = error.get("message") or "Stream error"
                code = error.get("code")
            else:
                message, code = str(error), None
            status = code if isinstance(code, int) else 500
            raise ClientError.api(message, status, {"error": error, "provider": self._provider.name})

        choices = payload.get("choices") or []
        if not isinstance(choices, list):
            raise ValueError(f"choices must be a list, got {type(choices).__name__}")
        choice = choices[0] if choices else {}
        if not isinstance(choice, dict):
            raise ValueError(f"choice must be an object, got {type(choice).__name__}")

        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise ValueError(f"delta must be an object, got {type(delta).__name__}")
        text = delta.get("content")
        if text is not None and not isinstance(text, str):
            raise ValueError(f"delta content must be a string, got {type(text).__name__}")

        finish_reason = choice.get("finish_reason")
        usage = Usage.from_api(payload.get("usage"))

        chunks: list[StreamChunk] = []
        if text:
            self.accumulated_content += text
            chunks.append(ContentChunk(text=text, accumulated_text=self.accumulated_content))
        if finish_reason:
            chunks.append(FinishChunk(reason=str(finish_reason)))
        if usage is not None:
            self.total_usage = usage

        return chunks

    # ---- helpers ----

    def _is_resumable(self) -> bool:
        return bool(self.accumulated_content) and not self.total_usage.total_tokens

    def _can_reconnect(self) -> bool:
        return self._is_resumable() and self.reconnect_attempts < self.max_reconnect_attempts

    def _incomplete_done(self) -> DoneChunk:
        usage = self.total_usage
        if not usage.total_tokens and self.accumulated_content:
            usage = Usage.estimate(self.accumulated_content)
        self.total_usage = usage
        logger.warning(
            f"Stream {self.request_id} finished without [DONE] "
            f"({len(self.accumulated_content)} chars, {self.reconnect_attempts} reconnect attempt(s))"
        )
        return DoneChunk(
            usage=usage,
            cost=calculate_cost(usage, self.model),
            content=self.accumulated_content,
            incomplete=True,
        )
