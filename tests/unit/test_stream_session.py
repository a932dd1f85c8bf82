"""
Unit tests for StreamSession.

WHAT: Chunk sequence, reconnection, cancellation, timeout, malformed frames
WHY: Streaming is where drops, cancels and partial data actually happen
HOW: httpx.MockTransport handlers that shape the SSE body byte by byte
"""

import asyncio
import json

import httpx
import pytest

from deepweb.llm.costs import calculate_cost
from deepweb.llm.deepseek import DeepSeekProvider
from deepweb.llm.stream_session import SessionState
from deepweb.llm.types import (
    CancelledChunk,
    ContentChunk,
    DoneChunk,
    ErrorChunk,
    EventChunk,
    FinishChunk,
    ReconnectingChunk,
    RetryChunk,
    Usage,
)
from deepweb.utils.exceptions import ClientError, ErrorKind
from tests.conftest import HELLO_MESSAGES, VALID_API_KEY, delta, sse, streaming_response, usage_frame


def make_provider(test_settings, mock_transport_client, handler) -> DeepSeekProvider:
    return DeepSeekProvider(settings=test_settings, client=mock_transport_client(handler))


async def collect(session) -> list:
    return [chunk async for chunk in session]


@pytest.mark.unit
@pytest.mark.streaming
class TestHappyPath:
    """Test complete streams."""

    @pytest.mark.asyncio
    async def test_n_deltas_then_done(self, test_settings, mock_transport_client):
        """N content chunks, then one done chunk with the reported usage and its cost."""
        texts = ["Hel", "lo", ", ", "wor", "ld"]
        body = b"".join(sse(delta(t)) for t in texts) + sse(usage_frame(4, 5)) + sse("[DONE]")
        requests = []

        def handler(request):
            requests.append(request)
            # Deliver the body in awkward 7-byte pieces
            return streaming_response([body[i:i + 7] for i in range(0, len(body), 7)])

        provider = make_provider(test_settings, mock_transport_client, handler)
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        chunks = await collect(session)

        content = [c for c in chunks if isinstance(c, ContentChunk)]
        assert [c.text for c in content] == texts
        assert content[-1].accumulated_text == "Hello, world"
        assert isinstance(chunks[-2], FinishChunk)
        assert chunks[-2].reason == "stop"

        done = chunks[-1]
        usage = Usage(prompt_tokens=4, completion_tokens=5, total_tokens=9)
        assert isinstance(done, DoneChunk)
        assert done.usage == usage
        assert done.cost == calculate_cost(usage, provider.get_model_info("deepseek-chat"))
        assert done.content == "Hello, world"
        assert done.incomplete is False

        assert session.state is SessionState.DONE
        assert provider.active_requests == {}

        sent = json.loads(requests[0].content)
        assert sent["stream"] is True
        assert requests[0].headers["accept"] == "text/event-stream"

    @pytest.mark.asyncio
    async def test_only_content_and_done(self, test_settings, mock_transport_client):
        body = b"".join(sse(delta(t)) for t in ["a", "b", "c"]) + sse("[DONE]")
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))
        assert [c.type for c in chunks] == ["content", "content", "content", "done"]
        assert chunks[-1].usage == Usage()
        assert chunks[-1].cost == 0

    @pytest.mark.asyncio
    async def test_frames_after_done_are_ignored(self, test_settings, mock_transport_client):
        body = sse(delta("x")) + sse("[DONE]") + sse(delta("ignored"))
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))
        assert [c.type for c in chunks] == ["content", "done"]
        assert chunks[-1].content == "x"

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self, test_settings, mock_transport_client):
        body = sse(delta("a")) + b"data: {oops\n\n" + sse(delta("b")) + sse("[DONE]")
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))
        assert [c.type for c in chunks] == ["content", "error", "content", "done"]
        assert isinstance(chunks[1], ErrorChunk)
        assert chunks[1].recoverable is True
        assert chunks[-1].content == "ab"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_frame", [
        {"choices": [{"index": 0, "delta": {}}], "usage": "n/a"},
        {"choices": [{"index": 0, "delta": {}}], "usage": {"prompt_tokens": "many", "completion_tokens": 1}},
        {"choices": [{"index": 0, "delta": {"content": 42}}]},
        {"choices": {"index": 0}},
        {"choices": [{"index": 0, "delta": "Hi"}]},
    ])
    async def test_wrongly_typed_frame_is_skipped(self, test_settings, mock_transport_client, bad_frame):
        """A frame with the wrong field types becomes a recoverable error chunk; the stream goes on."""
        body = sse(delta("Hi")) + sse(bad_frame) + sse(delta(" there")) + sse(usage_frame(3, 2)) + sse("[DONE]")
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)

        chunks = await collect(session)

        assert [c.type for c in chunks] == ["content", "error", "content", "finish", "done"]
        assert chunks[1].recoverable is True
        assert chunks[-1].content == "Hi there"
        assert chunks[-1].usage == Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
        assert session.state is SessionState.DONE

    @pytest.mark.asyncio
    async def test_event_and_retry_lines_surface(self, test_settings, mock_transport_client):
        body = b"event: ping\nretry: 2500\n: comment\n\n" + sse(delta("a")) + sse("[DONE]")
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))
        assert isinstance(chunks[0], EventChunk) and chunks[0].event == "ping"
        assert isinstance(chunks[1], RetryChunk) and chunks[1].delay_ms == 2500
        assert [c.type for c in chunks[2:]] == ["content", "done"]


@pytest.mark.unit
@pytest.mark.streaming
class TestReconnection:
    """Test drops and the bounded continuation procedure."""

    @pytest.mark.asyncio
    async def test_drop_exhausts_attempts_then_incomplete_done(self, test_settings, mock_transport_client):
        """Every connection drops after 2 deltas; settings allow 2 reconnects."""
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return streaming_response([sse(delta("ab")), sse(delta("cd"))], drop=True)

        provider = make_provider(test_settings, mock_transport_client, handler)
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        chunks = await collect(session)

        reconnecting = [c for c in chunks if isinstance(c, ReconnectingChunk)]
        assert [c.attempt for c in reconnecting] == [1, 2]
        assert len(requests) == 3

        done = chunks[-1]
        assert isinstance(done, DoneChunk)
        assert done.incomplete is True
        assert done.content == "abcd" * 3
        assert done.usage == Usage.estimate("abcd" * 3)
        assert done.usage.incomplete is True
        assert session.state is SessionState.DONE
        assert provider.active_requests == {}

    @pytest.mark.asyncio
    async def test_reconnect_request_asks_to_continue(self, test_settings, mock_transport_client):
        requests = []

        def handler(request):
            requests.append((request.headers["x-request-id"], json.loads(request.content)))
            if len(requests) == 1:
                return streaming_response([sse(delta("Once upon"))], drop=True)
            return streaming_response([sse(delta(" a time")), sse(usage_frame(20, 6)), sse("[DONE]")])

        provider = make_provider(test_settings, mock_transport_client, handler)
        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))

        first_id, _ = requests[0]
        second_id, body = requests[1]
        assert second_id == f"{first_id}-reconnect"
        assert body["messages"][-2:] == [
            {"role": "assistant", "content": "Once upon"},
            {"role": "user", "content": test_settings.STREAM_CONTINUE_PROMPT},
        ]

        done = chunks[-1]
        assert done.incomplete is False
        assert done.content == "Once upon a time"
        assert done.usage == Usage(prompt_tokens=20, completion_tokens=6, total_tokens=26)

    @pytest.mark.asyncio
    async def test_partial_line_at_drop_is_discarded(self, test_settings, mock_transport_client):
        """A frame cut off by the drop is not reported as a parse error."""
        requests = []

        def handler(request):
            requests.append(request)
            if len(requests) == 1:
                return streaming_response([sse(delta("The answer")), b'data: {"choi'], drop=True)
            return streaming_response([sse(delta(" is 42.")), sse("[DONE]")])

        provider = make_provider(test_settings, mock_transport_client, handler)

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))

        assert [c.type for c in chunks] == ["content", "reconnecting", "content", "done"]
        assert not any(isinstance(c, ErrorChunk) for c in chunks)
        assert chunks[-1].content == "The answer is 42."

    @pytest.mark.asyncio
    async def test_clean_eof_without_done_is_incomplete(self, test_settings, mock_transport_client):
        """No content means nothing to resume: finish immediately."""
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([b": hi\n\n"]))

        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))
        assert len(chunks) == 1
        assert isinstance(chunks[0], DoneChunk)
        assert chunks[0].incomplete is True
        assert chunks[0].usage == Usage()

    @pytest.mark.asyncio
    async def test_failed_reconnect_consumes_attempt(self, test_settings, mock_transport_client):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                return streaming_response([sse(delta("partial"))], drop=True)
            return httpx.Response(503, json={"error": {"message": "busy"}})

        provider = make_provider(test_settings, mock_transport_client, handler)
        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY))

        assert calls == 3
        assert [c.attempt for c in chunks if isinstance(c, ReconnectingChunk)] == [1, 2]
        assert chunks[-1].incomplete is True
        assert chunks[-1].content == "partial"

    @pytest.mark.asyncio
    async def test_drop_before_any_content_raises_network_error(self, test_settings, mock_transport_client):
        provider = make_provider(
            test_settings, mock_transport_client, lambda r: streaming_response([b": open\n\n"], drop=True)
        )
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)

        with pytest.raises(ClientError) as exc_info:
            await collect(session)
        assert exc_info.value.kind is ErrorKind.NETWORK
        assert session.state is SessionState.FAILED
        assert provider.active_requests == {}


@pytest.mark.unit
@pytest.mark.streaming
class TestCancellation:
    """Test cancel and timeout while streaming."""

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, test_settings, mock_transport_client):
        async def body():
            yield sse(delta("first"))
            await asyncio.sleep(10)
            yield sse(delta("never"))

        provider = make_provider(test_settings, mock_transport_client, lambda r: httpx.Response(200, content=body()))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)

        chunks = [await session.__anext__()]
        assert session.request_id in provider.active_requests

        asyncio.get_running_loop().call_later(0.01, session.cancel)
        chunks.extend(await collect(session))

        last = chunks[-1]
        assert isinstance(last, CancelledChunk)
        assert last.partial_content == "first"
        assert last.reason == "cancelled"
        assert session.state is SessionState.CANCELLED
        assert provider.active_requests == {}
        assert provider.cancel_all_requests() == 0

    @pytest.mark.asyncio
    async def test_cancel_all_requests_from_provider(self, test_settings, mock_transport_client):
        async def body():
            yield sse(delta("partial"))
            await asyncio.sleep(10)

        provider = make_provider(test_settings, mock_transport_client, lambda r: httpx.Response(200, content=body()))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        await session.__anext__()

        assert provider.cancel_all_requests() == 1
        chunks = await collect(session)
        assert [c.type for c in chunks] == ["cancelled"]
        assert provider.cancel_all_requests() == 0

    @pytest.mark.asyncio
    async def test_timeout_yields_cancelled_with_reason(self, test_settings, mock_transport_client):
        async def body():
            yield sse(delta("slow"))
            await asyncio.sleep(10)

        provider = make_provider(test_settings, mock_transport_client, lambda r: httpx.Response(200, content=body()))
        chunks = await collect(provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY, timeout=0.05))

        assert isinstance(chunks[-1], CancelledChunk)
        assert chunks[-1].reason == "timeout"
        assert chunks[-1].partial_content == "slow"
        assert provider.active_requests == {}

    @pytest.mark.asyncio
    async def test_aclose_before_iteration_releases_nothing(self, test_settings, mock_transport_client):
        calls = []
        provider = make_provider(test_settings, mock_transport_client, lambda r: calls.append(r))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        await session.aclose()
        assert calls == []
        assert provider.active_requests == {}

    @pytest.mark.asyncio
    async def test_aclose_mid_stream_untracks(self, test_settings, mock_transport_client):
        async def body():
            yield sse(delta("a"))
            await asyncio.sleep(10)

        provider = make_provider(test_settings, mock_transport_client, lambda r: httpx.Response(200, content=body()))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        await session.__anext__()
        await session.aclose()
        assert provider.active_requests == {}


@pytest.mark.unit
@pytest.mark.streaming
class TestErrors:
    """Test HTTP and in-stream errors."""

    @pytest.mark.asyncio
    async def test_http_error_before_stream(self, test_settings, mock_transport_client):
        provider = make_provider(
            test_settings, mock_transport_client,
            lambda r: httpx.Response(401, json={"error": {"message": "Invalid API key"}}),
        )
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)
        with pytest.raises(ClientError) as exc_info:
            await collect(session)
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid API key"
        assert session.state is SessionState.FAILED
        assert provider.active_requests == {}

    @pytest.mark.asyncio
    async def test_error_payload_in_stream(self, test_settings, mock_transport_client):
        body = sse(delta("a")) + sse({"error": {"message": "context length exceeded", "code": 400}})
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([body]))
        session = provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY)

        with pytest.raises(ClientError) as exc_info:
            await collect(session)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "context length exceeded"
        assert session.state is SessionState.FAILED

    def test_validation_is_eager(self, test_settings, mock_transport_client):
        provider = make_provider(test_settings, mock_transport_client, lambda r: streaming_response([]))
        with pytest.raises(ClientError) as exc_info:
            provider.stream(HELLO_MESSAGES, api_key=VALID_API_KEY, model="nope")
        assert exc_info.value.kind is ErrorKind.VALIDATION
        with pytest.raises(ClientError):
            provider.stream([], api_key=VALID_API_KEY)
