"""
Shared HTTP plumbing for chat providers.

WHAT: Request ids, headers, retries, error mapping, live-request tracking
WHY: Every OpenAI-style backend needs the same transport behavior
HOW: One httpx.AsyncClient per provider, cancel tokens keyed by request id
"""

import asyncio
import random
import time
import uuid
from typing import Any, Optional

import httpx

from .cancellation import CancelToken, RequestCancelled, cancel_after
from .types import ActiveRequest, ProviderCapabilities, ProviderStatus
from .validation import parse_retry_after
from ..core.config import Settings, settings as default_settings
from ..utils.exceptions import ClientError
from ..utils.logger import get_logger
from ..utils.rate_limit import RateLimiter

logger = get_logger(__name__)


class BaseProvider:
    """Base class for HTTP chat providers; subclasses add the protocol details."""

    name = "base"

    def __init__(
        self,
        *,
        base_url: str,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: API root, e.g. https://api.deepseek.com/v1
            settings: Settings to use instead of the module-level instance
            client: Pre-built httpx client (the provider will not close it)
        """
        self.settings = settings or default_settings
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, self.settings.LLM_MAX_RETRIES)
        self.retry_delay = self.settings.LLM_RETRY_DELAY
        self.timeout = self.settings.LLM_TIMEOUT

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.LLM_CONNECT_TIMEOUT, read=self.settings.LLM_READ_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            http2=False,
        )

        self.active_requests: dict[str, ActiveRequest] = {}
        self.rate_limiter = RateLimiter(
            interval=self.settings.RATE_LIMIT_INTERVAL,
            max_per_hour=self.settings.RATE_LIMIT_MAX_PER_HOUR,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    # ---- live requests ----

    def generate_request_id(self) -> str:
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    def _track(self, active: ActiveRequest) -> None:
        self.active_requests[active.request_id] = active

    def _untrack(self, request_id: str) -> None:
        self.active_requests.pop(request_id, None)

    def cancel_request(self, request_id: str) -> bool:
        """Cancel one live request. Returns False if it is not live."""
        active = self.active_requests.pop(request_id, None)
        if active is None:
            return False
        active.token.cancel()
        logger.info(f"{self.name}: cancelled request {request_id}")
        return True

    def cancel_all_requests(self) -> int:
        """Cancel every live request. Returns how many were cancelled."""
        live = list(self.active_requests.values())
        self.active_requests.clear()
        for active in live:
            active.token.cancel()
        if live:
            logger.info(f"{self.name}: cancelled {len(live)} active request(s)")
        return len(live)

    # ---- HTTP helpers ----

    def build_headers(self, api_key: str, request_id: str, *, stream: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "X-Request-ID": request_id,
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    async def error_from_response(self, response: httpx.Response) -> ClientError:
        """Build a typed API error from a non-2xx response."""
        await response.aread()
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"body": data}

        error_body = data.get("error")
        message = None
        if isinstance(error_body, dict):
            message = error_body.get("message")
        elif isinstance(error_body, str):
            message = error_body

        retry_after = parse_retry_after(response.headers.get("retry-after"))
        payload = {
            **data,
            "provider": self.name,
            "endpoint": _request_url(response, self.endpoint),
            "headers": dict(response.headers),
        }
        return ClientError.api(
            message or f"API error: {response.status_code}",
            response.status_code,
            payload,
            retry_after=retry_after,
        )

    def transport_error(self, exc: httpx.HTTPError) -> ClientError:
        if isinstance(exc, httpx.TimeoutException):
            return ClientError.timeout(f"Request to {self.name} timed out")
        return ClientError.network(f"Network request failed: {exc}")

    def cancelled_error(self, reason: Optional[str], timeout: Optional[float] = None) -> ClientError:
        """Timeouts and explicit cancels share a path; only the category differs."""
        if reason == "timeout":
            return ClientError.timeout(f"Request timed out after {timeout}s", timeout)
        return ClientError.cancelled()

    def compute_retry_delay(self, attempt: int, error: ClientError) -> float:
        """Exponential backoff with up to 30% jitter, or the server's Retry-After."""
        max_delay = self.settings.LLM_MAX_RETRY_DELAY
        if error.retry_after is not None:
            return min(error.retry_after, max_delay)
        base = self.retry_delay * (self.settings.LLM_RETRY_BACKOFF ** (attempt - 1))
        jitter = random.uniform(0, 0.3 * base)
        return min(base + jitter, max_delay)

    async def _attempt(self, url: str, body: dict[str, Any], headers: dict[str, str], token: CancelToken) -> dict[str, Any]:
        try:
            response = await token.guard(self.client.post(url, json=body, headers=headers))
        except httpx.TransportError as e:
            raise self.transport_error(e) from e

        self.rate_limiter.record_request()

        if not response.is_success:
            raise await self.error_from_response(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ClientError.api("Invalid response: body is not JSON", 500, {"endpoint": url}) from e
        if not isinstance(data, dict):
            raise ClientError.api("Invalid response: expected a JSON object", 500, {"response": data})
        return data

    async def _post_json(
        self,
        url: str,
        body: dict[str, Any],
        *,
        api_key: str,
        request_id: str,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        POST with retries, registered as a live request for its whole duration.

        Raises:
            ClientError: api / network / timeout / cancelled
        """
        token = CancelToken()
        self._track(ActiveRequest(request_id=request_id, token=token))
        deadline = timeout or self.timeout
        timer = cancel_after(token, deadline)
        headers = self.build_headers(api_key, request_id)

        try:
            await token.guard(self.rate_limiter.check_limit())

            for attempt in range(1, self.max_retries + 1):
                try:
                    return await self._attempt(url, body, headers, token)
                except ClientError as error:
                    if not error.recoverable or attempt >= self.max_retries:
                        logger.error(f"{self.name} request failed: {error.code} {error.message}")
                        raise
                    delay = self.compute_retry_delay(attempt, error)
                    logger.warning(
                        f"{self.name} {error.code} (attempt {attempt}/{self.max_retries}), retrying in {delay:.2f}s"
                    )
                    await token.guard(asyncio.sleep(delay))

        except RequestCancelled as e:
            logger.warning(f"{self.name} request {request_id} {e.reason}")
            raise self.cancelled_error(e.reason, deadline) from None

        finally:
            if timer is not None:
                timer.cancel()
            self._untrack(request_id)

    # ---- metadata ----

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(streaming=False, models=[], max_tokens=4000, features=[])

    async def health_check(self, api_key: Optional[str] = None) -> ProviderStatus:
        """
        Check provider availability by fetching the models list.

        Returns:
            ProviderStatus; unreachable or 5xx means unavailable
        """
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        try:
            response = await self.client.get(f"{self.base_url}/models", headers=headers, timeout=5.0)
        except httpx.TimeoutException:
            logger.warning(f"{self.name} health check timed out")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning(f"{self.name} not reachable")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except httpx.HTTPError as e:
            logger.error(f"{self.name} health check failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

        if response.status_code >= 500:
            return ProviderStatus(available=False, base_url=self.base_url, error=f"HTTP {response.status_code}")

        models = None
        if response.is_success:
            try:
                models = [m.get("id") for m in response.json().get("data", [])] or None
            except (ValueError, AttributeError):
                models = None

        return ProviderStatus(
            available=True,
            base_url=self.base_url,
            models=models,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    async def close(self) -> None:
        """Cancel live requests and close the HTTP client if we created it."""
        self.cancel_all_requests()
        if self._owns_client:
            await self.client.aclose()


def _request_url(response: httpx.Response, default: str) -> str:
    try:
        return str(response.request.url)
    except RuntimeError:
        return default
