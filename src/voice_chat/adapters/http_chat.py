import asyncio
import logging
from collections.abc import AsyncIterator

import httpx

from voice_chat.domain.errors import (
    InvalidCredentialError,
    InvalidURLError,
    NoDataError,
    ServerError,
    TransportError,
)
from voice_chat.domain.models import StreamRequest
from voice_chat.domain.sse import Emit, End, Fail, StreamOutcome, classify_line
from voice_chat.domain.validation import mask_secret
from voice_chat.ports.credentials import CredentialProvider

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
ERROR_BODY_LOG_LIMIT = 200


class ChatStream:
    """One in-flight chat completion, consumed either as outcomes or as text."""

    def __init__(
        self,
        endpoint: httpx.URL,
        api_key: str,
        payload: dict,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._payload = payload
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cancel_event = asyncio.Event()
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def outcomes(self) -> AsyncIterator[StreamOutcome]:
        if self._started:
            raise RuntimeError("a ChatStream can only be consumed once")
        self._started = True
        if self.cancelled:
            return

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

        emitted = 0
        try:
            async with self._client.stream(
                "POST", self._endpoint, json=self._payload, headers=headers,
            ) as response:
                if not response.is_success:
                    await self._discard_error_body(response)
                    if not self.cancelled:
                        yield Fail(ServerError(response.status_code))
                    return

                async for line in response.aiter_lines():
                    if self.cancelled:
                        return
                    outcome = classify_line(line)
                    if isinstance(outcome, Emit):
                        emitted += 1
                    yield outcome
                    if self.cancelled:
                        return
                    if isinstance(outcome, End):
                        logger.debug("Stream finished with [DONE] after %d chunks", emitted)
                        return

            if not self.cancelled:
                logger.debug("Stream finished naturally after %d chunks", emitted)
                yield End("eof")
        except httpx.HTTPError as exc:
            if not self.cancelled:
                logger.warning("Chat transport error after %d chunks: %s", emitted, exc)
                yield Fail(TransportError(str(exc) or type(exc).__name__))
        except Exception:
            if not self.cancelled:
                raise
            logger.debug("Ignoring error raised while cancelling stream", exc_info=True)
        finally:
            await self._close_client()

    async def __aiter__(self) -> AsyncIterator[str]:
        async for outcome in self.outcomes():
            if isinstance(outcome, Emit):
                yield outcome.text
            elif isinstance(outcome, Fail):
                raise outcome.error
            elif isinstance(outcome, End):
                return

    async def collect(self) -> str:
        chunks = [text async for text in self]
        full_text = "".join(chunks)
        if not full_text:
            raise NoDataError("empty response from chat endpoint")
        return full_text

    async def cancel(self) -> None:
        self._cancel_event.set()
        await self._close_client()

    async def aclose(self) -> None:
        await self.cancel()

    async def _close_client(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()

    async def _discard_error_body(self, response: httpx.Response) -> None:
        try:
            body = await response.aread()
        except httpx.HTTPError:
            body = b""
        logger.error("Chat API error (HTTP %d)", response.status_code)
        logger.debug("Discarded error body: %s", body[:ERROR_BODY_LOG_LIMIT].decode("utf-8", errors="replace"))


class StreamingChatClient:
    """Sends chat-completion requests and exposes replies as ordered, cancellable streams.

    Static failures (invalid request, missing credential, bad endpoint) raise
    from ``send_streaming_request`` before any network contact. Everything
    that happens on the wire arrives as an outcome of the returned stream.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        endpoint_url: str = DEFAULT_ENDPOINT,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._endpoint_url = endpoint_url
        self._timeout = timeout
        self._transport = transport

    async def send_streaming_request(self, request: StreamRequest) -> ChatStream:
        request.validate()

        api_key = (self._credentials.get_key() or "").strip()
        if not api_key:
            logger.error("No API key available")
            raise InvalidCredentialError()

        endpoint = parse_endpoint(self._endpoint_url)
        logger.info(
            "Sending chat request (model=%s, messages=%d, key=%s)",
            request.parameters.model, len(request.messages), mask_secret(api_key),
        )
        return ChatStream(
            endpoint=endpoint,
            api_key=api_key,
            payload=request.to_payload(),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def complete(self, request: StreamRequest) -> str:
        stream = await self.send_streaming_request(request)
        return await stream.collect()


def parse_endpoint(endpoint_url: str) -> httpx.URL:
    try:
        url = httpx.URL(endpoint_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise InvalidURLError(f"cannot parse endpoint {endpoint_url!r}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidURLError(f"endpoint {endpoint_url!r} is not an http(s) URL")
    return url

