from collections.abc import AsyncIterator
from typing import Protocol

from voice_chat.domain.models import StreamRequest
from voice_chat.domain.sse import StreamOutcome


class ChatStreamPort(Protocol):
    def outcomes(self) -> AsyncIterator[StreamOutcome]: ...
    async def cancel(self) -> None: ...


class ChatCompletionPort(Protocol):
    async def send_streaming_request(self, request: StreamRequest) -> ChatStreamPort: ...


class RequestPolicy(Protocol):
    def allow_request(self, request: StreamRequest) -> bool: ...
