from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from voice_chat.domain.errors import RecognitionErrorKind


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


@dataclass(frozen=True)
class RecognitionFailure:
    kind: RecognitionErrorKind
    detail: str = ""


RecognitionEvent = RecognitionResult | RecognitionFailure


class RecognizerPort(Protocol):
    @property
    def is_available(self) -> bool: ...
    async def start_session(self, sample_rate: int) -> None: ...
    async def send_audio(self, frame: bytes) -> None: ...
    def results(self) -> AsyncIterator[RecognitionEvent]: ...
    async def cancel_task(self) -> None: ...
    async def end_audio(self) -> None: ...
