import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from voice_chat.domain.capture import AudioCaptureSession
from voice_chat.domain.conversation import ConversationStore
from voice_chat.domain.errors import ChatClientError, RecognitionErrorKind
from voice_chat.domain.events import CaptureEvent, TranscriptEventBus
from voice_chat.domain.models import StreamRequest
from voice_chat.domain.retry import RetryPolicy
from voice_chat.domain.sse import Emit, End, Fail, StreamOutcome
from voice_chat.ports.audio import AudioFormat
from voice_chat.ports.permissions import PermissionStatus
from voice_chat.ports.recognizer import RecognitionEvent, RecognitionFailure, RecognitionResult

SAMPLE_RATE = 16000


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def chunk_payload(content: str | None = None, finish_reason: str | None = None, role: str | None = None) -> dict:
    delta = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    return {
        "id": "chatcmpl-1",
        "created": 1700000000,
        "model": "glm-4.5-air",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def sse_body(*contents: str, done: bool = True, finish: bool = True) -> bytes:
    lines = [f"data: {json.dumps(chunk_payload(content))}" for content in contents]
    if finish:
        lines.append(f"data: {json.dumps(chunk_payload(finish_reason='stop'))}")
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


class FakeAudioEngine:
    def __init__(self, audio_format: AudioFormat | None = None) -> None:
        self.audio_format = audio_format or AudioFormat(sample_rate=SAMPLE_RATE, channels=1)
        self.fail_on: str | None = None
        self.calls: list[str] = []
        self.buffer_size: int | None = None
        self._on_buffer: Callable[[bytes], None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def has_tap(self) -> bool:
        return self._on_buffer is not None

    def input_format(self) -> AudioFormat:
        return self.audio_format

    def install_tap(self, buffer_size: int, on_buffer: Callable[[bytes], None]) -> None:
        self._record("install_tap")
        self.buffer_size = buffer_size
        self._on_buffer = on_buffer

    def remove_tap(self) -> None:
        self.calls.append("remove_tap")
        self._on_buffer = None

    def prepare(self) -> None:
        self._record("prepare")

    def start(self) -> None:
        self._record("start")
        self._running = True

    def stop(self) -> None:
        self.calls.append("stop")
        self._running = False

    def reset(self) -> None:
        self.calls.append("reset")

    def emit(self, frame: bytes) -> None:
        if self._on_buffer is not None:
            self._on_buffer(frame)

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if self.fail_on == call:
            raise RuntimeError(f"{call} failed")


class FakeHardwareSession:
    def __init__(self, input_available: bool = True, deactivate_failures: int = 0) -> None:
        self.input_available = input_available
        self.deactivate_failures = deactivate_failures
        self.activate_calls = 0
        self.deactivate_calls = 0
        self.active = False
        self.activate_gate: asyncio.Event | None = None
        self.activate_entered = False

    def is_input_available(self) -> bool:
        return self.input_available

    async def activate(self) -> None:
        self.activate_calls += 1
        self.activate_entered = True
        if self.activate_gate is not None:
            await self.activate_gate.wait()
        self.active = True

    async def deactivate(self) -> None:
        self.deactivate_calls += 1
        if self.deactivate_failures > 0:
            self.deactivate_failures -= 1
            raise OSError("device busy")
        self.active = False


class FakeRecognizer:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.sample_rates: list[int] = []
        self.audio: list[bytes] = []
        self.cancelled = 0
        self.ended = 0
        self.cancel_gate: asyncio.Event | None = None
        self.cancel_entered = False
        self._events: asyncio.Queue[RecognitionEvent | None] = asyncio.Queue()

    @property
    def is_available(self) -> bool:
        return self.available

    @property
    def session_count(self) -> int:
        return len(self.sample_rates)

    async def start_session(self, sample_rate: int) -> None:
        self.sample_rates.append(sample_rate)
        self._events = asyncio.Queue()

    async def send_audio(self, frame: bytes) -> None:
        self.audio.append(frame)

    async def results(self) -> AsyncIterator[RecognitionEvent]:
        events = self._events
        while True:
            event = await events.get()
            if event is None:
                return
            yield event
            if isinstance(event, RecognitionFailure) or event.is_final:
                return

    async def cancel_task(self) -> None:
        self.cancelled += 1
        self.cancel_entered = True
        if self.cancel_gate is not None:
            await self.cancel_gate.wait()

    async def end_audio(self) -> None:
        self.ended += 1

    def push_result(self, text: str, is_final: bool = False) -> None:
        self._events.put_nowait(RecognitionResult(text=text, is_final=is_final))

    def push_failure(self, kind: RecognitionErrorKind, detail: str = "") -> None:
        self._events.put_nowait(RecognitionFailure(kind=kind, detail=detail))

    def end_results(self) -> None:
        self._events.put_nowait(None)


class FakePermissions:
    def __init__(
        self,
        speech: PermissionStatus = PermissionStatus.GRANTED,
        microphone: PermissionStatus = PermissionStatus.GRANTED,
        grant_on_request: bool = True,
    ) -> None:
        self.speech = speech
        self.microphone = microphone
        self.grant_on_request = grant_on_request
        self.requests = 0

    def speech_status(self) -> PermissionStatus:
        return self.speech

    def microphone_status(self) -> PermissionStatus:
        return self.microphone

    async def request_speech_permission(self) -> PermissionStatus:
        self.requests += 1
        self.speech = PermissionStatus.GRANTED if self.grant_on_request else PermissionStatus.DENIED
        return self.speech

    async def request_microphone_permission(self) -> PermissionStatus:
        self.microphone = PermissionStatus.GRANTED if self.grant_on_request else PermissionStatus.DENIED
        return self.microphone


class FakeChatStream:
    def __init__(
        self,
        outcomes: list[StreamOutcome | Exception],
        delay: float = 0.0,
        hold: asyncio.Event | None = None,
    ) -> None:
        self._outcomes = outcomes
        self._delay = delay
        self._hold = hold
        self.cancelled = False

    async def outcomes(self) -> AsyncIterator[StreamOutcome]:
        for index, outcome in enumerate(self._outcomes):
            if self.cancelled:
                return
            if self._hold is not None and index > 0:
                await self._hold.wait()
            await asyncio.sleep(self._delay)
            if isinstance(outcome, Exception):
                raise outcome
            yield outcome

    async def cancel(self) -> None:
        self.cancelled = True


class FakeChatClient:
    """Replies to every request with the next scripted outcome list."""

    def __init__(self) -> None:
        self.requests: list[StreamRequest] = []
        self.streams: list[FakeChatStream] = []
        self.replies: list[list[StreamOutcome | Exception]] = []
        self.raise_on_send: ChatClientError | None = None
        self.delay = 0.0
        self.hold: asyncio.Event | None = None

    def reply_with(self, *texts: str) -> None:
        self.replies.append([Emit(text) for text in texts] + [End()])

    def fail_with(self, error: ChatClientError, *texts: str) -> None:
        self.replies.append([Emit(text) for text in texts] + [Fail(error)])

    def explode_with(self, error: Exception, *texts: str) -> None:
        self.replies.append([Emit(text) for text in texts] + [error])

    async def send_streaming_request(self, request: StreamRequest) -> FakeChatStream:
        request.validate()
        self.requests.append(request)
        if self.raise_on_send is not None:
            raise self.raise_on_send
        outcomes = self.replies.pop(0) if self.replies else [Emit("ok"), End()]
        stream = FakeChatStream(outcomes, delay=self.delay, hold=self.hold)
        self.streams.append(stream)
        return stream


class EventRecorder:
    """Collects every bus event in a background task."""

    def __init__(self, bus: TranscriptEventBus) -> None:
        self.events: list[CaptureEvent] = []
        self._subscription = bus.subscribe()
        self._task = asyncio.create_task(self._record())

    def of_type(self, event_type: type) -> list[CaptureEvent]:
        return [event for event in self.events if isinstance(event, event_type)]

    async def _record(self) -> None:
        async for event in self._subscription:
            self.events.append(event)


@pytest.fixture(autouse=True)
def release_microphone():
    AudioCaptureSession._active_session = None
    yield
    AudioCaptureSession._active_session = None


@pytest.fixture
def engine():
    return FakeAudioEngine()


@pytest.fixture
def hardware():
    return FakeHardwareSession()


@pytest.fixture
def recognizer():
    return FakeRecognizer()


@pytest.fixture
def permissions():
    return FakePermissions()


@pytest.fixture
def bus():
    return TranscriptEventBus()


@pytest.fixture
def make_session(engine, hardware, recognizer, permissions, bus):
    def factory(**overrides) -> AudioCaptureSession:
        kwargs = dict(
            engine=engine,
            hardware=hardware,
            recognizer=recognizer,
            permissions=permissions,
            bus=bus,
            settle_delay_seconds=0.0,
            deactivation_delay_seconds=0.0,
            deactivation_retry=RetryPolicy(attempts=3, backoff_seconds=0.0),
        )
        kwargs.update(overrides)
        return AudioCaptureSession(**kwargs)

    return factory


@pytest.fixture
def session(make_session):
    return make_session()


@pytest.fixture
def store():
    return ConversationStore()


@pytest.fixture
def chat_client():
    return FakeChatClient()
