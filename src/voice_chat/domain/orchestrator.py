import asyncio
import logging

from voice_chat.domain.capture import AudioCaptureSession
from voice_chat.domain.errors import ChatClientError, RateLimitedError, TransportError, VoiceChatError
from voice_chat.domain.events import (
    CaptureFailed,
    RecordingStateChanged,
    TranscriptEventBus,
    TranscriptUpdated,
)
from voice_chat.domain.models import ChatTurn, RequestParameters, StreamRequest
from voice_chat.domain.sse import Emit, End, Fail
from voice_chat.domain.validation import is_valid_text, sanitize_text
from voice_chat.ports.completion import ChatCompletionPort, ChatStreamPort, RequestPolicy
from voice_chat.ports.message_store import MessageStore

logger = logging.getLogger(__name__)


class ChatOrchestrator:
    """Turns finished capture cycles into chat turns and streams the replies into the store.

    The single submit trigger is the transition to not-recording while a
    transcript is pending and not yet consumed for the current cycle. A
    transcript that only arrives after that transition triggers it instead.
    """

    def __init__(
        self,
        capture: AudioCaptureSession,
        bus: TranscriptEventBus,
        client: ChatCompletionPort,
        store: MessageStore,
        parameters: RequestParameters | None = None,
        system_prompt: str = "",
        request_policy: RequestPolicy | None = None,
    ) -> None:
        self._capture = capture
        self._bus = bus
        self._client = client
        self._store = store
        self._parameters = parameters or RequestParameters()
        self._system_prompt = system_prompt
        self._request_policy = request_policy

        self._subscription = bus.subscribe()
        self._recording = False
        self._pending_transcript = ""
        self._cycle_consumed = False
        self._last_error: VoiceChatError | None = None
        self._submit_lock = asyncio.Lock()
        self._stream_tasks: set[asyncio.Task] = set()
        self._submit_tasks: set[asyncio.Task] = set()

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def is_processing(self) -> bool:
        return bool(self._stream_tasks) or self._submit_lock.locked()

    @property
    def last_error(self) -> VoiceChatError | None:
        return self._last_error

    @property
    def error_message(self) -> str | None:
        return str(self._last_error) if self._last_error else None

    @property
    def pending_transcript(self) -> str:
        return self._pending_transcript

    async def run(self) -> None:
        logger.info("Chat orchestrator started")
        try:
            async for event in self._subscription:
                self.handle_event(event)
        finally:
            self._subscription.close()
            await self._drain_submits()

    def handle_event(self, event) -> None:
        if isinstance(event, RecordingStateChanged):
            self._on_recording_changed(event.is_recording)
        elif isinstance(event, TranscriptUpdated):
            self._on_transcript(event.text)
        elif isinstance(event, CaptureFailed):
            logger.warning("Capture failed: %s", event.error)
            self._last_error = event.error

    async def start_recording(self) -> None:
        if self._capture.is_recording or self.is_processing:
            logger.debug("Start recording ignored (recording=%s, processing=%s)",
                         self._capture.is_recording, self.is_processing)
            return
        try:
            await self._capture.start()
        except VoiceChatError as exc:
            self._last_error = exc
            return
        self._last_error = None

    async def stop_recording(self) -> None:
        await self._capture.stop()

    async def submit(self, text: str) -> ChatTurn | None:
        """Send one user message and stream the reply; returns the final assistant turn."""
        text = sanitize_text(text)
        if not is_valid_text(text):
            logger.debug("Ignoring empty submission")
            return None

        async with self._submit_lock:
            self._last_error = None
            user_turn = ChatTurn.user(text)
            request = StreamRequest.from_turns(
                self._store.turns + [user_turn],
                parameters=self._parameters,
                system_prompt=self._system_prompt,
            )
            if self._request_policy is not None and not self._request_policy.allow_request(request):
                self._report(RateLimitedError())
                return None

            self._store.append(user_turn)
            logger.info("Submit: %s", text)

            placeholder = ChatTurn.assistant_placeholder()
            self._store.append(placeholder)

            task = asyncio.create_task(self._stream_reply(request, placeholder))
            self._stream_tasks.add(task)
            task.add_done_callback(self._stream_tasks.discard)
            try:
                return await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if task.cancelled() and not (current and current.cancelling()):
                    return None
                raise

    async def cancel(self) -> None:
        tasks = [task for task in self._stream_tasks if not task.done()]
        if not tasks:
            return
        logger.info("Cancelling %d in-flight stream(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def clear_conversation(self) -> None:
        self._store.clear()

    async def reset_capture(self) -> None:
        await self._capture.reset()
        self._pending_transcript = ""
        self._last_error = None

    async def shutdown(self) -> None:
        await self.cancel()
        await self._capture.release()
        self._bus.close()

    def _on_recording_changed(self, is_recording: bool) -> None:
        self._recording = is_recording
        if is_recording:
            self._pending_transcript = ""
            self._cycle_consumed = False
            return
        self._consume_transcript()

    def _on_transcript(self, text: str) -> None:
        if self._cycle_consumed:
            logger.debug("Ignoring transcript after submit: %s", text)
            return
        self._pending_transcript = text
        if not self._recording:
            self._consume_transcript()

    def _consume_transcript(self) -> None:
        if self._cycle_consumed:
            return
        text = sanitize_text(self._pending_transcript)
        if not text:
            return
        self._cycle_consumed = True
        self._pending_transcript = ""
        self._capture.clear_transcript()
        task = asyncio.create_task(self.submit(text))
        self._submit_tasks.add(task)
        task.add_done_callback(self._submit_tasks.discard)

    async def _drain_submits(self) -> None:
        tasks = list(self._submit_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _stream_reply(self, request: StreamRequest, placeholder: ChatTurn) -> ChatTurn | None:
        turn = placeholder
        stream: ChatStreamPort | None = None
        try:
            stream = await self._client.send_streaming_request(request)
            async for outcome in stream.outcomes():
                if isinstance(outcome, Emit):
                    turn = turn.appending(outcome.text)
                    self._store.update(turn)
                elif isinstance(outcome, End):
                    break
                elif isinstance(outcome, Fail):
                    raise outcome.error
        except asyncio.CancelledError:
            if stream is not None:
                await stream.cancel()
            self._settle_turn(turn)
            logger.info("Stream cancelled (%d chars kept)", len(turn.content))
            raise
        except ChatClientError as exc:
            self._settle_turn(turn)
            self._report(exc)
            return None
        except Exception as exc:
            logger.exception("Unexpected failure while streaming reply")
            if stream is not None:
                await stream.cancel()
            self._settle_turn(turn)
            self._report(TransportError(f"stream failed unexpectedly: {exc}"))
            return None

        turn = turn.finished()
        self._store.update(turn)
        logger.info("Response complete (%d chars)", len(turn.content))
        return turn

    def _settle_turn(self, turn: ChatTurn) -> None:
        if turn.content:
            self._store.update(turn.finished())
            return
        turns = self._store.turns
        if turns and turns[-1].id == turn.id:
            self._store.remove_last()
            logger.debug("Removed empty assistant placeholder")

    def _report(self, error: VoiceChatError) -> None:
        logger.error("Chat request failed: %s", error)
        self._last_error = error
