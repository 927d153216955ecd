import asyncio
import logging
from collections.abc import AsyncIterator

from deepgram import AsyncDeepgramClient
from deepgram.extensions.types.sockets.listen_v1_results_event import ListenV1ResultsEvent
from deepgram.listen.v1.socket_client import EventType

from voice_chat.domain.errors import RecognitionErrorKind
from voice_chat.ports.recognizer import RecognitionEvent, RecognitionFailure, RecognitionResult

logger = logging.getLogger(__name__)


class DeepgramRecognizer:
    """Live recognizer over Deepgram's streaming API.

    Finalised segments accumulate into the transcript; ``speech_final``
    (endpoint detected) marks the result as final.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "nova-2",
        language: str = "zh-CN",
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._language = language
        self._socket = None
        self._context_manager = None
        self._events: asyncio.Queue[RecognitionEvent] = asyncio.Queue()
        self._listener_task: asyncio.Task | None = None
        self._finalized: list[str] = []
        self._heard_speech = False
        self._cancelled = False

    @property
    def is_available(self) -> bool:
        return bool(self._api_key)

    async def start_session(self, sample_rate: int) -> None:
        if self._socket is not None:
            await self.cancel_task()
            await self.end_audio()

        self._events = asyncio.Queue()
        self._finalized = []
        self._heard_speech = False
        self._cancelled = False

        client = AsyncDeepgramClient(api_key=self._api_key)
        self._context_manager = client.listen.v1.connect(
            model=self._model,
            language=self._language,
            encoding="linear16",
            sample_rate=str(sample_rate),
            channels="1",
            interim_results="true",
            endpointing="300",
            smart_format="true",
        )
        self._socket = await self._context_manager.__aenter__()
        self._socket.on(EventType.MESSAGE, self._on_message)
        self._socket.on(EventType.ERROR, self._on_error)
        self._socket.on(EventType.CLOSE, self._on_close)
        self._listener_task = asyncio.create_task(self._socket.start_listening())
        logger.info("Deepgram session started (model=%s, language=%s)", self._model, self._language)

    async def send_audio(self, frame: bytes) -> None:
        if self._socket is None:
            return
        try:
            await self._socket._send(frame)
        except Exception as exc:
            logger.warning("Failed to send audio to Deepgram: %s", exc)
            self._fail(RecognitionErrorKind.READ_FAILURE, str(exc))

    async def results(self) -> AsyncIterator[RecognitionEvent]:
        events = self._events
        while True:
            event = await events.get()
            yield event
            if isinstance(event, RecognitionFailure) or event.is_final:
                return

    async def cancel_task(self) -> None:
        self._cancelled = True
        if self._listener_task and not self._listener_task.done():
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("Deepgram listener ended with %s", exc)
        self._listener_task = None

    async def end_audio(self) -> None:
        if self._socket is not None:
            try:
                await self._socket._send({"type": "CloseStream"})
            except Exception as exc:
                logger.debug("CloseStream not delivered: %s", exc)
        if self._context_manager is not None:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception as exc:
                logger.debug("Deepgram socket close failed: %s", exc)
        self._context_manager = None
        self._socket = None
        logger.info("Deepgram session closed")

    async def _on_message(self, message) -> None:
        if not isinstance(message, ListenV1ResultsEvent):
            return
        try:
            transcript = message.channel.alternatives[0].transcript
        except (IndexError, AttributeError):
            return

        if transcript:
            self._heard_speech = True
            if message.is_final:
                self._finalized.append(transcript)
        segments = list(self._finalized)
        if transcript and not message.is_final:
            segments.append(transcript)
        text = " ".join(segments)

        speech_final = bool(message.speech_final)
        if not text and not speech_final:
            return
        if not text:
            self._fail(RecognitionErrorKind.NO_SPEECH, "endpoint reached without speech")
            return
        self._events.put_nowait(RecognitionResult(text=text, is_final=speech_final))

    async def _on_error(self, error) -> None:
        logger.error("Deepgram error: %s", error)
        self._fail(RecognitionErrorKind.OTHER, str(error))

    async def _on_close(self, _event) -> None:
        if self._cancelled:
            self._fail(RecognitionErrorKind.CANCELLED, "session cancelled")
        elif not self._heard_speech:
            self._fail(RecognitionErrorKind.NO_SPEECH, "socket closed before any speech")
        else:
            self._fail(RecognitionErrorKind.READ_FAILURE, "socket closed mid-utterance")

    def _fail(self, kind: RecognitionErrorKind, detail: str) -> None:
        self._events.put_nowait(RecognitionFailure(kind=kind, detail=detail))
