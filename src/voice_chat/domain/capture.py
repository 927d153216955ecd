import asyncio
import logging
from dataclasses import dataclass

import janus

from voice_chat.domain.errors import (
    AudioEngineError,
    CaptureError,
    PermissionDeniedError,
    RecognizerUnavailableError,
)
from voice_chat.domain.events import CaptureFailed, RecordingStateChanged, TranscriptEventBus, TranscriptUpdated
from voice_chat.domain.retry import RetryExhaustedError, RetryPolicy, retry_async
from voice_chat.domain.state import CaptureState, validate_transition
from voice_chat.ports.audio import AudioEnginePort, AudioHardwareSessionPort
from voice_chat.ports.permissions import PermissionPort, PermissionStatus
from voice_chat.ports.recognizer import RecognitionFailure, RecognizerPort

logger = logging.getLogger(__name__)

SETTLE_DELAY_SECONDS = 0.5
DEACTIVATION_DELAY_SECONDS = 0.3
DEACTIVATION_RETRY = RetryPolicy(attempts=3, backoff_seconds=0.5)
TAP_BUFFER_SIZE = 1024
FRAME_QUEUE_SIZE = 100

IDLE_STATES = (CaptureState.IDLE, CaptureState.STOPPED)


@dataclass(frozen=True)
class PermissionSnapshot:
    speech: PermissionStatus = PermissionStatus.UNDETERMINED
    microphone: PermissionStatus = PermissionStatus.UNDETERMINED
    recognizer_available: bool = False

    @property
    def speech_authorized(self) -> bool:
        return self.speech.is_granted

    @property
    def microphone_authorized(self) -> bool:
        return self.microphone.is_granted

    @property
    def needs_request(self) -> bool:
        return PermissionStatus.UNDETERMINED in (self.speech, self.microphone)

    @property
    def has_all_permissions(self) -> bool:
        return self.speech_authorized and self.microphone_authorized


class _Superseded(Exception):
    """A stop() arrived while start() was suspended."""


class AudioCaptureSession:
    """Owns the microphone, the audio tap and the recognizer for one capture cycle at a time.

    Hardware callbacks are marshalled onto the event loop through a janus
    queue; every state change happens on the loop. ``stop()`` is idempotent,
    wins against an in-progress ``start()`` and always releases the engine,
    the tap and the recognition task.
    """

    _active_session: "AudioCaptureSession | None" = None

    def __init__(
        self,
        engine: AudioEnginePort,
        hardware: AudioHardwareSessionPort,
        recognizer: RecognizerPort,
        permissions: PermissionPort,
        bus: TranscriptEventBus,
        tap_buffer_size: int = TAP_BUFFER_SIZE,
        settle_delay_seconds: float = SETTLE_DELAY_SECONDS,
        deactivation_delay_seconds: float = DEACTIVATION_DELAY_SECONDS,
        deactivation_retry: RetryPolicy = DEACTIVATION_RETRY,
    ) -> None:
        self._engine = engine
        self._hardware = hardware
        self._recognizer = recognizer
        self._permissions = permissions
        self._bus = bus
        self._tap_buffer_size = tap_buffer_size
        self._settle_delay_seconds = settle_delay_seconds
        self._deactivation_delay_seconds = deactivation_delay_seconds
        self._deactivation_retry = deactivation_retry

        self._state = CaptureState.IDLE
        self._transcript = ""
        self._snapshot = PermissionSnapshot()
        self._generation = 0
        self._starting = False
        self._stopping = False
        self._stop_done: asyncio.Event | None = None
        self._last_stopped_at: float | None = None

        self._frame_queue: janus.Queue[bytes] | None = None
        self._tap_installed = False
        self._recognizer_active = False
        self._hardware_active = False
        self._pump_task: asyncio.Task | None = None
        self._results_task: asyncio.Task | None = None
        self._deactivation_task: asyncio.Task | None = None

        self.refresh_permissions()

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == CaptureState.RECORDING

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def permissions(self) -> PermissionSnapshot:
        return self._snapshot

    @property
    def has_live_resources(self) -> bool:
        return (
            self._engine.is_running
            or self._tap_installed
            or self._recognizer_active
            or self._frame_queue is not None
            or self._pump_task is not None
            or self._results_task is not None
        )

    @property
    def permission_message(self) -> str:
        if not self._snapshot.speech_authorized:
            return "Speech recognition permission is required for voice input"
        if not self._snapshot.microphone_authorized:
            return "Microphone permission is required to record speech"
        if not self._snapshot.recognizer_available:
            return "Speech recognition is currently unavailable"
        return ""

    def refresh_permissions(self) -> PermissionSnapshot:
        self._snapshot = PermissionSnapshot(
            speech=self._permissions.speech_status(),
            microphone=self._permissions.microphone_status(),
            recognizer_available=self._recognizer.is_available,
        )
        return self._snapshot

    async def request_permissions(self) -> PermissionSnapshot:
        speech = await self._permissions.request_speech_permission()
        microphone = await self._permissions.request_microphone_permission()
        self._snapshot = PermissionSnapshot(
            speech=speech,
            microphone=microphone,
            recognizer_available=self._recognizer.is_available,
        )
        logger.info(
            "Permissions: speech=%s microphone=%s recognizer_available=%s",
            speech.name, microphone.name, self._snapshot.recognizer_available,
        )
        return self._snapshot

    def clear_transcript(self) -> None:
        self._transcript = ""

    async def start(self) -> None:
        if self._state in (CaptureState.RECORDING, CaptureState.STOPPING) or self._starting:
            logger.debug("Start ignored, capture is %s", "STARTING" if self._starting else self._state.name)
            return

        self._starting = True
        generation = self._generation
        resting_state = self._state if self._state in IDLE_STATES else CaptureState.IDLE
        try:
            await self._start_cycle(generation)
        except _Superseded:
            logger.info("Start superseded by stop")
            await self._teardown()
        except CaptureError as exc:
            await self._teardown()
            self._fall_back(resting_state)
            self._bus.publish(CaptureFailed(error=exc))
            raise
        finally:
            self._starting = False

    async def stop(self) -> None:
        self._generation += 1
        if self._stopping:
            logger.debug("Stop already in progress, waiting for it")
            await self._stop_done.wait()
            return

        was_recording = self._state == CaptureState.RECORDING
        was_starting = self._starting or self._state == CaptureState.REQUESTING_PERMISSIONS
        if not was_recording and not was_starting:
            await self._teardown()
            return

        self._stopping = True
        self._stop_done = asyncio.Event()
        try:
            self._transition_to(CaptureState.STOPPING)
            await self._teardown()
            self._transition_to(CaptureState.STOPPED)
            self._last_stopped_at = asyncio.get_running_loop().time()
        finally:
            self._stopping = False
            self._stop_done.set()

        if was_recording:
            self._bus.publish(RecordingStateChanged(is_recording=False))
        self._transcript = ""

    async def release(self) -> None:
        await self.stop()
        task = self._deactivation_task
        if task is not None and task is not asyncio.current_task():
            await task

    async def reset(self) -> None:
        logger.info("Resetting capture session")
        await self.stop()
        self._transcript = ""
        self.refresh_permissions()

    def _transition_to(self, target: CaptureState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    def _fall_back(self, resting_state: CaptureState) -> None:
        if self._state == CaptureState.REQUESTING_PERMISSIONS:
            self._transition_to(resting_state)

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    async def _start_cycle(self, generation: int) -> None:
        if self._snapshot.needs_request:
            self._transition_to(CaptureState.REQUESTING_PERMISSIONS)
            logger.info("Requesting permissions...")
            await self.request_permissions()
            self._check_generation(generation)
        else:
            self.refresh_permissions()

        if not self._snapshot.speech_authorized:
            raise PermissionDeniedError(f"speech recognition permission is {self._snapshot.speech.name}")
        if not self._snapshot.microphone_authorized:
            raise PermissionDeniedError(f"microphone permission is {self._snapshot.microphone.name}")
        if not self._snapshot.recognizer_available:
            raise RecognizerUnavailableError()
        if not self._hardware.is_input_available():
            raise AudioEngineError("no audio input is available")

        await self._settle()
        self._check_generation(generation)

        self._claim_microphone()

        try:
            await self._hardware.activate()
            self._hardware_active = True
            self._check_generation(generation)

            audio_format = self._engine.input_format()
            logger.info(
                "Input format: rate=%.0f channels=%d", audio_format.sample_rate, audio_format.channels,
            )
            if not audio_format.is_valid:
                raise AudioEngineError(
                    f"invalid input format (rate={audio_format.sample_rate}, channels={audio_format.channels})"
                )

            await self._recognizer.start_session(int(audio_format.sample_rate))
            self._recognizer_active = True
            self._check_generation(generation)

            self._frame_queue = janus.Queue(maxsize=FRAME_QUEUE_SIZE)
            self._engine.install_tap(self._tap_buffer_size, self._make_tap(self._frame_queue))
            self._tap_installed = True
            self._engine.prepare()
            self._engine.start()
        except (_Superseded, CaptureError):
            raise
        except Exception as exc:
            logger.warning("Audio engine setup failed: %s", exc)
            raise AudioEngineError(str(exc)) from exc

        self._claim_microphone()
        AudioCaptureSession._active_session = self
        self._transcript = ""
        self._transition_to(CaptureState.RECORDING)
        self._pump_task = asyncio.create_task(self._pump_frames(self._frame_queue))
        self._results_task = asyncio.create_task(self._consume_results(generation))
        self._bus.publish(RecordingStateChanged(is_recording=True))
        logger.info("Recording started")

    def _claim_microphone(self) -> None:
        owner = AudioCaptureSession._active_session
        if owner is not None and owner is not self:
            raise AudioEngineError("another capture session holds the microphone")

    async def _settle(self) -> None:
        pending = self._deactivation_task
        if pending is not None and not pending.done():
            pending.cancel()
            try:
                await pending
            except asyncio.CancelledError:
                pass
        self._deactivation_task = None

        if self._last_stopped_at is None:
            return
        elapsed = asyncio.get_running_loop().time() - self._last_stopped_at
        remaining = self._settle_delay_seconds - elapsed
        if remaining > 0:
            logger.debug("Settling %.2fs before restart", remaining)
            await asyncio.sleep(remaining)

    @staticmethod
    def _make_tap(frame_queue: janus.Queue[bytes]):
        # Runs on the audio driver's thread; only the sync side of the queue is touched.
        def on_buffer(frame: bytes) -> None:
            try:
                frame_queue.sync_q.put_nowait(frame)
            except janus.SyncQueueFull:
                pass
            except janus.SyncQueueShutDown:
                pass

        return on_buffer

    async def _pump_frames(self, frame_queue: janus.Queue[bytes]) -> None:
        while True:
            try:
                frame = await frame_queue.async_q.get()
            except janus.AsyncQueueShutDown:
                break
            await self._recognizer.send_audio(frame)

    async def _consume_results(self, generation: int) -> None:
        async for event in self._recognizer.results():
            if generation != self._generation:
                return

            if isinstance(event, RecognitionFailure):
                self._log_recognition_failure(event)
                await self.stop()
                return

            self._transcript = event.text
            if event.is_final:
                logger.info("Transcript: %s", event.text)
            else:
                logger.debug("Transcript (interim): %s", event.text)
            self._bus.publish(TranscriptUpdated(text=event.text, is_final=event.is_final))

            if event.is_final:
                logger.info("Recognition completed")
                await self.stop()
                return

        if generation == self._generation:
            logger.info("Recognition ended without a final result")
            await self.stop()

    def _log_recognition_failure(self, failure: RecognitionFailure) -> None:
        if failure.kind.is_expected:
            logger.info("Recognition ended: %s %s", failure.kind.value, failure.detail)
        else:
            logger.warning("Recognition error: %s %s", failure.kind.value, failure.detail)

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in (self._pump_task, self._results_task) if task is not None]
        self._pump_task = None
        self._results_task = None
        for task in tasks:
            if task is not current:
                task.cancel()

        if self._recognizer_active:
            self._recognizer_active = False
            await self._quietly(self._recognizer.cancel_task(), "cancel recognition task")
            await self._quietly(self._recognizer.end_audio(), "end recognition audio")

        if self._tap_installed or self._engine.is_running:
            self._tap_installed = False
            self._quietly_sync(self._engine.remove_tap, "remove audio tap")
            self._quietly_sync(self._engine.stop, "stop audio engine")
            self._quietly_sync(self._engine.reset, "reset audio engine")

        if self._frame_queue is not None:
            frame_queue = self._frame_queue
            self._frame_queue = None
            frame_queue.close()
            await frame_queue.wait_closed()

        for task in tasks:
            if task is not current:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Capture task failed during teardown")

        if AudioCaptureSession._active_session is self:
            AudioCaptureSession._active_session = None

        if self._hardware_active:
            self._hardware_active = False
            self._deactivation_task = asyncio.create_task(self._deactivate_hardware())

    async def _deactivate_hardware(self) -> None:
        await asyncio.sleep(self._deactivation_delay_seconds)
        try:
            await retry_async(self._hardware.deactivate, self._deactivation_retry, "Audio session deactivation")
        except RetryExhaustedError as exc:
            logger.error("Could not deactivate audio session: %s", exc)
        else:
            logger.debug("Audio session deactivated")

    async def _quietly(self, awaitable, description: str) -> None:
        try:
            await awaitable
        except Exception as exc:
            logger.warning("Could not %s: %s", description, exc)

    def _quietly_sync(self, operation, description: str) -> None:
        try:
            operation()
        except Exception as exc:
            logger.warning("Could not %s: %s", description, exc)
