import logging
import os
from collections.abc import Callable

import numpy as np
import sounddevice as sd

from voice_chat.ports.audio import AudioFormat

logger = logging.getLogger(__name__)


def resolve_device(device: str | int | None) -> str | int | None:
    if device is None or device == "":
        return None
    if isinstance(device, int):
        return device
    try:
        return int(device)
    except ValueError:
        pass
    for i, dev in enumerate(sd.query_devices()):
        if device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
            logger.info("Resolved device '%s' -> %d (%s)", device, i, dev["name"])
            return i
    os.environ["PIPEWIRE_NODE"] = device
    logger.info("Device '%s' not in PortAudio, set PIPEWIRE_NODE for PipeWire routing", device)
    return None


class SounddeviceEngine:
    """PortAudio input stream; the tap is the stream callback, fed mono int16 PCM."""

    def __init__(self, device: str | int | None = None, sample_rate: int = 16000) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._resolved_device: str | int | None = None
        self._stream: sd.InputStream | None = None
        self._on_buffer: Callable[[bytes], None] | None = None
        self._buffer_size = 1024

    @property
    def is_running(self) -> bool:
        return self._stream is not None and self._stream.active

    def input_format(self) -> AudioFormat:
        self._resolved_device = resolve_device(self._device)
        try:
            info = sd.query_devices(self._resolved_device, kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning("No input device: %s", exc)
            return AudioFormat(sample_rate=0, channels=0)
        channels = min(1, int(info["max_input_channels"]))
        sample_rate = self._sample_rate or float(info["default_samplerate"])
        return AudioFormat(sample_rate=sample_rate, channels=channels)

    def install_tap(self, buffer_size: int, on_buffer: Callable[[bytes], None]) -> None:
        self._buffer_size = buffer_size
        self._on_buffer = on_buffer

    def remove_tap(self) -> None:
        self._on_buffer = None

    def prepare(self) -> None:
        if self._stream is not None:
            return

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            on_buffer = self._on_buffer
            if on_buffer is None:
                return
            on_buffer((indata[:, 0] * 32767).astype(np.int16).tobytes())

        self._stream = sd.InputStream(
            device=self._resolved_device,
            samplerate=self._sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self._buffer_size,
            callback=audio_callback,
        )

    def start(self) -> None:
        if self._stream is None:
            self.prepare()
        self._stream.start()
        logger.info(
            "Audio capture started (device=%s, rate=%d, buffer=%d)",
            self._resolved_device, self._sample_rate, self._buffer_size,
        )

    def stop(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def reset(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None


class SounddeviceHardwareSession:
    """Process-wide input routing; deactivation undoes any PipeWire node we selected."""

    def __init__(self, device: str | int | None = None) -> None:
        self._device = device
        self._active = False
        self._routed_pipewire = False

    @property
    def active(self) -> bool:
        return self._active

    def is_input_available(self) -> bool:
        try:
            return any(dev["max_input_channels"] > 0 for dev in sd.query_devices())
        except sd.PortAudioError:
            return False

    async def activate(self) -> None:
        had_node = "PIPEWIRE_NODE" in os.environ
        resolve_device(self._device)
        self._routed_pipewire = not had_node and "PIPEWIRE_NODE" in os.environ
        default = sd.query_devices(kind="input")
        self._active = True
        logger.info("Audio session active (default input: %s)", default["name"])

    async def deactivate(self) -> None:
        if not self._active:
            return
        if self._routed_pipewire:
            os.environ.pop("PIPEWIRE_NODE", None)
            self._routed_pipewire = False
        self._active = False
        logger.debug("Audio session inactive")
