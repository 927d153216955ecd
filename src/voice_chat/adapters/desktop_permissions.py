import asyncio
import importlib.util
import logging

import sounddevice as sd

from voice_chat.ports.permissions import PermissionStatus

logger = logging.getLogger(__name__)


class DesktopPermissions:
    """Permission checks for a desktop host with no OS-level consent prompt.

    The microphone counts as granted when PortAudio sees an input device; speech
    recognition counts as granted when a recognizer key is configured, and as
    restricted when the recognizer client library is not installed.
    """

    def __init__(self, recognizer_key: str) -> None:
        self._recognizer_key = recognizer_key
        self._speech = PermissionStatus.UNDETERMINED
        self._microphone = PermissionStatus.UNDETERMINED

    def speech_status(self) -> PermissionStatus:
        return self._speech

    def microphone_status(self) -> PermissionStatus:
        return self._microphone

    async def request_speech_permission(self) -> PermissionStatus:
        if importlib.util.find_spec("deepgram") is None:
            self._speech = PermissionStatus.RESTRICTED
        elif self._recognizer_key:
            self._speech = PermissionStatus.GRANTED
        else:
            self._speech = PermissionStatus.DENIED
        logger.debug("Speech permission: %s", self._speech.name)
        return self._speech

    async def request_microphone_permission(self) -> PermissionStatus:
        has_input = await asyncio.to_thread(_has_input_device)
        self._microphone = PermissionStatus.GRANTED if has_input else PermissionStatus.DENIED
        logger.debug("Microphone permission: %s", self._microphone.name)
        return self._microphone


def _has_input_device() -> bool:
    try:
        return any(dev["max_input_channels"] > 0 for dev in sd.query_devices())
    except sd.PortAudioError:
        return False
