import logging
from dataclasses import dataclass

import sounddevice as sd

from voice_chat.adapters.http_chat import parse_endpoint
from voice_chat.config import VoiceChatConfig
from voice_chat.domain.errors import InvalidURLError
from voice_chat.domain.validation import is_valid_api_key_format

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"api_key", "endpoint"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: VoiceChatConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_api_key(config),
        _check_endpoint(config),
        _check_recognizer_key(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_audio_device(config: VoiceChatConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        devices = sd.query_devices()
    except sd.PortAudioError as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))

    inputs = [dev["name"] for dev in devices if dev["max_input_channels"] > 0]
    if not inputs:
        return HealthCheckResult(name=name, passed=False, detail="No input devices available")
    if config.capture_device:
        for device_name in inputs:
            if config.capture_device.lower() in device_name.lower():
                return HealthCheckResult(name=name, passed=True, detail=f"Device '{device_name}' found")
        return HealthCheckResult(
            name=name,
            passed=True,
            detail=f"'{config.capture_device}' not in PortAudio (will use PIPEWIRE_NODE)",
        )
    return HealthCheckResult(name=name, passed=True, detail=f"{len(inputs)} input device(s), first: {inputs[0]}")


def _check_api_key(config: VoiceChatConfig) -> HealthCheckResult:
    name = "api_key"
    key = config.read_secret(config.api_key_file)
    if not key:
        return HealthCheckResult(name=name, passed=False, detail=f"No key in {config.api_key_file or '(unset)'}")
    if not is_valid_api_key_format(key):
        return HealthCheckResult(name=name, passed=True, detail="Key present but has an unexpected format")
    return HealthCheckResult(name=name, passed=True, detail="Key present")


def _check_endpoint(config: VoiceChatConfig) -> HealthCheckResult:
    name = "endpoint"
    try:
        url = parse_endpoint(config.endpoint_url)
    except InvalidURLError as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))
    return HealthCheckResult(name=name, passed=True, detail=str(url))


def _check_recognizer_key(config: VoiceChatConfig) -> HealthCheckResult:
    name = "recognizer_key"
    if config.read_secret(config.deepgram_api_key_file):
        return HealthCheckResult(name=name, passed=True, detail="Deepgram key present")
    return HealthCheckResult(name=name, passed=False, detail="No Deepgram key, voice input disabled")
