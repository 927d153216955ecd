import logging

from voice_chat.adapters.credentials import FileCredentialProvider
from voice_chat.adapters.http_chat import StreamingChatClient
from voice_chat.config import VoiceChatConfig
from voice_chat.domain.capture import AudioCaptureSession
from voice_chat.domain.conversation import ConversationStore
from voice_chat.domain.events import TranscriptEventBus
from voice_chat.domain.models import RequestParameters
from voice_chat.domain.orchestrator import ChatOrchestrator
from voice_chat.domain.retry import RetryPolicy

logger = logging.getLogger(__name__)


def create_parameters(config: VoiceChatConfig) -> RequestParameters:
    return RequestParameters(
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        top_p=config.top_p,
        stop=tuple(config.stop) if config.stop is not None else None,
    )


def create_chat_client(config: VoiceChatConfig) -> StreamingChatClient:
    return StreamingChatClient(
        credentials=FileCredentialProvider(config.api_key_file),
        endpoint_url=config.endpoint_url,
        timeout=config.request_timeout_seconds,
    )


def create_capture(config: VoiceChatConfig, bus: TranscriptEventBus) -> AudioCaptureSession:
    from voice_chat.adapters.deepgram_recognizer import DeepgramRecognizer
    from voice_chat.adapters.desktop_permissions import DesktopPermissions
    from voice_chat.adapters.sounddevice_audio import SounddeviceEngine, SounddeviceHardwareSession

    deepgram_api_key = config.read_secret(config.deepgram_api_key_file)
    device = config.capture_device or None

    return AudioCaptureSession(
        engine=SounddeviceEngine(device=device, sample_rate=config.sample_rate),
        hardware=SounddeviceHardwareSession(device=device),
        recognizer=DeepgramRecognizer(
            api_key=deepgram_api_key,
            model=config.recognizer_model,
            language=config.recognizer_language,
        ),
        permissions=DesktopPermissions(recognizer_key=deepgram_api_key),
        bus=bus,
        tap_buffer_size=config.tap_buffer_size,
        settle_delay_seconds=config.settle_delay_seconds,
        deactivation_delay_seconds=config.deactivation_delay_seconds,
        deactivation_retry=RetryPolicy(
            attempts=config.deactivation_attempts,
            backoff_seconds=config.deactivation_backoff_seconds,
        ),
    )


def create_orchestrator(
    config: VoiceChatConfig,
    store: ConversationStore | None = None,
) -> ChatOrchestrator:
    bus = TranscriptEventBus()
    return ChatOrchestrator(
        capture=create_capture(config, bus),
        bus=bus,
        client=create_chat_client(config),
        store=store or ConversationStore(max_turns=config.max_history_turns),
        parameters=create_parameters(config),
        system_prompt=config.system_prompt,
    )
