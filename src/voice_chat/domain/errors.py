"""Error taxonomy shared by the capture session, the chat client and the orchestrator."""

from enum import Enum


class VoiceChatError(Exception):
    """Base class for every failure the core reports."""

    user_message = "Something went wrong"

    def __str__(self) -> str:
        detail = super().__str__()
        return detail or self.user_message


class CaptureError(VoiceChatError):
    pass


class PermissionDeniedError(CaptureError):
    user_message = "Speech recognition or microphone permission was denied"


class RecognizerUnavailableError(CaptureError):
    user_message = "Speech recognition is currently unavailable"


class AudioEngineError(CaptureError):
    user_message = "The audio engine could not be started"


class ChatClientError(VoiceChatError):
    pass


class InvalidRequestError(ChatClientError):
    user_message = "The chat request is invalid"


class InvalidCredentialError(ChatClientError):
    user_message = "The API key is missing or invalid"


class InvalidURLError(ChatClientError):
    user_message = "The chat endpoint URL is invalid"


class ServerError(ChatClientError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        super().__init__(detail or _describe_status(status_code))


class RateLimitedError(ChatClientError):
    user_message = "Too many requests, try again later"


class TransportError(ChatClientError):
    user_message = "The connection to the chat service failed"


class DecodeError(ChatClientError):
    user_message = "A response chunk could not be decoded"


class InvalidResponseShapeError(DecodeError):
    user_message = "The server response has an unexpected shape"


class NoDataError(ChatClientError):
    user_message = "The server returned no data"


def _describe_status(status_code: int) -> str:
    if status_code in (401, 403):
        return f"Server rejected the API key (HTTP {status_code})"
    if status_code == 429:
        return "Server is rate limiting requests (HTTP 429)"
    return f"Server error (HTTP {status_code})"


class RecognitionErrorKind(Enum):
    CANCELLED = "cancelled"
    NO_SPEECH = "no_speech"
    READ_FAILURE = "read_failure"
    OTHER = "other"

    @property
    def is_expected(self) -> bool:
        return self in (RecognitionErrorKind.CANCELLED, RecognitionErrorKind.NO_SPEECH)
