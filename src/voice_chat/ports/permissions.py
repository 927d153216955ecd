from enum import Enum, auto
from typing import Protocol


class PermissionStatus(Enum):
    UNDETERMINED = auto()
    GRANTED = auto()
    DENIED = auto()
    RESTRICTED = auto()

    @property
    def is_granted(self) -> bool:
        return self == PermissionStatus.GRANTED


class PermissionPort(Protocol):
    def speech_status(self) -> PermissionStatus: ...
    def microphone_status(self) -> PermissionStatus: ...
    async def request_speech_permission(self) -> PermissionStatus: ...
    async def request_microphone_permission(self) -> PermissionStatus: ...
