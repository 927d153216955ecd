from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: float
    channels: int

    @property
    def is_valid(self) -> bool:
        return self.sample_rate > 0 and self.channels > 0


class AudioEnginePort(Protocol):
    @property
    def is_running(self) -> bool: ...
    def input_format(self) -> AudioFormat: ...
    def install_tap(self, buffer_size: int, on_buffer: Callable[[bytes], None]) -> None: ...
    def remove_tap(self) -> None: ...
    def prepare(self) -> None: ...
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def reset(self) -> None: ...


class AudioHardwareSessionPort(Protocol):
    def is_input_available(self) -> bool: ...
    async def activate(self) -> None: ...
    async def deactivate(self) -> None: ...
