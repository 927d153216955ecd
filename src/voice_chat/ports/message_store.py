from typing import Protocol

from voice_chat.domain.models import ChatTurn


class MessageStore(Protocol):
    @property
    def turns(self) -> list[ChatTurn]: ...
    def append(self, turn: ChatTurn) -> None: ...
    def update(self, turn: ChatTurn) -> None: ...
    def remove_last(self) -> ChatTurn | None: ...
    def clear(self) -> None: ...
