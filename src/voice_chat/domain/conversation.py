import logging
from collections.abc import Callable

from voice_chat.domain.models import ChatTurn

logger = logging.getLogger(__name__)

TurnListener = Callable[[str, ChatTurn | None], None]


class ConversationStore:
    """In-memory message store; listeners see every change as (action, turn)."""

    def __init__(self, max_turns: int | None = None) -> None:
        self._max_turns = max_turns
        self._turns: list[ChatTurn] = []
        self._listeners: list[TurnListener] = []

    @property
    def turns(self) -> list[ChatTurn]:
        return list(self._turns)

    def add_listener(self, listener: TurnListener) -> None:
        self._listeners.append(listener)

    def append(self, turn: ChatTurn) -> None:
        self._turns.append(turn)
        self._trim()
        self._notify("append", turn)

    def update(self, turn: ChatTurn) -> None:
        for i in range(len(self._turns) - 1, -1, -1):
            if self._turns[i].id == turn.id:
                self._turns[i] = turn
                self._notify("update", turn)
                return
        logger.debug("Ignoring update for unknown turn %s", turn.id)

    def remove_last(self) -> ChatTurn | None:
        if not self._turns:
            return None
        turn = self._turns.pop()
        self._notify("remove", turn)
        return turn

    def get(self, turn_id: str) -> ChatTurn | None:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    def clear(self) -> None:
        self._turns.clear()
        self._notify("clear", None)

    def _trim(self) -> None:
        if not self._max_turns:
            return
        max_messages = self._max_turns * 2
        if len(self._turns) > max_messages:
            self._turns = self._turns[-max_messages:]

    def _notify(self, action: str, turn: ChatTurn | None) -> None:
        for listener in self._listeners:
            listener(action, turn)
