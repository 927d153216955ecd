"""Wire and conversation models for chat-completion streaming."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from time import time
from typing import Any

from voice_chat.domain.errors import InvalidRequestError, InvalidResponseShapeError
from voice_chat.domain import validation

DEFAULT_MODEL = "glm-4.5-air"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class FinishReason(Enum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "FinishReason | None":
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


MESSAGE_ROLES = frozenset({Role.USER, Role.ASSISTANT, Role.SYSTEM})


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(Role.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(Role.SYSTEM, content)

    @property
    def is_valid(self) -> bool:
        return self.role in MESSAGE_ROLES and validation.is_valid_text(self.content)

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class RequestParameters:
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    top_p: float | None = None
    stop: tuple[str, ...] | None = None


@dataclass(frozen=True)
class StreamRequest:
    """A chat-completion request; only valid requests may be sent."""

    messages: tuple[ChatMessage, ...]
    parameters: RequestParameters = field(default_factory=RequestParameters)

    @property
    def is_valid(self) -> bool:
        return self.invalid_reason() is None

    def invalid_reason(self) -> str | None:
        if not self.messages:
            return "request has no messages"
        for index, message in enumerate(self.messages):
            if not message.is_valid:
                return f"message {index} has an invalid role or empty content"
        params = self.parameters
        if not params.model:
            return "model is empty"
        if not validation.is_valid_temperature(params.temperature):
            return f"temperature {params.temperature} outside [0, 2]"
        if not validation.is_valid_max_tokens(params.max_tokens):
            return f"max_tokens {params.max_tokens} outside (0, 4096]"
        if not validation.is_valid_top_p(params.top_p):
            return f"top_p {params.top_p} outside (0, 1]"
        return None

    def validate(self) -> None:
        reason = self.invalid_reason()
        if reason is not None:
            raise InvalidRequestError(reason)

    def to_payload(self) -> dict[str, Any]:
        params = self.parameters
        payload: dict[str, Any] = {
            "model": params.model,
            "messages": [message.as_dict() for message in self.messages],
            "stream": True,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }
        if params.top_p is not None:
            payload["top_p"] = params.top_p
        if params.stop is not None:
            payload["stop"] = list(params.stop)
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StreamRequest":
        try:
            messages = tuple(
                ChatMessage(Role.parse(item["role"]), item["content"])
                for item in payload["messages"]
            )
            stop = payload.get("stop")
            parameters = RequestParameters(
                model=payload["model"],
                temperature=payload["temperature"],
                max_tokens=payload["max_tokens"],
                top_p=payload.get("top_p"),
                stop=tuple(stop) if stop is not None else None,
            )
        except (KeyError, TypeError) as exc:
            raise InvalidRequestError(f"malformed request payload: {exc!r}") from exc
        return cls(messages=messages, parameters=parameters)

    @classmethod
    def from_turns(
        cls,
        turns: list["ChatTurn"],
        parameters: RequestParameters | None = None,
        system_prompt: str = "",
    ) -> "StreamRequest":
        messages = []
        if system_prompt.strip():
            messages.append(ChatMessage.system(system_prompt))
        for turn in turns:
            if turn.streaming:
                continue
            message = ChatMessage(turn.role, turn.content)
            if message.is_valid:
                messages.append(message)
        return cls(messages=tuple(messages), parameters=parameters or RequestParameters())


@dataclass(frozen=True)
class Delta:
    content: str | None = None
    role: Role | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.content)


@dataclass(frozen=True)
class Choice:
    index: int
    delta: Delta
    finish_reason: FinishReason | None = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cached_tokens: int | None = None


@dataclass(frozen=True)
class StreamChunk:
    id: str
    created_at: float
    model: str
    choices: tuple[Choice, ...]
    object: str | None = None
    usage: Usage | None = None

    @property
    def first_choice(self) -> Choice | None:
        return self.choices[0] if self.choices else None

    @property
    def delta_content(self) -> str | None:
        choice = self.first_choice
        return choice.delta.content if choice else None

    @property
    def has_content(self) -> bool:
        choice = self.first_choice
        return choice is not None and choice.delta.has_content

    @property
    def finish_reason(self) -> FinishReason | None:
        choice = self.first_choice
        return choice.finish_reason if choice else None

    @property
    def is_finished(self) -> bool:
        return self.finish_reason is not None

    @classmethod
    def from_payload(cls, payload: Any) -> "StreamChunk":
        """Decode one event payload, raising DecodeError on anything not chunk-shaped."""
        if not isinstance(payload, dict):
            raise InvalidResponseShapeError(f"chunk is {type(payload).__name__}, not an object")
        try:
            choices = tuple(_decode_choice(item) for item in payload["choices"])
            usage = _decode_usage(payload.get("usage"))
            chunk = cls(
                id=_require(payload["id"], str, "id"),
                created_at=_require(payload["created"], (int, float), "created"),
                model=_require(payload["model"], str, "model"),
                choices=choices,
                object=payload.get("object"),
                usage=usage,
            )
        except KeyError as exc:
            raise InvalidResponseShapeError(f"chunk is missing field {exc}") from exc
        except TypeError as exc:
            raise InvalidResponseShapeError(str(exc)) from exc
        return chunk


def _require(value: Any, expected: type | tuple[type, ...], name: str) -> Any:
    if not isinstance(value, expected) or isinstance(value, bool):
        names = " or ".join(t.__name__ for t in expected) if isinstance(expected, tuple) else expected.__name__
        raise TypeError(f"field {name!r} should be {names}, got {type(value).__name__}")
    return value


def _decode_choice(item: Any) -> Choice:
    if not isinstance(item, dict):
        raise TypeError("choice is not an object")
    delta = item["delta"]
    if not isinstance(delta, dict):
        raise TypeError("delta is not an object")
    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        raise TypeError("delta content is not a string")
    role = delta.get("role")
    return Choice(
        index=_require(item["index"], int, "index"),
        delta=Delta(content=content, role=Role.parse(role) if role is not None else None),
        finish_reason=FinishReason.parse(item.get("finish_reason")),
    )


def _decode_usage(usage: Any) -> Usage | None:
    if usage is None:
        return None
    if not isinstance(usage, dict):
        raise TypeError("usage is not an object")
    details = usage.get("prompt_tokens_details") or {}
    if not isinstance(details, dict):
        raise TypeError("prompt_tokens_details is not an object")
    cached_tokens = details.get("cached_tokens")
    if cached_tokens is not None:
        _require(cached_tokens, int, "cached_tokens")
    return Usage(
        prompt_tokens=_require(usage["prompt_tokens"], int, "prompt_tokens"),
        completion_tokens=_require(usage["completion_tokens"], int, "completion_tokens"),
        total_tokens=_require(usage["total_tokens"], int, "total_tokens"),
        cached_tokens=cached_tokens,
    )


@dataclass(frozen=True)
class ChatTurn:
    """One conversation message; content is frozen once streaming is cleared."""

    role: Role
    content: str = ""
    streaming: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time)

    @classmethod
    def user(cls, content: str) -> "ChatTurn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant_placeholder(cls) -> "ChatTurn":
        return cls(role=Role.ASSISTANT, content="", streaming=True)

    @property
    def is_from_user(self) -> bool:
        return self.role == Role.USER

    @property
    def is_valid(self) -> bool:
        return validation.is_valid_text(self.content)

    def appending(self, text: str) -> "ChatTurn":
        if not self.streaming:
            raise ValueError(f"turn {self.id} is finalized and cannot change")
        return replace(self, content=self.content + text)

    def finished(self) -> "ChatTurn":
        return replace(self, streaming=False)

