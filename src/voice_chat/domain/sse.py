"""Line classifier for server-sent chat-completion streams.

Every line of the response body maps to exactly one tagged outcome, so the
consumer never has to infer intent from the absence of output:

- ``Emit(text)``: a chunk carrying non-empty delta content.
- ``Skip(reason)``: anything that produces no text (non-event lines, role or
  finish-only chunks, payloads that fail to decode).
- ``End(reason)``: the ``[DONE]`` sentinel, or natural end of the body.
- ``Fail(error)``: the stream cannot continue (HTTP status, transport).
"""

import json
import logging
from dataclasses import dataclass

from voice_chat.domain.errors import ChatClientError, DecodeError, InvalidResponseShapeError
from voice_chat.domain.models import StreamChunk

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class Emit:
    text: str
    chunk: StreamChunk | None = None


@dataclass(frozen=True)
class Skip:
    reason: str
    error: DecodeError | None = None


@dataclass(frozen=True)
class End:
    reason: str = "done"


@dataclass(frozen=True)
class Fail:
    error: ChatClientError


StreamOutcome = Emit | Skip | End | Fail


def classify_line(line: str) -> Emit | Skip | End:
    line = line.rstrip("\r\n")
    if not line.startswith(EVENT_PREFIX):
        return Skip("not an event line")

    payload = line[len(EVENT_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return End("done")

    try:
        chunk = decode_chunk(payload)
    except DecodeError as exc:
        logger.debug("Skipping undecodable chunk: %s", exc)
        return Skip("undecodable chunk", error=exc)

    if not chunk.has_content:
        if chunk.is_finished:
            return Skip(f"finish-only chunk ({chunk.finish_reason.value})")
        return Skip("chunk without content")
    return Emit(chunk.delta_content, chunk=chunk)


def decode_chunk(payload: str) -> StreamChunk:
    try:
        data = json.loads(payload)
    except (ValueError, RecursionError) as exc:
        raise DecodeError(f"invalid JSON: {exc}") from exc
    try:
        return StreamChunk.from_payload(data)
    except DecodeError:
        raise
    except Exception as exc:
        raise InvalidResponseShapeError(f"unexpected chunk layout: {exc!r}") from exc
