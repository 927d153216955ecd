import json

import pytest

from voice_chat.domain.errors import DecodeError, InvalidResponseShapeError
from voice_chat.domain.sse import Emit, End, Skip, classify_line, decode_chunk
from tests.conftest import chunk_payload


def data_line(payload) -> str:
    return f"data: {json.dumps(payload)}"


class TestClassifyLine:
    def test_content_chunk_emits(self):
        outcome = classify_line(data_line(chunk_payload("Hi")))
        assert isinstance(outcome, Emit)
        assert outcome.text == "Hi"
        assert outcome.chunk.model == "glm-4.5-air"

    def test_done_sentinel_ends(self):
        assert classify_line("data: [DONE]") == End("done")

    def test_done_sentinel_with_padding(self):
        assert isinstance(classify_line("data:  [DONE] \r\n"), End)

    def test_blank_line_skipped(self):
        assert isinstance(classify_line(""), Skip)

    def test_comment_and_other_fields_skipped(self):
        assert isinstance(classify_line(": keep-alive"), Skip)
        assert isinstance(classify_line("event: message"), Skip)

    def test_malformed_json_skipped_with_error(self):
        outcome = classify_line("data: {not json")
        assert isinstance(outcome, Skip)
        assert isinstance(outcome.error, DecodeError)

    def test_wrong_shape_skipped(self):
        outcome = classify_line(data_line({"hello": "world"}))
        assert isinstance(outcome, Skip)
        assert isinstance(outcome.error, InvalidResponseShapeError)

    def test_finish_only_chunk_skipped(self):
        outcome = classify_line(data_line(chunk_payload(finish_reason="stop")))
        assert isinstance(outcome, Skip)
        assert "finish" in outcome.reason

    def test_role_only_chunk_skipped(self):
        assert isinstance(classify_line(data_line(chunk_payload(role="assistant"))), Skip)

    def test_empty_content_skipped(self):
        assert isinstance(classify_line(data_line(chunk_payload(""))), Skip)

    def test_content_with_finish_reason_still_emits(self):
        outcome = classify_line(data_line(chunk_payload("end.", finish_reason="stop")))
        assert outcome == Emit("end.", chunk=outcome.chunk)


class TestDecodeChunk:
    def test_invalid_json_raises_decode_error(self):
        with pytest.raises(DecodeError):
            decode_chunk("{")

    def test_unexpected_layout_raises_shape_error(self):
        payload = chunk_payload("Hi")
        payload["usage"] = {
            "prompt_tokens": 1,
            "completion_tokens": 1,
            "total_tokens": 2,
            "prompt_tokens_details": "oops",
        }
        with pytest.raises(InvalidResponseShapeError):
            decode_chunk(json.dumps(payload))


class TestOddlyShapedChunks:
    def test_non_object_token_details_is_skipped(self):
        payload = chunk_payload("Hi")
        payload["usage"] = {
            "prompt_tokens": 1,
            "completion_tokens": 1,
            "total_tokens": 2,
            "prompt_tokens_details": "oops",
        }
        outcome = classify_line(data_line(payload))
        assert isinstance(outcome, Skip)
        assert isinstance(outcome.error, InvalidResponseShapeError)

    def test_deeply_nested_json_is_skipped(self):
        outcome = classify_line("data: " + "[" * 100000 + "]" * 100000)
        assert isinstance(outcome, Skip)
        assert isinstance(outcome.error, DecodeError)

    def test_float_created_still_emits(self):
        payload = chunk_payload("Hi")
        payload["created"] = 1700000000.0
        outcome = classify_line(data_line(payload))
        assert isinstance(outcome, Emit)
        assert outcome.text == "Hi"
