import pytest

from chatbot_core.domain.exceptions import NetworkError
from chatbot_core.providers.sse import SseDecoder, decode_events


HI_FRAME = 'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'.encode("utf-8")


def _feed_all(chunks):
    decoder = SseDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    decoder.close()
    return events


def _deltas(events):
    return [e.text for e in events if e.kind == "delta"]


def _split(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.mark.parametrize("chunks", [
    [HI_FRAME],
    [HI_FRAME[:17], HI_FRAME[17:]],
    _split(HI_FRAME, 1),
])
def test_chunk_boundaries_do_not_change_deltas(chunks):
    assert _deltas(_feed_all(chunks)) == ["Hi"]


def test_every_split_of_multi_frame_stream_is_equivalent():
    body = (
        'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
        'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
        "data: [DONE]\n\n"
    ).encode("utf-8")
    expected = ["Hel", "lo"]
    for size in range(1, 40):
        assert _deltas(_feed_all(_split(body, size))) == expected


def test_multibyte_characters_split_across_chunks():
    frame = 'data: {"choices":[{"delta":{"content":"你好"}}]}\n'.encode("utf-8")
    assert _deltas(_feed_all(_split(frame, 1))) == ["你好"]


def test_done_is_not_a_delta():
    events = _feed_all([b"data: [DONE]\n\n"])
    assert [e.kind for e in events] == ["done"]
    assert _deltas(events) == []


def test_malformed_json_is_skipped():
    body = (
        b"data: {not json}\n"
        b'data: {"choices":[{"delta":{"content":"ok"}}]}\n'
    )
    decoder = SseDecoder()
    events = decoder.feed(body)
    assert _deltas(events) == ["ok"]
    assert decoder.skipped_frames == 1


def test_unterminated_trailing_fragment_is_dropped():
    decoder = SseDecoder()
    events = decoder.feed(
        b'data: {"choices":[{"delta":{"content":"a"}}]}\n'
        b'data: {"choices":[{"delta":{"content":"b"}}]}'
    )
    assert _deltas(events) == ["a"]
    assert decoder.pending
    decoder.close()
    assert decoder.pending == ""
    assert decoder.state == "closed"


def test_non_data_lines_and_unrecognized_shapes_are_ignored():
    body = (
        b": keep-alive comment\n"
        b"event: message\n"
        b"id: 7\n"
        b"\n"
        b'data: {"choices":[]}\n'
        b'data: {"choices":[{"delta":{}}]}\n'
        b'data: {"object":"chat.completion.chunk"}\n'
        b'data: ["not", "a", "dict"]\n'
        b'data: {"choices":[{"delta":{"content":"x"}}]}\r\n'
    )
    assert _deltas(_feed_all([body])) == ["x"]


def test_invalid_utf8_is_replaced_not_fatal():
    body = b'data: {"choices":[{"delta":{"content":"a\xffb"}}]}\n'
    assert _deltas(_feed_all([body])) == ["a�b"]


def test_state_transitions():
    decoder = SseDecoder()
    assert decoder.state == "idle"
    decoder.feed(b"data: ")
    assert decoder.state == "receiving"
    decoder.close()
    assert decoder.state == "closed"
    with pytest.raises(RuntimeError):
        decoder.feed(b"x")


class ChunkStream:
    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


@pytest.mark.asyncio
async def test_decode_events_preserves_order():
    stream = ChunkStream(_split(
        b'data: {"choices":[{"delta":{"content":"1"}}]}\n'
        b'data: {"choices":[{"delta":{"content":"2"}}]}\n'
        b'data: {"choices":[{"delta":{"content":"3"}}]}\n',
        5,
    ))
    events = [e async for e in decode_events(stream)]
    assert _deltas(events) == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_decode_events_turns_transport_failure_into_error_event():
    stream = ChunkStream(
        [b'data: {"choices":[{"delta":{"content":"part"}}]}\n'],
        error=NetworkError(code="STREAM_READ_ERROR", message="connection reset"),
    )
    decoder = SseDecoder()
    events = [e async for e in decode_events(stream, decoder)]
    assert [e.kind for e in events] == ["delta", "error"]
    assert events[-1].reason == "connection reset"
    assert isinstance(events[-1].error, NetworkError)
    assert decoder.state == "closed"
