from collections.abc import AsyncIterator

import pytest

from opencode_telegram.utils.streams import iter_sse_data, iter_text_lines


async def _chunks(*parts: str) -> AsyncIterator[str]:
    for part in parts:
        yield part


async def _collect(iterator: AsyncIterator[str]) -> list[str]:
    return [item async for item in iterator]


@pytest.mark.anyio
async def test_iter_text_lines_with_newlines() -> None:
    lines = await _collect(iter_text_lines(_chunks("line1\nline2\nline3\n")))
    assert lines == ["line1\n", "line2\n", "line3\n"]


@pytest.mark.anyio
async def test_iter_text_lines_partial_lines() -> None:
    lines = await _collect(iter_text_lines(_chunks("line1\npartial", " line\n")))
    assert lines == ["line1\n", "partial line\n"]


@pytest.mark.anyio
async def test_iter_text_lines_buffer_at_end() -> None:
    lines = await _collect(iter_text_lines(_chunks("line1\n", "partial")))
    assert lines == ["line1\n", "partial"]


@pytest.mark.anyio
async def test_iter_sse_data_splits_events() -> None:
    stream = _chunks(
        ": keepalive\n\n",
        'data: {"type": "a"}\n\n',
        "event: message\nid: 7\n",
        'data: {"type":\ndata: "b"}\n\n',
    )
    assert await _collect(iter_sse_data(stream)) == [
        '{"type": "a"}',
        '{"type":\n"b"}',
    ]


@pytest.mark.anyio
async def test_iter_sse_data_handles_crlf_and_split_chunks() -> None:
    stream = _chunks("da", "ta: one\r\n", "\r\n", "data: two\r\n\r\n")
    assert await _collect(iter_sse_data(stream)) == ["one", "two"]


@pytest.mark.anyio
async def test_iter_sse_data_drops_unterminated_event() -> None:
    stream = _chunks("data: done\n\n", "data: partial\n")
    assert await _collect(iter_sse_data(stream)) == ["done"]
