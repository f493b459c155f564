from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator


async def iter_text_lines(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        while True:
            split_at = buffer.find("\n")
            if split_at < 0:
                break
            line = buffer[: split_at + 1]
            buffer = buffer[split_at + 1 :]
            yield line
    if buffer:
        yield buffer


async def iter_sse_data(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    """Yield the joined ``data:`` payload of each server-sent event.

    Events are separated by blank lines; comment lines starting with ``:``
    and other fields (``event:``, ``id:``, ``retry:``) are skipped. A
    trailing event without a terminating blank line is dropped.
    """
    data_lines: list[str] = []
    async for raw_line in iter_text_lines(chunks):
        if not raw_line.endswith("\n"):
            break
        line = raw_line.rstrip("\n").rstrip("\r")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[len("data:") :].lstrip())
