# ideator/streaming.py
"""
StreamEvent channel shared by native and simulated streaming.

An event is one of:
    {"content": "<text>"}
    {"done": True}
    {"error": "<short message>"}
Events arrive in order and exactly one of done/error closes the stream.
"""
import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger("ideator_backend")

StreamEvent = dict

_PIECE_RE = re.compile(r"\S+\s*")


def content_event(text: str) -> StreamEvent:
    return {"content": text}


def done_event() -> StreamEvent:
    return {"done": True}


def error_event(message: str) -> StreamEvent:
    return {"error": message or "stream error"}


def is_terminal(event: StreamEvent) -> bool:
    return bool(event.get("done")) or "error" in event


def split_words(text: str) -> list[str]:
    """Each piece is a word plus the whitespace after it, so joining the pieces restores the text."""
    return _PIECE_RE.findall(text or "")


async def aclose_quietly(source: Any) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Closing upstream stream raised: {e}")


async def native_stream(tokens: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
    try:
        async for token in tokens:
            if token:
                yield content_event(token)
    finally:
        await aclose_quietly(tokens)
    yield done_event()


async def simulated_stream(
    text: str,
    delay: float = 0.02,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> AsyncIterator[StreamEvent]:
    for i, piece in enumerate(split_words(text)):
        if i and delay:
            await sleep(delay)
        yield content_event(piece)
    yield done_event()


async def sealed(source: AsyncIterator[StreamEvent]) -> AsyncIterator[StreamEvent]:
    """
    Enforce the channel contract on any event source: nothing after the first
    terminal event, an exception becomes a single error event, a source that
    just ends gets its done event, and the source is always closed.
    """
    try:
        async for event in source:
            yield event
            if is_terminal(event):
                return
        yield done_event()
    except Exception as e:
        logger.exception("Stream failed")
        yield error_event(str(e) or type(e).__name__)
    finally:
        await aclose_quietly(source)


def sse_encode(event: StreamEvent) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
