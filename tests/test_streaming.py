import pytest

from ideator.streaming import native_stream, sealed, simulated_stream, split_words, sse_encode

from conftest import FakeProvider, collect


@pytest.mark.asyncio
async def test_simulated_five_words_yield_five_events_then_done(sleep_recorder):
    events = await collect(simulated_stream("one two three four five", delay=0.02, sleep=sleep_recorder))

    assert events == [
        {"content": "one "},
        {"content": "two "},
        {"content": "three "},
        {"content": "four "},
        {"content": "five"},
        {"done": True},
    ]
    assert sleep_recorder.delays == [0.02] * 4


def test_split_words_round_trips_text():
    text = "Line one.\n\n- bullet  two\n"
    assert "".join(split_words(text)) == text
    assert split_words("") == []


@pytest.mark.asyncio
async def test_native_stream_forwards_tokens_and_closes_upstream():
    provider = FakeProvider(stream_tokens=["Hel", "", "lo"])

    events = await collect(native_stream(provider.stream(None, [])))

    assert events == [{"content": "Hel"}, {"content": "lo"}, {"done": True}]
    assert provider.stream_closed is True


@pytest.mark.asyncio
async def test_early_exit_closes_the_provider_stream():
    provider = FakeProvider(stream_tokens=["a", "b", "c"])
    events = sealed(native_stream(provider.stream(None, [])))

    first = await events.__anext__()
    await events.aclose()

    assert first == {"content": "a"}
    assert provider.stream_closed is True


@pytest.mark.asyncio
async def test_sealed_turns_an_exception_into_one_error_event():
    provider = FakeProvider(stream_tokens=["a", "b"], stream_error=RuntimeError("connection reset"), stream_error_at=1)

    events = await collect(sealed(native_stream(provider.stream(None, []))))

    assert events == [{"content": "a"}, {"error": "connection reset"}]


@pytest.mark.asyncio
async def test_sealed_drops_events_after_terminal_and_adds_missing_done():
    async def chatty():
        yield {"content": "x"}
        yield {"done": True}
        yield {"content": "late"}

    async def unterminated():
        yield {"content": "x"}

    assert await collect(sealed(chatty())) == [{"content": "x"}, {"done": True}]
    assert await collect(sealed(unterminated())) == [{"content": "x"}, {"done": True}]


def test_sse_encode_framing():
    assert sse_encode({"done": True}) == 'data: {"done": true}\n\n'
    assert sse_encode({"content": "👋 "}) == 'data: {"content": "👋 "}\n\n'
