import pytest

from src.llms.completion import FinishSignal
from src.server.chat.errors import ProviderError
from src.server.chat.relay import RelayState, StreamRelay, StreamSession
from src.server.session.memory import InMemoryHistoryStore


async def _seeded_store():
    store = InMemoryHistoryStore()
    await store.append("S1", "user", "hi")
    return store


@pytest.mark.asyncio
async def test_new_session_emits_session_event_first_and_commits(scripted_source, collect_events, hello):
    store = await _seeded_store()
    source = scripted_source(hello)
    relay = StreamRelay(store, source)
    session = StreamSession(session_id="S1", is_new_session=True)

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert events == [
        ("session", {"sessionId": "S1"}),
        ("message", {"content": "Hel"}),
        ("message", {"content": "lo!"}),
    ]
    assert [(m.role, m.content) for m in await store.get("S1")] == [("user", "hi"), ("assistant", "Hello!")]
    assert session.state is RelayState.COMPLETED
    assert session.finish_reason == "stop"
    assert session.committed is True
    assert source.calls == [[("user", "hi")]]


@pytest.mark.asyncio
async def test_retry_never_emits_session_event(scripted_source, collect_events, hello):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source(hello))
    session = StreamSession(session_id="S1", is_new_session=True, is_retry=True)

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert [name for name, _ in events] == ["message", "message"]


@pytest.mark.asyncio
async def test_fragments_are_forwarded_in_order_and_empty_ones_skipped(scripted_source, collect_events):
    store = await _seeded_store()
    script = ["a", "", "b", "", "c", "  d", FinishSignal("length")]
    relay = StreamRelay(store, scripted_source(script))

    events = await collect_events(relay.run(StreamSession(session_id="S1"), await store.get("S1")))

    assert [data["content"] for _, data in events] == ["a", "b", "c", "  d"]
    assert (await store.last_message("S1")).content == "abc  d"


@pytest.mark.asyncio
async def test_whitespace_only_reply_is_not_recorded(scripted_source, collect_events):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source([" ", "\n", FinishSignal("stop")]))
    session = StreamSession(session_id="S1")

    await collect_events(relay.run(session, await store.get("S1")))

    assert len(await store.get("S1")) == 1
    assert session.state is RelayState.COMPLETED
    assert session.committed is False


@pytest.mark.asyncio
async def test_provider_error_before_any_fragment(scripted_source, collect_events):
    store = await _seeded_store()
    failure = ProviderError("Completion request failed.", details="connection refused")
    relay = StreamRelay(store, scripted_source([failure]))
    session = StreamSession(session_id="S1")

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert events == [("error", {"error": "Completion request failed.", "details": "connection refused"})]
    assert len(await store.get("S1")) == 1
    assert session.state is RelayState.FAILED


@pytest.mark.asyncio
async def test_provider_error_mid_stream_discards_partial_reply(scripted_source, collect_events):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source(["Hel", ProviderError("Completion request failed.")]))

    events = await collect_events(relay.run(StreamSession(session_id="S1"), await store.get("S1")))

    assert [name for name, _ in events] == ["message", "error"]
    assert events[-1][1] == {"error": "Completion request failed."}
    assert [m.role for m in await store.get("S1")] == ["user"]


@pytest.mark.asyncio
async def test_stream_ending_without_finish_signal_is_a_failure(scripted_source, collect_events):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source(["Hel", "lo!"]))
    session = StreamSession(session_id="S1")

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert events[-1][0] == "error"
    assert [m.role for m in await store.get("S1")] == ["user"]
    assert session.state is RelayState.FAILED


@pytest.mark.asyncio
async def test_unexpected_source_error_is_reported_in_stream(scripted_source, collect_events):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source([RuntimeError("kaboom")]))

    events = await collect_events(relay.run(StreamSession(session_id="S1"), await store.get("S1")))

    assert events == [("error", {"error": "Error while streaming the completion.", "details": "kaboom"})]


@pytest.mark.asyncio
async def test_cancellation_mid_stream_commits_nothing(scripted_source, collect_events):
    store = await _seeded_store()
    before = [(m.role, m.content) for m in await store.get("S1")]
    session = StreamSession(session_id="S1")
    source = scripted_source(
        ["Hel", "lo!", FinishSignal("stop")],
        on_fragment=lambda index: session.cancel() if index == 0 else None,
    )
    relay = StreamRelay(store, source)

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert events == [("message", {"content": "Hel"})]
    assert [(m.role, m.content) for m in await store.get("S1")] == before
    assert session.state is RelayState.FAILED


@pytest.mark.asyncio
async def test_closing_the_generator_commits_nothing(scripted_source, hello):
    store = await _seeded_store()
    relay = StreamRelay(store, scripted_source(hello))
    stream = relay.run(StreamSession(session_id="S1"), await store.get("S1"))

    first = await stream.__anext__()
    await stream.aclose()

    assert first.startswith("event: message")
    assert [m.role for m in await store.get("S1")] == ["user"]


@pytest.mark.asyncio
async def test_commit_hook_runs_after_commit_and_failures_are_contained(scripted_source, collect_events, hello):
    store = await _seeded_store()
    seen = []

    async def hook(session_id):
        seen.append((session_id, len(await store.get(session_id))))
        raise RuntimeError("title service down")

    relay = StreamRelay(store, scripted_source(hello), on_commit=hook)
    session = StreamSession(session_id="S1")

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert [name for name, _ in events] == ["message", "message"]
    assert seen == [("S1", 2)]
    assert session.state is RelayState.COMPLETED


@pytest.mark.asyncio
async def test_store_failure_on_commit_is_reported(scripted_source, collect_events, hello):
    class _BrokenStore(InMemoryHistoryStore):
        async def append(self, session_id, role, content):
            if role == "assistant":
                raise OSError("disk full")
            return await super().append(session_id, role, content)

    store = _BrokenStore()
    await store.append("S1", "user", "hi")
    relay = StreamRelay(store, scripted_source(hello))
    session = StreamSession(session_id="S1")

    events = await collect_events(relay.run(session, await store.get("S1")))

    assert events[-1] == ("error", {"error": "Failed to save the assistant reply.", "details": "disk full"})
    assert session.state is RelayState.FAILED
