import json
from typing import Any, Callable, Iterable, Optional, Sequence, Union

import pytest

from src.llms.completion import FinishSignal, TextFragment
from src.server.session.models import MessageRecord

Step = Union[str, FinishSignal, TextFragment, BaseException]


class ScriptedCompletionSource:
    """Completion source that replays a fixed script and records every call."""

    def __init__(self, *scripts: Iterable[Step], on_fragment: Optional[Callable[[int], Any]] = None) -> None:
        self._scripts = [list(script) for script in scripts]
        self._on_fragment = on_fragment
        self.calls: list[list[tuple[str, str]]] = []

    async def stream(self, messages: Sequence[MessageRecord]):
        self.calls.append([(message.role, message.content) for message in messages])
        script = self._scripts[min(len(self.calls), len(self._scripts)) - 1]
        for index, step in enumerate(script):
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, str):
                step = TextFragment(step)
            yield step
            if self._on_fragment is not None:
                self._on_fragment(index)


def hello_script() -> list[Step]:
    return ["Hel", "lo!", FinishSignal("stop")]


def parse_sse(body: str) -> list[tuple[str, dict]]:
    events: list[tuple[str, dict]] = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        event_type = "message"
        data_lines: list[str] = []
        for line in frame.split("\n"):
            if line.startswith("event:"):
                event_type = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())
        events.append((event_type, json.loads("\n".join(data_lines))))
    return events


async def collect(stream) -> list[tuple[str, dict]]:
    chunks = [chunk async for chunk in stream]
    return parse_sse("".join(chunks))


@pytest.fixture
def scripted_source():
    return ScriptedCompletionSource


@pytest.fixture
def sse():
    return parse_sse


@pytest.fixture
def collect_events():
    return collect


@pytest.fixture
def hello():
    return hello_script()
