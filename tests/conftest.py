"""Shared fixtures: a scripted host with a manual clock and recorded timers."""
from __future__ import annotations

import pytest

from tikzcd_core import Diagram, Edge, Node, SessionController, SessionHost


class FakeHost(SessionHost):
    def __init__(self, clipboard: bool = True):
        self.time = 0.0
        self.clipboard = clipboard
        self.alerts: list[str] = []
        self.prompts: list[tuple[str, str]] = []
        self.copied: list[str] = []
        self.fragments: list[str] = []
        self.timers: list[tuple[float, object]] = []

    def now(self) -> float:
        return self.time

    def advance(self, ms: float):
        self.time += ms

    def alert(self, message):
        self.alerts.append(message)

    def prompt(self, message, value):
        self.prompts.append((message, value))

    def copy_text(self, text):
        if not self.clipboard:
            return False
        self.copied.append(text)
        return True

    def replace_location(self, fragment):
        self.fragments.append(fragment)

    def schedule(self, delay, callback):
        self.timers.append((delay, callback))

    def run_timers(self):
        timers, self.timers = self.timers, []
        for _, callback in timers:
            callback()


def make_diagram(nodes=(), edges=()) -> Diagram:
    """nodes: (id, value, (x, y)) tuples; edges: (source, target) or dicts."""
    return Diagram(
        nodes=tuple(Node(id=i, value=v, position=p) for i, v, p in nodes),
        edges=tuple(
            Edge.model_validate(e) if isinstance(e, dict) else Edge(source=e[0], target=e[1])
            for e in edges
        ),
    )


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def session(host):
    return SessionController(host=host)


@pytest.fixture
def square():
    """A B / C D with arrows A->B, A->C."""
    return make_diagram(
        nodes=[
            ("a", "A", (0, 0)),
            ("b", "B", (1, 0)),
            ("c", "C", (0, 1)),
            ("d", "D", (1, 1)),
        ],
        edges=[
            {"from": "a", "to": "b", "value": "f"},
            {"from": "a", "to": "c", "value": "g"},
        ],
    )
