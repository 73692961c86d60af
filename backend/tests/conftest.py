from __future__ import annotations
from typing import List

import pytest

from livequiz.engine import QuizEngine
from livequiz.models import Emit, Join
from livequiz.storage import ResultStore


class FakeClock:
    def __init__(self, start: int = 1_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def store():
    s = ResultStore("sqlite://")
    yield s
    s.close()


@pytest.fixture
def host(store):
    return store.create_host("host@example.com")


@pytest.fixture
def other_host(store):
    return store.create_host("other@example.com")


def add_questions(store, quiz_id, specs):
    """specs: list of (correct, score, negative_score)."""
    out = []
    for i, (correct, score, negative) in enumerate(specs):
        out.append(
            store.add_question(
                quiz_id,
                f"Question {i + 1}?",
                ["A", "B", "C", "D"],
                correct,
                30,
                score,
                negative,
            )
        )
    return out


@pytest.fixture
def quiz(store, host):
    q = store.create_quiz(host.id, "General knowledge")
    add_questions(store, q.id, [(1, 10, 5), (0, 20, 3), (2, 5, 0)])
    return q


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(store, clock):
    return QuizEngine(store, clock=clock)


def join(engine: QuizEngine, sid: str, name: str, code: str | None = None, **extra) -> List[Emit]:
    payload = Join(name=name, joinCode=code if code is not None else engine.state.join_code, **extra)
    return engine.handle(sid, payload)


def events(effects: List[Emit], name: str) -> List[Emit]:
    return [e for e in effects if e.event == name]
