from __future__ import annotations
from typing import List

from .models import Emit, LeaderboardEntry
from .session import SessionState
from .storage import ResultStore


class LeaderboardPublisher:
    """Ranked standings of the live quiz, read from durable results."""

    def __init__(self, state: SessionState, store: ResultStore, size: int = 20):
        self.state = state
        self.store = store
        self.size = size

    def compute(self) -> List[LeaderboardEntry]:
        # score desc, then whoever reached it first
        if not self.state.is_active or self.state.quiz_id is None:
            return []
        return self.store.top_results(self.state.quiz_id, limit=self.size)

    def update_event(self, to: str | None = None) -> Emit:
        results = [entry.model_dump() for entry in self.compute()]
        return Emit("leaderboardUpdate", {"results": results, "quizName": self.state.quiz_name}, to)
