"""Scoring of submitted answers, write-through to the result store."""

from __future__ import annotations
import logging
import time
from typing import Callable, List, Optional

from .leaderboard import LeaderboardPublisher
from .models import Emit, Question
from .players import PlayerRegistry
from .session import SessionState
from .storage import ResultStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def score_change(question: Question, option_index: Optional[int]) -> int:
    """Points won or lost; no answer counts as a wrong answer."""
    if option_index is not None and option_index == question.correct_option_index:
        return question.score
    return -question.negative_score


class AnswerPipeline:
    def __init__(
        self,
        state: SessionState,
        players: PlayerRegistry,
        store: ResultStore,
        leaderboard: LeaderboardPublisher,
        clock: Callable[[], int] = now_ms,
    ):
        self.state = state
        self.players = players
        self.store = store
        self.leaderboard = leaderboard
        self.clock = clock

    def submit(self, sid: str, option_index: Optional[int]) -> List[Emit]:
        player = self.players.get(sid)
        if player is None or not self.state.is_active:
            return []
        question = self.state.question_at(player.question_index)
        if question is None:
            return []
        if question.id in player.answers:
            return []  # already scored

        change = score_change(question, option_index)
        new_score = player.score + change
        answers = dict(player.answers)
        answers[question.id] = option_index

        # PersistenceError propagates with the player untouched
        self.store.upsert_result(
            self.state.quiz_id,
            player.name,
            player.branch,
            player.year,
            new_score,
            self.clock(),
            answers,
        )
        player.score = new_score
        player.answers = answers

        is_correct = option_index is not None and option_index == question.correct_option_index
        return [
            Emit(
                "answerResult",
                {
                    "isCorrect": is_correct,
                    "scoreChange": change,
                    "correctOptionIndex": question.correct_option_index,
                    "selectedOptionIndex": option_index,
                    "score": player.score,
                },
                sid,
            ),
            self.leaderboard.update_event(),
        ]
